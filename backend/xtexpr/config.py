"""Runtime configuration using pydantic-settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MAX_DEPTH_LIMIT, SUPPORTED_WIDTHS


class ExprSettings(BaseSettings):
    """Limits and defaults for compiling, validating and installing blocks."""

    # Bit width of literals, field values and results
    operand_width: int = 32

    # Install-time bounds for untrusted blocks
    max_nodes: int = 1024
    max_depth: int = 64
    validation_timeout: float = 1.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="XTEXPR_",
        case_sensitive=False,
    )

    @field_validator("operand_width")
    @classmethod
    def _check_width(cls, value: int) -> int:
        if value not in SUPPORTED_WIDTHS:
            raise ValueError(f"operand_width must be one of {SUPPORTED_WIDTHS}")
        return value

    @field_validator("max_nodes", "max_depth")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("max_depth")
    @classmethod
    def _check_depth_ceiling(cls, value: int) -> int:
        if value > MAX_DEPTH_LIMIT:
            raise ValueError(f"max_depth must not exceed {MAX_DEPTH_LIMIT}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @field_validator("validation_timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("validation_timeout must be positive")
        return value


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> ExprSettings:
    """
    Load settings from an optional YAML file.

    Values from the file are used as defaults; XTEXPR_* environment
    variables and explicit keyword overrides take precedence.

    Args:
        path: YAML file with top-level setting keys, or an "xtexpr" section.
        **overrides: Explicit values.

    Returns:
        Validated settings.
    """
    file_values: Dict[str, Any] = {}
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            file_values = yaml.safe_load(f) or {}
        if not isinstance(file_values, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        file_values = file_values.get("xtexpr", file_values)

    env_values = ExprSettings().model_dump(exclude_unset=True)
    merged = {**file_values, **env_values, **overrides}
    settings = ExprSettings(**merged)
    configure_logging(settings)
    return settings


@lru_cache(maxsize=1)
def get_settings() -> ExprSettings:
    """Process-wide settings from the environment."""
    settings = ExprSettings()
    configure_logging(settings)
    return settings


def configure_logging(settings: Optional[ExprSettings] = None) -> logging.Logger:
    """Apply the configured level to the package logger."""
    settings = settings or get_settings()
    logger = logging.getLogger("backend.xtexpr")
    logger.setLevel(settings.log_level.upper())
    return logger
