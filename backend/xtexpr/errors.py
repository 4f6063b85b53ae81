"""
Error types for xtexpr.

Every failure raised by the package derives from ExprError so that a host
can reject a rule with a single handler.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .validator.engine import BlockValidationResult


class ExprError(Exception):
    """Base class for all expression errors."""


class ParseError(ExprError, ValueError):
    """
    Raised when the compiler cannot parse an expression.

    Attributes:
        message: What went wrong.
        position: Offset into the source text.
        expression: The full source text.
    """

    def __init__(self, message: str, position: int, expression: str):
        self.message = message
        self.position = position
        self.expression = expression
        super().__init__(f"{message} at offset {position}")

    def pointer(self) -> str:
        """Render the source with a caret under the failing offset."""
        return f"{self.expression}\n{' ' * self.position}^"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message": self.message,
            "position": self.position,
            "expression": self.expression,
        }


class BlockDecodeError(ExprError, ValueError):
    """Raised when wire bytes do not describe a block."""


class BlockValidationError(ExprError, ValueError):
    """Raised when a block fails install-time validation."""

    def __init__(self, result: "BlockValidationResult"):
        self.result = result
        causes = ", ".join(sorted({v.cause for v in result.violations})) or "unknown"
        super().__init__(f"Invalid expression block ({causes})")


class UnsupportedFieldError(ExprError, LookupError):
    """Raised when a field identifier cannot be resolved."""

    def __init__(self, field_id: int, message: Optional[str] = None):
        self.field_id = field_id
        super().__init__(message or f"Unsupported field identifier: {field_id}")


class UnsupportedOperationError(ExprError):
    """Raised when a reserved or misplaced opcode is evaluated."""

    def __init__(self, opcode: int, position: int, message: Optional[str] = None):
        self.opcode = opcode
        self.position = position
        super().__init__(
            message or f"Unsupported operation {opcode} at node {position}"
        )


class ResourceError(ExprError, MemoryError):
    """Raised when rule storage cannot be allocated."""


class RuleRemovedError(ExprError):
    """Raised when a destroyed rule is used."""
