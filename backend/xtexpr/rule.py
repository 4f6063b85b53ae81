"""
Rule lifecycle for expression matches.

A rule owns one validated expression block at a time. Install copies and
validates the untrusted buffer before anything can evaluate it; replace
builds the new block off to the side and swaps it in with a single
reference assignment; the old block is reclaimed once the last in-flight
evaluation that acquired it has finished.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

from .codec import decode_block, encode_block, peek_count
from .config import ExprSettings, get_settings
from .errors import BlockValidationError, ResourceError, RuleRemovedError
from .fields import FieldResolver, PacketFieldResolver
from .logic.evaluator import ExpressionEvaluator
from .logic.parser import ExpressionParser
from .logic.printer import format_expression, format_match, format_save
from .models import ExpressionBlock
from .validator.engine import CAUSE_NODE_COUNT, BlockValidationResult, BlockValidator

logger = logging.getLogger(__name__)

BlockSource = Union[bytes, bytearray, memoryview, ExpressionBlock]


class _Snapshot:
    """
    One published generation of a rule's block.

    Readers register before evaluating; the block reference is dropped once
    the snapshot is retired and its last reader has left.
    """

    def __init__(self, block: ExpressionBlock, generation: int):
        self.block: Optional[ExpressionBlock] = block
        self.generation = generation
        self._readers = 0
        self._retired = False
        self._reclaimed = False
        self._lock = threading.Lock()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def reclaimed(self) -> bool:
        return self._reclaimed

    def acquire(self) -> bool:
        """Register a reader; fails if the snapshot is already reclaimed."""
        with self._lock:
            if self._reclaimed:
                return False
            self._readers += 1
            return True

    def release(self) -> None:
        with self._lock:
            self._readers -= 1
            self._reclaim_if_idle()

    def retire(self) -> None:
        with self._lock:
            self._retired = True
            self._reclaim_if_idle()

    def _reclaim_if_idle(self) -> None:
        if self._retired and self._readers == 0 and not self._reclaimed:
            self._reclaimed = True
            self.block = None
            logger.info("Reclaimed expression block generation %d", self.generation)


class ExpressionRule:
    """
    An installed expression match.

    The host calls match() once per record from any number of threads, and
    replace() / destroy() from its administrative path.
    """

    def __init__(
        self,
        block: ExpressionBlock,
        resolver: FieldResolver,
        settings: ExprSettings,
        name: str = "expr",
    ):
        """Use install() or compile_rule() rather than calling this directly."""
        self.name = name
        self.resolver = resolver
        self.settings = settings
        self.evaluator = ExpressionEvaluator(resolver)
        self.validator = BlockValidator(settings, resolver.supported_fields)
        self._current: Optional[_Snapshot] = _Snapshot(block, 1)
        self._admin_lock = threading.Lock()

    @classmethod
    def install(
        cls,
        data: BlockSource,
        resolver: Optional[FieldResolver] = None,
        settings: Optional[ExprSettings] = None,
        name: str = "expr",
    ) -> "ExpressionRule":
        """
        Install a rule from an untrusted block.

        Args:
            data: Wire-format bytes or an already decoded block.
            resolver: Field resolver for evaluation. Defaults to packets.
            settings: Limits to enforce. Defaults to process settings.
            name: Label used in logs.

        Returns:
            The installed rule.

        Raises:
            BlockDecodeError: If the bytes are not a well-framed block.
            BlockValidationError: If the block is malformed.
            ResourceError: If the block cannot be copied.
        """
        resolver = resolver or PacketFieldResolver()
        settings = settings or get_settings()
        validator = BlockValidator(settings, resolver.supported_fields)

        block = _prepare_block(data, settings, validator, name)
        rule = cls(block, resolver, settings, name=name)
        logger.info("Installed rule %s (%d nodes)", name, block.count)
        return rule

    @property
    def generation(self) -> int:
        return self._require_snapshot().generation

    @property
    def active(self) -> bool:
        return self._current is not None

    @property
    def block(self) -> ExpressionBlock:
        """The currently published block."""
        with self.snapshot() as block:
            return block

    @contextmanager
    def snapshot(self) -> Iterator[ExpressionBlock]:
        """Hold the current block so it cannot be reclaimed while in use."""
        while True:
            snap = self._require_snapshot()
            if snap.acquire():
                if snap is self._current:
                    break
                # Replaced between the load and the acquire
                snap.release()
        try:
            yield snap.block
        finally:
            snap.release()

    def evaluate(self, record: Any) -> int:
        """Evaluate the rule's expression for one record."""
        with self.snapshot() as block:
            return self.evaluator.run(block, record)

    def match(self, record: Any) -> bool:
        """Per-record match callback: true when the expression is non-zero."""
        return self.evaluate(record) != 0

    def replace(self, data: BlockSource) -> int:
        """
        Atomically replace the rule's block.

        The new block is copied and validated before it becomes visible;
        on failure the current block stays in place.

        Returns:
            The new generation number.
        """
        block = _prepare_block(data, self.settings, self.validator, self.name)

        with self._admin_lock:
            old = self._require_snapshot()
            new = _Snapshot(block, old.generation + 1)
            self._current = new
            old.retire()

        logger.info(
            "Replaced rule %s: generation %d (%d nodes)",
            self.name, new.generation, block.count,
        )
        return new.generation

    def destroy(self) -> None:
        """Remove the rule; the block is reclaimed after in-flight evaluations."""
        with self._admin_lock:
            old = self._current
            if old is None:
                return
            self._current = None
            old.retire()
        logger.info("Destroyed rule %s", self.name)

    def expression(self) -> str:
        """Canonical text of the installed expression."""
        return format_expression(self.block)

    def describe(self) -> str:
        return format_match(self.block)

    def save(self) -> str:
        return format_save(self.block)

    def _require_snapshot(self) -> _Snapshot:
        snap = self._current
        if snap is None:
            raise RuleRemovedError(f"Rule {self.name} has been destroyed")
        return snap


def _prepare_block(
    data: BlockSource,
    settings: ExprSettings,
    validator: BlockValidator,
    name: str,
) -> ExpressionBlock:
    """Bound, copy, decode and validate an untrusted block."""
    if isinstance(data, ExpressionBlock):
        count = data.count
    elif isinstance(data, (bytes, bytearray, memoryview)):
        count = peek_count(data)
    else:
        raise TypeError(f"Expected bytes or ExpressionBlock, got {type(data).__name__}")

    if count < 1 or count > settings.max_nodes:
        result = BlockValidationResult(valid=True)
        result.add_violation(
            CAUSE_NODE_COUNT, 0,
            f"Node count {count} outside [1, {settings.max_nodes}]",
        )
        logger.warning("Rejected rule %s: %s", name, result.violations[0])
        raise BlockValidationError(result)

    # Own a private copy; the caller's buffer may change after install
    try:
        if isinstance(data, ExpressionBlock):
            block = ExpressionBlock(nodes=tuple(data.nodes), width=data.width)
        else:
            owned = bytes(data)
            block = decode_block(owned, settings.operand_width, settings.max_nodes)
    except MemoryError as e:
        raise ResourceError(f"Cannot allocate storage for {count} nodes") from e

    result = validator.validate(block)
    if not result.valid:
        logger.warning(
            "Rejected rule %s: %s", name, "; ".join(str(v) for v in result.violations)
        )
        raise BlockValidationError(result)
    return block


def compile_rule(
    expression: str,
    resolver: Optional[FieldResolver] = None,
    settings: Optional[ExprSettings] = None,
    name: str = "expr",
) -> ExpressionRule:
    """
    Compile text and install it as a rule.

    The compiled block goes through the same wire encoding and validation
    as any externally supplied block.
    """
    settings = settings or get_settings()
    parser = ExpressionParser(width=settings.operand_width, max_depth=settings.max_depth)
    block = parser.compile(expression)
    return ExpressionRule.install(encode_block(block), resolver, settings, name=name)
