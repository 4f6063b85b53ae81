"""
Block Validation Engine.

Checks an untrusted expression block before it may be evaluated:

- node count within bounds
- a full preorder walk consumes exactly the declared nodes
- every non-immediate operand is SUB, NONE or a supported field
- immediates fit the operand width
- opcodes are known and not reserved; IF/ELSE are paired
- nesting depth is within the configured limit

The walk uses an explicit stack, so adversarial blocks cannot exhaust the
interpreter stack while being checked.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..config import ExprSettings
from ..models import (
    FIELD_NAMES,
    RESERVED_OPCODES,
    ExpressionBlock,
    FieldType,
    Opcode,
    field_name,
    opcode_name,
)

logger = logging.getLogger(__name__)


CAUSE_NODE_COUNT = "node_count"
CAUSE_OPERAND_WIDTH = "operand_width"
CAUSE_CONSUMPTION = "consumption"
CAUSE_UNSUPPORTED_FIELD = "unsupported_field"
CAUSE_UNSUPPORTED_OPERATION = "unsupported_operation"
CAUSE_CONDITIONAL = "conditional"
CAUSE_OPERAND_RANGE = "operand_range"
CAUSE_DEPTH = "depth"
CAUSE_TIMEOUT = "timeout"


@dataclass
class BlockViolation:
    """A single reason a block was rejected."""

    cause: str
    position: int
    message: str
    severity: str = "error"

    def __str__(self) -> str:
        return f"[{self.cause}] node {self.position}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "cause": self.cause,
            "position": self.position,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class BlockValidationResult:
    """Result of block validation."""

    valid: bool
    violations: List[BlockViolation] = field(default_factory=list)
    nodes_checked: int = 0
    depth: int = 0

    def add_violation(
        self,
        cause: str,
        position: int,
        message: str,
        severity: str = "error",
    ) -> None:
        """Add a violation."""
        self.violations.append(BlockViolation(
            cause=cause,
            position=position,
            message=message,
            severity=severity,
        ))
        if severity == "error":
            self.valid = False

    @property
    def causes(self) -> List[str]:
        return [v.cause for v in self.violations]

    def summary(self) -> str:
        """Generate a summary of validation results."""
        status = "PASSED" if self.valid else "FAILED"
        lines = [
            f"Block validation {status}",
            f"  Nodes checked: {self.nodes_checked}",
            f"  Depth: {self.depth}",
        ]
        for violation in self.violations:
            lines.append(f"  {violation}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "valid": self.valid,
            "violations": [v.to_dict() for v in self.violations],
            "nodes_checked": self.nodes_checked,
            "depth": self.depth,
        }


class BlockValidator:
    """
    Validates expression blocks at install time.

    Supports:
    - max_nodes: Upper bound on the node count
    - max_depth: Upper bound on tree depth (root is depth 1)
    - validation_timeout: Wall-clock budget for one validation
    - supported_fields: Field identifiers the resolver can supply
    """

    def __init__(
        self,
        settings: Optional[ExprSettings] = None,
        supported_fields: Optional[FrozenSet[int]] = None,
    ):
        """
        Initialize the validator.

        Args:
            settings: Limits to enforce. Defaults to ExprSettings().
            supported_fields: Accepted field identifiers. Defaults to every
                named field.
        """
        self.settings = settings or ExprSettings()
        if supported_fields is None:
            supported_fields = frozenset(FIELD_NAMES)
        self.supported_fields = frozenset(int(f) for f in supported_fields)

    def validate(
        self,
        block: ExpressionBlock,
        deadline: Optional[float] = None,
    ) -> BlockValidationResult:
        """
        Validate a block.

        Args:
            block: The block to check.
            deadline: time.monotonic() value after which validation gives up.
                Defaults to now plus the configured validation_timeout.

        Returns:
            BlockValidationResult with validation status.
        """
        result = BlockValidationResult(valid=True)
        settings = self.settings

        if deadline is None:
            deadline = time.monotonic() + settings.validation_timeout

        if block.count < 1 or block.count > settings.max_nodes:
            result.add_violation(
                CAUSE_NODE_COUNT, 0,
                f"Node count {block.count} outside [1, {settings.max_nodes}]",
            )
            return result

        if block.width != settings.operand_width:
            result.add_violation(
                CAUSE_OPERAND_WIDTH, 0,
                f"Block uses {block.width}-bit operands, expected {settings.operand_width}",
            )
            return result

        self._walk(block, deadline, result)

        if result.valid:
            logger.debug(
                "Validated block: %d nodes, depth %d", block.count, result.depth
            )
        return result

    def _walk(
        self,
        block: ExpressionBlock,
        deadline: float,
        result: BlockValidationResult,
    ) -> None:
        """Simulate the evaluator's preorder walk."""
        mask = block.mask
        max_depth = self.settings.max_depth
        count = block.count

        # (depth, node must be the ELSE half of a conditional)
        pending: List[Tuple[int, bool]] = [(1, False)]
        cursor = 0

        while pending:
            if time.monotonic() > deadline:
                result.add_violation(
                    CAUSE_TIMEOUT, cursor, "Validation time budget exceeded"
                )
                return

            depth, expect_else = pending.pop()

            if cursor >= count:
                result.add_violation(
                    CAUSE_CONSUMPTION, cursor,
                    f"Expression needs more than the {count} declared nodes",
                )
                return

            if depth > max_depth:
                result.add_violation(
                    CAUSE_DEPTH, cursor,
                    f"Nesting depth exceeds limit of {max_depth}",
                )
                return

            node = block.nodes[cursor]
            position = cursor
            cursor += 1
            result.nodes_checked += 1
            result.depth = max(result.depth, depth)

            if expect_else and node.op != Opcode.ELSE:
                result.add_violation(
                    CAUSE_CONDITIONAL, position,
                    f"Expected else branch, found {opcode_name(node.op)}",
                )
            elif not expect_else and node.op == Opcode.ELSE:
                result.add_violation(
                    CAUSE_CONDITIONAL, position, "Else outside of a conditional"
                )

            if not isinstance(node.op, Opcode):
                result.add_violation(
                    CAUSE_UNSUPPORTED_OPERATION, position,
                    f"Unknown opcode {node.op}",
                )
            elif node.op in RESERVED_OPCODES:
                result.add_violation(
                    CAUSE_UNSUPPORTED_OPERATION, position,
                    f"Operation {node.op.name.lower()} is reserved",
                )

            if node.op == Opcode.IF and not node.rh_is_sub:
                result.add_violation(
                    CAUSE_CONDITIONAL, position,
                    "If requires an else branch as its right-hand side",
                )

            children: List[Tuple[int, bool]] = []
            for side, value, immediate in (
                ("left", node.lh, node.lh_imm),
                ("right", node.rh, node.rh_imm),
            ):
                if immediate:
                    if value < 0 or value > mask:
                        result.add_violation(
                            CAUSE_OPERAND_RANGE, position,
                            f"{side} immediate {value} does not fit in {block.width} bits",
                        )
                elif value == FieldType.SUB:
                    is_branch = node.op == Opcode.IF and side == "right"
                    children.append((depth + 1, is_branch))
                elif value == FieldType.NONE:
                    continue
                elif value not in self.supported_fields:
                    result.add_violation(
                        CAUSE_UNSUPPORTED_FIELD, position,
                        f"{side} operand names unsupported field {_describe_field(value)}",
                    )

            # Left subtree is consumed first
            pending.extend(reversed(children))

        if cursor != count:
            result.add_violation(
                CAUSE_CONSUMPTION, cursor,
                f"{count - cursor} trailing nodes not consumed by the expression",
            )


def _describe_field(value: int) -> str:
    return field_name(value) or str(value)


def validate_block(
    block: ExpressionBlock,
    settings: Optional[ExprSettings] = None,
    supported_fields: Optional[FrozenSet[int]] = None,
) -> BlockValidationResult:
    """Validate a block with a fresh validator."""
    return BlockValidator(settings, supported_fields).validate(block)
