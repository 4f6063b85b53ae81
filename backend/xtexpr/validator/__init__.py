"""
xtexpr Validation Engine.

Install-time checks for untrusted expression blocks:
- Node count and operand width
- Preorder consumption (declared count == consumed count)
- Field identifiers and immediate ranges
- Opcode placement (reserved opcodes, IF/ELSE pairing)
- Nesting depth and validation time budget
"""

from .engine import (
    BlockValidator,
    BlockValidationResult,
    BlockViolation,
    validate_block,
    CAUSE_CONDITIONAL,
    CAUSE_CONSUMPTION,
    CAUSE_DEPTH,
    CAUSE_NODE_COUNT,
    CAUSE_OPERAND_RANGE,
    CAUSE_OPERAND_WIDTH,
    CAUSE_TIMEOUT,
    CAUSE_UNSUPPORTED_FIELD,
    CAUSE_UNSUPPORTED_OPERATION,
)

__all__ = [
    "BlockValidator",
    "BlockValidationResult",
    "BlockViolation",
    "validate_block",
    # Violation causes
    "CAUSE_CONDITIONAL",
    "CAUSE_CONSUMPTION",
    "CAUSE_DEPTH",
    "CAUSE_NODE_COUNT",
    "CAUSE_OPERAND_RANGE",
    "CAUSE_OPERAND_WIDTH",
    "CAUSE_TIMEOUT",
    "CAUSE_UNSUPPORTED_FIELD",
    "CAUSE_UNSUPPORTED_OPERATION",
]
