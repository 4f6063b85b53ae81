"""
Expression Evaluator for expression blocks.

Walks a preorder-serialized block once per record with a single forward
cursor. Each node reads its left operand, then its right operand, descending
into the next unconsumed node whenever an operand is the SUB marker, and
returns the cursor just past everything it consumed.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

from ..errors import ExprError, UnsupportedOperationError
from ..fields import FieldResolver
from ..models import ExpressionBlock, FieldType, Opcode


def _div(a: int, b: int, width: int) -> int:
    # Division by zero is a non-match
    return a // b if b else 0


def _mod(a: int, b: int, width: int) -> int:
    return a % b if b else 0


def _shl(a: int, b: int, width: int) -> int:
    return a << (b & (width - 1))


def _shr(a: int, b: int, width: int) -> int:
    return a >> (b & (width - 1))


# Results are masked to the operand width after the operation
OPERATIONS: Dict[Opcode, Callable[[int, int, int], int]] = {
    Opcode.NONE: lambda a, b, w: a,
    Opcode.ADD: lambda a, b, w: a + b,
    Opcode.SUB: lambda a, b, w: a - b,
    Opcode.MUL: lambda a, b, w: a * b,
    Opcode.DIV: _div,
    Opcode.MOD: _mod,
    Opcode.NEG: lambda a, b, w: -a,
    Opcode.LT: lambda a, b, w: int(a < b),
    Opcode.LE: lambda a, b, w: int(a <= b),
    Opcode.EQ: lambda a, b, w: int(a == b),
    Opcode.NE: lambda a, b, w: int(a != b),
    Opcode.GT: lambda a, b, w: int(a > b),
    Opcode.GE: lambda a, b, w: int(a >= b),
    Opcode.LNOT: lambda a, b, w: int(not a),
    # Both operands are always evaluated; there is no short-circuit
    Opcode.LAND: lambda a, b, w: int(bool(a) and bool(b)),
    Opcode.LOR: lambda a, b, w: int(bool(a) or bool(b)),
    Opcode.SHL: _shl,
    Opcode.SHR: _shr,
    Opcode.NOT: lambda a, b, w: ~a,
    Opcode.AND: lambda a, b, w: a & b,
    Opcode.OR: lambda a, b, w: a | b,
    Opcode.XOR: lambda a, b, w: a ^ b,
}


class ExpressionEvaluator:
    """
    Evaluator for expression blocks.

    The evaluator holds no per-call state, so one instance may serve any
    number of concurrent evaluations. It assumes the block was validated
    at install time and does not re-check structure or depth.
    """

    def __init__(self, resolver: FieldResolver):
        """
        Initialize the evaluator.

        Args:
            resolver: Supplies field values for the record being evaluated.
        """
        self.resolver = resolver

    def evaluate(
        self,
        block: ExpressionBlock,
        cursor: int,
        record: Any,
    ) -> Tuple[int, int]:
        """
        Evaluate the subexpression rooted at cursor.

        Args:
            block: The expression block.
            cursor: Index of the node to evaluate.
            record: The input record handed to the field resolver.

        Returns:
            Tuple of (value, next_cursor) where next_cursor is the index
            just past the node and all subexpressions it consumed.

        Raises:
            UnsupportedOperationError: For reserved or misplaced opcodes.
            UnsupportedFieldError: If the resolver cannot supply a field.
        """
        node = block.nodes[cursor]

        if node.op == Opcode.IF:
            return self._eval_if(block, cursor, record)
        if node.op == Opcode.ELSE:
            raise UnsupportedOperationError(
                node.op, cursor, f"else outside of a conditional at node {cursor}"
            )

        operation = OPERATIONS.get(node.op)
        if operation is None:
            raise UnsupportedOperationError(node.op, cursor)

        lh, rh, next_cursor = self._operands(block, cursor, record)
        return operation(lh, rh, block.width) & block.mask, next_cursor

    def run(self, block: ExpressionBlock, record: Any) -> int:
        """Evaluate a whole block from its root."""
        if not block.nodes:
            raise ExprError("Cannot evaluate an empty block")

        value, end = self.evaluate(block, 0, record)
        if end != block.count:
            raise ExprError(
                f"Evaluation consumed {end} of {block.count} nodes"
            )
        return value

    def matches(self, block: ExpressionBlock, record: Any) -> bool:
        """Evaluate a block and convert the result to a match decision."""
        return self.run(block, record) != 0

    def _operands(
        self,
        block: ExpressionBlock,
        cursor: int,
        record: Any,
    ) -> Tuple[int, int, int]:
        """Resolve both operands of a node, left first."""
        node = block.nodes[cursor]
        lh, next_cursor = self._operand(block, node.lh, node.lh_imm, cursor + 1, record)
        rh, next_cursor = self._operand(block, node.rh, node.rh_imm, next_cursor, record)
        return lh, rh, next_cursor

    def _operand(
        self,
        block: ExpressionBlock,
        value: int,
        immediate: bool,
        cursor: int,
        record: Any,
    ) -> Tuple[int, int]:
        """Resolve one operand slot; cursor is the next unconsumed node."""
        if immediate:
            return value & block.mask, cursor
        if value == FieldType.SUB:
            return self.evaluate(block, cursor, record)
        if value == FieldType.NONE:
            return 0, cursor
        return self.resolver.resolve(value, record) & block.mask, cursor

    def _eval_if(
        self,
        block: ExpressionBlock,
        cursor: int,
        record: Any,
    ) -> Tuple[int, int]:
        """Evaluate IF(cond, SUB) followed by its ELSE(true, false) node."""
        node = block.nodes[cursor]
        condition, next_cursor = self._operand(
            block, node.lh, node.lh_imm, cursor + 1, record
        )

        if (
            not node.rh_is_sub
            or next_cursor >= block.count
            or block.nodes[next_cursor].op != Opcode.ELSE
        ):
            raise UnsupportedOperationError(
                node.op, cursor, f"if without else branch at node {cursor}"
            )

        if_true, if_false, next_cursor = self._operands(block, next_cursor, record)
        return (if_true if condition else if_false), next_cursor
