"""
Expression Printer.

Renders expression blocks back into canonical text accepted by the parser.
"""

from __future__ import annotations

from typing import Tuple

from ..errors import UnsupportedFieldError, UnsupportedOperationError
from ..models import (
    OPERATORS,
    PREC_CONDITIONAL,
    PREC_UNARY,
    RESERVED_OPCODES,
    UNARY_OPCODES,
    ExpressionBlock,
    FieldType,
    Opcode,
    field_name,
)
from .tree import Binary, Conditional, Expr, FieldRef, Literal, Unary


class ExpressionPrinter:
    """
    Printer for expression blocks.

    Output is canonical: binary operators are surrounded by single spaces,
    unary operators are prefixed, fields use their canonical names, literals
    are decimal and parentheses appear only where precedence requires them.
    """

    def format(self, block: ExpressionBlock) -> str:
        """Render a block as text."""
        return self.render(self.decode(block))

    def decode(self, block: ExpressionBlock) -> Expr:
        """Rebuild the tree a block encodes."""
        if not block.nodes:
            raise ValueError("Cannot print an empty block")
        tree, _ = self._decode_node(block, 0)
        return tree

    def render(self, tree: Expr) -> str:
        """Render a tree with minimal parentheses."""
        if isinstance(tree, Literal):
            return str(tree.value)

        if isinstance(tree, FieldRef):
            return field_name(tree.field)

        if isinstance(tree, Unary):
            symbol = OPERATORS[tree.op].symbol
            return symbol + self._wrap(tree.operand, tree.operand.precedence < PREC_UNARY)

        if isinstance(tree, Binary):
            prec = tree.precedence
            left = self._wrap(tree.left, tree.left.precedence < prec)
            right = self._wrap(tree.right, tree.right.precedence <= prec)
            return f"{left} {OPERATORS[tree.op].symbol} {right}"

        condition = self._wrap(tree.condition, tree.condition.precedence <= PREC_CONDITIONAL)
        if_true = self.render(tree.if_true)
        if_false = self.render(tree.if_false)
        return f"{condition} ? {if_true} : {if_false}"

    def _wrap(self, tree: Expr, parenthesize: bool) -> str:
        text = self.render(tree)
        return f"({text})" if parenthesize else text

    def _decode_node(self, block: ExpressionBlock, cursor: int) -> Tuple[Expr, int]:
        node = block.nodes[cursor]

        if node.op == Opcode.IF:
            condition, next_cursor = self._decode_operand(
                block, node.lh, node.lh_imm, cursor + 1
            )
            if (
                not node.rh_is_sub
                or next_cursor >= block.count
                or block.nodes[next_cursor].op != Opcode.ELSE
            ):
                raise UnsupportedOperationError(
                    node.op, cursor, f"if without else branch at node {cursor}"
                )
            branch = block.nodes[next_cursor]
            if_true, next_cursor = self._decode_operand(
                block, branch.lh, branch.lh_imm, next_cursor + 1
            )
            if_false, next_cursor = self._decode_operand(
                block, branch.rh, branch.rh_imm, next_cursor
            )
            return Conditional(condition, if_true, if_false), next_cursor

        if (
            not isinstance(node.op, Opcode)
            or node.op == Opcode.ELSE
            or node.op in RESERVED_OPCODES
        ):
            raise UnsupportedOperationError(node.op, cursor)

        left, next_cursor = self._decode_operand(block, node.lh, node.lh_imm, cursor + 1)
        right, next_cursor = self._decode_operand(block, node.rh, node.rh_imm, next_cursor)

        if node.op == Opcode.NONE:
            return left, next_cursor
        if node.op in UNARY_OPCODES:
            return Unary(node.op, left), next_cursor
        return Binary(node.op, left, right), next_cursor

    def _decode_operand(
        self,
        block: ExpressionBlock,
        value: int,
        immediate: bool,
        cursor: int,
    ) -> Tuple[Expr, int]:
        if immediate:
            return Literal(value), cursor
        if value == FieldType.SUB:
            return self._decode_node(block, cursor)
        if value == FieldType.NONE:
            return Literal(0), cursor
        if field_name(value) is None:
            raise UnsupportedFieldError(value)
        return FieldRef(FieldType(value)), cursor


def format_expression(block: ExpressionBlock) -> str:
    """Render a block as canonical text."""
    return ExpressionPrinter().format(block)


def format_match(block: ExpressionBlock) -> str:
    """Rule listing form: expr 'TEXT'."""
    return f"expr '{format_expression(block)}'"


def format_save(block: ExpressionBlock) -> str:
    """Rule save form: --expr 'TEXT'."""
    return f"--expr '{format_expression(block)}'"
