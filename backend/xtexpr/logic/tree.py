"""
Expression trees shared by the compiler and the printer.

Leaves (literals and fields) become operands of their parent node when a
tree is encoded; every other tree node becomes one micro-expression, except
conditionals which take two (IF and ELSE).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..models import OPERATORS, PREC_CONDITIONAL, PREC_PRIMARY, FieldType, Opcode


@dataclass(frozen=True)
class Literal:
    value: int

    depth = 0
    precedence = PREC_PRIMARY


@dataclass(frozen=True)
class FieldRef:
    field: FieldType

    depth = 0
    precedence = PREC_PRIMARY


@dataclass(frozen=True)
class Unary:
    op: Opcode
    operand: "Expr"

    @property
    def depth(self) -> int:
        return 1 + self.operand.depth

    @property
    def precedence(self) -> int:
        return OPERATORS[self.op].precedence


@dataclass(frozen=True)
class Binary:
    op: Opcode
    left: "Expr"
    right: "Expr"

    @property
    def depth(self) -> int:
        return 1 + max(self.left.depth, self.right.depth)

    @property
    def precedence(self) -> int:
        return OPERATORS[self.op].precedence


@dataclass(frozen=True)
class Conditional:
    condition: "Expr"
    if_true: "Expr"
    if_false: "Expr"

    @property
    def depth(self) -> int:
        # IF node, then the ELSE node one level below it
        branches = 1 + max(self.if_true.depth, self.if_false.depth)
        return 1 + max(self.condition.depth, branches)

    precedence = PREC_CONDITIONAL


Expr = Union[Literal, FieldRef, Unary, Binary, Conditional]