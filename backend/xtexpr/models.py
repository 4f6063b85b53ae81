"""
Core data model for expression blocks.

A micro-expression (Node) is a function of two operands. Each operand is
either an immediate literal, a field identifier resolved against the current
record, or the SUB marker meaning "descend into the next unconsumed node".
Nodes are serialized in preorder ({parent, left, right}) into an
ExpressionBlock, so a single forward-moving cursor is enough to evaluate the
whole tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple


SUPPORTED_WIDTHS = (32, 64)

# Ceiling for configurable nesting depth; the evaluator, compiler and printer
# recurse a few interpreter frames per level
MAX_DEPTH_LIMIT = 128

OPCODE_MASK = 0x3F
LH_IMMEDIATE = 1 << 6
RH_IMMEDIATE = 1 << 7


class Opcode(IntEnum):
    """Operation selected by a node. Values are part of the wire format."""

    NONE = 0
    ADD = 1
    SUB = 2
    MUL = 3
    DIV = 4
    MOD = 5
    NEG = 6

    # Relational operators are all present since encoding !(a==b) for a!=b
    # would cost an extra node.
    LT = 7
    LE = 8
    EQ = 9
    NE = 10
    GT = 11
    GE = 12

    LNOT = 13
    LAND = 14
    LOR = 15

    SHL = 16
    SHR = 17
    NOT = 18
    AND = 19
    OR = 20
    XOR = 21

    ASSIGN = 22
    OFFSET = 23
    DEREF = 24
    IF = 25
    ELSE = 26


class FieldType(IntEnum):
    """Field identifiers a non-immediate operand may name."""

    NONE = 0
    SUB = 1
    THIS = 2
    NFMARK = 3
    CTMARK = 4
    SECMARK = 5
    L2PROTO = 6
    L3PROTO = 7
    L4PROTO = 8
    L4OFFSET = 9


# Opcodes that ignore their right-hand side
UNARY_OPCODES = frozenset({Opcode.NEG, Opcode.LNOT, Opcode.NOT})

# Valid enumeration members that have no evaluation semantics
RESERVED_OPCODES = frozenset({Opcode.ASSIGN, Opcode.OFFSET, Opcode.DEREF})


@dataclass(frozen=True)
class OperatorInfo:
    """Textual form of an opcode."""
    symbol: str
    precedence: int
    unary: bool = False


# Precedence levels, lowest to highest
PREC_CONDITIONAL = 1
PREC_UNARY = 12
PREC_PRIMARY = 13

OPERATORS: Dict[Opcode, OperatorInfo] = {
    Opcode.LOR: OperatorInfo("||", 2),
    Opcode.LAND: OperatorInfo("&&", 3),
    Opcode.OR: OperatorInfo("|", 4),
    Opcode.XOR: OperatorInfo("^", 5),
    Opcode.AND: OperatorInfo("&", 6),
    Opcode.EQ: OperatorInfo("==", 7),
    Opcode.NE: OperatorInfo("!=", 7),
    Opcode.LT: OperatorInfo("<", 8),
    Opcode.LE: OperatorInfo("<=", 8),
    Opcode.GT: OperatorInfo(">", 8),
    Opcode.GE: OperatorInfo(">=", 8),
    Opcode.SHL: OperatorInfo("<<", 9),
    Opcode.SHR: OperatorInfo(">>", 9),
    Opcode.ADD: OperatorInfo("+", 10),
    Opcode.SUB: OperatorInfo("-", 10),
    Opcode.MUL: OperatorInfo("*", 11),
    Opcode.DIV: OperatorInfo("/", 11),
    Opcode.MOD: OperatorInfo("%", 11),
    Opcode.NEG: OperatorInfo("-", PREC_UNARY, unary=True),
    Opcode.LNOT: OperatorInfo("!", PREC_UNARY, unary=True),
    Opcode.NOT: OperatorInfo("~", PREC_UNARY, unary=True),
}

# Canonical spelling of each resolvable field
FIELD_NAMES: Dict[FieldType, str] = {
    FieldType.THIS: "this",
    FieldType.NFMARK: "mark",
    FieldType.CTMARK: "ctmark",
    FieldType.SECMARK: "secmark",
    FieldType.L2PROTO: "l2proto",
    FieldType.L3PROTO: "l3proto",
    FieldType.L4PROTO: "l4proto",
    FieldType.L4OFFSET: "l4offset",
}

FIELD_ALIASES: Dict[str, FieldType] = {
    **{name: ft for ft, name in FIELD_NAMES.items()},
    "nfmark": FieldType.NFMARK,
    "connmark": FieldType.CTMARK,
    "proto": FieldType.L4PROTO,
}


def width_mask(width: int) -> int:
    """All-ones value for an operand width."""
    return (1 << width) - 1


@dataclass(frozen=True)
class Node:
    """
    A micro-expression.

    Attributes:
        op: Operation applied to the two operands.
        lh: Left-hand operand (literal or field identifier).
        rh: Right-hand operand (literal or field identifier).
        lh_imm: Left-hand operand is an immediate literal.
        rh_imm: Right-hand operand is an immediate literal.
    """

    op: Opcode
    lh: int = 0
    rh: int = 0
    lh_imm: bool = False
    rh_imm: bool = False

    def __post_init__(self):
        # Unknown opcodes stay plain ints so validation can report them
        try:
            object.__setattr__(self, "op", Opcode(self.op))
        except ValueError:
            pass

    @classmethod
    def immediate(cls, op: Opcode, lh: int, rh: int = 0) -> "Node":
        """Create a node with two literal operands."""
        return cls(op, lh, rh, lh_imm=True, rh_imm=True)

    @property
    def opbyte(self) -> int:
        """Opcode with the immediate flags ORed on."""
        value = int(self.op)
        if self.lh_imm:
            value |= LH_IMMEDIATE
        if self.rh_imm:
            value |= RH_IMMEDIATE
        return value

    @property
    def lh_is_sub(self) -> bool:
        return not self.lh_imm and self.lh == FieldType.SUB

    @property
    def rh_is_sub(self) -> bool:
        return not self.rh_imm and self.rh == FieldType.SUB

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "op": opcode_name(self.op),
            "lh": self.lh,
            "rh": self.rh,
            "lh_imm": self.lh_imm,
            "rh_imm": self.rh_imm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        """Create from dictionary."""
        op = data["op"]
        if isinstance(op, str):
            op = Opcode[op.upper()]
        return cls(
            op=Opcode(op),
            lh=int(data.get("lh", 0)),
            rh=int(data.get("rh", 0)),
            lh_imm=bool(data.get("lh_imm", False)),
            rh_imm=bool(data.get("rh_imm", False)),
        )


@dataclass(frozen=True)
class ExpressionBlock:
    """
    A preorder-serialized expression tree.

    The block is immutable; it is shared read-only between any number of
    concurrent evaluations.
    """

    nodes: Tuple[Node, ...] = field(default_factory=tuple)
    width: int = 32

    def __post_init__(self):
        if not isinstance(self.nodes, tuple):
            object.__setattr__(self, "nodes", tuple(self.nodes))
        if self.width not in SUPPORTED_WIDTHS:
            raise ValueError(f"Unsupported operand width: {self.width}")

    @property
    def count(self) -> int:
        """Number of nodes in the block."""
        return len(self.nodes)

    @property
    def mask(self) -> int:
        return width_mask(self.width)

    @property
    def node_size(self) -> int:
        """Encoded size of one node in bytes."""
        return 1 + 2 * (self.width // 8)

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> Node:
        return self.nodes[index]

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "width": self.width,
            "items": self.count,
            "nodes": [n.to_dict() for n in self.nodes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExpressionBlock":
        """Create from dictionary."""
        nodes: List[Node] = [Node.from_dict(n) for n in data.get("nodes", [])]
        return cls(nodes=tuple(nodes), width=int(data.get("width", 32)))


def opcode_name(op: int) -> str:
    """Lowercase opcode name, or the raw number for unknown opcodes."""
    if isinstance(op, Opcode):
        return op.name.lower()
    return str(op)


def field_name(field_id: int) -> Optional[str]:
    """Canonical name of a field identifier, if it has one."""
    try:
        return FIELD_NAMES.get(FieldType(field_id))
    except ValueError:
        return None
