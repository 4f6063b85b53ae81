"""
xtexpr: arbitrary expression matcher.

This package compiles small arithmetic, relational, logical and bitwise
expressions into compact preorder-encoded blocks, validates untrusted
blocks, and evaluates them against per-record fields such as packet and
connection marks.
"""

from .models import (
    ExpressionBlock,
    FieldType,
    Node,
    Opcode,
)
from .errors import (
    BlockDecodeError,
    BlockValidationError,
    ExprError,
    ParseError,
    ResourceError,
    RuleRemovedError,
    UnsupportedFieldError,
    UnsupportedOperationError,
)
from .config import ExprSettings, load_settings
from .codec import decode_block, encode_block
from .fields import FieldResolver, MappingFieldResolver, PacketFieldResolver, PacketRecord
from .logic import ExpressionEvaluator, ExpressionParser, ExpressionPrinter
from .rule import ExpressionRule, compile_rule

__version__ = "1.0.0"
__all__ = [
    "ExpressionBlock",
    "FieldType",
    "Node",
    "Opcode",
    "BlockDecodeError",
    "BlockValidationError",
    "ExprError",
    "ParseError",
    "ResourceError",
    "RuleRemovedError",
    "UnsupportedFieldError",
    "UnsupportedOperationError",
    "ExprSettings",
    "load_settings",
    "decode_block",
    "encode_block",
    "FieldResolver",
    "MappingFieldResolver",
    "PacketFieldResolver",
    "PacketRecord",
    "ExpressionEvaluator",
    "ExpressionParser",
    "ExpressionPrinter",
    "ExpressionRule",
    "compile_rule",
]
