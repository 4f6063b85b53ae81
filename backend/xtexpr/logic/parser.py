"""
Expression Parser for match expressions.

Compiles infix text such as "ctmark == 0" or "mark + 1" into expression
blocks.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..errors import ParseError
from ..models import (
    FIELD_ALIASES,
    MAX_DEPTH_LIMIT,
    OPERATORS,
    PREC_CONDITIONAL,
    ExpressionBlock,
    FieldType,
    Node,
    Opcode,
    width_mask,
)
from .tree import Binary, Conditional, Expr, FieldRef, Literal, Unary

logger = logging.getLogger(__name__)


_TOKEN_RE = re.compile(
    r"(?P<number>0[xX][0-9a-fA-F]+|\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op><<|>>|<=|>=|==|!=|&&|\|\||[-+*/%<>!~&|^?:()])"
)


@dataclass(frozen=True)
class Token:
    """A lexical token with its source offset."""
    kind: str
    text: str
    position: int


def tokenize(expression: str) -> List[Token]:
    """Split an expression into tokens."""
    tokens: List[Token] = []
    pos = 0
    length = len(expression)

    while pos < length:
        if expression[pos].isspace():
            pos += 1
            continue

        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ParseError(
                f"Unexpected character {expression[pos]!r}", pos, expression
            )

        kind = match.lastgroup
        text = match.group(kind)
        # Word operators
        if kind == "name" and text.lower() in ExpressionParser.KEYWORDS:
            kind, text = "op", ExpressionParser.KEYWORDS[text.lower()]
        tokens.append(Token(kind, text, pos))
        pos = match.end()

    tokens.append(Token("end", "", length))
    return tokens


class ExpressionParser:
    """
    Parser for match expressions.

    Converts expressions like:
        "4 + 2"
        "ctmark == 0 && mark & 0xff"
        "l4proto == 6 ? mark : 0"

    Into preorder expression blocks. Operator precedence follows C, from
    lowest to highest:

        ?:  ||  &&  |  ^  &  == !=  < <= > >=  << >>  + -  * / %  unary - ! ~ +
    """

    # Supported binary operators and their opcodes
    BINARY_OPS = {
        info.symbol: op for op, info in OPERATORS.items() if not info.unary
    }

    UNARY_OPS = {
        "-": Opcode.NEG,
        "!": Opcode.LNOT,
        "~": Opcode.NOT,
    }

    KEYWORDS = {
        "and": "&&",
        "or": "||",
        "not": "!",
    }

    def __init__(self, width: int = 32, max_depth: int = 64):
        """
        Initialize the parser.

        Args:
            width: Operand width of emitted blocks.
            max_depth: Deepest tree (and parenthesis nesting) accepted.
        """
        if not 1 <= max_depth <= MAX_DEPTH_LIMIT:
            raise ValueError(f"max_depth must be between 1 and {MAX_DEPTH_LIMIT}")
        self.width = width
        self.max_depth = max_depth
        self._tokens: List[Token] = []
        self._index = 0
        self._expression = ""
        self._nesting = 0

    def compile(self, expression: str) -> ExpressionBlock:
        """
        Compile an expression into a block.

        Args:
            expression: The expression to compile.

        Returns:
            The encoded expression block.

        Raises:
            ParseError: If the text is not a valid expression.
        """
        tree = self.parse(expression)
        block = encode_tree(tree, self.width)
        logger.debug("Compiled %r into %d nodes", expression, block.count)
        return block

    def parse(self, expression: str) -> Expr:
        """Parse an expression into a tree."""
        if not isinstance(expression, str):
            raise ParseError(
                f"Expected string expression, got {type(expression).__name__}", 0, str(expression)
            )
        if not expression.strip():
            raise ParseError("Empty expression", 0, expression)

        self._expression = expression
        self._tokens = tokenize(expression)
        self._index = 0
        self._nesting = 0

        tree = self._parse_conditional()

        token = self._peek()
        if token.kind != "end":
            raise self._error(f"Unexpected {token.text!r}", token)
        return tree

    def validate(self, expression: str) -> Tuple[bool, Optional[str]]:
        """
        Check whether an expression compiles.

        Returns:
            Tuple of (is_valid, error_message).
        """
        try:
            self.compile(expression)
            return True, None
        except ParseError as e:
            return False, str(e)

    def _parse_conditional(self) -> Expr:
        """Parse cond ? a : b (right associative, lowest precedence)."""
        condition = self._parse_binary(PREC_CONDITIONAL + 1)

        token = self._peek()
        if token.text != "?" or token.kind != "op":
            return condition

        self._advance()
        self._enter(token)
        if_true = self._parse_conditional()
        self._expect(":")
        if_false = self._parse_conditional()
        self._nesting -= 1
        return self._checked(Conditional(condition, if_true, if_false), token)

    def _parse_binary(self, min_prec: int) -> Expr:
        """Parse left-associative binary operators by precedence climbing."""
        left = self._parse_unary()

        while True:
            token = self._peek()
            op = self.BINARY_OPS.get(token.text) if token.kind == "op" else None
            if op is None:
                return left
            prec = OPERATORS[op].precedence
            if prec < min_prec:
                return left
            self._advance()
            right = self._parse_binary(prec + 1)
            left = self._checked(Binary(op, left, right), token)

    def _parse_unary(self) -> Expr:
        """Parse prefix operators."""
        token = self._peek()
        if token.kind == "op" and token.text in ("-", "!", "~", "+"):
            self._advance()
            self._enter(token)
            operand = self._parse_unary()
            self._nesting -= 1
            if token.text == "+":
                return operand
            return self._checked(Unary(self.UNARY_OPS[token.text], operand), token)
        return self._parse_primary()

    def _parse_primary(self) -> Expr:
        """Parse a literal, a field name or a parenthesized expression."""
        token = self._advance()

        if token.kind == "number":
            value = int(token.text, 0) if token.text.lower().startswith("0x") else int(token.text)
            if value > width_mask(self.width):
                raise self._error(
                    f"Literal {token.text} does not fit in {self.width} bits", token
                )
            return Literal(value)

        if token.kind == "name":
            field = FIELD_ALIASES.get(token.text.lower())
            if field is None:
                raise self._error(f"Unknown field {token.text!r}", token)
            return FieldRef(field)

        if token.kind == "op" and token.text == "(":
            self._enter(token)
            inner = self._parse_conditional()
            self._expect(")")
            self._nesting -= 1
            return inner

        if token.kind == "end":
            raise self._error("Unexpected end of expression", token)
        raise self._error(f"Unexpected {token.text!r}", token)

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        if token.kind != "end":
            self._index += 1
        return token

    def _expect(self, text: str) -> Token:
        token = self._advance()
        if token.kind != "op" or token.text != text:
            found = "end of expression" if token.kind == "end" else repr(token.text)
            raise self._error(f"Expected {text!r}, found {found}", token)
        return token

    def _enter(self, token: Token) -> None:
        self._nesting += 1
        if self._nesting > self.max_depth:
            raise self._error("Expression nested too deeply", token)

    def _checked(self, tree: Expr, token: Token) -> Expr:
        if tree.depth > self.max_depth:
            raise self._error(
                f"Expression exceeds maximum depth of {self.max_depth}", token
            )
        return tree

    def _error(self, message: str, token: Token) -> ParseError:
        return ParseError(message, token.position, self._expression)


def encode_tree(tree: Expr, width: int = 32) -> ExpressionBlock:
    """
    Serialize a tree into a preorder block.

    A bare leaf becomes a single NONE node; unary operators carry an
    immediate zero on the right; a conditional becomes IF(cond, SUB)
    followed by the condition's nodes and ELSE(true, false).
    """
    nodes: List[Optional[Node]] = []
    lh, lh_imm = _emit_operand(tree, nodes)
    if not nodes:
        nodes.append(Node(Opcode.NONE, lh, 0, lh_imm=lh_imm, rh_imm=True))
    return ExpressionBlock(nodes=tuple(nodes), width=width)


def _emit_operand(tree: Expr, nodes: List[Optional[Node]]) -> Tuple[int, bool]:
    """Emit nodes for a subtree and return the operand that refers to it."""
    if isinstance(tree, Literal):
        return tree.value, True
    if isinstance(tree, FieldRef):
        return int(tree.field), False

    index = len(nodes)
    nodes.append(None)

    if isinstance(tree, Unary):
        lh, lh_imm = _emit_operand(tree.operand, nodes)
        nodes[index] = Node(tree.op, lh, 0, lh_imm=lh_imm, rh_imm=True)
    elif isinstance(tree, Binary):
        lh, lh_imm = _emit_operand(tree.left, nodes)
        rh, rh_imm = _emit_operand(tree.right, nodes)
        nodes[index] = Node(tree.op, lh, rh, lh_imm=lh_imm, rh_imm=rh_imm)
    else:
        lh, lh_imm = _emit_operand(tree.condition, nodes)
        nodes[index] = Node(Opcode.IF, lh, int(FieldType.SUB), lh_imm=lh_imm)
        branch = len(nodes)
        nodes.append(None)
        th, th_imm = _emit_operand(tree.if_true, nodes)
        fh, fh_imm = _emit_operand(tree.if_false, nodes)
        nodes[branch] = Node(Opcode.ELSE, th, fh, lh_imm=th_imm, rh_imm=fh_imm)

    return int(FieldType.SUB), False


def compile_expression(
    expression: str,
    width: int = 32,
    max_depth: int = 64,
) -> ExpressionBlock:
    """Compile an expression with a fresh parser."""
    return ExpressionParser(width=width, max_depth=max_depth).compile(expression)
