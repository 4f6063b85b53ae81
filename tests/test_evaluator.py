"""
Tests for the expression evaluator.
"""

import pytest

from backend.xtexpr.errors import (
    ExprError,
    UnsupportedFieldError,
    UnsupportedOperationError,
)
from backend.xtexpr.fields import MappingFieldResolver, PacketFieldResolver, PacketRecord
from backend.xtexpr.logic import ExpressionEvaluator, compile_expression
from backend.xtexpr.models import ExpressionBlock, FieldType, Node, Opcode

SUB = FieldType.SUB
U32 = 0xFFFFFFFF


class CountingResolver(PacketFieldResolver):
    """Packet resolver that records every lookup."""

    def __init__(self):
        self.calls = []

    def resolve(self, field_id, record):
        self.calls.append(field_id)
        return super().resolve(field_id, record)


def make_block(*nodes, width=32):
    return ExpressionBlock(nodes=nodes, width=width)


def imm(op, lh, rh=0):
    return Node.immediate(op, lh, rh)


@pytest.fixture
def evaluator():
    return ExpressionEvaluator(PacketFieldResolver())


class TestScenarios:
    """Reference blocks and their results."""

    def test_immediate_addition(self, evaluator):
        """Test {add, 4, 2} evaluates to 6."""
        block = make_block(imm(Opcode.ADD, 4, 2))
        assert evaluator.evaluate(block, 0, PacketRecord()) == (6, 1)

    def test_mark_plus_one(self, evaluator):
        """Test {add, imm 1, mark} with mark=5 evaluates to 6."""
        block = make_block(Node(Opcode.ADD, 1, FieldType.NFMARK, lh_imm=True))
        assert evaluator.run(block, PacketRecord(mark=5)) == 6

    def test_nested_subexpressions(self, evaluator):
        """Test (1+2)+(3+4) consumes all three nodes."""
        block = make_block(
            Node(Opcode.ADD, SUB, SUB),
            imm(Opcode.ADD, 1, 2),
            imm(Opcode.ADD, 3, 4),
        )
        assert evaluator.evaluate(block, 0, PacketRecord()) == (10, 3)

    def test_conditional(self, evaluator):
        """Test IF/ELSE picks the branch from the condition field."""
        block = make_block(
            Node(Opcode.IF, FieldType.CTMARK, SUB),
            imm(Opcode.ELSE, 7, 9),
        )
        assert evaluator.evaluate(block, 0, PacketRecord(ctmark=0)) == (9, 2)
        assert evaluator.evaluate(block, 0, PacketRecord(ctmark=3)) == (7, 2)

    def test_conditional_without_conntrack(self, evaluator):
        """Test untracked packets read ctmark as zero."""
        block = make_block(
            Node(Opcode.IF, FieldType.CTMARK, SUB),
            imm(Opcode.ELSE, 7, 9),
        )
        assert evaluator.run(block, PacketRecord(ctmark=None)) == 9

    def test_conditional_with_nested_branches(self, evaluator):
        """Test both branches of a conditional may be subexpressions."""
        block = compile_expression("mark > 3 ? mark * 2 : mark + 100")
        assert block.count == 5
        assert evaluator.evaluate(block, 0, PacketRecord(mark=5)) == (10, 5)
        assert evaluator.evaluate(block, 0, PacketRecord(mark=1)) == (101, 5)


class TestOperandResolution:
    """Each operand resolves from its own slot."""

    def test_left_field_uses_left_operand(self, evaluator):
        """Test mark - ctmark reads each field from its own side."""
        block = make_block(Node(Opcode.SUB, FieldType.NFMARK, FieldType.CTMARK))
        assert evaluator.run(block, PacketRecord(mark=10, ctmark=3)) == 7

    def test_left_subtree_consumed_before_right(self, evaluator):
        """Test (10-4) - (2-1) keeps left and right subtrees apart."""
        block = make_block(
            Node(Opcode.SUB, SUB, SUB),
            imm(Opcode.SUB, 10, 4),
            imm(Opcode.SUB, 2, 1),
        )
        assert evaluator.run(block, PacketRecord()) == 5

    def test_none_operand_reads_zero(self, evaluator):
        """Test a non-immediate NONE operand is an empty slot."""
        block = make_block(Node(Opcode.ADD, 5, FieldType.NONE, lh_imm=True))
        assert evaluator.run(block, PacketRecord()) == 5

    def test_field_values_are_masked(self, evaluator):
        """Test field values wider than the operand width are truncated."""
        block = make_block(Node(Opcode.NONE, FieldType.NFMARK, 0, rh_imm=True))
        assert evaluator.run(block, PacketRecord(mark=(1 << 32) + 7)) == 7

    def test_unsupported_field_is_reported(self, evaluator):
        """Test a field the resolver cannot supply raises."""
        block = make_block(Node(Opcode.ADD, FieldType.THIS, 1, rh_imm=True))
        with pytest.raises(UnsupportedFieldError) as exc_info:
            evaluator.run(block, PacketRecord())
        assert exc_info.value.field_id == FieldType.THIS

    def test_mapping_resolver(self):
        """Test evaluation against a dict record."""
        evaluator = ExpressionEvaluator(MappingFieldResolver())
        block = compile_expression("mark + ctmark")
        assert evaluator.run(block, {"mark": 5, "connmark": 2}) == 7


class TestArithmetic:
    """Wraparound and numeric edge cases."""

    @pytest.mark.parametrize("node,expected", [
        (imm(Opcode.ADD, U32, 1), 0),
        (imm(Opcode.SUB, 0, 1), U32),
        (imm(Opcode.MUL, 0x80000000, 2), 0),
        (imm(Opcode.NEG, 1), U32),
        (imm(Opcode.NOT, 0), U32),
        (imm(Opcode.NONE, 42, 99), 42),
    ])
    def test_wraparound_32(self, evaluator, node, expected):
        """Test arithmetic wraps modulo 2^32."""
        assert evaluator.run(make_block(node), PacketRecord()) == expected

    def test_wraparound_64(self, evaluator):
        """Test arithmetic wraps modulo 2^64 for 64-bit blocks."""
        block = make_block(imm(Opcode.ADD, (1 << 64) - 1, 2), width=64)
        assert evaluator.run(block, PacketRecord()) == 1

    @pytest.mark.parametrize("node,expected", [
        (imm(Opcode.SHL, 1, 31), 0x80000000),
        (imm(Opcode.SHL, 1, 33), 2),
        (imm(Opcode.SHR, 8, 35), 1),
        (imm(Opcode.SHL, 3, 32), 3),
    ])
    def test_shift_amount_masked(self, evaluator, node, expected):
        """Test shift amounts are masked to the operand width."""
        assert evaluator.run(make_block(node), PacketRecord()) == expected

    def test_shift_masked_64(self, evaluator):
        """Test 64-bit shifts mask with 63."""
        block = make_block(imm(Opcode.SHL, 1, 65), width=64)
        assert evaluator.run(block, PacketRecord()) == 2

    @pytest.mark.parametrize("op,lh,rh,expected", [
        (Opcode.DIV, 7, 2, 3),
        (Opcode.MOD, 7, 3, 1),
        (Opcode.DIV, 7, 0, 0),
        (Opcode.MOD, 7, 0, 0),
    ])
    def test_division(self, evaluator, op, lh, rh, expected):
        """Test division, with zero divisors yielding a non-match."""
        assert evaluator.run(make_block(imm(op, lh, rh)), PacketRecord()) == expected

    def test_division_by_zero_field(self, evaluator):
        """Test a zero field divisor does not raise."""
        block = make_block(Node(Opcode.DIV, 100, FieldType.NFMARK, lh_imm=True))
        assert evaluator.matches(block, PacketRecord(mark=0)) is False


class TestRelationalAndLogical:
    """Relational, logical and bitwise operators."""

    @pytest.mark.parametrize("op,lh,rh,expected", [
        (Opcode.LT, 1, 2, 1),
        (Opcode.LE, 2, 2, 1),
        (Opcode.EQ, 3, 3, 1),
        (Opcode.NE, 3, 3, 0),
        (Opcode.GT, 1, 2, 0),
        (Opcode.GE, 2, 3, 0),
        (Opcode.LAND, 5, 9, 1),
        (Opcode.LAND, 5, 0, 0),
        (Opcode.LOR, 0, 9, 1),
        (Opcode.LOR, 0, 0, 0),
        (Opcode.LNOT, 5, 0, 0),
        (Opcode.LNOT, 0, 0, 1),
        (Opcode.AND, 0b1100, 0b1010, 0b1000),
        (Opcode.OR, 0b1100, 0b1010, 0b1110),
        (Opcode.XOR, 0b1100, 0b1010, 0b0110),
    ])
    def test_operator(self, evaluator, op, lh, rh, expected):
        """Test operator results; relational and logical yield 0 or 1."""
        assert evaluator.run(make_block(imm(op, lh, rh)), PacketRecord()) == expected

    def test_logical_and_evaluates_both_operands(self):
        """Test && does not short-circuit on a false left side."""
        resolver = CountingResolver()
        evaluator = ExpressionEvaluator(resolver)
        block = compile_expression("0 && mark + 1")
        assert evaluator.run(block, PacketRecord(mark=1)) == 0
        assert resolver.calls == [FieldType.NFMARK]

    def test_logical_or_evaluates_both_operands(self):
        """Test || does not short-circuit on a true left side."""
        resolver = CountingResolver()
        evaluator = ExpressionEvaluator(resolver)
        block = compile_expression("1 || ctmark")
        assert evaluator.run(block, PacketRecord()) == 1
        assert resolver.calls == [FieldType.CTMARK]

    def test_conditional_evaluates_both_branches(self):
        """Test both branches are consumed whichever is selected."""
        resolver = CountingResolver()
        evaluator = ExpressionEvaluator(resolver)
        block = compile_expression("1 ? mark : secmark")
        assert evaluator.run(block, PacketRecord(mark=4, secmark=8)) == 4
        assert resolver.calls == [FieldType.NFMARK, FieldType.SECMARK]


class TestUnsupportedOperations:
    """Reserved and misplaced opcodes."""

    @pytest.mark.parametrize("op", [Opcode.ASSIGN, Opcode.OFFSET, Opcode.DEREF])
    def test_reserved_opcode_raises(self, evaluator, op):
        """Test reserved opcodes never fall through to zero."""
        with pytest.raises(UnsupportedOperationError) as exc_info:
            evaluator.run(make_block(imm(op, 1, 2)), PacketRecord())
        assert exc_info.value.opcode == op

    def test_reserved_opcode_in_subexpression(self, evaluator):
        """Test the failing node position is reported."""
        block = make_block(
            Node(Opcode.ADD, 1, SUB, lh_imm=True),
            imm(Opcode.DEREF, 0, 0),
        )
        with pytest.raises(UnsupportedOperationError) as exc_info:
            evaluator.run(block, PacketRecord())
        assert exc_info.value.position == 1

    def test_else_outside_conditional(self, evaluator):
        """Test a bare ELSE node raises."""
        with pytest.raises(UnsupportedOperationError):
            evaluator.run(make_block(imm(Opcode.ELSE, 1, 2)), PacketRecord())

    def test_if_without_else(self, evaluator):
        """Test IF with an immediate right side raises."""
        with pytest.raises(UnsupportedOperationError):
            evaluator.run(make_block(imm(Opcode.IF, 1, 2)), PacketRecord())


class TestRun:
    """Whole-block evaluation."""

    def test_repeatable(self, evaluator):
        """Test identical inputs give identical results."""
        block = compile_expression("(mark << 2) ^ ctmark")
        record = PacketRecord(mark=3, ctmark=5)
        assert evaluator.run(block, record) == evaluator.run(block, record) == 9

    def test_matches(self, evaluator):
        """Test non-zero results match."""
        block = compile_expression("ctmark == 0")
        assert evaluator.matches(block, PacketRecord()) is True
        assert evaluator.matches(block, PacketRecord(ctmark=1)) is False

    def test_empty_block(self, evaluator):
        """Test an empty block cannot be run."""
        with pytest.raises(ExprError):
            evaluator.run(ExpressionBlock(), PacketRecord())

    def test_unconsumed_nodes(self, evaluator):
        """Test trailing nodes are reported by run()."""
        block = make_block(imm(Opcode.ADD, 1, 2), imm(Opcode.ADD, 3, 4))
        assert evaluator.evaluate(block, 0, PacketRecord()) == (3, 1)
        with pytest.raises(ExprError):
            evaluator.run(block, PacketRecord())
