"""
Tests for xtexpr core models.
"""

import pytest

from backend.xtexpr.models import (
    ExpressionBlock,
    FieldType,
    Node,
    Opcode,
    field_name,
    width_mask,
)


class TestEnumerations:
    """Wire values of opcodes and field identifiers."""

    @pytest.mark.parametrize("op,value", [
        (Opcode.NONE, 0),
        (Opcode.NEG, 6),
        (Opcode.LT, 7),
        (Opcode.LNOT, 13),
        (Opcode.SHL, 16),
        (Opcode.ASSIGN, 22),
        (Opcode.IF, 25),
        (Opcode.ELSE, 26),
    ])
    def test_opcode_values(self, op, value):
        """Test opcode numbering."""
        assert op == value

    def test_field_values(self):
        """Test field identifier numbering."""
        assert [f.name for f in FieldType] == [
            "NONE", "SUB", "THIS", "NFMARK", "CTMARK", "SECMARK",
            "L2PROTO", "L3PROTO", "L4PROTO", "L4OFFSET",
        ]

    def test_opcodes_fit_six_bits(self):
        """Test every opcode leaves room for the immediate flags."""
        assert max(Opcode) < 64

    def test_field_name(self):
        """Test canonical field names."""
        assert field_name(FieldType.NFMARK) == "mark"
        assert field_name(FieldType.SUB) is None
        assert field_name(1234) is None


class TestNode:
    """Tests for Node."""

    def test_opbyte(self):
        """Test the immediate flags are ORed onto the opcode."""
        assert Node(Opcode.ADD).opbyte == 0x01
        assert Node(Opcode.ADD, lh_imm=True).opbyte == 0x41
        assert Node(Opcode.ADD, rh_imm=True).opbyte == 0x81
        assert Node.immediate(Opcode.XOR, 1, 2).opbyte == 0xD5

    def test_sub_markers(self):
        """Test SUB is only a marker when the operand is not immediate."""
        node = Node(Opcode.ADD, FieldType.SUB, FieldType.SUB, rh_imm=True)
        assert node.lh_is_sub is True
        assert node.rh_is_sub is False

    def test_dict_round_trip(self):
        """Test to_dict and from_dict."""
        node = Node(Opcode.IF, FieldType.CTMARK, FieldType.SUB)
        data = node.to_dict()
        assert data["op"] == "if"
        assert Node.from_dict(data) == node

    def test_from_dict_numeric_opcode(self):
        """Test opcodes may be given by value."""
        assert Node.from_dict({"op": 1, "lh": 4, "rh": 2}).op == Opcode.ADD

    def test_numeric_opcode_normalized(self):
        """Test known opcode numbers become Opcode members."""
        node = Node(1, 4, 2)
        assert node.op is Opcode.ADD
        assert node == Node(Opcode.ADD, 4, 2)

    def test_unknown_opcode_kept(self):
        """Test unknown opcode numbers are kept for validation to report."""
        node = Node(40, 1, 2, lh_imm=True, rh_imm=True)
        assert node.op == 40
        assert not isinstance(node.op, Opcode)
        assert node.opbyte == 40 | 0x40 | 0x80
        assert node.to_dict()["op"] == "40"

    def test_immutable(self):
        """Test nodes cannot be modified in place."""
        node = Node(Opcode.ADD)
        with pytest.raises(AttributeError):
            node.lh = 5


class TestExpressionBlock:
    """Tests for ExpressionBlock."""

    def test_nodes_become_tuple(self):
        """Test lists are frozen into tuples."""
        block = ExpressionBlock(nodes=[Node(Opcode.NONE)])
        assert isinstance(block.nodes, tuple)
        assert block.count == len(block) == 1
        assert block[0] == Node(Opcode.NONE)

    @pytest.mark.parametrize("width,size,mask", [
        (32, 9, 0xFFFFFFFF),
        (64, 17, 0xFFFFFFFFFFFFFFFF),
    ])
    def test_width(self, width, size, mask):
        """Test width-derived properties."""
        block = ExpressionBlock(width=width)
        assert block.node_size == size
        assert block.mask == mask == width_mask(width)

    def test_invalid_width(self):
        """Test only 32 and 64 bit operands are allowed."""
        with pytest.raises(ValueError):
            ExpressionBlock(width=16)

    def test_dict_round_trip(self):
        """Test to_dict and from_dict."""
        block = ExpressionBlock(nodes=(
            Node(Opcode.ADD, FieldType.SUB, FieldType.SUB),
            Node.immediate(Opcode.ADD, 1, 2),
            Node.immediate(Opcode.ADD, 3, 4),
        ))
        data = block.to_dict()
        assert data["items"] == 3
        assert ExpressionBlock.from_dict(data) == block
