"""
Wire format for expression blocks.

Layout (little-endian, packed):

    u32 items
    items * { u8 op | LH_IMMEDIATE | RH_IMMEDIATE, uW lh, uW rh }

where W is the operand width (4 or 8 bytes).
"""

from __future__ import annotations

import logging
import struct
from typing import List, Optional

from .errors import BlockDecodeError
from .models import (
    LH_IMMEDIATE,
    OPCODE_MASK,
    RH_IMMEDIATE,
    SUPPORTED_WIDTHS,
    ExpressionBlock,
    Node,
    Opcode,
)

logger = logging.getLogger(__name__)

COUNT_FORMAT = struct.Struct("<I")

_NODE_FORMATS = {
    32: struct.Struct("<BII"),
    64: struct.Struct("<BQQ"),
}


def node_size(width: int) -> int:
    """Encoded size of one node for an operand width."""
    return _node_format(width).size


def _node_format(width: int) -> struct.Struct:
    try:
        return _NODE_FORMATS[width]
    except KeyError:
        raise ValueError(f"Unsupported operand width: {width}") from None


def encode_node(node: Node, width: int = 32) -> bytes:
    """Encode a single node."""
    try:
        return _node_format(width).pack(node.opbyte, node.lh, node.rh)
    except struct.error as e:
        raise ValueError(f"Operand does not fit in {width} bits: {e}") from e


def encode_block(block: ExpressionBlock) -> bytes:
    """Encode a block with its leading node count."""
    parts = [COUNT_FORMAT.pack(block.count)]
    parts.extend(encode_node(node, block.width) for node in block.nodes)
    return b"".join(parts)


def peek_count(data: bytes) -> int:
    """Read the declared node count without decoding the nodes."""
    if len(data) < COUNT_FORMAT.size:
        raise BlockDecodeError(
            f"Buffer too short for node count: {len(data)} bytes"
        )
    return COUNT_FORMAT.unpack_from(data, 0)[0]


def decode_block(
    data: bytes,
    width: int = 32,
    max_nodes: Optional[int] = None,
) -> ExpressionBlock:
    """
    Decode wire bytes into a block.

    Only the framing is checked here; tree structure is the validator's job.

    Args:
        data: Encoded block.
        width: Operand width in bits.
        max_nodes: Reject declared counts above this bound.

    Returns:
        The decoded block.

    Raises:
        BlockDecodeError: If the buffer is truncated, has trailing bytes,
            declares too many nodes, or carries an unknown opcode.
    """
    if width not in SUPPORTED_WIDTHS:
        raise ValueError(f"Unsupported operand width: {width}")

    fmt = _node_format(width)
    count = peek_count(data)

    if max_nodes is not None and count > max_nodes:
        raise BlockDecodeError(f"Declared node count {count} exceeds limit {max_nodes}")

    expected = COUNT_FORMAT.size + count * fmt.size
    if len(data) != expected:
        raise BlockDecodeError(
            f"Buffer length {len(data)} does not match {count} nodes "
            f"({expected} bytes expected)"
        )

    nodes: List[Node] = []
    for index, (opbyte, lh, rh) in enumerate(fmt.iter_unpack(data[COUNT_FORMAT.size:])):
        try:
            op = Opcode(opbyte & OPCODE_MASK)
        except ValueError:
            raise BlockDecodeError(
                f"Unknown opcode {opbyte & OPCODE_MASK} at node {index}"
            ) from None
        nodes.append(Node(
            op=op,
            lh=lh,
            rh=rh,
            lh_imm=bool(opbyte & LH_IMMEDIATE),
            rh_imm=bool(opbyte & RH_IMMEDIATE),
        ))

    logger.debug("Decoded %d nodes (width %d)", count, width)
    return ExpressionBlock(nodes=tuple(nodes), width=width)
