"""
Field resolution for non-immediate operands.

A resolver maps a field identifier to an integer for the record currently
being evaluated. Resolvers are read-only during evaluation and publish the
set of identifiers they understand so that blocks naming anything else can
be rejected before they are installed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Mapping, Optional

from .errors import UnsupportedFieldError
from .models import FIELD_ALIASES, FIELD_NAMES, FieldType


class FieldResolver:
    """Base resolver contract."""

    supported_fields: FrozenSet[FieldType] = frozenset()

    def supports(self, field_id: int) -> bool:
        return field_id in self.supported_fields

    def resolve(self, field_id: int, record: Any) -> int:
        """
        Resolve a field for a record.

        Raises:
            UnsupportedFieldError: If the identifier is not supported.
        """
        raise NotImplementedError


@dataclass(frozen=True)
class PacketRecord:
    """
    Attributes of one processed packet.

    Attributes:
        mark: Packet mark.
        ctmark: Connection mark, or None when the packet has no conntrack entry.
        secmark: Security mark.
        l2proto: Link-layer protocol (e.g. EtherType).
        l3proto: Network-layer protocol.
        l4proto: Transport protocol number.
        l4offset: Offset of the transport header.
    """

    mark: int = 0
    ctmark: Optional[int] = None
    secmark: int = 0
    l2proto: int = 0
    l3proto: int = 0
    l4proto: int = 0
    l4offset: int = 0


_PACKET_ATTRIBUTES = {
    FieldType.NFMARK: "mark",
    FieldType.CTMARK: "ctmark",
    FieldType.SECMARK: "secmark",
    FieldType.L2PROTO: "l2proto",
    FieldType.L3PROTO: "l3proto",
    FieldType.L4PROTO: "l4proto",
    FieldType.L4OFFSET: "l4offset",
}


class PacketFieldResolver(FieldResolver):
    """Resolves fields from a PacketRecord."""

    supported_fields = frozenset(_PACKET_ATTRIBUTES)

    def resolve(self, field_id: int, record: PacketRecord) -> int:
        attr = _PACKET_ATTRIBUTES.get(field_id)
        if attr is None:
            raise UnsupportedFieldError(field_id)
        value = getattr(record, attr)
        # Untracked packets have no connection mark
        return 0 if value is None else int(value)


class MappingFieldResolver(FieldResolver):
    """
    Resolves fields from a mapping keyed by field name.

    Records may use canonical names ("mark") or aliases ("nfmark").
    Missing keys read as the configured default.
    """

    def __init__(
        self,
        fields: Optional[FrozenSet[FieldType]] = None,
        default: int = 0,
    ):
        self.supported_fields = frozenset(fields) if fields is not None else frozenset(FIELD_NAMES)
        self.default = default

    def resolve(self, field_id: int, record: Mapping[str, Any]) -> int:
        if field_id not in self.supported_fields:
            raise UnsupportedFieldError(field_id)

        name = FIELD_NAMES[FieldType(field_id)]
        if name in record:
            value = record[name]
        else:
            value = self.default
            for alias, target in FIELD_ALIASES.items():
                if target == field_id and alias in record:
                    value = record[alias]
                    break

        return 0 if value is None else int(value)
