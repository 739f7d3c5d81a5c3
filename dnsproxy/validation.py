"""Checks applied to DNS headers, types, classes and labels."""

from __future__ import annotations

import string
from typing import Union

from .records import (
    HEADER_SIZE,
    MAX_DNS_PACKET_SIZE,
    QCLASS_ANY,
    Header,
    Opcode,
    QueryType,
    Rcode,
    RecordClass,
    RecordType,
)

# Upper bound on section entries a single packet may announce.
_RECORD_SLOT_SIZE = 32
_QUESTION_SIZE = 4
_MAX_ENTRIES = (MAX_DNS_PACKET_SIZE - HEADER_SIZE) // _RECORD_SLOT_SIZE + (
    MAX_DNS_PACKET_SIZE - HEADER_SIZE
) // _QUESTION_SIZE

_TYPES = frozenset(int(t) for t in RecordType)
_QUERY_ONLY_TYPES = frozenset(int(t) for t in QueryType)
_CLASSES = frozenset(int(c) for c in RecordClass)
_LABEL_BYTES = frozenset((string.ascii_letters + string.digits + "-@").encode("ascii"))


def validate_dns_header(header: Header, packet_size: int) -> bool:
    """Return whether ``header`` is plausible for a packet of ``packet_size`` bytes."""
    if packet_size < HEADER_SIZE:
        return False
    if header.z != 0:
        return False
    if header.opcode > Opcode.UPDATE or header.rcode > Rcode.BADALG:
        return False
    if header.qr:
        total = header.ans_count + header.add_count + header.auth_count + header.q_count
        return total <= _MAX_ENTRIES
    if (
        header.tc
        or header.ans_count > 0
        or header.auth_count > 0
        or header.q_count == 0
        or header.q_count + header.add_count > _MAX_ENTRIES
    ):
        return False
    return True


def validate_type(rtype: int) -> bool:
    """Return whether ``rtype`` is a known resource record type."""
    return rtype in _TYPES


def validate_qtype(qtype: int) -> bool:
    """Return whether ``qtype`` may appear in a question."""
    return qtype in _TYPES or qtype in _QUERY_ONLY_TYPES


def validate_class(rclass: int) -> bool:
    """Return whether ``rclass`` is a known resource record class."""
    return rclass in _CLASSES


def validate_qclass(qclass: int) -> bool:
    """Return whether ``qclass`` may appear in a question."""
    return qclass in _CLASSES or qclass == QCLASS_ANY


def validate_label(label: Union[bytes, bytearray, str]) -> bool:
    """Return whether ``label`` is a non-empty, well-formed domain label."""
    if isinstance(label, str):
        label = label.encode("utf-8")
    if not label or label[:1] == b"-" or label[-1:] == b"-":
        return False
    return all(byte in _LABEL_BYTES for byte in label)