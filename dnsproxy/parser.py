"""Decoding of DNS messages from their wire format."""

from __future__ import annotations

import struct
from typing import List, Tuple, Union

from .records import (
    HEADER_SIZE,
    MAX_DOMAIN_LENGTH,
    MAX_LABEL_LENGTH,
    DnsError,
    DnsPacket,
    Header,
    MXRecord,
    Query,
    Rcode,
    RecordData,
    RecordType,
    ResourceRecord,
    SOARecord,
)
from .validation import (
    validate_class,
    validate_dns_header,
    validate_label,
    validate_qclass,
    validate_qtype,
    validate_type,
)

Buffer = Union[bytes, bytearray, memoryview]

_POINTER_MASK = 0xC0
_MAX_POINTER_HOPS = 128
_NAME_TYPES = frozenset({RecordType.CNAME, RecordType.NS, RecordType.PTR})

_QUESTION = struct.Struct(">HH")
_RECORD_FIXED = struct.Struct(">HHIH")
_SOA_FIXED = struct.Struct(">IIIII")
_U16 = struct.Struct(">H")
_HEADER = struct.Struct(">HBBHHHH")


def parse_rcode(name: str) -> Rcode:
    """Return the response code named ``name`` (for example ``"NXDOMAIN"``)."""
    if not isinstance(name, str):
        raise DnsError("Invalid input: rcode name must be a string")
    try:
        return Rcode.__members__[name]
    except KeyError:
        raise DnsError(f"Invalid RCODE: {name}") from None


def parse_dns_header(data: Buffer) -> Header:
    """Decode and validate the twelve-byte header at the start of ``data``."""
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise DnsError("Packet size is too small")
    ident, flags1, flags2, q_count, ans_count, auth_count, add_count = (
        _HEADER.unpack_from(data, 0)
    )
    header = Header(
        id=ident,
        qr=(flags1 >> 7) & 1,
        opcode=(flags1 >> 3) & 0xF,
        aa=(flags1 >> 2) & 1,
        tc=(flags1 >> 1) & 1,
        rd=flags1 & 1,
        ra=(flags2 >> 7) & 1,
        z=(flags2 >> 6) & 1,
        ad=(flags2 >> 5) & 1,
        cd=(flags2 >> 4) & 1,
        rcode=flags2 & 0xF,
        q_count=q_count,
        ans_count=ans_count,
        auth_count=auth_count,
        add_count=add_count,
    )
    if not validate_dns_header(header, len(data)):
        raise DnsError("Invalid DNS header")
    return header


def parse_domain_name(data: Buffer, pos: int) -> Tuple[str, int]:
    """Read a possibly compressed domain name at ``pos``.

    Returns the dotted name (empty for the root) and the position just after
    the name as it appears at ``pos``.
    """
    data = bytes(data)
    size = len(data)
    if pos < 0 or pos >= size:
        raise DnsError(f"Invalid position: {pos} (packet size: {size})")

    labels: List[str] = []
    name_length = 0
    end = None
    hops = 0
    while True:
        if pos >= size:
            raise DnsError(f"Position out of bounds: {pos} (packet size: {size})")
        length = data[pos]
        if length & _POINTER_MASK == _POINTER_MASK:
            if pos + 2 > size:
                raise DnsError(f"Truncated compression pointer at {pos}")
            offset = _U16.unpack_from(data, pos)[0] & 0x3FFF
            if offset >= size:
                raise DnsError(
                    f"Invalid compression offset: {offset} (packet size: {size})"
                )
            hops += 1
            if hops > _MAX_POINTER_HOPS:
                raise DnsError("Too many compression pointers")
            if end is None:
                end = pos + 2
            pos = offset
            continue
        if length == 0:
            pos += 1
            break
        if length > MAX_LABEL_LENGTH or name_length + length >= MAX_DOMAIN_LENGTH + 1:
            raise DnsError(
                f"Label length exceeds limit: {length} (max: {MAX_LABEL_LENGTH})"
            )
        label = data[pos + 1 : pos + 1 + length]
        if len(label) < length:
            raise DnsError(f"Label at position {pos} runs past the packet end")
        if not validate_label(label):
            raise DnsError(f"Invalid label at position {pos}")
        labels.append(label.decode("ascii"))
        name_length += length + 1
        pos += length + 1
    return ".".join(labels), (end if end is not None else pos)


def parse_dns_queries(data: Buffer, pos: int, count: int) -> Tuple[List[Query], int]:
    """Read ``count`` questions starting at ``pos``; return them and the end position."""
    data = bytes(data)
    queries: List[Query] = []
    for _ in range(count):
        name, pos = parse_domain_name(data, pos)
        if pos + _QUESTION.size > len(data):
            raise DnsError("Not enough data for query type and class")
        qtype, qclass = _QUESTION.unpack_from(data, pos)
        if not validate_qtype(qtype):
            raise DnsError(f"Invalid qtype: {qtype}")
        if not validate_qclass(qclass):
            raise DnsError(f"Invalid qclass: {qclass}")
        queries.append(Query(name=name, qtype=qtype, qclass=qclass))
        pos += _QUESTION.size
    return queries, pos


def _parse_soa(data: bytes, pos: int) -> Tuple[SOARecord, int]:
    if pos >= len(data):
        raise DnsError(f"Position out of bounds: {pos} (packet size: {len(data)})")
    primary_ns, pos = parse_domain_name(data, pos)
    email, pos = parse_domain_name(data, pos)
    if pos + _SOA_FIXED.size > len(data):
        raise DnsError("Not enough data for SOA record")
    serial, refresh, retry, expire, minimum = _SOA_FIXED.unpack_from(data, pos)
    record = SOARecord(primary_ns, email, serial, refresh, retry, expire, minimum)
    return record, pos + _SOA_FIXED.size


def _parse_mx(data: bytes, pos: int) -> Tuple[MXRecord, int]:
    if pos + 2 > len(data):
        raise DnsError("Not enough data for MX record")
    preference = _U16.unpack_from(data, pos)[0]
    exchange, pos = parse_domain_name(data, pos + 2)
    return MXRecord(preference=preference, exchange=exchange), pos


def _parse_record_data(
    data: bytes, pos: int, rtype: int, data_len: int
) -> Tuple[RecordData, int]:
    if data_len == 0:
        return None, pos
    if pos + data_len > len(data):
        raise DnsError("Insufficient data for record")
    if rtype == RecordType.SOA:
        return _parse_soa(data, pos)
    if rtype == RecordType.MX:
        return _parse_mx(data, pos)
    if rtype in _NAME_TYPES:
        return parse_domain_name(data, pos)
    return data[pos : pos + data_len], pos + data_len


def parse_dns_records(
    data: Buffer, pos: int, count: int
) -> Tuple[List[ResourceRecord], int]:
    """Read ``count`` resource records starting at ``pos``; return them and the end position."""
    data = bytes(data)
    records: List[ResourceRecord] = []
    for index in range(count):
        try:
            name, pos = parse_domain_name(data, pos)
            if pos + _RECORD_FIXED.size > len(data):
                raise DnsError("Not enough data for record header")
            rtype, rclass, ttl, data_len = _RECORD_FIXED.unpack_from(data, pos)
            if not validate_type(rtype):
                raise DnsError(f"Invalid type: {rtype}")
            if not validate_class(rclass):
                raise DnsError(f"Invalid class: {rclass}")
            pos += _RECORD_FIXED.size
            rdata, pos = _parse_record_data(data, pos, rtype, data_len)
        except DnsError as exc:
            raise DnsError(f"Error parsing record [{index}]: {exc}") from exc
        records.append(
            ResourceRecord(name=name, rtype=rtype, rclass=rclass, ttl=ttl, data=rdata)
        )
    return records, pos


def parse_dns_packet(data: Buffer) -> DnsPacket:
    """Decode a whole DNS message, raising :class:`DnsError` if it is malformed."""
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise DnsError("Packet size is too small")
    header = parse_dns_header(data)
    packet = DnsPacket(header=header)
    pos = HEADER_SIZE

    if not header.qr:
        packet.queries, pos = parse_dns_queries(data, pos, header.q_count)
        if header.add_count > 0:
            packet.additional, pos = parse_dns_records(data, pos, header.add_count)
        return packet

    if header.q_count > 0:
        packet.queries, pos = parse_dns_queries(data, pos, header.q_count)
    if header.ans_count > 0:
        packet.answers, pos = parse_dns_records(data, pos, header.ans_count)
    if header.auth_count > 0:
        packet.authoritative, pos = parse_dns_records(data, pos, header.auth_count)
    if header.add_count > 0:
        packet.additional, pos = parse_dns_records(data, pos, header.add_count)
    return packet