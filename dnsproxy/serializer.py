"""Encoding of DNS messages into their wire format, with name compression."""

from __future__ import annotations

import struct
from typing import Dict, Iterable, List

from .records import (
    HEADER_SIZE,
    MAX_DNS_PACKET_SIZE,
    MAX_LABEL_LENGTH,
    DnsError,
    DnsPacket,
    Header,
    MXRecord,
    Query,
    RecordType,
    ResourceRecord,
    SOARecord,
)

_NAME_TYPES = frozenset({RecordType.CNAME, RecordType.NS, RecordType.PTR})

_HEADER = struct.Struct(">HBBHHHH")
_QUESTION = struct.Struct(">HH")
_RECORD_FIXED = struct.Struct(">HHIH")
_SOA_FIXED = struct.Struct(">IIIII")
_U16 = struct.Struct(">H")
_POINTER_FLAG = 0xC000


def _split_labels(name: str) -> List[bytes]:
    if not name:
        return []
    parts = name.split(".")
    if parts[-1] == "":
        parts.pop()
    labels = []
    for part in parts:
        if not part:
            raise DnsError(f"Empty label in domain name {name!r}")
        try:
            encoded = part.encode("ascii")
        except UnicodeEncodeError:
            raise DnsError(f"Non-ASCII label in domain name {name!r}") from None
        if len(encoded) > MAX_LABEL_LENGTH:
            raise DnsError(
                f"Label length exceeds limit: {len(encoded)} (max: {MAX_LABEL_LENGTH})"
            )
        labels.append(encoded)
    return labels


class PacketWriter:
    """Builds a DNS message of at most 512 bytes, compressing repeated names."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._names: Dict[bytes, int] = {}

    def __len__(self) -> int:
        return len(self._buffer)

    def write_domain_name(self, name: str) -> int:
        """Append ``name``, reusing earlier suffixes; return the new length."""
        labels = _split_labels(name)
        buf = self._buffer
        for index, label in enumerate(labels):
            suffix = b".".join(labels[index:])
            pointer = self._names.get(suffix)
            if pointer is not None:
                if len(buf) + 2 >= MAX_DNS_PACKET_SIZE:
                    raise DnsError(
                        "Packet size exceeded during domain name serialization"
                    )
                buf += _U16.pack(pointer | _POINTER_FLAG)
                return len(buf)
            if len(buf) + len(label) + 1 >= MAX_DNS_PACKET_SIZE:
                raise DnsError("Packet size exceeded during domain name serialization")
            self._names[suffix] = len(buf)
            buf.append(len(label))
            buf += label
        buf.append(0)
        return len(buf)

    def write_header(self, header: Header) -> int:
        """Append the twelve-byte header; return the new length."""
        if len(self._buffer) + HEADER_SIZE > MAX_DNS_PACKET_SIZE:
            raise DnsError("Packet size exceeded during header serialization")
        flags1 = (
            (header.qr & 1) << 7
            | (header.opcode & 0xF) << 3
            | (header.aa & 1) << 2
            | (header.tc & 1) << 1
            | (header.rd & 1)
        )
        flags2 = (
            (header.ra & 1) << 7
            | (header.z & 1) << 6
            | (header.ad & 1) << 5
            | (header.cd & 1) << 4
            | (header.rcode & 0xF)
        )
        self._buffer += _HEADER.pack(
            header.id & 0xFFFF,
            flags1,
            flags2,
            header.q_count,
            header.ans_count,
            header.auth_count,
            header.add_count,
        )
        return len(self._buffer)

    def write_queries(self, queries: Iterable[Query]) -> int:
        """Append each question; return the new length."""
        for query in queries:
            self.write_domain_name(query.name)
            if len(self._buffer) + _QUESTION.size > MAX_DNS_PACKET_SIZE:
                raise DnsError("Packet size exceeded during query serialization")
            self._buffer += _QUESTION.pack(int(query.qtype), int(query.qclass))
        return len(self._buffer)

    def _write_soa(self, soa: SOARecord) -> None:
        self.write_domain_name(soa.primary_ns)
        self.write_domain_name(soa.responsible_email)
        if len(self._buffer) + _SOA_FIXED.size > MAX_DNS_PACKET_SIZE:
            raise DnsError("Packet size exceeded during SOA record serialization")
        self._buffer += _SOA_FIXED.pack(
            soa.serial, soa.refresh, soa.retry, soa.expire, soa.minimum_ttl
        )

    def _write_mx(self, mx: MXRecord) -> None:
        if len(self._buffer) + 2 > MAX_DNS_PACKET_SIZE:
            raise DnsError("Packet size exceeded during MX record serialization")
        self._buffer += _U16.pack(mx.preference)
        self.write_domain_name(mx.exchange)

    def _write_data(self, record: ResourceRecord) -> None:
        data = record.data
        rtype = record.rtype
        length_pos = len(self._buffer) - 2
        if rtype == RecordType.SOA:
            if not isinstance(data, SOARecord):
                raise DnsError("SOA record requires SOARecord data")
            self._write_soa(data)
        elif rtype == RecordType.MX:
            if not isinstance(data, MXRecord):
                raise DnsError("MX record requires MXRecord data")
            self._write_mx(data)
        elif rtype in _NAME_TYPES:
            if not isinstance(data, str):
                raise DnsError("CNAME/NS/PTR record requires a domain name")
            self.write_domain_name(data)
        else:
            raw = data.encode("ascii") if isinstance(data, str) else bytes(data)
            if len(self._buffer) + len(raw) > MAX_DNS_PACKET_SIZE:
                raise DnsError("Packet size exceeded during answer data serialization")
            self._buffer += raw
            return
        written = len(self._buffer) - (length_pos + 2)
        _U16.pack_into(self._buffer, length_pos, written)

    def write_records(self, records: Iterable[ResourceRecord]) -> int:
        """Append each resource record; return the new length."""
        for record in records:
            self.write_domain_name(record.name)
            if len(self._buffer) + _RECORD_FIXED.size > MAX_DNS_PACKET_SIZE:
                raise DnsError("Packet size exceeded during answer serialization")
            data_len = record.data_len
            self._buffer += _RECORD_FIXED.pack(
                int(record.rtype), int(record.rclass), record.ttl, data_len
            )
            if data_len > 0:
                self._write_data(record)
        return len(self._buffer)

    def getvalue(self) -> bytes:
        """Return the bytes written so far."""
        return bytes(self._buffer)


def _section(items: list, count: int, title: str) -> list:
    if len(items) < count:
        raise DnsError(
            f"Header announces {count} {title} but only {len(items)} are present"
        )
    return items[:count]


def serialize_dns_packet(packet: DnsPacket) -> bytes:
    """Encode ``packet``; sections are written as many times as the header counts."""
    header = packet.header
    writer = PacketWriter()
    writer.write_header(header)
    if not header.qr:
        writer.write_queries(_section(packet.queries, header.q_count, "queries"))
        return writer.getvalue()
    if header.q_count > 0:
        writer.write_queries(_section(packet.queries, header.q_count, "queries"))
    if header.ans_count > 0:
        writer.write_records(_section(packet.answers, header.ans_count, "answers"))
    if header.auth_count > 0:
        writer.write_records(
            _section(packet.authoritative, header.auth_count, "authority records")
        )
    if header.add_count > 0:
        writer.write_records(
            _section(packet.additional, header.add_count, "additional records")
        )
    return writer.getvalue()