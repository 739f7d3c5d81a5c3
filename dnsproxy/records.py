"""DNS message model: protocol constants, enumerations and packet structures."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Sequence, Union

MAX_DNS_PACKET_SIZE = 512
MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63
HEADER_SIZE = 12
QCLASS_ANY = 0x00FF


class DnsError(ValueError):
    """Raised when a DNS message cannot be parsed, validated or built."""


class RecordType(IntEnum):
    """TYPE values used in resource records."""

    A = 0x0001
    NS = 0x0002
    MD = 0x0003
    MF = 0x0004
    CNAME = 0x0005
    SOA = 0x0006
    MB = 0x0007
    MG = 0x0008
    MR = 0x0009
    NULL = 0x000A
    WKS = 0x000B
    PTR = 0x000C
    HINFO = 0x000D
    MINFO = 0x000E
    MX = 0x000F
    TXT = 0x0010
    AAAA = 0x001C
    SRV = 0x0021
    RRSIG = 0x002E
    NSEC = 0x002F
    CAA = 0x0101


class QueryType(IntEnum):
    """QTYPE values that may appear only in questions."""

    AXFR = 0x00FC
    MAILB = 0x00FD
    MAILA = 0x00FE
    ANY = 0x00FF


class RecordClass(IntEnum):
    """CLASS values used in resource records."""

    IN = 0x0001
    CS = 0x0002
    CH = 0x0003
    HS = 0x0004


class Rcode(IntEnum):
    """Response codes carried in the header."""

    NOERROR = 0x0
    FORMERR = 0x1
    SERVFAIL = 0x2
    NXDOMAIN = 0x3
    NOTIMP = 0x4
    REFUSED = 0x5
    YXDOMAIN = 0x6
    YXRRSET = 0x7
    NXRRSET = 0x8
    NOTAUTH = 0x9
    NOTZONE = 0xA
    BADVERS = 0xB
    BADKEY = 0xC
    BADTIME = 0xD
    BADMODE = 0xE
    BADALG = 0xF


class Opcode(IntEnum):
    """Header opcodes."""

    QUERY = 0x0
    IQUERY = 0x1
    STATUS = 0x2
    NOTIFY = 0x3
    UPDATE = 0x4


@dataclass
class Header:
    """The fixed twelve-byte DNS header, with flags split out."""

    id: int = 0
    qr: int = 0
    opcode: int = 0
    aa: int = 0
    tc: int = 0
    rd: int = 0
    ra: int = 0
    z: int = 0
    ad: int = 0
    cd: int = 0
    rcode: int = 0
    q_count: int = 0
    ans_count: int = 0
    auth_count: int = 0
    add_count: int = 0


@dataclass
class Query:
    """A question: a domain name with its type and class."""

    name: str
    qtype: int
    qclass: int


@dataclass
class SOARecord:
    """Decoded data of an SOA record."""

    primary_ns: str
    responsible_email: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minimum_ttl: int


@dataclass
class MXRecord:
    """Decoded data of an MX record."""

    preference: int
    exchange: str


RecordData = Union[bytes, str, SOARecord, MXRecord, None]


def _name_wire_length(name: str) -> int:
    return len(name) + 2 if name else 1


@dataclass
class ResourceRecord:
    """An answer, authority or additional record.

    ``data`` holds raw bytes for most types, a domain name for CNAME, NS and
    PTR, and a decoded structure for SOA and MX.
    """

    name: str
    rtype: int
    rclass: int
    ttl: int
    data: RecordData = None

    @property
    def data_len(self) -> int:
        """Length of the record data as it would be written uncompressed."""
        data = self.data
        if data is None:
            return 0
        if isinstance(data, SOARecord):
            return (
                _name_wire_length(data.primary_ns)
                + _name_wire_length(data.responsible_email)
                + 20
            )
        if isinstance(data, MXRecord):
            return 2 + _name_wire_length(data.exchange)
        return len(data)


def _format_data(data: RecordData) -> str:
    if data is None:
        return ""
    if isinstance(data, (SOARecord, MXRecord)):
        return str(data)
    raw = data.encode("ascii", "replace") if isinstance(data, str) else data
    return "".join(f"{byte:02x} " for byte in raw)


def _format_section(title: str, records: Sequence[ResourceRecord]) -> Iterator[str]:
    for number, record in enumerate(records, 1):
        yield (
            f"{title} {number}: {record.name}, Type: {int(record.rtype)}, "
            f"Class: {int(record.rclass)}, TTL: {record.ttl}, "
            f"Data Length: {record.data_len}"
        )
        yield f"Data: {_format_data(record.data)}"


@dataclass
class DnsPacket:
    """A complete DNS message."""

    header: Header = field(default_factory=Header)
    queries: List[Query] = field(default_factory=list)
    answers: List[ResourceRecord] = field(default_factory=list)
    authoritative: List[ResourceRecord] = field(default_factory=list)
    additional: List[ResourceRecord] = field(default_factory=list)

    def empty_copy(self) -> "DnsPacket":
        """Return a packet with the same header flags and no sections."""
        header = dataclasses.replace(
            self.header, q_count=0, ans_count=0, auth_count=0, add_count=0
        )
        return DnsPacket(header=header)

    def format(self) -> str:
        """Return a human-readable, multi-line description of the packet."""
        h = self.header
        lines: List[Optional[str]] = [
            "DNS Packet:",
            f"ID: 0x{h.id:x}",
            f"QR: {h.qr}",
            f"Opcode: {h.opcode}",
            f"AA: {h.aa}",
            f"TC: {h.tc}",
            f"RD: {h.rd}",
            f"RA: {h.ra}",
            f"Z: {h.z}",
            f"RCODE: {h.rcode}",
            f"Queries: {h.q_count}",
            f"Answers: {h.ans_count}",
            f"Authority records: {h.auth_count}",
            f"Additional records: {h.add_count}",
        ]
        lines.extend(
            f"Query {number}: {query.name}, Type: {int(query.qtype)}, "
            f"Class: {int(query.qclass)}"
            for number, query in enumerate(self.queries, 1)
        )
        lines.extend(_format_section("Answer", self.answers))
        lines.extend(_format_section("Authority", self.authoritative))
        lines.extend(_format_section("Additional", self.additional))
        return "\n".join(lines) + "\n"