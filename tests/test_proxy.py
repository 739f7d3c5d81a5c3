import ipaddress
import socket
import threading

import pytest

from dnsproxy.config import Config
from dnsproxy.parser import parse_dns_packet
from dnsproxy.proxy import (
    BLOCKED_TTL,
    DnsProxy,
    build_blocked_response,
    is_domain_blocked,
    main,
)
from dnsproxy.records import (
    DnsPacket,
    Header,
    Query,
    Rcode,
    RecordClass,
    RecordType,
    ResourceRecord,
)
from dnsproxy.serializer import serialize_dns_packet
from dnsproxy.server import Request, UdpServer

BLOCK_IP = ipaddress.IPv4Address("10.0.0.1").packed
BLOCK_IPV6 = ipaddress.IPv6Address("fd00::1").packed

EXAMPLE_COM_QUERY = bytes(
    [0x12, 0x34, 0x01, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
    + [0x07]
    + list(b"example")
    + [0x03]
    + list(b"com")
    + [0x00, 0x00, 0x01, 0x00, 0x01]
)


def make_query(*queries, ident=0x1234):
    return DnsPacket(
        header=Header(id=ident, rd=1, q_count=len(queries)), queries=list(queries)
    )


def make_config(upstream_port=53, response=Rcode.NOERROR):
    return Config(
        upstream_ip=ipaddress.IPv4Address("127.0.0.1"),
        upstream_port=upstream_port,
        blacklisted_response=response,
        blacklisted_ip_response=BLOCK_IP,
        blacklisted_ipv6_response=BLOCK_IPV6,
        blacklisted_domains={"blocked.example.com"},
    )


def udp_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2)
    return sock


@pytest.fixture
def network():
    server = UdpServer(0, 1 << 16, host="127.0.0.1", timeout=0.05)
    upstream = udp_socket()
    client = udp_socket()
    config = make_config(upstream.getsockname()[1])
    proxy = DnsProxy(config, server, workers=2, stats_interval=0)
    yield proxy, upstream, client
    proxy.close()
    upstream.close()
    client.close()


def test_is_domain_blocked_matches_parents():
    blacklist = {"example.com"}
    assert is_domain_blocked("example.com", blacklist) == "example.com"
    assert is_domain_blocked("ads.www.example.com", blacklist) == "example.com"
    assert is_domain_blocked("example.org", blacklist) is None
    assert is_domain_blocked("notexample.com", blacklist) is None
    assert is_domain_blocked("", blacklist) is None


def test_blocked_response_with_addresses():
    packet = make_query(
        Query("www.blocked.example.com", RecordType.A, RecordClass.IN),
        Query("open.example.com", RecordType.A, RecordClass.IN),
        Query("blocked.example.com", RecordType.AAAA, RecordClass.IN),
    )
    response, forwarded = build_blocked_response(packet, make_config())
    assert response.header.qr == 1
    assert response.header.id == 0x1234
    assert [q.name for q in response.queries] == [
        "www.blocked.example.com",
        "blocked.example.com",
    ]
    assert response.header.q_count == 2
    assert response.header.ans_count == 2
    assert [a.data for a in response.answers] == [BLOCK_IP, BLOCK_IPV6]
    assert all(a.ttl == BLOCKED_TTL for a in response.answers)
    assert [q.name for q in forwarded.queries] == ["open.example.com"]
    assert forwarded.header.q_count == 1
    assert packet.header.q_count == 3


def test_blocked_response_with_rcode():
    packet = make_query(Query("blocked.example.com", RecordType.A, RecordClass.IN))
    response, forwarded = build_blocked_response(
        packet, make_config(response=Rcode.NXDOMAIN)
    )
    assert response.header.rcode == Rcode.NXDOMAIN
    assert response.answers == []
    assert response.header.ans_count == 0
    assert forwarded.header.q_count == 0


def test_other_types_are_not_blocked():
    packet = make_query(Query("blocked.example.com", RecordType.MX, RecordClass.IN))
    response, forwarded = build_blocked_response(packet, make_config())
    assert response is None
    assert forwarded.queries == packet.queries


def test_blocked_response_serializes_and_parses():
    packet = make_query(Query("blocked.example.com", RecordType.A, RecordClass.IN))
    response, _ = build_blocked_response(packet, make_config())
    parsed = parse_dns_packet(serialize_dns_packet(response))
    assert parsed.answers[0].data == BLOCK_IP
    assert parsed.queries[0].name == "blocked.example.com"


def test_query_is_forwarded_and_answer_relayed(network):
    proxy, upstream, client = network
    proxy.handle_query(Request(EXAMPLE_COM_QUERY, client.getsockname()))
    forwarded, _ = upstream.recvfrom(512)
    upstream_packet = parse_dns_packet(forwarded)
    assert upstream_packet.queries[0].name == "example.com"
    assert len(proxy.pending) == 1
    assert proxy.stats.total_packets == 1

    answer = DnsPacket(
        header=Header(id=upstream_packet.header.id, qr=1, q_count=1, ans_count=1),
        queries=upstream_packet.queries,
        answers=[
            ResourceRecord(
                "example.com", RecordType.A, RecordClass.IN, 60, bytes([192, 168, 0, 1])
            )
        ],
    )
    sent = proxy.handle_response(
        Request(serialize_dns_packet(answer), upstream.getsockname())
    )
    received, _ = client.recvfrom(512)
    assert received == sent
    relayed = parse_dns_packet(received)
    assert relayed.header.id == 0x1234
    assert relayed.answers[0].data == bytes([192, 168, 0, 1])
    assert len(proxy.pending) == 0


def test_blocked_query_is_answered_locally(network):
    proxy, upstream, client = network
    query = serialize_dns_packet(
        make_query(Query("ads.blocked.example.com", RecordType.A, RecordClass.IN))
    )
    proxy.handle_query(Request(query, client.getsockname()))
    reply = parse_dns_packet(client.recvfrom(512)[0])
    assert reply.header.qr == 1
    assert reply.answers[0].data == BLOCK_IP
    assert len(proxy.pending) == 0
    assert proxy.stats.total_tx_bytes > 0


def test_response_with_unknown_id_is_dropped(network):
    proxy, upstream, _ = network
    answer = DnsPacket(
        header=Header(id=999, qr=1, q_count=1),
        queries=[Query("example.com", RecordType.A, RecordClass.IN)],
    )
    result = proxy.handle_response(
        Request(serialize_dns_packet(answer), upstream.getsockname())
    )
    assert result is None


def test_handle_datagram_filters(network):
    proxy, upstream, client = network
    assert proxy.handle_datagram(Request(b"\x00" * 5, client.getsockname())) is False
    response = serialize_dns_packet(
        DnsPacket(
            header=Header(id=1, qr=1, q_count=1),
            queries=[Query("example.com", RecordType.A, RecordClass.IN)],
        )
    )
    assert proxy.handle_datagram(Request(response, ("10.9.9.9", 53))) is False
    assert proxy.handle_datagram(Request(EXAMPLE_COM_QUERY, client.getsockname()))
    forwarded = parse_dns_packet(upstream.recvfrom(512)[0])
    assert forwarded.queries[0].name == "example.com"
    expected_rx = 5 + len(response) + len(EXAMPLE_COM_QUERY)
    assert proxy.stats.total_rx_bytes == expected_rx


def test_serve_forever_until_closed(network):
    proxy, upstream, client = network
    thread = threading.Thread(target=proxy.serve_forever)
    thread.start()
    client.sendto(EXAMPLE_COM_QUERY, proxy.server.address)
    forwarded = parse_dns_packet(upstream.recvfrom(512)[0])
    proxy.close()
    thread.join(5)
    assert not thread.is_alive()
    assert forwarded.queries[0].name == "example.com"


def test_main_reports_missing_config(tmp_path, capsys):
    status = main(["--config", str(tmp_path / "missing.ini")])
    assert status == 1
    assert "Can't read config file" in capsys.readouterr().err