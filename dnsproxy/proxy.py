"""The filtering DNS proxy: blocks blacklisted names and relays the rest."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Container, List, Optional, Tuple

from .config import DEFAULT_CONFIG_FILE, Config, ConfigError, load_config
from .parser import parse_dns_header, parse_dns_packet
from .pending import PendingRequests
from .records import DnsError, DnsPacket, Query, Rcode, RecordType, ResourceRecord
from .serializer import serialize_dns_packet
from .server import DEFAULT_SOCKET_BUFFER_SIZE, Address, Request, UdpServer
from .stats import INTERVAL, TrafficStats

logger = logging.getLogger(__name__)

MAX_THREADS = 8
BLOCKED_TTL = 3600
_POLL_INTERVAL = 0.5
_BLOCKABLE_TYPES = frozenset({RecordType.A, RecordType.AAAA})


def is_domain_blocked(domain: str, blacklist: Container[str]) -> Optional[str]:
    """Return the blacklist entry matching ``domain`` or one of its parents."""
    while domain:
        if domain in blacklist:
            return domain
        _, dot, domain = domain.partition(".")
        if not dot:
            return None
    return None


def build_blocked_response(
    packet: DnsPacket, config: Config
) -> Tuple[Optional[DnsPacket], DnsPacket]:
    """Split ``packet`` into a reply for its blocked A/AAAA questions and the rest.

    Returns ``(response, forwarded)``: ``response`` is ``None`` when nothing is
    blocked; ``forwarded`` holds the questions that still need an upstream answer.
    """
    blocked: List[Query] = []
    allowed: List[Query] = []
    for query in packet.queries[: packet.header.q_count]:
        if query.qtype in _BLOCKABLE_TYPES and (
            is_domain_blocked(query.name, config.blacklisted_domains) is not None
        ):
            blocked.append(query)
        else:
            allowed.append(query)

    forwarded = dataclasses.replace(
        packet,
        header=dataclasses.replace(packet.header, q_count=len(allowed)),
        queries=allowed,
    )
    if not blocked:
        return None, forwarded

    response = packet.empty_copy()
    response.header.qr = 1
    response.queries = list(blocked)
    response.header.q_count = len(blocked)
    if config.blacklisted_response == Rcode.NOERROR:
        for query in blocked:
            address = (
                config.blacklisted_ip_response
                if query.qtype == RecordType.A
                else config.blacklisted_ipv6_response
            )
            if address is None:
                raise DnsError(f"No blocking address configured for type {query.qtype}")
            response.answers.append(
                ResourceRecord(
                    name=query.name,
                    rtype=query.qtype,
                    rclass=query.qclass,
                    ttl=BLOCKED_TTL,
                    data=bytes(address),
                )
            )
        response.header.ans_count = len(response.answers)
    else:
        response.header.rcode = int(config.blacklisted_response)
    return response, forwarded


class _WorkerPool:
    """A thread pool that knows how many jobs are waiting to start."""

    def __init__(self, workers: int, name: str) -> None:
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._queued = 0

    @property
    def queued(self) -> int:
        with self._lock:
            return self._queued

    def submit(self, func: Callable[[Request], object], request: Request) -> bool:
        def run() -> None:
            with self._lock:
                self._queued -= 1
            try:
                func(request)
            except Exception:
                logger.exception("Request handler failed")

        with self._lock:
            self._queued += 1
        try:
            self._executor.submit(run)
        except RuntimeError:
            with self._lock:
                self._queued -= 1
            return False
        return True

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class DnsProxy:
    """Receives queries, answers blacklisted ones and relays the rest upstream."""

    def __init__(
        self,
        config: Config,
        server: UdpServer,
        *,
        workers: int = MAX_THREADS // 2,
        stats_interval: float = INTERVAL,
        pending: Optional[PendingRequests] = None,
        stats: Optional[TrafficStats] = None,
    ) -> None:
        self.config = config
        self.server = server
        self.pending = pending if pending is not None else PendingRequests()
        self.stats = stats if stats is not None else TrafficStats()
        self._requests = _WorkerPool(workers, "dns-requests")
        self._responses = _WorkerPool(workers, "dns-responses")
        self._stats_interval = stats_interval
        self._stopped = threading.Event()
        self._reporter: Optional[threading.Thread] = None

    def _send(self, data: bytes, addr: Address, what: str) -> bool:
        try:
            self.server.send(data, addr)
        except OSError as exc:
            logger.warning("Sendto %s failed for %s:%s: %s", what, addr[0], addr[1], exc)
            return False
        self.stats.add_tx(len(data))
        return True

    def handle_datagram(self, request: Request) -> bool:
        """Check a datagram's header and hand it to a worker; return whether it was."""
        self.stats.add_rx(len(request.data))
        try:
            header = parse_dns_header(request.data)
        except DnsError:
            return False
        if header.qr:
            if request.client_addr[0] != str(self.config.upstream_ip):
                return False
            return self._responses.submit(self.handle_response, request)
        return self._requests.submit(self.handle_query, request)

    def handle_query(self, request: Request) -> None:
        """Answer blocked questions of a client query and forward the others."""
        try:
            packet = parse_dns_packet(request.data)
        except DnsError as exc:
            logger.debug("Dropping malformed query: %s", exc)
            return
        self.stats.add_packet()

        response, forwarded = build_blocked_response(packet, self.config)
        if response is not None:
            try:
                data = serialize_dns_packet(response)
            except DnsError:
                logger.warning("Serialization block message failed\n%s", response.format())
            else:
                if self._send(data, request.client_addr, "block"):
                    for query in response.queries:
                        logger.debug("Domain blocked: %s", query.name)

        if forwarded.header.q_count == 0:
            return
        key = self.pending.add(forwarded, request.client_addr)
        wire = dataclasses.replace(
            forwarded, header=dataclasses.replace(forwarded.header, id=key)
        )
        try:
            data = serialize_dns_packet(wire)
        except DnsError:
            self.pending.discard(key)
            logger.warning(
                "Serialization message to upstream failed\n%s", forwarded.format()
            )
            return
        self._send(data, self.config.upstream_address, "upstream")

    def handle_response(self, request: Request) -> Optional[bytes]:
        """Relay an upstream answer to the client that asked; return the bytes sent."""
        try:
            packet = parse_dns_packet(request.data)
        except DnsError as exc:
            logger.debug("Dropping malformed response: %s", exc)
            return None
        entry = self.pending.pop(packet.header.id)
        if entry is None:
            return None
        packet.header.id = entry.packet.header.id
        try:
            data = serialize_dns_packet(packet)
        except DnsError:
            logger.warning(
                "Serialization message from upstream failed\n%s", packet.format()
            )
            return None
        if self._send(data, entry.client_addr, "client"):
            return data
        return None

    def _report_loop(self) -> None:
        while not self._stopped.wait(self._stats_interval):
            logger.info(
                self.stats.report(
                    self._requests.queued, self._responses.queued, len(self.pending)
                )
            )

    def serve_forever(self) -> None:
        """Receive and dispatch datagrams until :meth:`close` is called."""
        if self._stats_interval and self._stats_interval > 0 and self._reporter is None:
            self._reporter = threading.Thread(
                target=self._report_loop, name="dns-stats", daemon=True
            )
            self._reporter.start()
        while not self._stopped.is_set():
            try:
                request = self.server.receive()
            except OSError as exc:
                if self._stopped.is_set():
                    break
                logger.warning("recvfrom failed: %s", exc)
                continue
            if request is not None and not self._stopped.is_set():
                self.handle_datagram(request)

    def close(self) -> None:
        """Stop serving, finish queued work and release the socket."""
        self._stopped.set()
        self._requests.shutdown()
        self._responses.shutdown()
        if self._reporter is not None:
            self._reporter.join()
            self._reporter = None
        self.server.close()
        self.pending.clear()


def main(argv: Optional[List[str]] = None) -> int:
    """Run the proxy with the configuration file named on the command line."""
    parser = argparse.ArgumentParser(
        prog="dnsproxy", description="Filtering DNS proxy."
    )
    parser.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_FILE, help="configuration file"
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(
            f"Can't read config file '{args.config}' or blacklist file: {exc}",
            file=sys.stderr,
        )
        return 1

    try:
        server = UdpServer(
            config.server_port, DEFAULT_SOCKET_BUFFER_SIZE, timeout=_POLL_INTERVAL
        )
    except OSError as exc:
        print(f"Can't create server on 0.0.0.0:{config.server_port}: {exc}", file=sys.stderr)
        return 1
    print(f"Started server on 0.0.0.0:{config.server_port}", flush=True)

    proxy = DnsProxy(config, server)
    try:
        proxy.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        proxy.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())