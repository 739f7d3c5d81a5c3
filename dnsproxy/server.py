"""A small IPv4 UDP endpoint receiving and sending datagrams."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from .records import MAX_DNS_PACKET_SIZE

SERVER_BUFFER_SIZE = MAX_DNS_PACKET_SIZE
DEFAULT_SOCKET_BUFFER_SIZE = 1024 * 1024 * 1024

Address = Tuple[str, int]


@dataclass
class Request:
    """A received datagram and the address it came from."""

    data: bytes
    client_addr: Address


class UdpServer:
    """A UDP socket bound to ``host:port``; raises :class:`OSError` if it cannot be set up."""

    def __init__(
        self,
        port: int,
        socket_buffer_size: int = DEFAULT_SOCKET_BUFFER_SIZE,
        host: str = "0.0.0.0",
        timeout: Optional[float] = None,
    ) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, socket_buffer_size)
            sock.bind((host, port))
            sock.settimeout(timeout)
        except OSError:
            sock.close()
            raise
        self._sock = sock
        self.address: Address = sock.getsockname()[:2]

    @property
    def port(self) -> int:
        """The port the socket is bound to."""
        return self.address[1]

    def receive(self) -> Optional[Request]:
        """Wait for one datagram; return ``None`` on timeout or an empty datagram."""
        try:
            data, addr = self._sock.recvfrom(SERVER_BUFFER_SIZE)
        except (TimeoutError, BlockingIOError):
            return None
        if not data:
            return None
        return Request(data=data, client_addr=addr[:2])

    def send(self, data: bytes, addr: Address) -> int:
        """Send ``data`` to ``addr``; return the number of bytes sent."""
        return self._sock.sendto(data, addr)

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()

    def __enter__(self) -> "UdpServer":
        return self

    def __exit__(self, *args) -> None:
        self.close()