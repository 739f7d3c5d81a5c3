"""Queries forwarded upstream and waiting for their answers."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .records import DnsPacket

_KEY_SPACE = 0x10000

Address = Tuple[str, int]


@dataclass
class PendingEntry:
    """A forwarded query, the client that asked it and when it was stored."""

    key: int
    packet: DnsPacket
    client_addr: Address
    create_time: float


class PendingRequests:
    """Thread-safe table of forwarded queries keyed by the upstream message id.

    Keys are handed out in sequence and wrap around after 0xFFFF; a new entry
    that lands on a key still in use replaces the old entry.
    """

    def __init__(self, first_key: int = 0) -> None:
        self._entries: Dict[int, PendingEntry] = {}
        self._lock = threading.Lock()
        self._next_key = first_key % _KEY_SPACE

    def add(self, packet: DnsPacket, client_addr: Address) -> int:
        """Store ``packet`` for ``client_addr`` and return the key it was given."""
        with self._lock:
            key = self._next_key
            self._entries[key] = PendingEntry(
                key=key,
                packet=packet,
                client_addr=client_addr,
                create_time=time.time(),
            )
            self._next_key = (key + 1) % _KEY_SPACE
        return key

    def pop(self, key: int) -> Optional[PendingEntry]:
        """Remove and return the entry stored under ``key``, or ``None``."""
        with self._lock:
            return self._entries.pop(key, None)

    def discard(self, key: int) -> None:
        """Forget the entry under ``key`` if there is one."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Forget every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)