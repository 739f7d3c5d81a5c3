"""Traffic counters and periodic speed reports."""

from __future__ import annotations

import threading
import time
from typing import Callable

INTERVAL = 1.0
_BYTES_IN_MB = 1024.0 * 1024


class TrafficStats:
    """Thread-safe byte and packet counters with speed reporting."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self.total_rx_bytes = 0
        self.total_tx_bytes = 0
        self.prev_rx_bytes = 0
        self.prev_tx_bytes = 0
        self.total_packets = 0
        self.prev_time = clock()

    def add_rx(self, size: int) -> None:
        """Count ``size`` received bytes."""
        with self._lock:
            self.total_rx_bytes += size

    def add_tx(self, size: int) -> None:
        """Count ``size`` sent bytes."""
        with self._lock:
            self.total_tx_bytes += size

    def add_packet(self) -> None:
        """Count one accepted query."""
        with self._lock:
            self.total_packets += 1

    def report(
        self, incoming_pending: int, outgoing_pending: int, cached_packets: int
    ) -> str:
        """Return a line with speeds since the previous report and reset the window."""
        with self._lock:
            now = self._clock()
            elapsed = now - self.prev_time
            rx = self.total_rx_bytes - self.prev_rx_bytes
            tx = self.total_tx_bytes - self.prev_tx_bytes
            if elapsed > 0:
                rx_mb = rx / elapsed / _BYTES_IN_MB
                tx_mb = tx / elapsed / _BYTES_IN_MB
            else:
                rx_mb = tx_mb = 0.0
            line = (
                f"Incoming traffic: {rx_mb:.2f} MB/s, "
                f"Outgoing traffic: {tx_mb:.2f} MB/s, "
                f"Inc. pool: {incoming_pending}, Out. pool: {outgoing_pending}, "
                f"Cached dns packets: {cached_packets}, "
                f"Total packets: {self.total_packets}"
            )
            self.prev_rx_bytes = self.total_rx_bytes
            self.prev_tx_bytes = self.total_tx_bytes
            self.prev_time = now
        return line