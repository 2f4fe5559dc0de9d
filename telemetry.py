"""
Telemetry channel.

Carries one (value, flag) pair per particle per step from the force kernel
to the host-side drain loop. The channel is a bounded FIFO: Phase A fills it,
then the loop drains exactly one step's worth before the next step runs.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Iterable

import torch

from dispatch import ComputeError


class TelemetryError(ComputeError):
    """Telemetry protocol violation (overflow, short drain, leftovers)."""


class TelemetryChannel:
    """
    Bounded FIFO of (value, flag) pairs.

    Usage:
        channel = TelemetryChannel(capacity=n)
        channel.write(3.2e-9)              # producer, once per particle
        values = channel.drain(n)          # consumer, once per step
        channel.close()
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._closed = False
        self.writes = 0
        self.reads = 0
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._queue.qsize()

    def write(self, value: float, flag: bool = True):
        """
        Push one item. Never blocks: the drain only runs after the producing
        phase has finished, so a full channel would deadlock.
        """
        if self._closed:
            raise TelemetryError("write to a closed telemetry channel")
        try:
            self._queue.put_nowait((float(value), bool(flag)))
        except queue.Full:
            raise TelemetryError(
                f"telemetry channel overflow (capacity {self.capacity})"
            ) from None
        with self._lock:
            self.writes += 1

    def write_many(self, values: Iterable[float], flag: bool = True):
        if isinstance(values, torch.Tensor):
            values = values.detach().cpu().tolist()
        for v in values:
            self.write(v, flag)

    def read(self) -> tuple[float, bool]:
        if self._closed:
            raise TelemetryError("read from a closed telemetry channel")
        try:
            item = self._queue.get_nowait()
        except queue.Empty:
            raise TelemetryError("telemetry channel is empty") from None
        with self._lock:
            self.reads += 1
        return item

    def drain(self, count: int) -> list[tuple[float, bool]]:
        """
        Read exactly `count` items, in the order they were written.

        Raises:
            TelemetryError: if fewer than `count` items are available, or
                items remain afterwards
        """
        available = self._queue.qsize()
        if available < count:
            raise TelemetryError(
                f"telemetry drain expected {count} items, only {available} written"
            )
        items = [self.read() for _ in range(count)]
        if not self._queue.empty():
            raise TelemetryError(
                f"telemetry channel holds {self._queue.qsize()} items after drain"
            )
        return items

    def close(self):
        """Destroy the channel. Leftover items are a protocol error."""
        leftover = self._queue.qsize()
        self._closed = True
        if leftover:
            raise TelemetryError(f"telemetry channel closed with {leftover} unread items")

    def __enter__(self) -> "TelemetryChannel":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self._closed = True
        return False


@dataclass
class ExtremumTracker:
    """
    Running signed max/min acceleration component over all particles and
    steps. After each step a larger |min| is promoted to the max, so `max`
    ends up holding the worst-case magnitude.
    """
    max: float = 0.0
    min: float = 0.0

    def update(self, accelerations: torch.Tensor):
        """Fold in one step's (N, 3) acceleration tensor."""
        if accelerations.numel() == 0:
            return
        hi = float(accelerations.max().item())
        lo = float(accelerations.min().item())
        if hi > self.max:
            self.max = hi
        if lo < self.min:
            self.min = lo

    def promote(self):
        if -self.min > self.max:
            self.max = -self.min

    @property
    def magnitude(self) -> float:
        return max(self.max, -self.min)
