#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Rolling per-token price history for sparklines.

Each token owns a bounded FIFO buffer (default 7 ticks). Two writers:
- seed(): replace the buffer with a freshly fetched historical series. A
  SYNTHETIC seed never overwrites a buffer that came from REAL data.
- merge(): append one newly observed price tick, evicting the oldest tick
  once the buffer is full.

origin() names the source of the last seed, not of every tick. Live ticks
merged onto a SYNTHETIC seed leave it SYNTHETIC: the sparkline ends on real
prices while its body stays estimated, and the next seed (real or synthetic)
may replace the whole buffer. A buffer built only from merges is REAL.

Writes may carry the refresh cycle's sequence number; a write older than the
last accepted one for that token is ignored, so two cycles finishing out of
order leave the buffer consistent. Readers get tuples, never the buffers.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional, Tuple
import logging
import threading

from ..shared.models import DatasetResult, DatasetStatus

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 7


@dataclass(frozen=True)
class HistoryTick:
    timestamp: datetime
    price: float


class RollingHistoryCache:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._buffers: Dict[str, Deque[HistoryTick]] = {}
        self._origin: Dict[str, DatasetStatus] = {}
        self._last_sequence: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _accept(self, token_id: str, sequence: Optional[int]) -> bool:
        if sequence is None:
            return True
        last = self._last_sequence.get(token_id)
        if last is not None and sequence < last:
            log.info(f"History {token_id}: ignoring write from cycle {sequence} (last accepted {last})")
            return False
        self._last_sequence[token_id] = sequence
        return True

    def _buffer(self, token_id: str) -> Deque[HistoryTick]:
        buf = self._buffers.get(token_id)
        if buf is None:
            buf = deque(maxlen=self.capacity)
            self._buffers[token_id] = buf
        return buf

    def seed(self, token_id: str, result: DatasetResult, sequence: Optional[int] = None) -> Tuple[float, ...]:
        """
        Replace the buffer with the tail of a historical price series.

        Returns:
            The buffer's prices after the operation
        """
        with self._lock:
            if result.is_unavailable or not result.series:
                return self._prices(token_id)
            if result.is_synthetic and self._origin.get(token_id) is DatasetStatus.REAL:
                log.debug(f"History {token_id}: keeping real buffer over synthetic seed")
                return self._prices(token_id)
            if not self._accept(token_id, sequence):
                return self._prices(token_id)
            ticks = [
                HistoryTick(timestamp=p.timestamp, price=float(p.values["price"]))
                for p in result.series
                if p.values.get("price") is not None
            ]
            buf = deque(ticks[-self.capacity:], maxlen=self.capacity)
            self._buffers[token_id] = buf
            self._origin[token_id] = result.status
            return self._prices(token_id)

    def merge(
        self,
        token_id: str,
        tick: HistoryTick,
        sequence: Optional[int] = None,
        resolution: Optional[timedelta] = None,
    ) -> Tuple[float, ...]:
        """
        Append a newly observed price tick (FIFO eviction past capacity).

        A tick older than the newest buffered tick is dropped; a tick with the
        same timestamp (or, with `resolution`, one closer than that to the
        newest tick) replaces it.
        """
        if tick.price < 0:
            raise ValueError("price cannot be negative")
        with self._lock:
            if not self._accept(token_id, sequence):
                return self._prices(token_id)
            buf = self._buffer(token_id)
            if buf:
                newest = buf[-1].timestamp
                if tick.timestamp < newest - (resolution or timedelta(0)):
                    return self._prices(token_id)
                if tick.timestamp == newest or (resolution is not None and abs(tick.timestamp - newest) < resolution):
                    buf.pop()
            buf.append(tick)
            self._origin.setdefault(token_id, DatasetStatus.REAL)
            return self._prices(token_id)

    def _prices(self, token_id: str) -> Tuple[float, ...]:
        return tuple(t.price for t in self._buffers.get(token_id, ()))

    def series(self, token_id: str) -> Tuple[float, ...]:
        with self._lock:
            return self._prices(token_id)

    def ticks(self, token_id: str) -> Tuple[HistoryTick, ...]:
        with self._lock:
            return tuple(self._buffers.get(token_id, ()))

    def origin(self, token_id: str) -> Optional[DatasetStatus]:
        with self._lock:
            return self._origin.get(token_id)

    def snapshot(self) -> Dict[str, Tuple[float, ...]]:
        with self._lock:
            return {token_id: self._prices(token_id) for token_id in self._buffers}
