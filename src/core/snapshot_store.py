#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Versioned holder of the last published Snapshot.

publish() is a compare-and-swap on the cycle sequence number: a snapshot from
an older cycle than the one already published is dropped. Readers always get a
complete, immutable Snapshot (or None before the first publication).
"""
from __future__ import annotations

from typing import Optional
import logging
import threading

from ..shared.models import Snapshot

log = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(self) -> None:
        self._current: Optional[Snapshot] = None
        self._lock = threading.Lock()
        self._issued = 0
        self.dropped = 0

    def next_sequence(self) -> int:
        """Reserve the sequence number for a new refresh cycle."""
        with self._lock:
            self._issued += 1
            return self._issued

    def publish(self, snapshot: Snapshot) -> bool:
        """
        Swap in `snapshot` unless a newer cycle already published.

        Returns:
            True when the snapshot became the current one
        """
        with self._lock:
            current = self._current
            if current is not None and snapshot.sequence <= current.sequence:
                self.dropped += 1
                log.info(f"Dropping stale snapshot from cycle {snapshot.sequence} (current is {current.sequence})")
                return False
            self._current = snapshot
            return True

    def current(self) -> Optional[Snapshot]:
        with self._lock:
            return self._current
