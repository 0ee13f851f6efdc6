#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Refresh scheduling.

One timer thread runs a cycle every interval_seconds. Manual refreshes and
range changes start a cycle right away on their own thread and push the next
automatic tick one full interval out. An in-flight automatic cycle is not
interrupted; the newer cycle's sequence number wins at publication.
"""
from __future__ import annotations

from typing import List, Optional
import logging
import threading

from .orchestrator import AggregationOrchestrator

log = logging.getLogger(__name__)


class RefreshScheduler:
    def __init__(self, orchestrator: AggregationOrchestrator, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.orchestrator = orchestrator
        self.interval_seconds = float(interval_seconds)
        self._stop_event = threading.Event()
        self._reset_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []
        self._workers_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._reset_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="RefreshTimer")
        self._thread.start()
        log.info(f"Refresh scheduler started (interval={self.interval_seconds:.0f}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        self._reset_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._workers_lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.join(timeout)
        log.info("Refresh scheduler stopped")

    def trigger_refresh(self, trigger: str = "manual", range_token: Optional[str] = None) -> threading.Thread:
        """Run a cycle now on a separate thread and restart the interval timer."""
        self._reset_event.set()
        worker = threading.Thread(
            target=self._run_cycle,
            args=(trigger, range_token),
            daemon=True,
            name=f"Refresh-{trigger}",
        )
        with self._workers_lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()
        return worker

    def change_range(self, range_token: str) -> threading.Thread:
        token = self.orchestrator.set_range(range_token)
        log.info(f"Range changed to {token}")
        return self.trigger_refresh(trigger="range_change", range_token=token)

    def _run_cycle(self, trigger: str, range_token: Optional[str] = None) -> None:
        try:
            self.orchestrator.refresh(range_token=range_token, trigger=trigger)
        except Exception as e:
            log.exception(f"Refresh cycle ({trigger}) failed: {e}")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self._run_cycle("timer")
            # Wait one interval; a manual trigger sets the reset event and restarts the wait
            while True:
                woke = self._reset_event.wait(self.interval_seconds)
                if self._stop_event.is_set():
                    return
                if not woke:
                    break
                self._reset_event.clear()
