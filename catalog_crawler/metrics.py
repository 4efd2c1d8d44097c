from __future__ import annotations

import time
from threading import Lock
from typing import Dict

from .models import CrawlSnapshot


class CrawlStats:
    """Thread-safe progress counters shared by all workers of one crawl run."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._started = time.time()
        self._pages = 0
        self._rotations = 0
        self._completed = 0
        self._aborted = 0
        self._records = 0
        self._sink_failures = 0

    def record_page(self) -> None:
        with self._lock:
            self._pages += 1

    def record_rotation(self) -> None:
        with self._lock:
            self._rotations += 1

    def record_completed(self, records: int) -> int:
        """Count a finished sub-category; returns how many are done so far."""
        with self._lock:
            self._completed += 1
            self._records += records
            return self._completed + self._aborted

    def record_aborted(self) -> int:
        with self._lock:
            self._aborted += 1
            return self._completed + self._aborted

    def record_sink_failure(self) -> None:
        with self._lock:
            self._sink_failures += 1

    def snapshot(self) -> CrawlSnapshot:
        now = time.time()
        with self._lock:
            return CrawlSnapshot(
                pages_fetched=self._pages,
                rotations=self._rotations,
                subcategories_completed=self._completed,
                subcategories_aborted=self._aborted,
                records=self._records,
                sink_failures=self._sink_failures,
                elapsed_secs=now - self._started,
                timestamp=now,
            )

    def as_dict(self) -> Dict[str, float]:
        snap = self.snapshot()
        return {
            "pages": snap.pages_fetched,
            "rotations": snap.rotations,
            "completed": snap.subcategories_completed,
            "aborted": snap.subcategories_aborted,
            "records": snap.records,
            "sink_failures": snap.sink_failures,
            "elapsed_secs": round(snap.elapsed_secs, 1),
        }
