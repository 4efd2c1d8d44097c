from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set

from .collector import DatasheetCollector
from .crawler import SubCategoryCrawler
from .errors import SinkError, SubcategoryFatalError, TransportError
from .metrics import CrawlStats
from .models import CrawlJob, SubCategory
from .sink import ResultSink
from .transport import AnonymizingTransport

logger = logging.getLogger(__name__)


class JobQueue:
    """FIFO hand-off of sub-categories; each job is handed to exactly one caller.

    Once closed and empty, get() returns None so workers can exit.
    """

    def __init__(self, jobs: Iterable[SubCategory] = ()) -> None:
        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._items: Deque[SubCategory] = deque(jobs)
        self._closed = False

    def put(self, job: SubCategory) -> None:
        with self._cv:
            if self._closed:
                raise RuntimeError("job queue is closed")
            self._items.append(job)
            self._cv.notify()

    def close(self) -> None:
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    def get(self, stop: Optional[threading.Event] = None) -> Optional[SubCategory]:
        with self._cv:
            while not self._items and not self._closed:
                if stop is not None and stop.is_set():
                    return None
                self._cv.wait(timeout=0.5)
            if self._items:
                return self._items.popleft()
            return None

    def drain(self) -> List[SubCategory]:
        with self._cv:
            left = list(self._items)
            self._items.clear()
            return left

    def __len__(self) -> int:
        with self._cv:
            return len(self._items)


@dataclass
class PoolReport:
    completed: List[int] = field(default_factory=list)
    empty: List[int] = field(default_factory=list)
    aborted: Dict[int, str] = field(default_factory=dict)
    sink_failures: Dict[int, str] = field(default_factory=dict)
    worker_failures: Dict[str, str] = field(default_factory=dict)
    unprocessed: List[int] = field(default_factory=list)
    stopped: bool = False

    @property
    def ok(self) -> bool:
        return not (self.aborted or self.sink_failures or self.worker_failures or self.unprocessed)


CrawlerFactory = Callable[[AnonymizingTransport], SubCategoryCrawler]


def unique_jobs(jobs: Iterable[SubCategory]) -> List[SubCategory]:
    """Drop repeated sub-category ids, keeping the first occurrence."""
    seen: Set[int] = set()
    unique: List[SubCategory] = []
    for sub in jobs:
        if sub.id in seen:
            logger.warning("Sub-category %d listed more than once, crawling it once", sub.id)
            continue
        seen.add(sub.id)
        unique.append(sub)
    return unique


class WorkerPool:
    """Fans sub-categories out over N workers, one exclusively owned transport each.

    The pool drains when the queue is empty and every worker has exited.
    stop() is honored between jobs only, so a sub-category in progress either
    completes or aborts before its worker leaves.
    """

    def __init__(
        self,
        transports: Sequence[AnonymizingTransport],
        crawler_factory: CrawlerFactory,
        collector: DatasheetCollector,
        sink: ResultSink,
        stats: Optional[CrawlStats] = None,
    ) -> None:
        if not transports:
            raise ValueError("WorkerPool needs at least one transport")
        self._transports = list(transports)
        self._crawler_factory = crawler_factory
        self._collector = collector
        self._sink = sink
        self._stats = stats or CrawlStats()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._in_flight: Dict[int, str] = {}
        self._report = PoolReport()
        self._total = 0

    @property
    def size(self) -> int:
        return len(self._transports)

    def stop(self) -> None:
        self._stop.set()

    def run(self, jobs: Iterable[SubCategory]) -> PoolReport:
        queue = JobQueue(unique_jobs(jobs))
        queue.close()
        self._total = len(queue)
        self._report = PoolReport()
        logger.info("Crawling %d sub-categories with %d workers", self._total, self.size)

        with ThreadPoolExecutor(max_workers=self.size, thread_name_prefix="crawl") as executor:
            futures = [executor.submit(self._worker, t, queue) for t in self._transports]
            try:
                wait(futures)
            except KeyboardInterrupt:
                logger.warning("Interrupted; letting in-flight sub-categories finish")
                self.stop()
                wait(futures)

        self._report.stopped = self._stop.is_set()
        self._report.unprocessed = [s.id for s in queue.drain()]
        for fut in futures:
            # surfaces unexpected worker bugs after the drain
            fut.result()
        return self._report

    def _worker(self, transport: AnonymizingTransport, queue: JobQueue) -> None:
        name = transport.name
        try:
            transport.acquire()
        except TransportError as exc:
            self._fail_worker(name, exc)
            return

        crawler = self._crawler_factory(transport)
        while not self._stop.is_set():
            sub = queue.get(stop=self._stop)
            if sub is None:
                break
            job = CrawlJob(subcategory=sub, worker=name)
            self._claim(job)
            try:
                self._process(crawler, job)
            except TransportError as exc:
                self._abort(sub.id, f"transport failure: {exc}")
                self._fail_worker(name, exc)
                return
            finally:
                self._release(job)
        logger.debug("%s: worker exiting", name)

    def _process(self, crawler: SubCategoryCrawler, job: CrawlJob) -> None:
        sub = job.subcategory
        try:
            batch = crawler.crawl(sub)
        except SubcategoryFatalError as exc:
            logger.error(
                "%s: sub-category %d aborted at page %d: %s",
                job.worker,
                exc.subcategory_id,
                exc.page,
                exc.cause,
            )
            self._abort(sub.id, str(exc))
            return

        new_urls = self._collector.add_all(batch.datasheets)
        if batch.records:
            try:
                self._sink.accept(sub.id, batch.records)
            except SinkError as exc:
                logger.error("%s: sink rejected sub-category %d: %s", job.worker, sub.id, exc)
                self._stats.record_sink_failure()
                with self._lock:
                    self._report.sink_failures[sub.id] = str(exc)
        else:
            logger.debug("Sub-category %d is empty", sub.id)

        done = self._stats.record_completed(len(batch.records))
        with self._lock:
            self._report.completed.append(sub.id)
            if not batch.records:
                self._report.empty.append(sub.id)
        logger.info(
            "[%d/%d] %s (%d): %d products, %d pages, %d new datasheets",
            done,
            self._total,
            sub.name,
            sub.id,
            len(batch.records),
            batch.pages,
            new_urls,
        )

    def _claim(self, job: CrawlJob) -> None:
        with self._lock:
            owner = self._in_flight.get(job.subcategory.id)
            if owner is not None:
                raise RuntimeError(
                    f"sub-category {job.subcategory.id} already claimed by {owner}"
                )
            self._in_flight[job.subcategory.id] = job.worker

    def _release(self, job: CrawlJob) -> None:
        with self._lock:
            self._in_flight.pop(job.subcategory.id, None)

    def _abort(self, subcategory_id: int, reason: str) -> None:
        self._stats.record_aborted()
        with self._lock:
            self._report.aborted[subcategory_id] = reason

    def _fail_worker(self, name: str, exc: TransportError) -> None:
        logger.error("%s: transport failed, worker leaving the pool: %s", name, exc)
        with self._lock:
            self._report.worker_failures[name] = str(exc)
