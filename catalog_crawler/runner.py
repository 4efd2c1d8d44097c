from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .categories import CategoryFetcher, subcategories
from .collector import DatasheetCollector
from .config import CrawlConfig
from .crawler import SubCategoryCrawler
from .factory import TransportFactory
from .metrics import CrawlStats
from .models import CrawlSnapshot, SubCategory
from .pool import PoolReport, WorkerPool
from .retry import BackoffStrategy, RetryExecutor
from .sink import JsonDirectorySink, MultiSink, ResultSink, SearchIndexSink, import_directory
from .transport import AnonymizingTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlSummary:
    report: PoolReport
    datasheets: int
    stats: CrawlSnapshot


class CrawlRunner:
    """Wires config, transports, pool, collector and sinks for one run.

    Every collaborator is built per run, so two runs in one process share
    nothing.
    """

    def __init__(
        self,
        config: CrawlConfig,
        transport_factory: Optional[TransportFactory] = None,
        sink: Optional[ResultSink] = None,
        index_sink: Optional[SearchIndexSink] = None,
    ) -> None:
        self.config = config
        self._factory = transport_factory or TransportFactory(config)
        self._index_sink = index_sink
        if self._index_sink is None and config.index_host:
            self._index_sink = SearchIndexSink(
                config.index_host,
                index_uid=config.index_uid,
                api_key=config.index_api_key,
            )
        if sink is None:
            sinks: List[ResultSink] = [JsonDirectorySink(config.output_dir)]
            if self._index_sink is not None:
                sinks.append(self._index_sink)
            sink = sinks[0] if len(sinks) == 1 else MultiSink(sinks)
        self.sink = sink
        self.collector = DatasheetCollector()
        self.stats = CrawlStats()
        self.executor = RetryExecutor(BackoffStrategy(config.backoff_base, config.backoff_max))

    def _crawler_for(self, transport: AnonymizingTransport) -> SubCategoryCrawler:
        return SubCategoryCrawler(
            transport,
            self.config.search_url,
            executor=self.executor,
            page_attempts=self.config.page_attempts,
            first_page_attempts=self.config.first_page_attempts,
            stats=self.stats,
        )

    def discover(self, transport: AnonymizingTransport) -> List[SubCategory]:
        transport.acquire()
        fetcher = CategoryFetcher(
            transport,
            self.config.products_url,
            executor=self.executor,
            max_attempts=self.config.category_attempts,
        )
        return subcategories(fetcher.fetch())

    def run(self, category_id: Optional[int] = None) -> CrawlSummary:
        """Crawl the whole tree, or a single sub-category when category_id is given.

        SchemaDriftError and start-up TransportError propagate before any job
        exists and before anything is written.
        """
        transports = self._factory.create_all(self.config.workers)
        try:
            if category_id is None:
                jobs = self.discover(transports[0])
            else:
                jobs = [SubCategory(id=category_id, name=str(category_id))]

            pool = WorkerPool(transports, self._crawler_for, self.collector, self.sink, self.stats)
            report = pool.run(jobs)
        finally:
            for t in transports:
                t.close()

        written = self.collector.write(self.config.datasheet_path)
        logger.info("Wrote %d datasheet URLs to %s", written, self.config.datasheet_path)
        if self._index_sink is not None:
            self._index_sink.wait_idle()
        self.sink.close()
        return CrawlSummary(report=report, datasheets=written, stats=self.stats.snapshot())

    def run_import(self, path: str) -> int:
        """Batch-import mode: push existing batch files to the index, no crawling."""
        if self._index_sink is None:
            raise ValueError("batch import needs an index host")
        count = import_directory(path, self._index_sink)
        self._index_sink.wait_idle()
        self._index_sink.close()
        logger.info("Imported %d products from %s", count, path)
        return count
