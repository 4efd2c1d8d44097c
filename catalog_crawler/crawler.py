from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Dict, List, Optional

from .errors import (
    MalformedResponseError,
    NetworkError,
    PayloadError,
    SoftBlockError,
    SubcategoryFatalError,
    TransportError,
)
from .metrics import CrawlStats
from .models import PageResult, ProductRecord, SearchResponse, SubCategory, SubCategoryBatch
from .retry import RetryExecutor, Verdict

logger = logging.getLogger(__name__)

DEFAULT_PAGE_ATTEMPTS = 5


class CrawlState(str, Enum):
    FETCHING_FIRST_PAGE = "fetching_first_page"
    FETCHING_PAGE = "fetching_page"
    DONE = "done"
    ABORTED = "aborted"


def search_form(page: int, category_id: int) -> Dict[str, str]:
    return {
        "current_page": str(page),
        "category": str(category_id),
        "in_stock": "false",
        "is_RoHS": "false",
        "show_icon": "false",
        "search_content": "",
    }


def classify_page_error(exc: BaseException) -> Verdict:
    """Network failures, undecodable bodies and soft blocks are worth a new identity."""
    if isinstance(exc, (NetworkError, MalformedResponseError, SoftBlockError)):
        return Verdict.TRANSIENT
    return Verdict.FATAL


class SubCategoryCrawler:
    """Paginates one sub-category at a time through a single transport.

    Output is all-or-nothing: crawl() either returns the complete batch or
    raises, and nothing accumulated for a failed sub-category escapes.
    """

    def __init__(
        self,
        transport,
        search_url: str,
        executor: Optional[RetryExecutor] = None,
        page_attempts: int = DEFAULT_PAGE_ATTEMPTS,
        first_page_attempts: Optional[int] = None,
        stats: Optional[CrawlStats] = None,
    ) -> None:
        self._transport = transport
        self._search_url = search_url
        self._executor = executor or RetryExecutor()
        self._page_attempts = page_attempts
        self._first_page_attempts = first_page_attempts or page_attempts
        self._stats = stats
        self._rotations = 0
        self.state = CrawlState.DONE
        self.page = 0

    def crawl(self, subcategory: SubCategory) -> SubCategoryBatch:
        self.state = CrawlState.FETCHING_FIRST_PAGE
        self.page = 1
        self._rotations = 0
        items: List[ProductRecord] = []

        first = self._fetch(subcategory, 1, self._first_page_attempts)
        items.extend(first.items)
        last_page = max(first.last_page, 1)
        logger.debug(
            "Fetching sub-category %s (%d) with %d pages",
            subcategory.name,
            subcategory.id,
            last_page,
        )

        self.state = CrawlState.FETCHING_PAGE
        for page in range(2, last_page + 1):
            self.page = page
            result = self._fetch(subcategory, page, self._page_attempts)
            items.extend(result.items)

        self.state = CrawlState.DONE
        datasheets = frozenset(url for record in items for url in record.datasheet_urls)
        return SubCategoryBatch(
            subcategory=subcategory,
            records=tuple(items),
            datasheets=datasheets,
            pages=last_page,
            rotations=self._rotations,
        )

    def _fetch(self, subcategory: SubCategory, page: int, attempts: int) -> PageResult:
        outcome = self._executor.execute(
            lambda: self._fetch_page(subcategory.id, page),
            classify_page_error,
            recover=self._recover,
            max_attempts=attempts,
            name=f"sub-category {subcategory.id} page {page}",
        )
        if outcome.ok:
            if self._stats:
                self._stats.record_page()
            return outcome.value  # type: ignore[return-value]

        self.state = CrawlState.ABORTED
        if isinstance(outcome.error, TransportError):
            raise outcome.error
        raise SubcategoryFatalError(subcategory.id, page, outcome.error) from outcome.error

    def _fetch_page(self, category_id: int, page: int) -> PageResult:
        text = self._transport.post_form(self._search_url, search_form(page, category_id))
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise MalformedResponseError(f"invalid JSON for page {page}: {exc}") from exc

        response = SearchResponse.from_dict(payload)
        if not response.success:
            raise SoftBlockError(response.message, response.code)
        if response.page is None:
            raise PayloadError(f"search response for page {page} carried no result")
        return response.page

    def _recover(self) -> None:
        logger.debug("Server told us to back off, creating a new identity")
        self._transport.rotate()
        self._rotations += 1
        if self._stats:
            self._stats.record_rotation()
        self._transport.acquire()
