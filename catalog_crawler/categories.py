"""Category tree discovery.

The products page ships the whole taxonomy as a single-quoted JSON literal
on the line after a comment ending in the marker text below. Extraction is
purely textual; any deviation means the page layout changed and is reported
as schema drift rather than retried.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional, Set

from .errors import NetworkError, PayloadError, SchemaDriftError
from .models import Category, SubCategory
from .retry import RetryExecutor, Verdict

logger = logging.getLogger(__name__)

CATEGORY_MARKER = "分类数据"


def parse_category_tree(html: str, marker: str = CATEGORY_MARKER) -> List[Category]:
    lines = html.splitlines()
    for i, line in enumerate(lines):
        if not line.rstrip().endswith(marker):
            continue
        if i + 1 >= len(lines):
            raise SchemaDriftError("category marker is the last line of the page")
        payload = lines[i + 1]
        start = payload.find("'")
        end = payload.rfind("'")
        if start < 0 or end <= start:
            raise SchemaDriftError("no quoted category literal after the marker")
        try:
            raw = json.loads(payload[start + 1:end])
        except ValueError as exc:
            raise SchemaDriftError(f"category literal is not valid JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise SchemaDriftError("category literal is not a JSON array")
        try:
            return [Category.from_dict(c) for c in raw]
        except PayloadError as exc:
            raise SchemaDriftError(f"unexpected category shape: {exc}") from exc
    raise SchemaDriftError(f"marker {marker!r} not found; check the products page for changes")


def subcategories(categories: Iterable[Category]) -> List[SubCategory]:
    """Flatten the tree into crawl jobs, keeping tree order.

    A sub-category listed under more than one parent is kept once, at its
    first position.
    """
    seen: Set[int] = set()
    flat: List[SubCategory] = []
    for cat in categories:
        for sub in cat.subs:
            if sub.id in seen:
                continue
            seen.add(sub.id)
            flat.append(sub)
    return flat


def _network_only(exc: BaseException) -> Verdict:
    return Verdict.TRANSIENT if isinstance(exc, NetworkError) else Verdict.FATAL


class CategoryFetcher:
    """One-shot fetch of the category tree. Runs before any worker exists,
    so transient failures are retried without rotating identity."""

    def __init__(
        self,
        transport,
        products_url: str,
        executor: Optional[RetryExecutor] = None,
        max_attempts: int = 3,
    ) -> None:
        self._transport = transport
        self._url = products_url
        self._executor = executor or RetryExecutor()
        self._max_attempts = max_attempts

    def fetch(self) -> List[Category]:
        html = self._executor.run(
            lambda: self._transport.get_text(self._url),
            _network_only,
            recover=None,
            max_attempts=self._max_attempts,
            name="fetch categories",
        )
        categories = parse_category_tree(html)
        logger.info(
            "Loaded %d categories with %d sub-categories",
            len(categories),
            sum(len(c.subs) for c in categories),
        )
        return categories
