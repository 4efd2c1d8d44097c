"""Tests for the SubCategoryCrawler pagination state machine."""

import unittest
from unittest import mock

from catalog_crawler.crawler import CrawlState, SubCategoryCrawler, classify_page_error, search_form
from catalog_crawler.errors import (
    MalformedResponseError,
    NetworkError,
    PayloadError,
    SoftBlockError,
    SubcategoryFatalError,
    TransportError,
)
from catalog_crawler.metrics import CrawlStats
from catalog_crawler.models import SearchResponse, SubCategory
from catalog_crawler.retry import Verdict

from fakes import FakeTransport, blocked, page, product

SEARCH_URL = "https://example.test/api/products/search"


def crawler_for(transport, **kwargs):
    return SubCategoryCrawler(transport, SEARCH_URL, **kwargs)


class TestSearchForm(unittest.TestCase):
    def test_form_fields(self):
        form = search_form(3, 42)
        self.assertEqual(form["current_page"], "3")
        self.assertEqual(form["category"], "42")
        self.assertEqual(form["in_stock"], "false")
        self.assertEqual(form["is_RoHS"], "false")
        self.assertEqual(form["show_icon"], "false")
        self.assertEqual(form["search_content"], "")


class TestClassification(unittest.TestCase):
    def test_transient_kinds(self):
        for exc in (NetworkError("eof"), MalformedResponseError("x"), SoftBlockError()):
            self.assertIs(classify_page_error(exc), Verdict.TRANSIENT)

    def test_everything_else_is_fatal(self):
        for exc in (PayloadError("shape"), KeyError("k"), TransportError("t")):
            self.assertIs(classify_page_error(exc), Verdict.FATAL)


class TestSubCategoryCrawler(unittest.TestCase):
    """Verify pagination, soft-block retries and all-or-nothing output."""

    def test_soft_block_mid_crawl_retries_same_page(self):
        """A single soft block on page 2 costs one rotation and loses nothing."""
        transport = FakeTransport({
            (42, 1): [page([product(1), product(2)], last_page=3)],
            (42, 2): [blocked(), page([product(3)], last_page=3, current_page=2)],
            (42, 3): [page([product(4)], last_page=3, current_page=3)],
        })
        crawler = crawler_for(transport)
        batch = crawler.crawl(SubCategory(id=42, name="Resistors"))

        self.assertEqual([r.id for r in batch.records], [1, 2, 3, 4])
        self.assertEqual(transport.rotations, 1)
        self.assertEqual(batch.rotations, 1)
        self.assertEqual(transport.calls, [(42, 1), (42, 2), (42, 2), (42, 3)])
        self.assertEqual(crawler.state, CrawlState.DONE)
        self.assertEqual(batch.pages, 3)

    def test_record_count_is_sum_of_pages(self):
        """Every page's items are accumulated exactly once, in page order."""
        sizes = [3, 5, 1, 4]
        pages = {}
        pid = 0
        for n, size in enumerate(sizes, start=1):
            items = []
            for _ in range(size):
                pid += 1
                items.append(product(pid))
            pages[(7, n)] = [page(items, last_page=len(sizes), current_page=n)]
        transport = FakeTransport(pages)

        batch = crawler_for(transport).crawl(SubCategory(id=7))

        self.assertEqual(len(batch.records), sum(sizes))
        self.assertEqual([r.id for r in batch.records], list(range(1, pid + 1)))
        self.assertEqual(transport.rotations, 0)

    def test_page_blocked_until_ceiling_aborts_subcategory(self):
        """Exceeding the per-page ceiling raises and discards page 1's items."""
        transport = FakeTransport({
            (5, 1): [page([product(1, datasheet={"pdf": "https://x/1.pdf"})], last_page=3)],
            (5, 2): [blocked()],
        })
        crawler = crawler_for(transport, page_attempts=3)

        with self.assertRaises(SubcategoryFatalError) as ctx:
            crawler.crawl(SubCategory(id=5))

        self.assertEqual(ctx.exception.subcategory_id, 5)
        self.assertEqual(ctx.exception.page, 2)
        self.assertEqual(transport.calls.count((5, 2)), 3)
        self.assertEqual(transport.rotations, 2)
        self.assertNotIn((5, 3), transport.calls)
        self.assertEqual(crawler.state, CrawlState.ABORTED)

    def test_malformed_json_is_retried(self):
        transport = FakeTransport({
            (9, 1): ["<html>captcha</html>", page([product(1)], last_page=1)],
        })
        batch = crawler_for(transport).crawl(SubCategory(id=9))
        self.assertEqual(len(batch.records), 1)
        self.assertEqual(transport.rotations, 1)
        self.assertEqual(transport.acquires, 1)

    def test_network_error_is_retried(self):
        transport = FakeTransport({
            (9, 1): [NetworkError("EOF"), page([product(1)], last_page=1)],
        })
        batch = crawler_for(transport).crawl(SubCategory(id=9))
        self.assertEqual(len(batch.records), 1)

    def test_wrong_shape_is_fatal_without_rotation(self):
        """Valid JSON of the wrong shape is not worth a new identity."""
        transport = FakeTransport({(9, 1): ['{"success": true, "result": "nope"}']})
        with self.assertRaises(SubcategoryFatalError) as ctx:
            crawler_for(transport).crawl(SubCategory(id=9))
        self.assertIsInstance(ctx.exception.cause, PayloadError)
        self.assertEqual(transport.rotations, 0)
        self.assertEqual(len(transport.calls), 1)

    def test_success_without_page_is_fatal(self):
        transport = FakeTransport({(9, 1): [page([product(1)])]})
        with mock.patch(
            "catalog_crawler.crawler.SearchResponse.from_dict",
            return_value=SearchResponse(success=True),
        ):
            with self.assertRaises(SubcategoryFatalError) as ctx:
                crawler_for(transport).crawl(SubCategory(id=9))
        self.assertIsInstance(ctx.exception.cause, PayloadError)
        self.assertEqual(transport.rotations, 0)

    def test_rotation_failure_propagates_as_transport_error(self):
        transport = FakeTransport({(9, 1): [blocked()]}, fail_rotate=True)
        with self.assertRaises(TransportError):
            crawler_for(transport).crawl(SubCategory(id=9))

    def test_collects_unique_datasheets(self):
        transport = FakeTransport({
            (3, 1): [page([
                product(1, datasheet={"pdf": "https://x/a.pdf"}),
                product(2, datasheet={"pdf": "https://x/a.pdf"}),
                product(3, datasheet=[]),
                product(4, datasheet={"pdf": "https://x/b.pdf"}),
            ], last_page=1)],
        })
        batch = crawler_for(transport).crawl(SubCategory(id=3))
        self.assertEqual(batch.datasheets, frozenset({"https://x/a.pdf", "https://x/b.pdf"}))

    def test_empty_subcategory(self):
        transport = FakeTransport({(3, 1): [page([], last_page=0)]})
        batch = crawler_for(transport).crawl(SubCategory(id=3))
        self.assertEqual(batch.records, ())
        self.assertEqual(transport.calls, [(3, 1)])

    def test_stats_count_pages_and_rotations(self):
        stats = CrawlStats()
        transport = FakeTransport({
            (1, 1): [blocked(), page([product(1)], last_page=2)],
            (1, 2): [page([product(2)], last_page=2, current_page=2)],
        })
        crawler_for(transport, stats=stats).crawl(SubCategory(id=1))
        snap = stats.snapshot()
        self.assertEqual(snap.pages_fetched, 2)
        self.assertEqual(snap.rotations, 1)


if __name__ == "__main__":
    unittest.main()
