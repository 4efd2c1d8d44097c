"""Tests for category tree extraction and the one-shot fetcher."""

import unittest

from catalog_crawler.categories import CATEGORY_MARKER, CategoryFetcher, parse_category_tree, subcategories
from catalog_crawler.errors import NetworkError, RetriesExhausted, SchemaDriftError

from fakes import category_page

TREE = [
    {
        "id": 1,
        "name": "Resistors",
        "url": "/products/resistors",
        "subs": [
            {"id": 11, "name": "Chip Resistor", "url": "/c/11", "product_num": 1200},
            {"id": 12, "name": "Network", "url": "/c/12", "product_num": 30},
        ],
    },
    {"ID": 2, "Name": "Capacitors", "URL": "/products/caps", "Subs": [{"ID": 21, "Name": "MLCC"}]},
]


def products_page(tree=TREE, marker=CATEGORY_MARKER):
    return category_page(tree, marker)


class ScriptedTransport:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = 0
        self.rotations = 0

    def get_text(self, url):
        self.requests += 1
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def rotate(self):
        self.rotations += 1


class TestParseCategoryTree(unittest.TestCase):
    def test_parses_tree_in_order(self):
        categories = parse_category_tree(products_page())
        self.assertEqual([c.id for c in categories], [1, 2])
        self.assertEqual([s.id for s in categories[0].subs], [11, 12])
        self.assertEqual(categories[0].subs[0].product_num, 1200)
        self.assertEqual(categories[1].name, "Capacitors")
        self.assertEqual(categories[1].subs[0].name, "MLCC")

    def test_flatten_keeps_tree_order(self):
        subs = subcategories(parse_category_tree(products_page()))
        self.assertEqual([s.id for s in subs], [11, 12, 21])

    def test_flatten_keeps_first_of_repeated_ids(self):
        tree = TREE + [{"id": 3, "name": "Misc", "subs": [{"id": 11, "name": "Chip again"}, {"id": 31}]}]
        subs = subcategories(parse_category_tree(products_page(tree=tree)))
        self.assertEqual([s.id for s in subs], [11, 12, 21, 31])
        self.assertEqual(subs[0].name, "Chip Resistor")

    def test_missing_marker_is_schema_drift(self):
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(products_page(marker="something else"))

    def test_marker_on_last_line(self):
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(f"<html>\n// {CATEGORY_MARKER}")

    def test_unquoted_literal_is_schema_drift(self):
        html = f"// {CATEGORY_MARKER}\nvar categories = [];"
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(html)

    def test_invalid_json_is_schema_drift(self):
        html = f"// {CATEGORY_MARKER}\nvar categories = JSON.parse('[{{broken');"
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(html)

    def test_non_array_is_schema_drift(self):
        html = f"// {CATEGORY_MARKER}\nvar categories = JSON.parse('{{\"id\": 1}}');"
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(html)

    def test_entry_without_id_is_schema_drift(self):
        with self.assertRaises(SchemaDriftError):
            parse_category_tree(products_page(tree=[{"name": "no id"}]))


class TestCategoryFetcher(unittest.TestCase):
    def test_retries_network_errors_without_rotating(self):
        transport = ScriptedTransport([NetworkError("EOF"), products_page()])
        categories = CategoryFetcher(transport, "https://example.test/products").fetch()
        self.assertEqual(len(categories), 2)
        self.assertEqual(transport.requests, 2)
        self.assertEqual(transport.rotations, 0)

    def test_schema_drift_is_not_retried(self):
        transport = ScriptedTransport(["<html>redesigned</html>"])
        with self.assertRaises(SchemaDriftError):
            CategoryFetcher(transport, "https://example.test/products").fetch()
        self.assertEqual(transport.requests, 1)

    def test_gives_up_after_max_attempts(self):
        transport = ScriptedTransport([NetworkError("down")])
        with self.assertRaises(RetriesExhausted):
            CategoryFetcher(transport, "https://example.test/products", max_attempts=2).fetch()
        self.assertEqual(transport.requests, 2)


if __name__ == "__main__":
    unittest.main()
