from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import logging
import unittest

from chunkdump.catalog import EmptyCatalogError, build_catalog, collect_catalog, iter_tables
from chunkdump.tools import parse_table_listing, split_rows

LISTING = """
;
; Archive created at 2026-10-19 10:00:00 UTC
;     dbname: shop
;
215; 1259 16386 TABLE public orders postgres
216; 1259 16390 TABLE public customers postgres
217; 1259 16394 TABLE audit events app_owner
3001; 0 16386 TABLE DATA public orders postgres
218; 1259 16398 SEQUENCE public orders_id_seq postgres
"""


class FakeCatalogRunner:
    def __init__(self, listing: str, size_output: str) -> None:
        self.listing = listing
        self.size_output = size_output
        self.dumped_to: Path | None = None

    def dump_schema(self, destination: Path) -> Path:
        destination.write_bytes(b"PGDMP")
        self.dumped_to = destination
        return destination

    def list_tables(self, schema_dump: Path) -> list[tuple[str, str]]:
        return parse_table_listing(self.listing)

    def query(self, sql: str) -> list[list[str]]:
        return split_rows(self.size_output)


class CatalogTest(unittest.TestCase):
    def test_parse_table_listing(self) -> None:
        self.assertEqual(
            parse_table_listing(LISTING),
            [("public", "orders"), ("public", "customers"), ("audit", "events")],
        )

    def test_split_rows_drops_empty_lines(self) -> None:
        self.assertEqual(split_rows("a\tb\n\nc\t\n"), [["a", "b"], ["c", ""]])

    def test_build_catalog_defaults_missing_sizes_to_zero(self) -> None:
        catalog = build_catalog(
            [("public", "orders"), ("public", "customers")],
            [
                ["public", "orders", "public.orders", "16386", "20000"],
                ["public", "unlisted", "public.unlisted", "16400", "99"],
            ],
        )
        self.assertEqual(sorted(catalog), ["public"])
        orders = catalog["public"]["orders"]
        self.assertEqual(orders.size, 20000)
        self.assertEqual(orders.oid, 16386)
        self.assertEqual(orders.qualified_name, "public.orders")
        customers = catalog["public"]["customers"]
        self.assertEqual(customers.size, 0)
        self.assertEqual(customers.qualified_name, '"public"."customers"')
        self.assertNotIn("unlisted", catalog["public"])

    def test_empty_listing_is_an_error(self) -> None:
        with self.assertRaises(EmptyCatalogError):
            build_catalog([], [["public", "orders", "public.orders", "1", "1"]])

    def test_collect_catalog(self) -> None:
        with TemporaryDirectory() as temp_dir:
            runner = FakeCatalogRunner(
                LISTING,
                "public\torders\tpublic.orders\t16386\t20000\n"
                "public\tcustomers\tpublic.customers\t16390\t12\n"
                "audit\tevents\taudit.events\t16394\t300\n",
            )
            logger = logging.getLogger("test_chunkdump_catalog")
            logger.addHandler(logging.NullHandler())
            logger.propagate = False
            schema_dump = Path(temp_dir) / "schema.dump"
            catalog = collect_catalog(runner, schema_dump, logger)  # type: ignore[arg-type]
            self.assertEqual(runner.dumped_to, schema_dump)
            self.assertEqual(
                [table.qualified_name for table in iter_tables(catalog)],
                ["audit.events", "public.customers", "public.orders"],
            )


if __name__ == "__main__":
    unittest.main()
