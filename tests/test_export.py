from __future__ import annotations

from pathlib import Path
import itertools
import re
import shlex
import unittest

from chunkdump.config import DatabaseConfig, ToolsConfig
from chunkdump.export import ExportCommandBuilder, blob_filename, export_statements, output_filename
from chunkdump.models import RangeBlob, WholeBlob
from chunkdump.tools import ToolRunner


class OutputFilenameTest(unittest.TestCase):
    def test_plain_names(self) -> None:
        self.assertEqual(output_filename("public", "orders", 12), "data.public.orders.12.dump")

    def test_escaped_names(self) -> None:
        self.assertEqual(output_filename("my.schema", "order_items", 0), "data.my_2eschema.order_5fitems.0.dump")
        self.assertRegex(output_filename("ünï cödé", "t/a\\b;le", 3), re.compile(r"^[A-Za-z0-9._]+$"))

    def test_injective_on_tricky_names(self) -> None:
        names = ["a", "a.b", "a_2eb", "a b", "a_20b", "_", "__", "é", "e", "a.", ".a"]
        seen: dict[str, tuple[str, str, int]] = {}
        for schema, table, blob_id in itertools.product(names, names, (1, 12)):
            filename = output_filename(schema, table, blob_id)
            self.assertNotIn(filename, seen, f"{(schema, table, blob_id)} collides with {seen.get(filename)}")
            seen[filename] = (schema, table, blob_id)

    def test_unscheduled_blob_has_no_filename(self) -> None:
        blob = WholeBlob(schema="public", table="t", qualified_name="public.t", size=1)
        with self.assertRaises(ValueError):
            blob_filename(blob)


class ExportCommandTest(unittest.TestCase):
    def setUp(self) -> None:
        self.runner = ToolRunner(
            ToolsConfig(pg_dump="/opt/pg/bin/pg_dump", pg_restore="/opt/pg/bin/pg_restore", psql="/opt/pg/bin/psql"),
            DatabaseConfig(dbname="shop"),
        )
        self.whole = WholeBlob(schema="public", table="orders", qualified_name="public.orders", size=1, blob_id=3)
        self.ranged = RangeBlob(
            schema="public",
            table="big",
            qualified_name="public.big",
            size=1,
            blob_id=0,
            where="\"id\" > '100'::integer AND \"id\" <= '500'::integer",
        )

    def test_export_statements(self) -> None:
        self.assertEqual(export_statements(self.whole), ["COPY (SELECT * FROM ONLY public.orders) TO STDOUT"])
        self.assertEqual(
            export_statements(self.ranged),
            [
                "SET enable_seqscan = off",
                "COPY (SELECT * FROM ONLY public.big WHERE \"id\" > '100'::integer AND \"id\" <= '500'::integer) TO STDOUT",
            ],
        )

    def test_command_without_compressor(self) -> None:
        builder = ExportCommandBuilder(self.runner, Path("/backup"))
        cmd = builder(self.whole)
        self.assertEqual(cmd[:2], ["bash", "-c"])
        self.assertTrue(cmd[2].startswith("set -euo pipefail; "))
        self.assertTrue(cmd[2].endswith("> /backup/data.public.orders.3.dump"))
        self.assertNotIn(" | ", cmd[2])
        export_words = shlex.split(cmd[2].split("; ", 1)[1].rsplit(" > ", 1)[0])
        self.assertEqual(
            export_words,
            [
                "/opt/pg/bin/psql",
                "-qAtX",
                "-v",
                "ON_ERROR_STOP=1",
                "-d",
                "shop",
                "-c",
                "COPY (SELECT * FROM ONLY public.orders) TO STDOUT",
            ],
        )

    def test_command_with_compressor(self) -> None:
        builder = ExportCommandBuilder(self.runner, Path("/backup"), compressor="/usr/bin/gzip")
        pipeline = builder.pipeline(self.ranged)
        export_stage, compress_stage = pipeline.split(" | ")
        self.assertEqual(compress_stage, "/usr/bin/gzip -c > /backup/data.public.big.0.dump")
        words = shlex.split(export_stage)
        self.assertIn("SET enable_seqscan = off", words)
        self.assertLess(words.index("SET enable_seqscan = off"), words.index(export_statements(self.ranged)[1]))


if __name__ == "__main__":
    unittest.main()
