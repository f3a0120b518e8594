from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from chunkdump.manifest import Manifest, completion_line, read_progress
from chunkdump.models import RangeBlob, WholeBlob
from chunkdump.scheduler import schedule


class ManifestTest(unittest.TestCase):
    def test_completion_line(self) -> None:
        blob = WholeBlob(schema="public", table="orders", qualified_name="public.orders", size=10, blob_id=4)
        self.assertEqual(
            completion_line(blob, 1.5),
            "whole dump (#4) of public.orders finished after 1.500 seconds.",
        )

    def test_progress_tracks_completions(self) -> None:
        blobs = schedule(
            [
                WholeBlob(schema="public", table="orders", qualified_name="public.orders", size=300),
                RangeBlob(schema="public", table="big", qualified_name="public.big", size=900, where="id <= 1"),
                RangeBlob(schema="public", table="big", qualified_name="public.big", size=0, part=1, where="id > 1"),
            ]
        )
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "index.lst"
            with Manifest(path) as manifest:
                manifest.write_plan(blobs)
                manifest.record_completion(blobs[1], 0.25)
            with Manifest(path) as manifest:
                manifest.record_completion(blobs[0], 2.0)

            progress = read_progress(path)
            self.assertEqual(progress.planned, {0: 900, 1: 300, 2: 0})
            self.assertEqual(progress.finished, {1: 0.25, 0: 2.0})
            self.assertEqual(progress.finished_size, 1200)
            self.assertEqual(progress.pending_ids, [2])

            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(lines[-2], "whole dump (#1) of public.orders finished after 0.250 seconds.")
            self.assertEqual(lines[-1], "range dump (#0) of public.big finished after 2.000 seconds.")

    def test_whole_blob_rows_are_planned(self) -> None:
        blobs = schedule(
            [
                WholeBlob(schema="public", table="a", qualified_name="public.a", size=10),
                WholeBlob(schema="public", table="b|c", qualified_name='public."b|c"', size=7),
                WholeBlob(schema="a | b", table="d", qualified_name='"a | b".d', size=3),
            ]
        )
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "index.lst"
            with Manifest(path) as manifest:
                manifest.write_plan(blobs)
            progress = read_progress(path)
        self.assertEqual(progress.planned, {0: 10, 1: 7, 2: 3})
        self.assertEqual(progress.planned_size, 20)

    def test_truncate_drops_the_previous_run(self) -> None:
        first = schedule([WholeBlob(schema="public", table="a", qualified_name="public.a", size=10)])
        second = schedule(
            [
                WholeBlob(schema="public", table="x", qualified_name="public.x", size=3),
                WholeBlob(schema="public", table="y", qualified_name="public.y", size=2),
            ]
        )
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "index.lst"
            with Manifest(path) as manifest:
                manifest.write_plan(first)
                manifest.record_completion(first[0], 1.0)
            with Manifest(path, truncate=True) as manifest:
                manifest.write_plan(second)
            with Manifest(path, truncate=True) as manifest:
                manifest.record_completion(second[1], 0.5)
                manifest.record_completion(second[0], 0.5)

            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            self.assertTrue(all("finished after" in line for line in lines))

    def test_only_the_latest_plan_counts(self) -> None:
        first = schedule(
            [
                WholeBlob(schema="public", table="a", qualified_name="public.a", size=10),
                WholeBlob(schema="public", table="b", qualified_name="public.b", size=5),
            ]
        )
        second = schedule(
            [
                WholeBlob(schema="public", table="a", qualified_name="public.a", size=12),
                WholeBlob(schema="public", table="b", qualified_name="public.b", size=6),
                WholeBlob(schema="public", table="c", qualified_name="public.c", size=1),
            ]
        )
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "index.lst"
            with Manifest(path) as manifest:
                manifest.write_plan(first)
                for blob in first:
                    manifest.record_completion(blob, 1.0)
                manifest.write_plan(second)
                manifest.record_completion(second[2], 0.1)
            progress = read_progress(path)
        self.assertEqual(progress.planned, {0: 12, 1: 6, 2: 1})
        self.assertEqual(progress.finished, {2: 0.1})
        self.assertEqual(progress.pending_ids, [0, 1])


if __name__ == "__main__":
    unittest.main()
