from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Sequence

from .models import Blob
from .utils import format_seconds

COLUMNS = ("id", "type", "schema", "table", "size", "condition")
SEPARATOR_REGEX = re.compile(r"^-+(?:-\+--+)+$")
COMPLETION_REGEX = re.compile(
    r"^(?P<kind>\w+) dump \(#(?P<id>\d+)\) of (?P<name>.+) finished after (?P<seconds>[0-9.]+) seconds\.$"
)


def _planned_row(blob: Blob) -> tuple[str, ...]:
    return (
        str(blob.blob_id),
        blob.kind.value,
        blob.schema,
        blob.table,
        str(blob.size),
        blob.condition or "",
    )


def format_plan(blobs: Sequence[Blob]) -> list[str]:
    rows = [_planned_row(blob) for blob in blobs]
    widths = [len(name) for name in COLUMNS]
    for row in rows:
        for index, value in enumerate(row[:-1]):
            widths[index] = max(widths[index], len(value))

    def render(row: Sequence[str]) -> str:
        cells = [
            row[0].rjust(widths[0]),
            row[1].ljust(widths[1]),
            row[2].ljust(widths[2]),
            row[3].ljust(widths[3]),
            row[4].rjust(widths[4]),
            row[5],
        ]
        return " | ".join(cells).rstrip()

    lines = [render(COLUMNS)]
    lines.append("-+-".join("-" * width for width in widths[:-1]) + "-+-" + "-" * len(COLUMNS[-1]))
    lines.extend(render(row) for row in rows)
    return lines


def completion_line(blob: Blob, elapsed: float) -> str:
    return (
        f"{blob.kind.value} dump (#{blob.blob_id}) of {blob.schema}.{blob.table} "
        f"finished after {format_seconds(elapsed)} seconds."
    )


class Manifest:
    """Plan and completion lines for one run, flushed after every write.

    With ``truncate`` the first open starts a new file; later opens append.
    """

    def __init__(self, path: Path, truncate: bool = False) -> None:
        self.path = path
        self.truncate = truncate
        self.handle: IO[str] | None = None

    def _writer(self) -> IO[str]:
        if self.handle is None:
            mode = "w" if self.truncate else "a"
            self.handle = self.path.open(mode, encoding="utf-8")
            self.truncate = False
        return self.handle

    def open(self) -> "Manifest":
        self._writer()
        return self

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None

    def __enter__(self) -> "Manifest":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _append(self, lines: Sequence[str]) -> None:
        handle = self._writer()
        for line in lines:
            handle.write(line + "\n")
        handle.flush()

    def write_plan(self, blobs: Sequence[Blob]) -> None:
        self._append(format_plan(blobs))

    def record_completion(self, blob: Blob, elapsed: float) -> None:
        self._append([completion_line(blob, elapsed)])


@dataclass(slots=True)
class ManifestProgress:
    planned: dict[int, int] = field(default_factory=dict)
    finished: dict[int, float] = field(default_factory=dict)

    @property
    def planned_size(self) -> int:
        return sum(self.planned.values())

    @property
    def finished_size(self) -> int:
        return sum(self.planned.get(blob_id, 0) for blob_id in self.finished)

    @property
    def pending_ids(self) -> list[int]:
        return sorted(set(self.planned) - set(self.finished))


def _column_spans(separator: str) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    start = 0
    for dashes in separator.split("-+-"):
        spans.append((start, start + len(dashes)))
        start += len(dashes) + 3
    return spans


def read_progress(path: Path) -> ManifestProgress:
    """Planned sizes and finished ids of the last plan written to ``path``.

    Plan rows are cut at the column positions of the separator line, so names
    and conditions containing ``|`` do not shift the cells.
    """
    progress = ManifestProgress()
    spans: list[tuple[int, int]] | None = None
    with path.open("r", encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    for line in lines:
        if SEPARATOR_REGEX.match(line):
            progress = ManifestProgress()
            spans = _column_spans(line)
            continue
        match = COMPLETION_REGEX.match(line)
        if match:
            progress.finished[int(match.group("id"))] = float(match.group("seconds"))
            continue
        if spans is None or len(spans) < 5:
            continue
        blob_id = line[spans[0][0] : spans[0][1]].strip()
        size = line[spans[4][0] : spans[4][1]].strip()
        if blob_id.isdigit() and size.isdigit():
            progress.planned[int(blob_id)] = int(size)
    return progress
