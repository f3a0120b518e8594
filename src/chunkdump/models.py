from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, ClassVar


class BlobType(str, Enum):
    WHOLE = "whole"
    RANGE = "range"


@dataclass(slots=True, frozen=True)
class PartitionValue:
    value: str
    selectivity: float | None = None


@dataclass(slots=True)
class TableDescriptor:
    schema: str
    table: str
    qualified_name: str
    oid: int
    size: int
    pk_column: str | None = None
    pk_type: str | None = None
    pk_collation: str | None = None
    partition_values: list[PartitionValue] = field(default_factory=list)


@dataclass(slots=True, frozen=True, kw_only=True)
class Blob:
    kind: ClassVar[BlobType]

    schema: str
    table: str
    qualified_name: str
    size: int
    part: int = 0
    blob_id: int | None = None

    @property
    def condition(self) -> str | None:
        return None


@dataclass(slots=True, frozen=True, kw_only=True)
class WholeBlob(Blob):
    kind: ClassVar[BlobType] = BlobType.WHOLE


@dataclass(slots=True, frozen=True, kw_only=True)
class RangeBlob(Blob):
    kind: ClassVar[BlobType] = BlobType.RANGE

    where: str

    @property
    def condition(self) -> str | None:
        return self.where


@dataclass(slots=True)
class RunningTask:
    process: subprocess.Popen
    blob: Blob
    started_at: float
    stderr: IO[bytes]


@dataclass(slots=True, frozen=True)
class CompletionEvent:
    pid: int
    returncode: int
    finished_at: float
