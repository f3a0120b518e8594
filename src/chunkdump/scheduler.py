from __future__ import annotations

import dataclasses
from typing import Iterable

from .manifest import Manifest
from .models import Blob


def schedule_key(blob: Blob) -> tuple[int, str, str, str, int]:
    return (-blob.size, blob.table, blob.schema, blob.kind.value, blob.part)


def schedule(blobs: Iterable[Blob], manifest: Manifest | None = None) -> list[Blob]:
    ordered = sorted(blobs, key=schedule_key)
    scheduled = [dataclasses.replace(blob, blob_id=index) for index, blob in enumerate(ordered)]
    if manifest is not None:
        manifest.write_plan(scheduled)
    return scheduled
