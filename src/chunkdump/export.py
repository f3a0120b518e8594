from __future__ import annotations

import shlex
from pathlib import Path

from .models import Blob, BlobType
from .tools import ToolRunner
from .utils import escape_segment

RANGE_SETUP_SQL = "SET enable_seqscan = off"


def output_filename(schema: str, table: str, blob_id: int) -> str:
    return ".".join(["data", escape_segment(schema), escape_segment(table), str(blob_id), "dump"])


def blob_filename(blob: Blob) -> str:
    if blob.blob_id is None:
        raise ValueError(f"blob for {blob.qualified_name} has not been scheduled")
    return output_filename(blob.schema, blob.table, blob.blob_id)


def export_statements(blob: Blob) -> list[str]:
    if blob.kind is BlobType.WHOLE:
        return [f"COPY (SELECT * FROM ONLY {blob.qualified_name}) TO STDOUT"]
    return [
        RANGE_SETUP_SQL,
        f"COPY (SELECT * FROM ONLY {blob.qualified_name} WHERE {blob.condition}) TO STDOUT",
    ]


class ExportCommandBuilder:
    def __init__(self, runner: ToolRunner, output_dir: Path, compressor: str | None = None) -> None:
        self.runner = runner
        self.output_dir = output_dir
        self.compressor = compressor

    def output_path(self, blob: Blob) -> Path:
        return self.output_dir / blob_filename(blob)

    def pipeline(self, blob: Blob) -> str:
        export_cmd = list(self.runner.psql_base())
        for statement in export_statements(blob):
            export_cmd.extend(["-c", statement])
        stages = [shlex.join(export_cmd)]
        if self.compressor:
            stages.append(shlex.join([self.compressor, "-c"]))
        return " | ".join(stages) + f" > {shlex.quote(str(self.output_path(blob)))}"

    def __call__(self, blob: Blob) -> list[str]:
        return ["bash", "-c", f"set -euo pipefail; {self.pipeline(blob)}"]
