from __future__ import annotations

import re
import subprocess
from pathlib import Path

from .config import DatabaseConfig, ToolsConfig

FIELD_SEPARATOR = "\t"
LISTING_TABLE_REGEX = re.compile(r"^\d+;\s+\d+\s+\d+\s+TABLE\s+(?!DATA\s)(.+)$")


class ExternalToolError(RuntimeError):
    def __init__(self, context: str, output: str = "", returncode: int | None = None) -> None:
        self.context = context
        self.output = output
        self.returncode = returncode
        detail = output or (f"exit code {returncode}" if returncode is not None else "no output")
        super().__init__(f"{context} failed: {detail}")


def split_rows(text: str) -> list[list[str]]:
    return [line.split(FIELD_SEPARATOR) for line in text.splitlines() if line]


def parse_table_listing(text: str) -> list[tuple[str, str]]:
    tables: list[tuple[str, str]] = []
    for line in text.splitlines():
        if not line or line.startswith(";"):
            continue
        match = LISTING_TABLE_REGEX.match(line)
        if not match:
            continue
        # "<schema> <table> <owner>"; owner is dropped
        rest = match.group(1).rsplit(" ", 1)[0]
        schema, _, table = rest.partition(" ")
        if schema and table:
            tables.append((schema, table))
    return tables


class ToolRunner:
    def __init__(self, tools: ToolsConfig, database: DatabaseConfig) -> None:
        self.tools = tools
        self.database = database
        self.connection_args = database.connection_args()

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise ExternalToolError(f"spawn {cmd[0]}", str(exc)) from exc

    def _require_ok(self, process: subprocess.CompletedProcess[str], context: str) -> None:
        if process.returncode != 0:
            stderr = process.stderr.strip()
            stdout = process.stdout.strip()
            output = stderr if stderr else stdout
            raise ExternalToolError(context, output, process.returncode)

    def psql_base(self) -> list[str]:
        return [
            self.tools.psql,
            "-qAtX",
            "-v",
            "ON_ERROR_STOP=1",
            *self.connection_args,
        ]

    def query(self, sql: str) -> list[list[str]]:
        cmd = [*self.psql_base(), "-F", FIELD_SEPARATOR, "-c", sql]
        process = self._run(cmd)
        self._require_ok(process, "query")
        return split_rows(process.stdout)

    def dump_schema(self, destination: Path) -> Path:
        cmd = [
            self.tools.pg_dump,
            "--schema-only",
            "--format=custom",
            "--file",
            str(destination),
            *self.connection_args,
        ]
        process = self._run(cmd)
        self._require_ok(process, "schema dump")
        return destination

    def list_tables(self, schema_dump: Path) -> list[tuple[str, str]]:
        process = self._run([self.tools.pg_restore, "-l", str(schema_dump)])
        self._require_ok(process, f"list tables in {schema_dump}")
        return parse_table_listing(process.stdout)
