from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from .app_logging import log_with_fields
from .models import TableDescriptor
from .tools import ToolRunner
from .utils import qualified_name

SIZE_QUERY = """
SELECT n.nspname,
       c.relname,
       format('%I.%I', n.nspname, c.relname),
       c.oid,
       (pg_relation_size(c.oid)
        + CASE WHEN c.reltoastrelid <> 0 THEN pg_total_relation_size(c.reltoastrelid) ELSE 0 END
       ) / 1024
FROM pg_catalog.pg_class c
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind IN ('r', 'p')
""".strip()

Catalog = dict[str, dict[str, TableDescriptor]]


class EmptyCatalogError(RuntimeError):
    pass


def build_catalog(listing: Iterable[tuple[str, str]], size_rows: Iterable[Sequence[str]]) -> Catalog:
    catalog: Catalog = {}
    for schema, table in listing:
        catalog.setdefault(schema, {})[table] = TableDescriptor(
            schema=schema,
            table=table,
            qualified_name=qualified_name(schema, table),
            oid=0,
            size=0,
        )
    if not catalog:
        raise EmptyCatalogError("no tables found to back up")

    for row in size_rows:
        if len(row) < 5:
            continue
        schema, table, qualified, oid, size = row[:5]
        descriptor = catalog.get(schema, {}).get(table)
        if descriptor is None:
            continue
        descriptor.qualified_name = qualified
        descriptor.oid = int(oid)
        descriptor.size = int(size)
    return catalog


def iter_tables(catalog: Catalog) -> list[TableDescriptor]:
    return [catalog[schema][table] for schema in sorted(catalog) for table in sorted(catalog[schema])]


def collect_catalog(runner: ToolRunner, schema_dump: Path, logger: logging.Logger) -> Catalog:
    runner.dump_schema(schema_dump)
    listing = runner.list_tables(schema_dump)
    size_rows = runner.query(SIZE_QUERY) if listing else []
    catalog = build_catalog(listing, size_rows)
    tables = iter_tables(catalog)
    log_with_fields(
        logger,
        logging.INFO,
        "catalog_built",
        schemas=len(catalog),
        tables=len(tables),
        total_size_kb=sum(table.size for table in tables),
    )
    return catalog
