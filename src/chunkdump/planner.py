"""Split oversized tables into primary-key ranges using planner statistics.

Small tables become a single whole-table blob. Tables above the threshold get
their single-column primary key looked up, then the sampled values from
``pg_stats`` (most common values with their frequencies, plus histogram
bounds without one) are turned into consecutive ranges:

    key <= v0, v0 < key <= v1, ..., v(N-2) < key <= v(N-1), key > v(N-1)

Range sizes come from the value's frequency when there is one. Histogram
bounds have none; the rows between two bounds are estimated as an equal share
``size / (N - 1)`` of the table, the range below the first value as empty and
the range above the last value as empty.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .app_logging import log_with_fields
from .catalog import Catalog, iter_tables
from .models import Blob, PartitionValue, RangeBlob, TableDescriptor, WholeBlob
from .tools import ToolRunner
from .utils import quote_ident, quote_literal, typed_literal

PRIMARY_KEY_QUERY = """
SELECT i.indrelid,
       a.attname,
       pg_catalog.format_type(a.atttypid, a.atttypmod),
       CASE WHEN a.attcollation <> 0 THEN format('%I.%I', cn.nspname, c.collname) ELSE '' END
FROM pg_catalog.pg_index i
JOIN pg_catalog.pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = i.indkey[0]
LEFT JOIN pg_catalog.pg_collation c ON c.oid = a.attcollation
LEFT JOIN pg_catalog.pg_namespace cn ON cn.oid = c.collnamespace
WHERE i.indisprimary
  AND i.indnatts = 1
  AND i.indrelid IN ({oids})
""".strip()

# Values are ordered and deduplicated as the key type (and the key column's
# collation), never as their text rendering.
STATISTICS_QUERY = """
WITH s AS (
    SELECT most_common_vals::text::{pk_type}[] AS mcv,
           most_common_freqs AS mcf,
           histogram_bounds::text::{pk_type}[] AS hist
    FROM pg_catalog.pg_stats
    WHERE schemaname = {schema}
      AND tablename = {table}
      AND attname = {column}
), v AS (
    SELECT m.value, m.freq
    FROM s, unnest(s.mcv, s.mcf) AS m(value, freq)
    UNION ALL
    SELECT h.value, NULL::real
    FROM s, unnest(s.hist) AS h(value)
)
SELECT DISTINCT ON (v.value{collate}) v.value::text AS value_text, v.freq
FROM v
WHERE v.value IS NOT NULL
ORDER BY v.value{collate}, v.freq NULLS LAST
""".strip()


def parse_selectivity(text: str) -> float | None:
    if text == "":
        return None
    return float(text)


PrimaryKey = tuple[str, str, str | None]


def fetch_primary_keys(runner: ToolRunner, tables: Sequence[TableDescriptor]) -> dict[int, PrimaryKey]:
    oids = [table.oid for table in tables if table.oid]
    if not oids:
        return {}
    rows = runner.query(PRIMARY_KEY_QUERY.format(oids=", ".join(str(oid) for oid in oids)))
    keys: dict[int, PrimaryKey] = {}
    for row in rows:
        if len(row) < 3:
            continue
        collation = row[3] if len(row) > 3 and row[3] else None
        keys[int(row[0])] = (row[1], row[2], collation)
    return keys


def fetch_partition_values(runner: ToolRunner, table: TableDescriptor) -> list[PartitionValue]:
    if table.pk_column is None or table.pk_type is None:
        raise ValueError(f"{table.qualified_name} has no primary key to sample")
    sql = STATISTICS_QUERY.format(
        pk_type=table.pk_type,
        collate=f" COLLATE {table.pk_collation}" if table.pk_collation else "",
        schema=quote_literal(table.schema),
        table=quote_literal(table.table),
        column=quote_literal(table.pk_column),
    )
    values: list[PartitionValue] = []
    for row in runner.query(sql):
        selectivity = parse_selectivity(row[1]) if len(row) > 1 else None
        values.append(PartitionValue(value=row[0], selectivity=selectivity))
    return values


def whole_blob(table: TableDescriptor) -> WholeBlob:
    return WholeBlob(
        schema=table.schema,
        table=table.table,
        qualified_name=table.qualified_name,
        size=table.size,
    )


def build_range_blobs(table: TableDescriptor) -> list[Blob]:
    if table.pk_column is None or table.pk_type is None:
        raise ValueError(f"{table.qualified_name} has no primary key to split on")
    values = table.partition_values
    if not values:
        raise ValueError(f"{table.qualified_name} has no partition values")

    key = quote_ident(table.pk_column)
    literals = [typed_literal(item.value, table.pk_type) for item in values]
    count = len(values)
    blobs: list[Blob] = []

    for index, item in enumerate(values):
        if index == 0:
            condition = f"{key} <= {literals[0]}"
            if item.selectivity is None:
                size = 0.0
            else:
                size = table.size * item.selectivity
        else:
            condition = f"{key} > {literals[index - 1]} AND {key} <= {literals[index]}"
            if item.selectivity is None:
                size = table.size / (count - 1)
            else:
                size = table.size * item.selectivity
        blobs.append(
            RangeBlob(
                schema=table.schema,
                table=table.table,
                qualified_name=table.qualified_name,
                size=round(size),
                part=index,
                where=condition,
            )
        )

    blobs.append(
        RangeBlob(
            schema=table.schema,
            table=table.table,
            qualified_name=table.qualified_name,
            size=0,
            part=count,
            where=f"{key} > {literals[-1]}",
        )
    )
    return blobs


def plan_blobs(catalog: Catalog, threshold_kb: int, runner: ToolRunner, logger: logging.Logger) -> list[Blob]:
    blobs: list[Blob] = []
    candidates: list[TableDescriptor] = []
    for table in iter_tables(catalog):
        if table.size <= threshold_kb:
            blobs.append(whole_blob(table))
            log_with_fields(logger, logging.DEBUG, "table_whole", table=table.qualified_name, size_kb=table.size)
        else:
            candidates.append(table)

    primary_keys = fetch_primary_keys(runner, candidates)
    for table in candidates:
        key = primary_keys.get(table.oid)
        if key is None:
            log_with_fields(
                logger,
                logging.INFO,
                "split_fallback",
                table=table.qualified_name,
                size_kb=table.size,
                reason="no single-column primary key",
            )
            blobs.append(whole_blob(table))
            continue

        table.pk_column, table.pk_type, table.pk_collation = key
        table.partition_values = fetch_partition_values(runner, table)
        if not table.partition_values:
            log_with_fields(
                logger,
                logging.INFO,
                "split_fallback",
                table=table.qualified_name,
                size_kb=table.size,
                reason="no statistics for primary key",
            )
            blobs.append(whole_blob(table))
            continue

        ranges = build_range_blobs(table)
        table.partition_values = []
        log_with_fields(
            logger,
            logging.INFO,
            "table_split",
            table=table.qualified_name,
            size_kb=table.size,
            key=table.pk_column,
            blobs=len(ranges),
        )
        blobs.extend(ranges)
    return blobs
