from __future__ import annotations

import re

SAFE_SEGMENT_REGEX = re.compile(rb"[A-Za-z0-9]")


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def typed_literal(value: str, sql_type: str) -> str:
    return f"{quote_literal(value)}::{sql_type}"


def qualified_name(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


def escape_segment(text: str) -> str:
    output: list[str] = []
    for byte in text.encode("utf-8"):
        char = bytes([byte])
        if SAFE_SEGMENT_REGEX.fullmatch(char):
            output.append(char.decode("ascii"))
        else:
            output.append(f"_{byte:02x}")
    return "".join(output)


def format_seconds(seconds: float) -> str:
    return f"{seconds:.3f}"
