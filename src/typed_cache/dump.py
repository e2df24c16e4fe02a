"""Tool for dumping cache file contents to the console."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from typed_cache.cachefile import CacheBuffer, CacheFile, iter_rows
from typed_cache.descriptors import DescriptorStore, MemoryDescriptorStore, SqliteDescriptorStore
from typed_cache.errors import CacheError
from typed_cache.rows import Row
from typed_cache.values import Value, ValueKind

INDENT = "    "


def format_scalar(value: Value) -> str:
    """Format a scalar value for display."""
    if value.kind == ValueKind.NONE:
        return "None"
    if value.kind == ValueKind.BYTES:
        data = value.data
        if len(data) > 32:
            return f"<{len(data)} bytes: {data[:32].hex()}...>"
        return f"<{len(data)} bytes: {data.hex()}>"
    return repr(value.data)


def format_value(value: Value, depth: int = 0) -> list[str]:
    """Format a value tree as indented lines."""
    pad = INDENT * depth
    kind = value.kind
    if kind.is_scalar:
        return [f"{pad}{format_scalar(value)}"]
    if kind == ValueKind.SHARED_REF:
        return [f"{pad}<shared {value.data}>"]
    if kind.is_sequence:
        lines = [f"{pad}{kind.value} ({len(value.items)})"]
        for item in value.items:
            lines.extend(format_value(item, depth + 1))
        return lines
    if kind == ValueKind.DICT:
        lines = [f"{pad}dict ({len(value.data)})"]
        for key, item in value.data:
            lines.append(f"{pad}{INDENT}{format_scalar(key) if key.kind.is_scalar else '<key>'}:")
            if not key.kind.is_scalar:
                lines.extend(format_value(key, depth + 2))
            lines.extend(format_value(item, depth + 2))
        return lines
    if kind == ValueKind.OBJECT:
        row: Row = value.data
        lines = [f"{pad}row <{row.descriptor.name}>"]
        for column, field in zip(row.columns, row.fields):
            lines.append(f"{pad}{INDENT}{column.name}: {format_scalar(field)}")
        return lines

    instance = value.data
    lines = [f"{pad}instance <{instance.type_name or '?'}>"]
    lines.extend(format_value(instance.header, depth + 1))
    if instance.items:
        lines.append(f"{pad}{INDENT}items ({len(instance.items)})")
        for item in instance.items:
            lines.extend(format_value(item, depth + 2))
    if instance.entries:
        lines.append(f"{pad}{INDENT}entries ({len(instance.entries)})")
        for key, item in instance.entries:
            lines.extend(format_value(key, depth + 2))
            lines.extend(format_value(item, depth + 3))
    return lines


def to_json(value: Value) -> Any:
    """Convert a value to JSON-compatible data."""
    kind = value.kind
    if kind == ValueKind.BYTES:
        return {"bytes": value.data.hex()}
    if kind == ValueKind.INT and (value.data > 2**53 or value.data < -(2**53)):
        # Handle large integers for JSON
        return hex(value.data)
    if kind.is_scalar:
        return value.data
    if kind == ValueKind.SHARED_REF:
        return {"shared": value.data}
    if kind.is_sequence:
        return [to_json(v) for v in value.items]
    if kind == ValueKind.DICT:
        return {"dict": [[to_json(k), to_json(v)] for k, v in value.data]}
    if kind == ValueKind.OBJECT:
        return {"row": value.data.descriptor.name, "fields": row_to_json(value.data)}
    instance = value.data
    return {
        "instance": instance.type_name,
        "header": to_json(instance.header),
        "items": [to_json(v) for v in instance.items],
        "entries": [[to_json(k), to_json(v)] for k, v in instance.entries],
    }


def row_to_json(row: Row) -> dict[str, Any]:
    return {c.name: to_json(f) for c, f in zip(row.columns, row.fields)}


def dump_values(values: list[Value], as_json: bool = False) -> None:
    """Dump decoded top-level values."""
    if as_json:
        print(json.dumps({"count": len(values), "values": [to_json(v) for v in values]}, indent=2))
        return
    for i, value in enumerate(values):
        print(f"[{i}]")
        for line in format_value(value, 1):
            print(line)


def dump_rows(rows: list[Row], limit: int | None = None, as_json: bool = False) -> None:
    """Dump decoded rows."""
    count = len(rows)
    shown = rows[:limit] if limit else rows
    if as_json:
        records = [{"_index": i, **row_to_json(row)} for i, row in enumerate(shown)]
        print(json.dumps({"count": count, "records": records}, indent=2))
        return

    print(f"Rows: {count}")
    print()
    for i, row in enumerate(shown):
        print(f"[{i}] {row.descriptor.name}")
        for column, field in zip(row.columns, row.fields):
            print(f"    {column.name}: {format_scalar(field)}")
        print()
    if limit and count > limit:
        print(f"... ({count - limit} more rows)")


def load_descriptors(schema: Path | None, database: Path | None) -> DescriptorStore | None:
    if schema is not None:
        return MemoryDescriptorStore.from_file(schema)
    if database is not None:
        return SqliteDescriptorStore(database)
    return None


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Dump the decoded contents of a client cache file"
    )
    parser.add_argument(
        "cache_file",
        type=Path,
        help="Path to the cache file",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "-s", "--schema",
        type=Path,
        default=None,
        help="Descriptor schema file for named row descriptors",
    )
    source.add_argument(
        "-d", "--db",
        type=Path,
        default=None,
        help="SQLite descriptor database for named row descriptors",
    )
    parser.add_argument(
        "-r", "--rows",
        action="store_true",
        help="Show only the decoded rows",
    )
    parser.add_argument(
        "--refs",
        action="store_true",
        help="Show shared references instead of resolving them",
    )
    parser.add_argument(
        "-j", "--json",
        action="store_true",
        help="Output as JSON",
    )
    parser.add_argument(
        "-n", "--limit",
        type=int,
        default=None,
        help="Limit number of rows to display",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    try:
        descriptors = load_descriptors(args.schema, args.db)
        with CacheFile.open(args.cache_file) as cache_file:
            buffer = CacheBuffer.from_file(cache_file, descriptors, keep_refs=args.refs)
        values = buffer.decode_all()
    except (CacheError, OSError, SyntaxError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.rows:
        dump_rows(list(iter_rows(values)), args.limit, args.json)
    else:
        dump_values(values, args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
