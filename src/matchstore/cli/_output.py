"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import math
import sys
from typing import Any


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return "NaN" if math.isnan(value) else f"{value:g}"
    return str(value)


def _json_default(value: Any) -> Any:
    return str(value)


def _json_safe(value: Any) -> Any:
    # json.dumps would write a bare NaN token
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print data as a table (text) or JSON array."""
    if json_mode:
        data = [dict(zip(headers, row)) for row in rows]
        print(json.dumps(_json_safe(data), indent=2, default=_json_default))
        return

    if not rows:
        return

    widths = [len(h) for h in headers]
    str_rows = [[format_cell(v) for v in row] for row in rows]
    for row in str_rows:
        for i, val in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) if i < len(widths) else val for i, val in enumerate(row)))


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print a single object as JSON or key-value pairs."""
    if json_mode:
        print(json.dumps(_json_safe(data), indent=2, default=_json_default))
        return

    for k, v in data.items():
        if isinstance(v, dict):
            print(f"{k}:")
            for sub_k, sub_v in v.items():
                print(f"  {sub_k}: {format_cell(sub_v)}")
        else:
            print(f"{k}: {format_cell(v)}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
