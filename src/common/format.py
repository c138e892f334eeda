from __future__ import annotations

import math
from typing import Any, List, Optional, Sequence


def mask_phone(phone: str) -> str:
    if len(phone) < 5:
        return phone
    return f"{phone[:3]}****{phone[-2:]}"


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render a plain left-aligned table with a dashed header rule."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row[: len(widths)]):
            widths[i] = max(widths[i], len(cell))

    def fmt(cols: Sequence[str]) -> str:
        cells = [(cols[i] if i < len(cols) else "").ljust(w) for i, w in enumerate(widths)]
        return "  ".join(cells).rstrip()

    lines: List[str] = [fmt(headers), "  ".join("-" * w for w in widths)]
    lines.extend(fmt(row) for row in rows)
    return "\n".join(lines)


def to_num(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            n = float(value)
        except ValueError:
            return None
        return n if math.isfinite(n) else None
    return None


__all__ = ["format_table", "mask_phone", "to_num"]
