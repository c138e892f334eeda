from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .regions import RegionProfile


logger = structlog.get_logger(__name__)

_FIELD_KINDS: Dict[str, type] = {
    name: (field.annotation if isinstance(field.annotation, type) else str)
    for name, field in RegionProfile.model_fields.items()
    if name != "code"
}
_ALIASES: Dict[str, str] = {
    (field.alias or name): name for name, field in RegionProfile.model_fields.items()
}


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value:
        try:
            n = float(value)
        except ValueError:
            return None
        return n if math.isfinite(n) else None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _coerce(kind: type, value: Any) -> Any:
    if kind is bool:
        return _as_bool(value)
    if kind is float:
        return _as_number(value)
    if kind is int:
        n = _as_number(value)
        return int(n) if n is not None and n.is_integer() else None
    return _as_str(value)


def map_region_entry(raw: Any) -> Optional[Dict[str, Any]]:
    """Map one custom region entry to snake_case overrides.

    Unknown keys and values of the wrong type are skipped; an entry without a
    usable "code" is rejected.
    """
    if not isinstance(raw, dict):
        return None
    code = _as_str(raw.get("code"))
    if not code:
        return None
    out: Dict[str, Any] = {"code": code}
    for key, value in raw.items():
        name = _ALIASES.get(key)
        if name is None or name == "code":
            continue
        coerced = _coerce(_FIELD_KINDS[name], value)
        if coerced is not None:
            out[name] = coerced
    return out


def load_custom_region_profiles(path: Path) -> List[Dict[str, Any]]:
    """Read custom profiles from a JSON array or a {"regions": [...]} object.

    A missing or malformed file yields an empty list.
    """
    try:
        raw = path.read_bytes()
    except OSError:
        return []
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError):
        logger.warning("region_file_unparseable", path=str(path))
        return []

    if isinstance(parsed, dict) and isinstance(parsed.get("regions"), list):
        candidates = parsed["regions"]
    elif isinstance(parsed, list):
        candidates = parsed
    else:
        candidates = []

    out: List[Dict[str, Any]] = []
    for item in candidates:
        mapped = map_region_entry(item)
        if mapped is not None:
            out.append(mapped)
    return out


__all__ = ["load_custom_region_profiles", "map_region_entry"]
