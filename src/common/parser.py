from __future__ import annotations

import math
from typing import Dict, List, Optional, Tuple


def tokenize(line: str) -> List[str]:
    """Split a command line on whitespace, honoring quotes and backslash escapes."""
    tokens: List[str] = []
    current = ""
    quote: Optional[str] = None
    escaping = False

    for ch in line.strip():
        if escaping:
            current += ch
            escaping = False
            continue
        if ch == "\\":
            escaping = True
            continue
        if quote:
            if ch == quote:
                quote = None
            else:
                current += ch
            continue
        if ch in ("'", '"'):
            quote = ch
            continue
        if ch.isspace():
            if current:
                tokens.append(current)
                current = ""
            continue
        current += ch

    if current:
        tokens.append(current)
    return tokens


def parse_key_value_tokens(tokens: List[str]) -> Tuple[List[str], Dict[str, str]]:
    """Separate `key=value` options from positional arguments."""
    args: List[str] = []
    opts: Dict[str, str] = {}
    for token in tokens:
        idx = token.find("=")
        if idx <= 0:
            args.append(token)
            continue
        opts[token[:idx]] = token[idx + 1 :]
    return args, opts


def parse_bool(raw: Optional[str], fallback: bool = False) -> bool:
    if not raw:
        return fallback
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return fallback


def parse_num(raw: Optional[str], fallback: float) -> float:
    if not raw:
        return fallback
    try:
        n = float(raw)
    except ValueError:
        return fallback
    return n if math.isfinite(n) else fallback


__all__ = ["parse_bool", "parse_key_value_tokens", "parse_num", "tokenize"]
