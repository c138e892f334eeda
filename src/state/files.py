from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


OWNER_ONLY_FILE = 0o600
OWNER_ONLY_DIR = 0o700


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write `payload` as JSON to `path` via a sibling temp file and rename.

    Readers see either the previous document or the new one, never a partial
    write. The file is readable by the owning user only. Raises OSError.
    """
    path.parent.mkdir(mode=OWNER_ONLY_DIR, parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            json.dump(payload, tmp, indent=2, ensure_ascii=False)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, OWNER_ONLY_FILE)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_json(path: Path) -> Any:
    """Read and parse a JSON file. Raises OSError or ValueError."""
    return json.loads(path.read_text(encoding="utf-8"))


__all__ = ["OWNER_ONLY_FILE", "read_json", "write_json_atomic"]
