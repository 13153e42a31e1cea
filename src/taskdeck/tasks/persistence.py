# src/taskdeck/tasks/persistence.py

"""
Versioned JSON records written with atomic replace.

Layout of every record:
    {"schema_version": 1, "kind": "<record kind>", ...payload}

Writes go to a sibling temp file, are flushed + fsynced, then swapped in with
os.replace so a crash mid-write leaves the previous record intact.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from ..core.errors import CorruptSnapshot

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def write_record(path: str | Path, kind: str, payload: dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    doc = {"schema_version": SCHEMA_VERSION, "kind": kind, **payload}
    data = json.dumps(doc, ensure_ascii=False, indent=2)

    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read_record(path: str | Path, kind: str) -> dict[str, Any] | None:
    """
    Read a record written by write_record.

    Returns None if the file does not exist.
    Raises CorruptSnapshot if it cannot be parsed, has the wrong kind,
    or was written with a different schema version.
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        raw = path.read_text("utf-8")
    except OSError as e:
        raise CorruptSnapshot(path, f"unreadable: {e}") from e

    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptSnapshot(path, f"invalid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise CorruptSnapshot(path, "top-level value is not an object")

    version = doc.get("schema_version")
    if version != SCHEMA_VERSION:
        raise CorruptSnapshot(path, f"unsupported schema_version={version!r}")

    if doc.get("kind") != kind:
        raise CorruptSnapshot(path, f"expected kind={kind!r}, got {doc.get('kind')!r}")

    return doc


def quarantine(path: str | Path) -> Path | None:
    """Move an unreadable record aside so the next save does not destroy evidence."""
    path = Path(path)
    if not path.exists():
        return None
    target = path.with_name(f"{path.name}.corrupt-{int(time.time())}")
    try:
        os.replace(path, target)
    except OSError:
        logger.exception("Failed to move corrupt file aside: %s", path)
        with contextlib.suppress(OSError):
            path.unlink()
        return None
    logger.warning("Moved corrupt file %s -> %s", path, target)
    return target
