from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def write_json_file(path: Path, data: Any) -> None:
    payload = json.dumps(data, indent=2, sort_keys=True, default=str).encode("utf-8")
    atomic_write_bytes(path, payload)


def read_json_file(path: Path) -> Any | None:
    """Load a JSON document, returning ``None`` when it is missing or unreadable."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring corrupt JSON file %s: %s", path, exc)
        return None


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write through a sibling temp file and ``os.replace`` so readers never see partial data."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as tmp_file:
            tmp_file.write(payload)
            tmp_file.flush()
            try:
                os.fsync(tmp_file.fileno())
            except OSError:
                # Some sandboxes reject fsync.
                pass
        os.replace(tmp_path, path)
    finally:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove temp file %s: %s", tmp_path, exc)


__all__ = [
    "atomic_write_bytes",
    "read_json_file",
    "write_json_file",
]
