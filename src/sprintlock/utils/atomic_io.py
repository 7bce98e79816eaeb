"""
Atomic file writes.

A write goes to a uniquely named temp file in the target directory, is
flushed and fsynced, and is then renamed over the target, so readers see
either the old file or the new one.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Optional


def atomic_write_text(
    file_path: Path, text: str, verify: Optional[Callable[[Path], None]] = None
) -> None:
    """Writes text to a file atomically.

    ``verify`` is called with the temp file before the rename; if it raises,
    the temp file is removed and the target is left untouched.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = file_path.with_name(f".{file_path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if verify is not None:
            verify(temp_file)
        os.replace(temp_file, file_path)
    finally:
        if temp_file.exists():
            temp_file.unlink()


def atomic_write_json(
    file_path: Path, data: Any, verify: Optional[Callable[[Path], None]] = None
) -> None:
    """Writes data to a JSON file atomically."""
    atomic_write_text(
        file_path, json.dumps(data, indent=2, ensure_ascii=False), verify=verify
    )


def read_json_file(file_path: Path) -> Any:
    """Reads a JSON file. Errors propagate to the caller."""
    with open(file_path, encoding="utf-8") as f:
        return json.load(f)
