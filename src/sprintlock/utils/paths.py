"""
Path helpers shared by the task model, the conflict analyzer and the
ownership registry.

Paths are repository-relative POSIX strings. A trailing ``/`` marks a
directory claim, which overlaps every path beneath it.
"""

from pathlib import PurePosixPath


def normalize_path(path_str: str) -> str:
    """Normalize a path to repository-relative POSIX form.

    ``./src//a.py`` becomes ``src/a.py``; ``..`` components are folded, and a
    path that escapes the repository root is rejected.
    """
    raw = path_str.strip().replace("\\", "/")
    if not raw:
        raise ValueError("Path must not be empty")
    is_dir = raw.endswith("/")

    parts: list[str] = []
    for part in PurePosixPath(raw).parts:
        if part in ("/", "."):
            continue
        if part == "..":
            if not parts:
                raise ValueError(f"Path escapes the repository root: {path_str}")
            parts.pop()
            continue
        parts.append(part)

    if not parts:
        raise ValueError(f"Path resolves to the repository root: {path_str}")
    normalized = "/".join(parts)
    return normalized + "/" if is_dir else normalized


def is_directory_claim(path: str) -> bool:
    return path.endswith("/")


def is_path_ancestor(ancestor: str, descendant: str) -> bool:
    """Checks if a directory claim contains descendant."""
    if not is_directory_claim(ancestor):
        return False
    return descendant.startswith(ancestor) or descendant == ancestor.rstrip("/")


def paths_overlap(first: str, second: str) -> bool:
    """Two claims overlap on an exact match or when one directory contains the other."""
    if first.rstrip("/") == second.rstrip("/"):
        return True
    return is_path_ancestor(first, second) or is_path_ancestor(second, first)
