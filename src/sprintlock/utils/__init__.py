"""
Shared utilities for sprintlock: paths, atomic file IO and logging.
"""

from .atomic_io import atomic_write_json, atomic_write_text, read_json_file
from .jsonl_logger import configure_logging, get_logger, log_with_context, setup_jsonl_logger
from .paths import is_path_ancestor, normalize_path, paths_overlap

__all__ = [
    "atomic_write_json",
    "atomic_write_text",
    "read_json_file",
    "configure_logging",
    "get_logger",
    "log_with_context",
    "setup_jsonl_logger",
    "is_path_ancestor",
    "normalize_path",
    "paths_overlap",
]
