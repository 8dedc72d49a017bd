"""Filesystem boundary: platform directories and per-path file operations."""

from .fileops import DirEntryInfo, FileOps
from .paths import AppPaths, is_hidden, is_within

__all__ = ["AppPaths", "DirEntryInfo", "FileOps", "is_hidden", "is_within"]
