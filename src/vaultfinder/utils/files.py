"""Utility helpers for working with vault files."""

from __future__ import annotations

import hashlib
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Iterator, Sequence

DEFAULT_PATTERNS = ("**/*.md",)


def iter_vault_paths(
    root: Path,
    patterns: Sequence[str] = DEFAULT_PATTERNS,
    *,
    exclude: Iterable[str] = (),
) -> Iterator[Path]:
    """Yield files under ``root`` matching any glob pattern, each at most once.

    ``exclude`` holds vault-relative glob patterns or directory prefixes.
    """
    exclude = tuple(exclude)
    seen: set[Path] = set()
    for pattern in patterns:
        for item in sorted(root.glob(pattern)):
            if not item.is_file() or item in seen:
                continue
            seen.add(item)
            if is_excluded(to_relative(root, item), exclude):
                continue
            yield item


def is_excluded(rel_path: str, exclude: Sequence[str]) -> bool:
    for pattern in exclude:
        prefix = pattern.rstrip("/")
        if fnmatch(rel_path, pattern) or rel_path == prefix or rel_path.startswith(prefix + "/"):
            return True
    return False


def to_relative(root: Path, path: Path) -> str:
    """Vault-relative POSIX path used as the document key in storage."""
    path = Path(path)
    if not path.is_absolute():
        return path.as_posix()
    return path.relative_to(root).as_posix()


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()
