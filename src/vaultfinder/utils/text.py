"""Markdown chunking helpers.

Documents are split at heading boundaries first, then oversized sections on
blank lines, and as a last resort on sentence boundaries. Pieces shorter than
the minimum size are dropped; they are usually bare headings or stray lines.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, List

from vaultfinder.models import ChunkInsert

DEFAULT_MAX_CHUNK_SIZE = 800
MIN_CHUNK_SIZE = 50
DEFAULT_EVERGREEN_TAGS = ("evergreen", "permanent", "core")

FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---(?:\n|\Z)", re.DOTALL)
HEADING_RE = re.compile(r"^#{1,3}\s", re.MULTILINE)
HEADING_SPLIT_RE = re.compile(r"(?=^#{1,3}\s)", re.MULTILINE)
PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")
SENTENCE_SPLIT_RE = re.compile(r"(?<=\.)\s+")


def compute_text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _pack(pieces: Iterable[str], max_size: int, separator: str) -> List[str]:
    """Greedily join pieces with ``separator`` while staying under ``max_size``."""
    result: List[str] = []
    current = ""
    for piece in pieces:
        if current and len(current) + len(piece) + len(separator) > max_size:
            result.append(current.strip())
            current = piece
        else:
            current = f"{current}{separator}{piece}" if current else piece
    if current.strip():
        result.append(current.strip())
    return result


def split_by_paragraphs(text: str, max_size: int) -> List[str]:
    return _pack(PARAGRAPH_SPLIT_RE.split(text), max_size, "\n\n")


def split_by_sentences(text: str, max_size: int) -> List[str]:
    return _pack(SENTENCE_SPLIT_RE.split(text), max_size, " ")


def split_oversized(text: str, max_size: int) -> List[str]:
    result: List[str] = []
    for piece in split_by_paragraphs(text, max_size):
        if len(piece) <= max_size:
            result.append(piece)
        else:
            result.extend(split_by_sentences(piece, max_size))
    return result


def split_sections(body: str) -> List[str]:
    if not HEADING_RE.search(body):
        return [body]
    return [part.strip() for part in HEADING_SPLIT_RE.split(body) if part.strip()]


def _frontmatter_tags(frontmatter: str) -> set[str]:
    """Collect ``tags`` values and an ``evergreen: true`` flag from YAML front matter.

    Handles inline lists (``tags: [a, b]``), comma lists and block lists.
    """
    tags: set[str] = set()
    in_tags_block = False
    for raw_line in frontmatter.splitlines():
        line = raw_line.strip()
        if in_tags_block:
            if line.startswith("- "):
                tags.add(line[2:].strip().strip("'\"").lstrip("#").lower())
                continue
            in_tags_block = False
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "evergreen" and value.lower() in {"true", "yes", "1"}:
            tags.add("evergreen")
        elif key == "tags":
            if not value:
                in_tags_block = True
                continue
            for tag in value.strip("[]").split(","):
                tag = tag.strip().strip("'\"").lstrip("#").lower()
                if tag:
                    tags.add(tag)
    return tags


def split_markdown_chunks(
    content: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    *,
    min_chunk_size: int = MIN_CHUNK_SIZE,
    evergreen_tags: Iterable[str] = DEFAULT_EVERGREEN_TAGS,
) -> List[ChunkInsert]:
    """Split a markdown document into retrievable chunks in document order."""
    is_evergreen = False
    match = FRONTMATTER_RE.match(content)
    if match:
        wanted = {tag.lower() for tag in evergreen_tags}
        is_evergreen = bool(_frontmatter_tags(match.group(1)) & wanted)
        content = content[match.end():]

    body = content.strip()
    if not body:
        return []

    raw_chunks: List[str] = []
    for section in split_sections(body):
        if len(section) <= max_chunk_size:
            raw_chunks.append(section)
        else:
            raw_chunks.extend(split_oversized(section, max_chunk_size))

    kept = [chunk for chunk in raw_chunks if len(chunk) >= min_chunk_size]
    return [
        ChunkInsert(
            text=chunk,
            chunk_index=index,
            content_hash=compute_text_hash(chunk),
            is_evergreen=is_evergreen,
        )
        for index, chunk in enumerate(kept)
    ]
