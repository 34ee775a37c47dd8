"""SQLite store for chunks, the FTS5 index, file state and the entity graph.

The full-text index is an external-content FTS5 table maintained by triggers,
so every write to ``markdown_chunks`` is reflected in lexical search within
the same transaction. There is no separate sync step.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from vaultfinder.models import (
    ChunkInsert,
    ChunkMetadata,
    ChunkRecord,
    DatabaseStats,
    EmbeddingRow,
    Entity,
    EntityEvent,
    FileIndexState,
    RelationRow,
)
from vaultfinder.utils.timeutil import utc_now_iso

# Stay well under SQLITE_MAX_VARIABLE_NUMBER on old builds.
_MAX_IN_PARAMS = 500

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS markdown_chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        is_evergreen INTEGER NOT NULL DEFAULT 0,
        embedding BLOB,
        embedding_model TEXT,
        UNIQUE(path, chunk_index)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_path ON markdown_chunks(path)",
    """
    CREATE TABLE IF NOT EXISTS file_state (
        path TEXT PRIMARY KEY,
        hash TEXT NOT NULL,
        mtime REAL NOT NULL,
        chunk_count INTEGER NOT NULL DEFAULT 0,
        last_indexed TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
    )
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
        content,
        content='markdown_chunks',
        content_rowid='id',
        tokenize='porter unicode61'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON markdown_chunks BEGIN
        INSERT INTO chunks_fts(rowid, content) VALUES (new.id, new.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON markdown_chunks BEGIN
        INSERT INTO chunks_fts(chunks_fts, rowid, content) VALUES ('delete', old.id, old.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE OF content ON markdown_chunks BEGIN
        INSERT INTO chunks_fts(chunks_fts, rowid, content) VALUES ('delete', old.id, old.content);
        INSERT INTO chunks_fts(rowid, content) VALUES (new.id, new.content);
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        name TEXT NOT NULL,
        aliases TEXT NOT NULL DEFAULT '[]',
        vault_path TEXT,
        first_seen TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        last_seen TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        interaction_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)",
    "CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name COLLATE NOCASE)",
    """
    CREATE TABLE IF NOT EXISTS entity_relations (
        entity_a_id TEXT NOT NULL,
        entity_b_id TEXT NOT NULL,
        relation_type TEXT NOT NULL DEFAULT 'co_occurrence',
        co_occurrence_count INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        PRIMARY KEY (entity_a_id, entity_b_id),
        FOREIGN KEY (entity_a_id) REFERENCES entities(id),
        FOREIGN KEY (entity_b_id) REFERENCES entities(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entity_events (
        entity_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'mentioned',
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        PRIMARY KEY (entity_id, event_id),
        FOREIGN KEY (entity_id) REFERENCES entities(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entity_events_event ON entity_events(event_id)",
)


def _batched(items: Sequence, size: int = _MAX_IN_PARAMS) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _parse_aliases(value: Optional[str]) -> List[str]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_chunk(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        id=row["id"],
        path=row["path"],
        chunk_index=row["chunk_index"],
        text=row["content"],
        content_hash=row["content_hash"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_evergreen=bool(row["is_evergreen"]),
    )


def _to_file_state(row: sqlite3.Row) -> FileIndexState:
    return FileIndexState(
        hash=row["hash"],
        mtime=row["mtime"],
        chunk_count=row["chunk_count"],
        last_indexed=row["last_indexed"],
    )


def _to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        type=row["type"],
        name=row["name"],
        aliases=_parse_aliases(row["aliases"]),
        path=row["vault_path"],
        first_seen=row["first_seen"],
        last_seen=row["last_seen"],
        interaction_count=row["interaction_count"],
    )


class VaultStore:
    """Persistence layer for chunks, embeddings, file state and entities.

    Every mutating method is synchronous and transactional. Methods may be
    composed inside an outer :meth:`transaction` block, in which case only the
    outermost block commits.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._depth = 0
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        if self._depth:
            self._depth += 1
            try:
                yield self._conn
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            self._depth = 0

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # -- chunks -----------------------------------------------------------

    def get_chunks(self, path: str) -> List[ChunkRecord]:
        rows = self._conn.execute(
            "SELECT * FROM markdown_chunks WHERE path = ? ORDER BY chunk_index", (path,)
        ).fetchall()
        return [_to_chunk(row) for row in rows]

    def get_chunks_by_ids(self, ids: Iterable[int]) -> Dict[int, ChunkRecord]:
        wanted = sorted(set(ids))
        result: Dict[int, ChunkRecord] = {}
        for batch in _batched(wanted):
            placeholders = ",".join("?" for _ in batch)
            rows = self._conn.execute(
                f"SELECT * FROM markdown_chunks WHERE id IN ({placeholders})", tuple(batch)
            ).fetchall()
            for row in rows:
                result[row["id"]] = _to_chunk(row)
        return result

    def get_chunk_metadata(self, ids: Iterable[int]) -> Dict[int, ChunkMetadata]:
        wanted = sorted(set(ids))
        result: Dict[int, ChunkMetadata] = {}
        for batch in _batched(wanted):
            placeholders = ",".join("?" for _ in batch)
            rows = self._conn.execute(
                f"""
                SELECT id, created_at, updated_at, is_evergreen
                FROM markdown_chunks WHERE id IN ({placeholders})
                """,
                tuple(batch),
            ).fetchall()
            for row in rows:
                result[row["id"]] = ChunkMetadata(
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    is_evergreen=bool(row["is_evergreen"]),
                )
        return result

    def upsert_chunks(self, path: str, chunks: Sequence[ChunkInsert]) -> None:
        """Replace every chunk of ``path`` atomically."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM markdown_chunks WHERE path = ?", (path,))
            conn.executemany(
                """
                INSERT INTO markdown_chunks (path, chunk_index, content, content_hash, is_evergreen)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (path, chunk.chunk_index, chunk.text, chunk.content_hash, int(chunk.is_evergreen))
                    for chunk in chunks
                ],
            )

    def remove_file(self, path: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM markdown_chunks WHERE path = ?", (path,))
            conn.execute("DELETE FROM file_state WHERE path = ?", (path,))

    # -- embeddings -------------------------------------------------------

    def set_embedding(self, chunk_id: int, embedding: bytes, model: str) -> None:
        self.set_embeddings([(chunk_id, embedding)], model)

    def set_embeddings(self, rows: Sequence[Tuple[int, bytes]], model: str) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "UPDATE markdown_chunks SET embedding = ?, embedding_model = ? WHERE id = ?",
                [(sqlite3.Binary(blob), model, chunk_id) for chunk_id, blob in rows],
            )

    def get_embedding(self, chunk_id: int) -> Optional[Tuple[bytes, str]]:
        row = self._conn.execute(
            """
            SELECT embedding, embedding_model FROM markdown_chunks
            WHERE id = ? AND embedding IS NOT NULL
            """,
            (chunk_id,),
        ).fetchone()
        if row is None:
            return None
        return bytes(row["embedding"]), row["embedding_model"]

    def get_all_embeddings_for_search(self) -> List[EmbeddingRow]:
        rows = self._conn.execute(
            """
            SELECT id, path, chunk_index, embedding, created_at, updated_at, is_evergreen
            FROM markdown_chunks
            WHERE embedding IS NOT NULL
            ORDER BY id
            """
        ).fetchall()
        return [
            EmbeddingRow(
                id=row["id"],
                path=row["path"],
                chunk_index=row["chunk_index"],
                embedding=bytes(row["embedding"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                is_evergreen=bool(row["is_evergreen"]),
            )
            for row in rows
        ]

    def get_chunks_needing_embedding(self, model: str) -> List[Tuple[int, str]]:
        rows = self._conn.execute(
            """
            SELECT id, content FROM markdown_chunks
            WHERE embedding IS NULL OR embedding_model IS NULL OR embedding_model != ?
            ORDER BY id
            """,
            (model,),
        ).fetchall()
        return [(row["id"], row["content"]) for row in rows]

    def clear_embeddings(self) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE markdown_chunks SET embedding = NULL, embedding_model = NULL")

    # -- file state -------------------------------------------------------

    def get_file_state(self, path: str) -> Optional[FileIndexState]:
        row = self._conn.execute("SELECT * FROM file_state WHERE path = ?", (path,)).fetchone()
        return _to_file_state(row) if row else None

    def set_file_state(self, path: str, state: FileIndexState) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO file_state (path, hash, mtime, chunk_count, last_indexed)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    hash = excluded.hash,
                    mtime = excluded.mtime,
                    chunk_count = excluded.chunk_count,
                    last_indexed = excluded.last_indexed
                """,
                (path, state.hash, state.mtime, state.chunk_count, state.last_indexed),
            )

    def get_all_file_states(self) -> Dict[str, FileIndexState]:
        rows = self._conn.execute("SELECT * FROM file_state ORDER BY path").fetchall()
        return {row["path"]: _to_file_state(row) for row in rows}

    # -- maintenance ------------------------------------------------------

    def get_stats(self) -> DatabaseStats:
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS chunks,
                   COUNT(DISTINCT path) AS files,
                   COUNT(embedding) AS embedded
            FROM markdown_chunks
            """
        ).fetchone()
        try:
            size = self.db_path.stat().st_size
        except OSError:
            size = 0
        return DatabaseStats(
            total_chunks=row["chunks"],
            total_files=row["files"],
            embedded_chunks=row["embedded"],
            db_size_bytes=size,
        )

    def optimize(self) -> None:
        with self.transaction() as conn:
            conn.execute("INSERT INTO chunks_fts(chunks_fts) VALUES ('optimize')")

    # -- entities ---------------------------------------------------------

    def upsert_entity(self, entity: Entity) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO entities (id, type, name, aliases, vault_path)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    type = excluded.type,
                    name = excluded.name,
                    aliases = excluded.aliases,
                    vault_path = excluded.vault_path
                """,
                (
                    entity.id,
                    entity.type,
                    entity.name,
                    json.dumps(list(entity.aliases), ensure_ascii=False),
                    entity.path,
                ),
            )

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self._conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        return _to_entity(row) if row else None

    def existing_entity_ids(self, ids: Iterable[str]) -> set[str]:
        wanted = sorted(set(ids))
        found: set[str] = set()
        for batch in _batched(wanted):
            placeholders = ",".join("?" for _ in batch)
            rows = self._conn.execute(
                f"SELECT id FROM entities WHERE id IN ({placeholders})", tuple(batch)
            ).fetchall()
            found.update(row["id"] for row in rows)
        return found

    def find_entities(self, query: str, limit: int = 20) -> List[Entity]:
        pattern = f"%{_escape_like(query)}%"
        rows = self._conn.execute(
            r"""
            SELECT * FROM entities
            WHERE name LIKE ? ESCAPE '\'
               OR EXISTS (
                   SELECT 1 FROM json_each(entities.aliases)
                   WHERE json_each.value LIKE ? ESCAPE '\'
               )
            ORDER BY interaction_count DESC, last_seen DESC, id ASC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        ).fetchall()
        return [_to_entity(row) for row in rows]

    def list_entities(self, entity_type: Optional[str] = None) -> List[Entity]:
        if entity_type:
            rows = self._conn.execute(
                "SELECT * FROM entities WHERE type = ? ORDER BY interaction_count DESC, name ASC",
                (entity_type,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM entities ORDER BY interaction_count DESC, name ASC"
            ).fetchall()
        return [_to_entity(row) for row in rows]

    def touch_entity(self, entity_id: str, seen_at: Optional[str] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE entities
                SET last_seen = ?, interaction_count = interaction_count + 1
                WHERE id = ?
                """,
                (seen_at or utc_now_iso(), entity_id),
            )

    def upsert_relation(self, entity_a_id: str, entity_b_id: str, updated_at: Optional[str] = None) -> None:
        """Create or increment the undirected edge between two entities."""
        first, second = sorted((entity_a_id, entity_b_id))
        now = updated_at or utc_now_iso()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO entity_relations
                    (entity_a_id, entity_b_id, relation_type, co_occurrence_count, last_updated)
                VALUES (?, ?, 'co_occurrence', 1, ?)
                ON CONFLICT(entity_a_id, entity_b_id) DO UPDATE SET
                    co_occurrence_count = co_occurrence_count + 1,
                    last_updated = excluded.last_updated
                """,
                (first, second, now),
            )

    def get_related(self, entity_id: str, limit: int = 20) -> List[RelationRow]:
        rows = self._conn.execute(
            """
            SELECT er.entity_a_id, er.entity_b_id, er.co_occurrence_count, er.last_updated,
                   e.*
            FROM entity_relations er
            JOIN entities e ON e.id = CASE
                WHEN er.entity_a_id = ? THEN er.entity_b_id
                ELSE er.entity_a_id
            END
            WHERE er.entity_a_id = ? OR er.entity_b_id = ?
            ORDER BY er.co_occurrence_count DESC, er.last_updated DESC, e.id ASC
            LIMIT ?
            """,
            (entity_id, entity_id, entity_id, limit),
        ).fetchall()
        return [
            RelationRow(
                entity_a_id=row["entity_a_id"],
                entity_b_id=row["entity_b_id"],
                co_occurrence_count=row["co_occurrence_count"],
                last_updated=row["last_updated"],
                related=_to_entity(row),
            )
            for row in rows
        ]

    def insert_entity_event(self, entity_id: str, event_id: str, role: str = "mentioned") -> bool:
        """Link an entity to an event. Returns False when the link already existed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO entity_events (entity_id, event_id, role) VALUES (?, ?, ?)",
                (entity_id, event_id, role),
            )
            return cursor.rowcount == 1

    def get_entity_events(self, entity_id: str) -> List[EntityEvent]:
        rows = self._conn.execute(
            "SELECT * FROM entity_events WHERE entity_id = ? ORDER BY created_at, event_id",
            (entity_id,),
        ).fetchall()
        return [
            EntityEvent(row["entity_id"], row["event_id"], row["role"], row["created_at"])
            for row in rows
        ]

    def get_event_entities(self, event_id: str) -> List[EntityEvent]:
        rows = self._conn.execute(
            "SELECT * FROM entity_events WHERE event_id = ? ORDER BY created_at, entity_id",
            (event_id,),
        ).fetchall()
        return [
            EntityEvent(row["entity_id"], row["event_id"], row["role"], row["created_at"])
            for row in rows
        ]
