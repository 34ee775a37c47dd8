"""Tests for VaultStore."""

from __future__ import annotations

import re
import sqlite3
from pathlib import Path

import pytest

from vaultfinder.index.storage import VaultStore
from vaultfinder.models import ChunkInsert, Entity, FileIndexState
from vaultfinder.utils.text import compute_text_hash


def _chunks(*texts: str) -> list[ChunkInsert]:
    return [
        ChunkInsert(text=text, chunk_index=index, content_hash=compute_text_hash(text))
        for index, text in enumerate(texts)
    ]


def _fts_ids(store: VaultStore, term: str) -> list[int]:
    rows = store.connection.execute(
        "SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH ? ORDER BY rowid", (term,)
    ).fetchall()
    return [row[0] for row in rows]


def _state(hash_value: str = "abc", chunk_count: int = 1) -> FileIndexState:
    return FileIndexState(hash=hash_value, mtime=1.0, chunk_count=chunk_count, last_indexed="2024-01-01T00:00:00+00:00")


class TestSchema:
    """Test database initialization and schema."""

    def test_init_creates_database(self, tmp_path: Path) -> None:
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = VaultStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_tables_and_triggers_exist(self, store: VaultStore) -> None:
        names = {
            row[0]
            for row in store.connection.execute(
                "SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')"
            )
        }

        for expected in (
            "markdown_chunks",
            "file_state",
            "chunks_fts",
            "entities",
            "entity_relations",
            "entity_events",
            "chunks_ai",
            "chunks_ad",
            "chunks_au",
        ):
            assert expected in names

    def test_pragma_settings(self, store: VaultStore) -> None:
        conn = store.connection

        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_reopen_keeps_data(self, tmp_path: Path) -> None:
        db_path = tmp_path / "vault.db"
        store = VaultStore(db_path)
        store.upsert_chunks("a.md", _chunks("persistent text"))
        store.close()

        reopened = VaultStore(db_path)
        assert [c.text for c in reopened.get_chunks("a.md")] == ["persistent text"]
        reopened.close()

    def test_unique_path_and_index(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("first"))

        with pytest.raises(sqlite3.IntegrityError):
            store.connection.execute(
                "INSERT INTO markdown_chunks (path, chunk_index, content, content_hash) VALUES ('a.md', 0, 'x', 'y')"
            )
        store.connection.rollback()


class TestChunks:
    """Chunk replacement keeps the full-text index in step."""

    def test_upsert_replaces_all_chunks(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("alpha one", "alpha two", "alpha three"))
        store.upsert_chunks("a.md", _chunks("beta only"))

        chunks = store.get_chunks("a.md")

        assert [c.text for c in chunks] == ["beta only"]
        assert [c.chunk_index for c in chunks] == [0]
        assert _fts_ids(store, "alpha") == []
        assert _fts_ids(store, "beta") == [chunks[0].id]

    def test_upsert_leaves_other_paths(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("alpha"))
        store.upsert_chunks("b.md", _chunks("bravo"))
        store.upsert_chunks("a.md", _chunks("again"))

        assert [c.text for c in store.get_chunks("b.md")] == ["bravo"]

    def test_remove_file_drops_chunks_state_and_index(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("gamma ray"))
        store.set_file_state("a.md", _state())

        store.remove_file("a.md")

        assert store.get_chunks("a.md") == []
        assert store.get_file_state("a.md") is None
        assert _fts_ids(store, "gamma") == []

    def test_update_trigger_reindexes_content(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("delta value"))
        chunk_id = store.get_chunks("a.md")[0].id

        with store.transaction() as conn:
            conn.execute("UPDATE markdown_chunks SET content = 'epsilon value' WHERE id = ?", (chunk_id,))

        assert _fts_ids(store, "delta") == []
        assert _fts_ids(store, "epsilon") == [chunk_id]

    def test_porter_stemming(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("she was running late"))

        assert len(_fts_ids(store, "runs")) == 1

    def test_get_chunks_by_ids_and_metadata(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", [ChunkInsert("text", 0, "h", is_evergreen=True)])
        chunk_id = store.get_chunks("a.md")[0].id

        assert store.get_chunks_by_ids([chunk_id, 999])[chunk_id].text == "text"
        metadata = store.get_chunk_metadata([chunk_id])
        assert metadata[chunk_id].is_evergreen is True
        assert metadata[chunk_id].updated_at


class TestTransactions:
    def test_rollback_on_error(self, store: VaultStore) -> None:
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.upsert_chunks("a.md", _chunks("never stored"))
                store.set_file_state("a.md", _state())
                raise RuntimeError("boom")

        assert store.get_chunks("a.md") == []
        assert store.get_file_state("a.md") is None

    def test_nested_block_commits_with_outer(self, store: VaultStore) -> None:
        with store.transaction():
            with store.transaction():
                store.upsert_chunks("a.md", _chunks("inner"))
            assert store.connection.in_transaction

        assert not store.connection.in_transaction
        assert len(store.get_chunks("a.md")) == 1


class TestEmbeddings:
    def test_set_and_get_embedding(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("one", "two"))
        first, second = store.get_chunks("a.md")

        store.set_embedding(first.id, b"\x00\x00\x80?", "model-a")

        assert store.get_embedding(first.id) == (b"\x00\x00\x80?", "model-a")
        assert store.get_embedding(second.id) is None
        assert [row.id for row in store.get_all_embeddings_for_search()] == [first.id]

    def test_chunks_needing_embedding_tracks_model(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("one", "two"))
        first, second = store.get_chunks("a.md")
        store.set_embeddings([(first.id, b"\x00" * 4), (second.id, b"\x00" * 4)], "model-a")

        assert store.get_chunks_needing_embedding("model-a") == []
        assert [chunk_id for chunk_id, _ in store.get_chunks_needing_embedding("model-b")] == [
            first.id,
            second.id,
        ]

    def test_rechunking_discards_embeddings(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("one"))
        chunk = store.get_chunks("a.md")[0]
        store.set_embedding(chunk.id, b"\x00" * 4, "model-a")

        store.upsert_chunks("a.md", _chunks("one changed"))

        assert store.get_all_embeddings_for_search() == []
        assert len(store.get_chunks_needing_embedding("model-a")) == 1

    def test_clear_embeddings(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("one"))
        store.set_embedding(store.get_chunks("a.md")[0].id, b"\x00" * 4, "model-a")

        store.clear_embeddings()

        assert store.get_stats().embedded_chunks == 0


class TestFileState:
    def test_upsert_file_state(self, store: VaultStore) -> None:
        store.set_file_state("a.md", _state("first", 2))
        store.set_file_state("a.md", _state("second", 3))

        state = store.get_file_state("a.md")
        assert state.hash == "second"
        assert state.chunk_count == 3
        assert list(store.get_all_file_states()) == ["a.md"]

    def test_stats(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("one", "two"))
        store.upsert_chunks("b.md", _chunks("three"))

        stats = store.get_stats()

        assert stats.total_chunks == 3
        assert stats.total_files == 2
        assert stats.embedded_chunks == 0
        assert stats.db_size_bytes >= 0

    def test_optimize(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("zeta"))
        store.optimize()

        assert len(_fts_ids(store, "zeta")) == 1


class TestEntities:
    def test_upsert_and_get_entity(self, store: VaultStore) -> None:
        store.upsert_entity(Entity(id="e1", type="person", name="Ada Lovelace", aliases=["Ada", "Countess"]))

        entity = store.get_entity("e1")

        assert entity.name == "Ada Lovelace"
        assert entity.aliases == ["Ada", "Countess"]
        assert entity.interaction_count == 0
        assert store.get_entity("missing") is None

    def test_find_entities_by_alias_case_insensitive(self, store: VaultStore) -> None:
        store.upsert_entity(Entity(id="e1", type="person", name="Ada Lovelace", aliases=["Countess"]))

        assert [e.id for e in store.find_entities("countESS")] == ["e1"]
        assert [e.id for e in store.find_entities("lovelace")] == ["e1"]

    def test_find_entities_treats_wildcards_literally(self, store: VaultStore) -> None:
        store.upsert_entity(Entity(id="e1", type="topic", name="100% coverage"))
        store.upsert_entity(Entity(id="e2", type="topic", name="1000 cuts"))

        assert [e.id for e in store.find_entities("100%")] == ["e1"]
        assert store.find_entities("_") == []

    def test_insert_entity_event_is_idempotent(self, store: VaultStore) -> None:
        store.upsert_entity(Entity(id="e1", type="person", name="Ada"))

        assert store.insert_entity_event("e1", "meeting-1") is True
        assert store.insert_entity_event("e1", "meeting-1") is False
        assert len(store.get_entity_events("e1")) == 1

    def test_upsert_relation_is_undirected(self, store: VaultStore) -> None:
        for entity_id in ("a", "b"):
            store.upsert_entity(Entity(id=entity_id, type="person", name=entity_id))

        store.upsert_relation("b", "a")
        store.upsert_relation("a", "b")

        rows = store.connection.execute("SELECT * FROM entity_relations").fetchall()
        assert len(rows) == 1
        assert (rows[0]["entity_a_id"], rows[0]["entity_b_id"]) == ("a", "b")
        assert rows[0]["co_occurrence_count"] == 2
        assert store.get_related("b")[0].related.id == "a"


ISO_UTC = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}\+00:00$")


class TestTimestamps:
    """Column defaults and Python-written values share one sortable format."""

    def test_chunk_defaults(self, store: VaultStore) -> None:
        store.upsert_chunks("a.md", _chunks("alpha"))

        row = store.connection.execute("SELECT created_at, updated_at FROM markdown_chunks").fetchone()

        assert ISO_UTC.match(row["created_at"])
        assert ISO_UTC.match(row["updated_at"])

    def test_entity_defaults_match_python_writes(self, store: VaultStore) -> None:
        for entity_id in ("a", "b"):
            store.upsert_entity(Entity(id=entity_id, type="person", name=entity_id))
        created = store.get_entity("a").last_seen

        store.touch_entity("a")
        store.insert_entity_event("a", "meeting-1")
        store.upsert_relation("a", "b")

        touched = store.get_entity("a").last_seen
        assert ISO_UTC.match(created)
        assert ISO_UTC.match(touched)
        assert touched >= created
        assert ISO_UTC.match(store.get_entity_events("a")[0].created_at)
        assert ISO_UTC.match(store.get_related("a")[0].last_updated)
