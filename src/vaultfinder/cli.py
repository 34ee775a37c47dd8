"""Command line interface for VaultFinder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from vaultfinder.config import AppConfig, EmbeddingConfig, load_config
from vaultfinder.embedding.encoder import EmbeddingProvider, create_embedding_provider
from vaultfinder.entities.graph import EntityIndex
from vaultfinder.errors import ConfigurationError, EmbeddingProviderError
from vaultfinder.index.indexer import MarkdownIndexer
from vaultfinder.index.lexical import LexicalSearcher
from vaultfinder.index.search import HybridSearcher
from vaultfinder.index.storage import VaultStore
from vaultfinder.index.vector import VectorSearcher

console = Console()
app = typer.Typer(help="VaultFinder - hybrid search over a markdown vault")
entities_app = typer.Typer(help="Inspect and update the entity co-occurrence graph")
app.add_typer(entities_app, name="entities")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_app_config(
    config_file: Optional[Path],
    db: Optional[Path],
    provider: Optional[str],
    no_embeddings: bool,
) -> AppConfig:
    try:
        config = load_config(config_file) if config_file else AppConfig()
        if db is not None:
            config.db_path = db
        if no_embeddings:
            config.embedding = None
        elif provider:
            base = config.embedding or EmbeddingConfig()
            config.embedding = EmbeddingConfig(
                provider=provider,
                model=base.model if base.provider == provider else None,
                dimensions=base.dimensions,
                api_key_env=base.api_key_env if base.provider == provider else None,
                batch_size=base.batch_size,
                timeout=base.timeout,
                device=base.device,
            )
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return config


def _build_embedder(config: AppConfig) -> Optional[EmbeddingProvider]:
    if config.embedding is None:
        return None
    try:
        return create_embedding_provider(config.embedding)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_vector_searcher(store: VaultStore, embedder: Optional[EmbeddingProvider]) -> Optional[VectorSearcher]:
    if embedder is None:
        return None
    try:
        dimension = embedder.resolve_dimension()
    except EmbeddingProviderError as exc:
        console.print(f"[yellow]{exc}. Falling back to keyword search.[/yellow]")
        return None
    if dimension <= 0:
        return None
    return VectorSearcher(store, dimension)


def _resolve_vault(vault: Optional[Path], config: AppConfig) -> Path:
    if vault is not None:
        return vault
    if config.vault_path is None:
        raise typer.BadParameter("No vault given and no vault_path in the configuration")
    return Path(config.vault_path).expanduser().resolve()


def _print_highlights(lexical: LexicalSearcher, query: str, limit: int) -> None:
    matches = lexical.highlight(query, limit)
    if not matches:
        console.print("[yellow]No matches found.[/yellow]")
        return
    for match in matches:
        console.print(f"[bold]{match.candidate.path}[/bold] #{match.candidate.chunk_index}")
        console.print(
            match.highlighted.replace("<mark>", "[reverse]").replace("</mark>", "[/reverse]"),
            highlight=False,
        )


def _open_existing_store(config: AppConfig) -> VaultStore:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return VaultStore(resolved_db)


ConfigOption = typer.Option(None, "--config", "-c", help="TOML configuration file")
DbOption = typer.Option(None, "--db", help="SQLite database path")
ProviderOption = typer.Option(None, "--provider", help="Embedding provider: local, openai or voyage")
NoEmbeddingsOption = typer.Option(False, "--no-embeddings", help="Lexical search only")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def index(
    vault: Optional[Path] = typer.Argument(
        None, help="Vault directory to index. Defaults to vault_path from the config.", resolve_path=True
    ),
    pattern: Optional[List[str]] = typer.Option(None, "--pattern", "-p", help="Glob pattern (repeatable)"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Vault-relative path to skip"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    no_embeddings: bool = NoEmbeddingsOption,
    verbose: bool = VerboseOption,
) -> None:
    """Index (or incrementally re-index) the markdown files in a vault."""
    _setup_logging(verbose)
    config = _load_app_config(config_file, db, provider, no_embeddings)
    vault = _resolve_vault(vault, config)
    if not vault.is_dir():
        raise typer.BadParameter(f"Vault directory not found: {vault}")

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    embedder = _build_embedder(config)
    store = VaultStore(resolved_db)
    try:
        indexer = MarkdownIndexer(
            store,
            vault,
            embedder,
            max_chunk_size=config.max_chunk_size,
            evergreen_tags=config.evergreen_tags,
            exclude=[*config.exclude, *(exclude or [])],
        )
        console.print(f"Indexing [bold]{vault}[/bold] into [bold]{resolved_db}[/bold]...")
        result = indexer.full_scan(vault, pattern or config.patterns)
    finally:
        store.close()

    console.print(
        f"Indexed: {result.indexed}, skipped: {result.skipped}, "
        f"removed: {result.removed}, embedded: {result.embedded}"
    )
    for error in result.errors:
        console.print(f"[red]{error}[/red]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of results to display"),
    path: Optional[str] = typer.Option(None, "--path", help="Restrict to one vault-relative document"),
    cited: bool = typer.Option(False, "--cited", help="Show source date and quote per result"),
    highlight: bool = typer.Option(False, "--highlight", help="Keyword matches only, with matched terms marked"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    no_embeddings: bool = NoEmbeddingsOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run a hybrid (lexical + semantic) search."""
    _setup_logging(verbose)
    config = _load_app_config(config_file, db, provider, no_embeddings)
    store = _open_existing_store(config)
    try:
        embedder = _build_embedder(config)
        vector = _build_vector_searcher(store, embedder)
        searcher = HybridSearcher(store, LexicalSearcher(store), vector, embedder, config.search)

        if highlight:
            _print_highlights(searcher.lexical, query, limit)
            return

        if cited:
            cited_results = searcher.search_with_citations(query, limit=limit, path=path)
            if not cited_results:
                console.print("[yellow]No matches found.[/yellow]")
                return
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Score")
            table.add_column("Source")
            table.add_column("Date")
            table.add_column("Quote")
            for item in cited_results:
                table.add_row(
                    f"{item.candidate.combined_score:.4f}",
                    item.provenance.source_file,
                    item.provenance.source_date,
                    item.provenance.original_quote.replace("\n", " "),
                )
            console.print(table)
            return

        results = searcher.search(query, limit=limit, path=path)
        if not results:
            console.print("[yellow]No matches found.[/yellow]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Score")
        table.add_column("Lexical")
        table.add_column("Vector")
        table.add_column("Document")
        table.add_column("Chunk")
        table.add_column("Snippet")
        for result in results:
            snippet = result.text.replace("\n", " ")
            table.add_row(
                f"{result.combined_score:.4f}",
                f"{result.lexical_score:.3f}",
                f"{result.vector_score:.3f}",
                result.path,
                str(result.chunk_index),
                snippet[:180],
            )
        console.print(table)
    finally:
        store.close()


@app.command()
def prune(
    vault: Optional[Path] = typer.Argument(
        None, help="Vault directory the index was built from. Defaults to vault_path from the config.", resolve_path=True
    ),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Remove documents that no longer exist on disk."""
    config = _load_app_config(config_file, db, None, True)
    vault = _resolve_vault(vault, config)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    store = VaultStore(resolved_db)
    try:
        removed = MarkdownIndexer(store, vault).remove_missing_files()
    finally:
        store.close()
    console.print(f"Removed {removed} orphaned documents.")


@app.command()
def stats(
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show index statistics."""
    config = _load_app_config(config_file, db, None, True)
    store = _open_existing_store(config)
    try:
        info = store.get_stats()
    finally:
        store.close()
    console.print(
        f"Files: {info.total_files}, chunks: {info.total_chunks}, "
        f"embedded: {info.embedded_chunks}, size: {info.db_size_bytes} bytes"
    )


def _open_entities(config_file: Optional[Path], db: Optional[Path], create: bool = False) -> tuple[VaultStore, EntityIndex]:
    config = _load_app_config(config_file, db, None, True)
    if create:
        resolved_db = config.resolve_db_path(Path.cwd())
        _ensure_db_parent(resolved_db)
        store = VaultStore(resolved_db)
    else:
        store = _open_existing_store(config)
    return store, EntityIndex(store)


def _entity_table(rows) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Aliases")
    table.add_column("Mentions")
    for entity in rows:
        table.add_row(entity.id, entity.type, entity.name, ", ".join(entity.aliases), str(entity.interaction_count))
    return table


@entities_app.command("add")
def entities_add(
    entity_type: str = typer.Argument(..., help="Entity type, e.g. person or topic"),
    name: str = typer.Argument(..., help="Display name"),
    alias: Optional[List[str]] = typer.Option(None, "--alias", "-a", help="Alternative name (repeatable)"),
    path: Optional[str] = typer.Option(None, "--path", help="Associated vault document"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Create an entity and print its id."""
    store, entities = _open_entities(config_file, db, create=True)
    try:
        entity_id = entities.upsert_entity(entity_type, name, alias or [], path)
    finally:
        store.close()
    console.print(entity_id)


@entities_app.command("record")
def entities_record(
    event_id: str = typer.Argument(..., help="External event identifier"),
    entity_ids: List[str] = typer.Argument(..., help="Entities that appeared together"),
    role: str = typer.Option("mentioned", "--role", help="Role of the entities in the event"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Record that entities co-occurred in an event."""
    store, entities = _open_entities(config_file, db)
    try:
        edges = entities.record_co_occurrence(entity_ids, event_id, role)
    finally:
        store.close()
    console.print(f"Updated {edges} relations.")


@entities_app.command("find")
def entities_find(
    query: str = typer.Argument(..., help="Name or alias fragment"),
    limit: int = typer.Option(20, "--limit", "-n"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Find entities by name or alias."""
    store, entities = _open_entities(config_file, db)
    try:
        found = entities.find_entity(query, limit)
    finally:
        store.close()
    if not found:
        console.print("[yellow]No entities found.[/yellow]")
        return
    console.print(_entity_table(found))


@entities_app.command("list")
def entities_list(
    entity_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this entity type"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """List entities, most mentioned first."""
    store, entities = _open_entities(config_file, db)
    try:
        rows = entities.list_entities(entity_type)
    finally:
        store.close()
    if not rows:
        console.print("[yellow]No entities found.[/yellow]")
        return
    console.print(_entity_table(rows))


@entities_app.command("show")
def entities_show(
    entity_id: str = typer.Argument(..., help="Entity id"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show one entity and the events it took part in."""
    store, entities = _open_entities(config_file, db)
    try:
        entity = entities.get_entity(entity_id)
        events = entities.get_entity_events(entity_id) if entity else []
    finally:
        store.close()
    if entity is None:
        console.print("[yellow]Entity not found.[/yellow]")
        return
    console.print(_entity_table([entity]))
    for event in events:
        console.print(f"  {event.event_id} ({event.role}) at {event.created_at}")


@entities_app.command("related")
def entities_related(
    entity_id: str = typer.Argument(..., help="Entity id"),
    limit: int = typer.Option(10, "--limit", "-n"),
    config_file: Optional[Path] = ConfigOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show entities that co-occur with the given one."""
    store, entities = _open_entities(config_file, db)
    try:
        related = entities.get_related(entity_id, limit)
    finally:
        store.close()
    if not related:
        console.print("[yellow]No related entities.[/yellow]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Count")
    table.add_column("Weight")
    for item in related:
        table.add_row(item.entity.name, item.entity.type, str(item.co_occurrence_count), f"{item.decayed_weight:.2f}")
    console.print(table)


if __name__ == "__main__":
    app()
