#!/usr/bin/env python3
"""
ISSA CLI - Command Line Interface
Maintenance and inspection of the knowledge base from the terminal
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from issa._version import __version__
from issa.core.exceptions import IssaError
from issa.core.secure_config import Settings
from issa.embeddings import get_embedder
from issa.rag.retrieval.results import ScoredEntry
from issa.services.knowledge_service import KnowledgeService

SEED_FILE = Path(__file__).parent / "resources" / "seed_knowledge.yaml"

console = Console()


def _open_service(ctx: click.Context, with_embedder: bool = False) -> KnowledgeService:
    """Build the service from the group options"""
    overrides: Dict[str, Any] = {}
    if ctx.obj.get("db"):
        overrides["database"] = {"path": ctx.obj["db"]}

    try:
        settings = Settings(config_path=ctx.obj.get("config"), overrides=overrides)
        embedder = get_embedder(settings) if with_embedder else None
        return KnowledgeService(settings, embedder=embedder)
    except IssaError as e:
        click.echo(click.style(f"✗ Could not open knowledge base: {e.message}", fg="red"))
        for suggestion in e.suggestions:
            click.echo(f"  • {suggestion}")
        sys.exit(1)


def _fail(message: str, error: IssaError) -> None:
    click.echo(click.style(f"✗ {message}: {error.message}", fg="red"))
    for suggestion in error.suggestions:
        click.echo(f"  • {suggestion}")
    sys.exit(1)


def _results_table(title: str, entries: List[ScoredEntry]) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Score", justify="right")
    table.add_column("Reason")
    for position, scored in enumerate(entries, 1):
        table.add_row(
            str(position),
            str(scored.entry_id),
            scored.entry.title,
            str(scored.entry.category),
            f"{scored.relevance_score:.3f}",
            scored.reason,
        )
    return table


@click.group()
@click.version_option(version=__version__, prog_name="ISSA")
@click.option(
    '--config', 'config_path', type=click.Path(dir_okay=False), help='Path to .issa file'
)
@click.option('--db', help='SQLite database path (overrides database.path)')
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db: Optional[str]):
    """
    ISSA - Knowledge retrieval for the Takaful assistant.

    Load, search and maintain the knowledge base.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    ctx.obj["db"] = db


@cli.command()
@click.argument('file', required=False, type=click.Path(exists=True, dir_okay=False))
@click.option('--seed', is_flag=True, help='Load the bundled starter knowledge')
@click.pass_context
def load(ctx: click.Context, file: Optional[str], seed: bool):
    """Add the entries of a YAML or JSON file"""
    if not file and not seed:
        click.echo(click.style("✗ Give a FILE or --seed", fg="red"))
        sys.exit(1)

    service = _open_service(ctx)
    try:
        # Seeding twice must not duplicate the starter entries
        added = service.load_entries(file or SEED_FILE, skip_existing=seed and not file)
    except IssaError as e:
        _fail("Loading failed", e)
    finally:
        service.close()

    click.echo(click.style(f"✓ Loaded {len(added)} entries", fg="green"))


@cli.command()
@click.argument('query')
@click.option('--intent', help='Intent detected for the question (contact_info, support...)')
@click.option('--category', help='Restrict fuzzy matching to a category')
@click.option('--max-results', type=int, default=None, help='Result cap')
@click.option('--min-relevance', type=float, default=None, help='Score threshold')
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    intent: Optional[str],
    category: Optional[str],
    max_results: Optional[int],
    min_relevance: Optional[float],
):
    """Multi-strategy search (keyword + fuzzy + intent)"""
    service = _open_service(ctx)
    try:
        result = asyncio.run(
            service.search(
                query,
                max_results=max_results,
                min_relevance=min_relevance,
                intent=intent,
                category=category,
            )
        )
    except IssaError as e:
        _fail("Search failed", e)
    finally:
        service.close()

    if not result.entries:
        click.echo(click.style("No relevant entries found", fg="yellow"))
        return

    console.print(_results_table(f"Results for: {query}", result.entries))
    click.echo(
        f"Found {result.total_found} ({result.method}) in {result.processing_time_ms:.1f} ms"
    )


@cli.command()
@click.argument('query')
@click.option('--top-k', type=int, default=5, show_default=True, help='Number of results')
@click.option('--vectors', is_flag=True, help='Enable vector search before ranking')
@click.pass_context
def hybrid(ctx: click.Context, query: str, top_k: int, vectors: bool):
    """Lexical + vector ranking fused with RRF"""
    service = _open_service(ctx, with_embedder=vectors)

    async def run() -> List[ScoredEntry]:
        if vectors:
            stats = await service.enable_vector_search()
            if not stats["enabled"]:
                click.echo(click.style("⚠ Vector search unavailable, lexical only", fg="yellow"))
            await service.wait_for_vectors()
        return await service.search_hybrid(query, top_k)

    try:
        entries = asyncio.run(run())
    except IssaError as e:
        _fail("Hybrid search failed", e)
    finally:
        service.close()

    if not entries:
        click.echo(click.style("No relevant entries found", fg="yellow"))
        return
    console.print(_results_table(f"Hybrid results for: {query}", entries))


@cli.command()
@click.argument('query')
@click.pass_context
def context(ctx: click.Context, query: str):
    """Show the prompt context built for a question"""
    service = _open_service(ctx)
    try:
        text = asyncio.run(service.get_context_for_query(query))
    finally:
        service.close()
    click.echo(text)


@cli.command()
@click.pass_context
def embed(ctx: click.Context):
    """Compute and store the embedding of every active entry"""
    service = _open_service(ctx, with_embedder=True)
    try:
        entries = service.store.read_active_entries()
        if not entries:
            click.echo(click.style("No active entries to embed", fg="yellow"))
            return

        click.echo(click.style("🧮 Computing embeddings...", fg="cyan"))
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Embedding entries", total=len(entries))
            report = service.vector_index.precompute(
                entries, progress=lambda done, total: progress.update(task, completed=done)
            )
    except IssaError as e:
        _fail("Embedding failed", e)
    finally:
        service.close()

    color = "green" if report.failed == 0 else "yellow"
    click.echo(
        click.style(
            f"✓ Embedded {report.processed} entries "
            f"({report.failed} failed, {report.skipped} skipped) in {report.duration_ms:.0f} ms",
            fg=color,
        )
    )


@cli.command()
@click.pass_context
def reindex(ctx: click.Context):
    """Rebuild the full-text index"""
    service = _open_service(ctx)
    try:
        total = service.rebuild_index()
    except IssaError as e:
        _fail("Reindex failed", e)
    finally:
        service.close()
    click.echo(click.style(f"✓ Full-text index rebuilt ({total} entries)", fg="green"))


@cli.command()
@click.pass_context
def stats(ctx: click.Context):
    """Knowledge base, cache and vector statistics"""
    service = _open_service(ctx)
    try:
        rows = {
            "entries (active)": service.store.count(),
            "entries (total)": service.store.count(active_only=False),
            "full-text index": "FTS5" if service.db.fts_available else "substring fallback",
            **{f"cache.{key}": value for key, value in service.get_cache_stats().items()},
            **{f"vectors.{key}": value for key, value in service.get_vector_stats().items()},
        }
    finally:
        service.close()

    table = Table(title="ISSA statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in rows.items():
        table.add_row(key, str(value))
    console.print(table)
    click.echo(f"Active entries: {rows['entries (active)']}")


def main():
    """Main entry point"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.")
        sys.exit(0)
    except Exception as e:
        click.echo(click.style(f"Error: {e}", fg="red"))
        if os.environ.get('ISSA_DEBUG'):
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
