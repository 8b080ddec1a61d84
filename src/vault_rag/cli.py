"""Command-line interface for indexing a vault and querying it.

Usage:
    vault-rag index --vault ~/notes
    vault-rag query "what did I decide about the backup plan?"
    vault-rag ask "summarize my notes on sourdough" -o retrieval.reranking_enabled=true
    vault-rag status --vault ~/notes
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from loguru import logger
from pydantic import ValidationError

from vault_rag.components import RagComponents, build_components
from vault_rag.config import RagConfig, RetrievalSettings, load_config
from vault_rag.errors import VaultRagError
from vault_rag.logging_setup import configure_logging
from vault_rag.models import SyncStatus

T = TypeVar("T")


def _run(config: RagConfig, work: Callable[[RagComponents], Awaitable[T]]) -> T:
    async def main() -> T:
        components = await build_components(config)
        try:
            return await work(components)
        finally:
            await components.aclose()

    try:
        return asyncio.run(main())
    except VaultRagError as e:
        logger.error(str(e))
        sys.exit(1)


def _vault(config: RagConfig, vault: str | None) -> str:
    path = vault or config.vault.path
    if not path:
        raise click.UsageError("No vault given: pass --vault or set vault.path")
    return path


@click.group()
@click.option("--config-name", default="default", help="Config file name in the config dir")
@click.option("--config-path", default=None, help="Config directory (defaults to conf/vault_rag)")
@click.option("-o", "--override", "overrides", multiple=True, help="Hydra override, e.g. retrieval.max_k=20")
@click.option("--log-level", default=None, help="Override logging.level")
@click.pass_context
def cli(ctx: click.Context, config_name: str, config_path: str | None, overrides: tuple[str, ...], log_level: str | None):
    """Local semantic search over a markdown vault."""
    config = load_config(config_name, config_path, list(overrides))
    configure_logging(log_level or config.logging.level, config.logging.file)
    ctx.obj = config


@cli.command()
@click.option("--vault", default=None, help="Vault root (defaults to vault.path)")
@click.option("--full", is_flag=True, help="Re-index every file, ignoring stored hashes")
@click.pass_obj
def index(config: RagConfig, vault: str | None, full: bool):
    """Index new and changed notes; drop notes deleted since the last run."""
    vault_path = _vault(config, vault)

    async def work(components: RagComponents) -> None:
        metadata = components.metadata_store.load(vault_path)
        stored = metadata.indexed_file_hashes if metadata else None

        report = await components.indexer.index_vault(vault_path, None if full else stored)

        if stored:
            changes = await components.sync_service.detect_changes(vault_path, stored)
            for path in changes.deleted_files:
                await components.indexer.remove_file(path)
            if changes.deleted_files:
                components.metadata_store.forget_files(vault_path, changes.deleted_files)

        click.echo(
            f"Indexed {len(report.indexed)} files ({report.chunk_count} chunks), "
            f"skipped {len(report.skipped)}, failed {len(report.failed)}"
        )
        for path in report.failed:
            click.echo(f"  failed: {path}", err=True)

    _run(config, work)


@cli.command()
@click.argument("question", type=str)
@click.option("--top-k", type=int, default=None, help="Number of chunks to return")
@click.pass_obj
def query(config: RagConfig, question: str, top_k: int | None):
    """Print the note excerpts most relevant to QUESTION."""
    settings = config.retrieval
    if top_k is not None:
        try:
            settings = RetrievalSettings.model_validate(
                {**settings.model_dump(), "display_k": top_k, "max_k": max(top_k, settings.max_k)}
            )
        except ValidationError as e:
            raise click.BadParameter(str(e), param_hint="--top-k") from e

    async def work(components: RagComponents) -> None:
        chunks = await components.retriever.retrieve_chunks(question, settings)
        if not chunks:
            click.echo("No relevant notes found.")
            return
        for i, chunk in enumerate(chunks, 1):
            location = chunk.section_title or chunk.file_path or chunk.id
            lines = f"{chunk.metadata.get('startLine', '?')}-{chunk.metadata.get('endLine', '?')}"
            click.echo(f"[{i}] {location} (lines {lines})")
            text = chunk.text[:300] + "..." if len(chunk.text) > 300 else chunk.text
            click.echo(f"{text}\n")

    _run(config, work)


@cli.command()
@click.argument("question", type=str)
@click.pass_obj
def ask(config: RagConfig, question: str):
    """Answer QUESTION from the notes."""

    async def work(components: RagComponents) -> None:
        result = await components.rag_service.answer(question)
        click.echo(result.answer)
        if result.chunks:
            click.echo("\nSources:")
            for chunk in result.chunks:
                click.echo(f"  - {chunk.section_title or chunk.file_path}")

    _run(config, work)


@cli.command()
@click.option("--vault", default=None, help="Vault root (defaults to vault.path)")
@click.pass_obj
def status(config: RagConfig, vault: str | None):
    """Report whether the index reflects the vault."""
    vault_path = _vault(config, vault)

    async def work(components: RagComponents) -> None:
        sync_status = await components.sync_service.check_sync_status(vault_path)
        click.echo(f"{vault_path}: {sync_status.value}")
        if sync_status is SyncStatus.OUT_OF_SYNC:
            changes = await components.sync_service.detect_changes(vault_path)
            for label, paths in (
                ("new", changes.new_files),
                ("modified", changes.modified_files),
                ("deleted", changes.deleted_files),
            ):
                for path in paths:
                    click.echo(f"  {label}: {path}")

    _run(config, work)


@cli.command()
@click.option("--vault", default=None, help="Also forget indexing metadata for this vault")
@click.confirmation_option(prompt="Delete every indexed chunk in the collection?")
@click.pass_obj
def clear(config: RagConfig, vault: str | None):
    """Drop and recreate the vector collection."""

    async def work(components: RagComponents) -> None:
        await components.vector_store.clear()
        vault_path = vault or config.vault.path
        if vault_path:
            components.metadata_store.delete(vault_path)
        click.echo(f"Cleared collection {config.vector_store.collection_name}")

    _run(config, work)


if __name__ == "__main__":
    cli()
