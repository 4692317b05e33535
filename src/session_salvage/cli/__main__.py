"""CLI entry point.

    python -m session_salvage.cli list
    python -m session_salvage.cli show <session-id>
    python -m session_salvage.cli reconstruct --out ./conversations
    python -m session_salvage.cli clear-cache
"""

import json
import logging
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

import click

from session_salvage.cache.manager import CacheManager
from session_salvage.config import Config, load_config
from session_salvage.errors import ExportError, SalvageError
from session_salvage.logging import setup_logging
from session_salvage.models import ReconstructedConversation
from session_salvage.processor.pipeline import SessionPipeline, UnitOfWork
from session_salvage.storage.sources import (
    StoragePaths,
    resolve_storage_path,
    select_backend,
    snapshot_storage,
)

# Set by SIGTERM; checked by the running unit of work
_cancel_event = threading.Event()


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Cancel the running unit of work."""
    _cancel_event.set()


@dataclass
class CliContext:
    config: Config
    storage: Path | None
    copy: bool
    logger: logging.Logger

    def storage_paths(self) -> StoragePaths:
        if self.storage is not None:
            return resolve_storage_path(self.storage)
        return StoragePaths.from_config(self.config.storage)

    def cache_manager(self) -> CacheManager | None:
        if not self.config.cache.enabled:
            return None
        return CacheManager(self.config.cache.cache_dir, logger=self.logger.getChild("cache"))

    def new_work(self) -> UnitOfWork:
        return UnitOfWork(self.config.pipeline.timeout_seconds, _cancel_event)

    @contextmanager
    def pipeline(self) -> Iterator[SessionPipeline]:
        """Open the storage backend and wrap it in a pipeline."""
        paths = self.storage_paths()
        # Fingerprint the original storage, not a temporary snapshot
        if paths.global_storage_exists():
            cache_key = paths.global_storage_db
        else:
            cache_key = paths.agent_storage_dir

        with ExitStack() as stack:
            if self.copy or self.config.storage.copy_databases:
                paths = stack.enter_context(snapshot_storage(paths, self.logger))
            backend = stack.enter_context(select_backend(paths, self.logger))
            yield SessionPipeline(
                backend,
                cache=self.cache_manager(),
                cache_key=cache_key,
                workspace_storage_dir=paths.workspace_storage_dir,
                queue_size=self.config.pipeline.queue_size,
                timeout_seconds=self.config.pipeline.timeout_seconds,
                logger=self.logger,
            )


@click.group()
@click.option(
    "--storage",
    type=click.Path(path_type=Path),
    help="state.vscdb file, globalStorage directory, or agent storage directory",
)
@click.option("--copy", is_flag=True, help="Read from a temporary copy of the databases")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.pass_context
def cli(
    ctx: click.Context, storage: Path | None, copy: bool, verbose: bool, config_path: Path | None
) -> None:
    """Recover chat sessions from the IDE's local storage."""
    config = load_config(config_path)
    level = logging.DEBUG if verbose else config.logging.level_number
    logger = setup_logging("cli", log_dir=config.logging.log_dir, level=level)
    ctx.obj = CliContext(config=config, storage=storage, copy=copy, logger=logger)


@cli.command("list")
@click.option("--clear-cache", is_flag=True, help="Rebuild sessions instead of reading the cache")
@click.pass_obj
def list_sessions(obj: CliContext, clear_cache: bool) -> None:
    """List recovered sessions."""
    try:
        with obj.pipeline() as pipeline:
            if clear_cache and pipeline.cache is not None:
                pipeline.cache.clear_cache()
            sessions = pipeline.load_sessions(use_cache=not clear_cache, work=obj.new_work())
    except SalvageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo(f"Found {len(sessions)} sessions:\n")
    for session in sessions:
        name = session.metadata.name or "(untitled)"
        created = session.metadata.created_at or "-"
        click.echo(f"{session.id}  {created}  {len(session.messages):>4} messages  {name}")


@cli.command()
@click.argument("session_id")
@click.pass_obj
def show(obj: CliContext, session_id: str) -> None:
    """Print one session as JSON."""
    try:
        with obj.pipeline() as pipeline:
            session = pipeline.get_session(session_id, work=obj.new_work())
    except SalvageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.option(
    "--out",
    "out_dir",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for conversation_<id>.json files",
)
@click.pass_obj
def reconstruct(obj: CliContext, out_dir: Path) -> None:
    """Write every reconstructed conversation to a directory."""
    try:
        with obj.pipeline() as pipeline:
            conversations, _ = pipeline.reconstruct(obj.new_work())
        write_conversations(conversations, out_dir)
    except SalvageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Wrote {len(conversations)} conversations to {out_dir}")


def write_conversations(conversations: list[ReconstructedConversation], out_dir: Path) -> None:
    """Write one ``conversation_<id>.json`` file per conversation.

    Raises:
        ExportError: If the directory or a file cannot be written
    """
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        for conversation in conversations:
            path = out_dir / f"conversation_{conversation.composer_id}.json"
            with open(path, "w", encoding="utf-8") as f:
                json.dump(conversation.to_dict(), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ExportError("json", str(out_dir), e) from e


@cli.command("clear-cache")
@click.pass_obj
def clear_cache(obj: CliContext) -> None:
    """Delete all cached sessions."""
    cache = obj.cache_manager()
    if cache is None:
        click.echo("Cache is disabled.")
        return
    cache.clear_cache()
    click.echo(f"Cleared cache in {cache.cache_dir}")


def main() -> None:
    """Main entry point for the CLI."""
    signal.signal(signal.SIGTERM, signal_handler)
    cli()


if __name__ == "__main__":
    main()
