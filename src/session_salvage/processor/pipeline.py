"""End-to-end pipeline: load, reconstruct, normalize, deduplicate, cache.

Loading runs three producer threads (bubbles, composers, contexts), each
streaming into its own bounded queue. The consumer drains all three queues
to completion before any conversation is built. A UnitOfWork carries the
deadline and cancellation flag; a cancelled run returns nothing and writes
nothing to the cache.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from session_salvage.cache.manager import CacheManager
from session_salvage.errors import PipelineCancelled, SessionNotFoundError
from session_salvage.logging import child_logger
from session_salvage.models import Composer, MessageContext, ReconstructedConversation, Session
from session_salvage.processor.bubble_map import BubbleMap
from session_salvage.processor.deduplicator import deduplicate_sessions
from session_salvage.processor.normalizer import normalize_all
from session_salvage.processor.reconstructor import Reconstructor, synthesize_composers
from session_salvage.processor.workspace import associate_workspace, detect_workspaces
from session_salvage.storage.base import StorageBackend

# Seconds between cancellation checks while blocked on a queue
POLL_INTERVAL = 0.05

_DONE = object()


class UnitOfWork:
    """Deadline and cancellation flag for one pipeline invocation."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        self._cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        """Raise PipelineCancelled if cancelled or past the deadline."""
        if self.cancelled:
            raise PipelineCancelled("operation cancelled")
        if self.expired:
            self.cancel()
            raise PipelineCancelled("operation timed out")


@dataclass
class LoadedRecords:
    """Everything a reconstruction run needs, fully loaded."""

    bubbles: BubbleMap
    composers: list[Composer] = field(default_factory=list)
    contexts: dict[str, list[MessageContext]] = field(default_factory=dict)


def _produce(load: Callable[[], Iterable], out: queue.Queue, work: UnitOfWork) -> None:
    try:
        for item in load():
            while True:
                work.check()
                try:
                    out.put(item, timeout=POLL_INTERVAL)
                    break
                except queue.Full:
                    continue
    finally:
        while not work.cancelled:
            try:
                out.put(_DONE, timeout=POLL_INTERVAL)
                break
            except queue.Full:
                continue


def _drain(source: queue.Queue, work: UnitOfWork, handle: Callable[[object], None]) -> None:
    while True:
        try:
            item = source.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            work.check()
            continue
        if item is _DONE:
            return
        handle(item)


def load_records(
    backend: StorageBackend,
    work: UnitOfWork | None = None,
    queue_size: int = 100,
    concurrent: bool = True,
    logger: logging.Logger | None = None,
) -> LoadedRecords:
    """Load bubbles, composers and contexts from a backend.

    Args:
        backend: Storage backend to read
        work: Deadline/cancellation carrier
        queue_size: Bound of each producer queue
        concurrent: Run the three loaders in parallel threads
        logger: Logger handle

    Raises:
        StorageError: If a loader fails
        PipelineCancelled: If the unit of work is cancelled or times out
    """
    work = work or UnitOfWork()
    log = child_logger(logger, "pipeline")
    records = LoadedRecords(bubbles=BubbleMap())

    def add_context(item: object) -> None:
        composer_id, contexts = item
        records.contexts.setdefault(composer_id, []).extend(contexts)

    if not concurrent:
        work.check()
        records.bubbles.update(backend.load_bubbles())
        work.check()
        records.composers.extend(backend.load_composers())
        work.check()
        for item in backend.load_message_contexts().items():
            add_context(item)
        records.bubbles.freeze()
        return records

    bubble_queue: queue.Queue = queue.Queue(maxsize=queue_size)
    composer_queue: queue.Queue = queue.Queue(maxsize=queue_size)
    context_queue: queue.Queue = queue.Queue(maxsize=queue_size)

    executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="loader")
    completed = False
    try:
        futures: list[Future] = [
            executor.submit(_produce, lambda: backend.load_bubbles().values(), bubble_queue, work),
            executor.submit(_produce, backend.load_composers, composer_queue, work),
            executor.submit(
                _produce, lambda: backend.load_message_contexts().items(), context_queue, work
            ),
        ]

        _drain(bubble_queue, work, records.bubbles.set)
        _drain(composer_queue, work, records.composers.append)
        _drain(context_queue, work, add_context)

        # Join barrier: surface any producer failure before reconstructing
        for future in futures:
            future.result()
        completed = True
    except BaseException:
        work.cancel()
        raise
    finally:
        executor.shutdown(wait=completed, cancel_futures=not completed)

    records.bubbles.freeze()
    log.debug(
        "Loaded records: bubbles=%d composers=%d context_groups=%d",
        len(records.bubbles),
        len(records.composers),
        len(records.contexts),
    )
    return records


class SessionPipeline:
    """Read-through/write-through pipeline over one storage backend.

    Args:
        backend: Storage backend to read
        cache: Cache manager, or None to disable caching
        cache_key: Path fingerprinting the storage (defaults to the
            backend's location)
        workspace_storage_dir: workspaceStorage directory for workspace
            association
        queue_size: Bound of each producer queue
        timeout_seconds: Deadline for one run (None for no deadline)
        concurrent: Load with producer threads
        logger: Logger handle
    """

    def __init__(
        self,
        backend: StorageBackend,
        cache: CacheManager | None = None,
        cache_key: Path | None = None,
        workspace_storage_dir: Path | None = None,
        queue_size: int = 100,
        timeout_seconds: float | None = None,
        concurrent: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.cache_key = cache_key or backend.location
        self.workspace_storage_dir = workspace_storage_dir
        self.queue_size = queue_size
        self.timeout_seconds = timeout_seconds
        self.concurrent = concurrent
        self._logger = child_logger(logger, "pipeline")

    def new_work(self) -> UnitOfWork:
        return UnitOfWork(self.timeout_seconds)

    def reconstruct(
        self, work: UnitOfWork | None = None
    ) -> tuple[list[ReconstructedConversation], dict[str, list[MessageContext]]]:
        """Load everything and rebuild every non-empty conversation.

        Returns:
            Tuple of (conversations, contexts grouped by composer id)
        """
        work = work or self.new_work()
        records = load_records(self.backend, work, self.queue_size, self.concurrent, self._logger)
        work.check()

        composers = records.composers
        if not composers and len(records.bubbles):
            self._logger.info(
                "No composers found, grouping bubbles by chat: bubbles=%d", len(records.bubbles)
            )
            composers = synthesize_composers(records.bubbles.values())

        reconstructor = Reconstructor(records.bubbles, records.contexts, self._logger)
        conversations = reconstructor.reconstruct_all(composers)
        work.check()

        self._logger.info(
            "Reconstructed conversations: count=%d composers=%d", len(conversations), len(composers)
        )
        return conversations, records.contexts

    def build_sessions(self, work: UnitOfWork | None = None) -> list[Session]:
        """Run the full pipeline without touching the cache."""
        work = work or self.new_work()
        conversations, contexts = self.reconstruct(work)

        known = detect_workspaces(self.workspace_storage_dir, self._logger)
        workspaces = {
            conv.composer_id: associate_workspace(conv.composer_id, contexts, known)
            for conv in conversations
        }

        sessions = normalize_all(conversations, workspaces, self.backend.source_name, self._logger)
        work.check()
        return deduplicate_sessions(sessions, self._logger)

    def _cached_sessions(self) -> list[Session] | None:
        if self.cache is None or not self.cache.is_cache_valid(self.cache_key):
            return None
        sessions = self.cache.load_all_sessions()
        if sessions is not None:
            self._logger.debug("Cache hit: sessions=%d", len(sessions))
        return sessions

    def _store(self, sessions: list[Session]) -> None:
        if self.cache is None:
            return
        try:
            self.cache.save_sessions(sessions, self.cache_key)
        except (OSError, yaml.YAMLError) as e:
            self._logger.warning("Failed to write cache: dir=%s error=%s", self.cache.cache_dir, e)

    def load_sessions(self, use_cache: bool = True, work: UnitOfWork | None = None) -> list[Session]:
        """Return every session, reading through the cache.

        Raises:
            StorageError: If the backend cannot be read
            PipelineCancelled: If the run is cancelled or times out
        """
        if use_cache:
            cached = self._cached_sessions()
            if cached is not None:
                return cached

        sessions = self.build_sessions(work)
        self._store(sessions)
        return sessions

    def get_session(
        self, session_id: str, use_cache: bool = True, work: UnitOfWork | None = None
    ) -> Session:
        """Return one session by id.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        if use_cache and self.cache is not None and self.cache.is_cache_valid(self.cache_key):
            session = self.cache.load_session(session_id)
            if session is not None:
                return session

        for session in self.load_sessions(use_cache, work):
            if session.id == session_id:
                return session
        raise SessionNotFoundError(session_id)
