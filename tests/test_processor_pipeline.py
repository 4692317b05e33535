"""Tests for the end-to-end session pipeline."""

import json
import threading
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from session_salvage.cache.manager import CacheManager
from session_salvage.errors import PipelineCancelled, SessionNotFoundError, StorageError
from session_salvage.models import Bubble, Composer, ConversationHeader, MessageContext
from session_salvage.processor.pipeline import SessionPipeline, UnitOfWork, load_records
from session_salvage.storage.agent_storage import AgentStorageBackend
from session_salvage.storage.base import StorageBackend
from session_salvage.storage.global_storage import GlobalStorageBackend


class FakeBackend(StorageBackend):
    """In-memory backend for pipeline tests."""

    source_name = "fake"

    def __init__(
        self,
        bubbles: dict[str, Bubble] | None = None,
        composers: list[Composer] | None = None,
        contexts: dict[str, list[MessageContext]] | None = None,
        location: Path = Path("/nonexistent/fake.db"),
    ) -> None:
        self.bubbles = bubbles or {}
        self.composers = composers or []
        self.contexts = contexts or {}
        self._location = location

    @property
    def location(self) -> Path:
        return self._location

    def load_bubbles(self) -> dict[str, Bubble]:
        return dict(self.bubbles)

    def load_composers(self) -> list[Composer]:
        return list(self.composers)

    def load_message_contexts(self) -> dict[str, list[MessageContext]]:
        return dict(self.contexts)


class FailingBackend(FakeBackend):
    def load_composers(self) -> list[Composer]:
        raise StorageError("/broken.db", "query", "disk I/O error")


def many_records(count: int) -> FakeBackend:
    bubbles = {
        f"b{i}": Bubble(bubble_id=f"b{i}", text=f"message {i}", timestamp=1000 + i, type=1 + i % 2)
        for i in range(count)
    }
    composers = [
        Composer(
            composer_id=f"c{n}",
            name=f"Chat {n}",
            headers=[ConversationHeader(f"b{i}") for i in range(n, count, 5)],
        )
        for n in range(5)
    ]
    return FakeBackend(bubbles, composers)


class TestUnitOfWork:
    """Tests for UnitOfWork."""

    def test_fresh_work_passes(self) -> None:
        UnitOfWork(timeout_seconds=60).check()

    def test_cancelled(self) -> None:
        """A cancelled unit should raise on check."""
        work = UnitOfWork()
        work.cancel()
        with pytest.raises(PipelineCancelled, match="cancelled"):
            work.check()

    def test_expired(self) -> None:
        """A unit past its deadline should raise and mark itself cancelled."""
        work = UnitOfWork(timeout_seconds=0)
        with pytest.raises(PipelineCancelled, match="timed out"):
            work.check()
        assert work.cancelled

    def test_shared_event(self) -> None:
        """An externally owned event should cancel the unit."""
        event = threading.Event()
        work = UnitOfWork(cancel_event=event)
        event.set()
        assert work.cancelled


class TestLoadRecords:
    """Tests for load_records."""

    def test_concurrent_matches_sequential(self) -> None:
        """Threaded loading should produce the same records as sequential."""
        backend = many_records(250)
        threaded = load_records(backend, queue_size=4, concurrent=True)
        sequential = load_records(backend, concurrent=False)

        assert len(threaded.bubbles) == len(sequential.bubbles) == 250
        assert [c.composer_id for c in threaded.composers] == ["c0", "c1", "c2", "c3", "c4"]
        assert threaded.bubbles.frozen and sequential.bubbles.frozen

    def test_producer_failure_propagates(self) -> None:
        """A loader failure should surface after the join."""
        with pytest.raises(StorageError):
            load_records(FailingBackend(), concurrent=True)

    def test_cancelled_before_start(self) -> None:
        """A cancelled unit of work should stop loading."""
        work = UnitOfWork()
        work.cancel()
        with pytest.raises(PipelineCancelled):
            load_records(many_records(50), work=work, queue_size=1, concurrent=True)


class TestSessionPipeline:
    """Tests for SessionPipeline."""

    def test_end_to_end(self, make_global_db: Callable[..., Path]) -> None:
        """A single stored message should become a single session message."""
        rows = {
            "bubbleId:c1:b1": {"bubbleId": "b1", "text": "hi", "timestamp": 1000, "type": 1},
            "composerData:c1": {
                "composerId": "c1",
                "name": "Test",
                "fullConversationHeadersOnly": [{"bubbleId": "b1", "type": 1}],
            },
        }
        with GlobalStorageBackend(make_global_db(rows)) as backend:
            sessions = SessionPipeline(backend).build_sessions()

        assert len(sessions) == 1
        assert sessions[0].id == "c1"
        assert sessions[0].source == "globalStorage"
        assert [m.to_dict() for m in sessions[0].messages] == [
            {"timestamp": "1970-01-01T00:00:01Z", "actor": "user", "content": "hi"}
        ]

    def test_concurrent_and_sequential_sessions_match(self) -> None:
        backend = many_records(100)
        threaded = SessionPipeline(backend, concurrent=True).build_sessions()
        sequential = SessionPipeline(backend, concurrent=False).build_sessions()
        assert [s.to_dict() for s in threaded] == [s.to_dict() for s in sequential]

    def test_workspace_association(
        self,
        make_global_db: Callable[..., Path],
        simple_rows: dict[str, object],
        tmp_path: Path,
    ) -> None:
        """Sessions should carry the workspace matching their contexts."""
        workspace_dir = tmp_path / "User" / "workspaceStorage" / "ws-hash"
        workspace_dir.mkdir(parents=True)
        (workspace_dir / "workspace.json").write_text(
            json.dumps({"folder": "file:///home/dev/project"})
        )
        with GlobalStorageBackend(make_global_db(simple_rows)) as backend:
            pipeline = SessionPipeline(backend, workspace_storage_dir=workspace_dir.parent)
            (session,) = pipeline.build_sessions()
        assert session.workspace == "ws-hash"

    def test_duplicates_removed(self, make_global_db: Callable[..., Path]) -> None:
        """Composers with identical content should yield one session."""
        rows = {
            "bubbleId:c1:b1": {"text": "same", "timestamp": 1000, "type": 1},
            "composerData:c1": {"fullConversationHeadersOnly": [{"bubbleId": "b1", "type": 1}]},
            "composerData:c2": {"fullConversationHeadersOnly": [{"bubbleId": "b1", "type": 1}]},
        }
        with GlobalStorageBackend(make_global_db(rows)) as backend:
            sessions = SessionPipeline(backend).build_sessions()
        assert [s.id for s in sessions] == ["c1"]

    def test_synthesized_composers(self, make_store_db: Callable[..., Path], tmp_path: Path) -> None:
        """Storage with only messages should be grouped into sessions by chat."""
        make_store_db(
            "session-a",
            {
                "k1": {"id": "m1", "role": "user", "timestamp": 1000, "content": [{"text": "q"}]},
                "k2": {"id": "m2", "role": "assistant", "timestamp": 2000, "content": [{"text": "a"}]},
            },
        )
        with AgentStorageBackend(tmp_path / "chats") as backend:
            (session,) = SessionPipeline(backend).build_sessions()

        assert session.id == "session-a"
        assert session.source == "agentStorage"
        assert [(m.actor, m.content) for m in session.messages] == [("user", "q"), ("assistant", "a")]
        assert session.metadata.created_at == "1970-01-01T00:00:01Z"
        assert session.metadata.updated_at == "1970-01-01T00:00:02Z"

    def test_cache_write_through_and_hit(
        self,
        make_global_db: Callable[..., Path],
        simple_rows: dict[str, object],
        tmp_path: Path,
    ) -> None:
        """A complete run should populate the cache, and the next run read it."""
        db_path = make_global_db(simple_rows)
        cache = CacheManager(tmp_path / "cache")
        with GlobalStorageBackend(db_path) as backend:
            pipeline = SessionPipeline(backend, cache=cache)
            first = pipeline.load_sessions()
            assert cache.is_cache_valid(db_path)

            with patch.object(pipeline, "build_sessions") as mock_build:
                second = pipeline.load_sessions()
                mock_build.assert_not_called()

        assert [s.to_dict() for s in second] == [s.to_dict() for s in first]

    def test_cache_bypass(
        self,
        make_global_db: Callable[..., Path],
        simple_rows: dict[str, object],
        tmp_path: Path,
    ) -> None:
        """use_cache=False should rebuild even with a valid cache."""
        cache = CacheManager(tmp_path / "cache")
        with GlobalStorageBackend(make_global_db(simple_rows)) as backend:
            pipeline = SessionPipeline(backend, cache=cache)
            pipeline.load_sessions()
            with patch.object(pipeline, "build_sessions", return_value=[]) as mock_build:
                assert pipeline.load_sessions(use_cache=False) == []
                mock_build.assert_called_once()

    def test_cancelled_run_writes_nothing(
        self,
        make_global_db: Callable[..., Path],
        simple_rows: dict[str, object],
        tmp_path: Path,
    ) -> None:
        """A cancelled run should raise and leave the cache empty."""
        cache = CacheManager(tmp_path / "cache")
        work = UnitOfWork()
        work.cancel()
        with GlobalStorageBackend(make_global_db(simple_rows)) as backend:
            pipeline = SessionPipeline(backend, cache=cache)
            with pytest.raises(PipelineCancelled):
                pipeline.load_sessions(work=work)
        assert cache.load_index() is None

    def test_timed_out_run(self, make_global_db: Callable[..., Path], simple_rows: dict[str, object]) -> None:
        """A run past its deadline should raise PipelineCancelled."""
        with GlobalStorageBackend(make_global_db(simple_rows)) as backend:
            pipeline = SessionPipeline(backend, timeout_seconds=0)
            with pytest.raises(PipelineCancelled):
                pipeline.build_sessions()

    def test_storage_error_propagates(self) -> None:
        """A backend failure should not be swallowed."""
        with pytest.raises(StorageError):
            SessionPipeline(FailingBackend()).build_sessions()

    def test_get_session(
        self, make_global_db: Callable[..., Path], simple_rows: dict[str, object]
    ) -> None:
        """Sessions should be retrievable by id."""
        with GlobalStorageBackend(make_global_db(simple_rows)) as backend:
            pipeline = SessionPipeline(backend)
            assert pipeline.get_session("c1").metadata.name == "Greeting"
            with pytest.raises(SessionNotFoundError):
                pipeline.get_session("missing")
