"""Content-equality deduplication of sessions."""

import logging

from session_salvage.logging import get_logger
from session_salvage.models import Session


def deduplicate_sessions(
    sessions: list[Session], logger: logging.Logger | None = None
) -> list[Session]:
    """Drop sessions whose message sequence repeats an earlier session's.

    Two sessions are duplicates when their ordered (actor, content,
    timestamp) triples are identical; ids, workspace and metadata are not
    compared. The first occurrence wins and input order is kept.
    """
    log = logger if logger is not None else get_logger("deduplicator")
    seen: dict[str, str] = {}
    unique = []
    for session in sessions:
        digest = session.content_hash
        if digest in seen:
            log.debug("Dropping duplicate session: id=%s duplicate_of=%s", session.id, seen[digest])
            continue
        seen[digest] = session.id
        unique.append(session)

    if len(unique) < len(sessions):
        log.info("Removed duplicate sessions: removed=%d kept=%d", len(sessions) - len(unique), len(unique))
    return unique
