"""Maps reconstructed conversations to canonical Sessions."""

import logging

from session_salvage.errors import ReconstructionError
from session_salvage.logging import get_logger
from session_salvage.models import (
    ACTOR_ASSISTANT,
    Message,
    ReconstructedConversation,
    Session,
    SessionMetadata,
    format_timestamp,
)

DEFAULT_SOURCE = "globalStorage"


def normalize_actor(actor_type: int) -> str:
    """Map an actor code to a role name (anything but 2 is the user)."""
    return "assistant" if actor_type == ACTOR_ASSISTANT else "user"


def normalize_timestamp(ms: int) -> str:
    """ISO-8601 for a millisecond epoch, or "" when unknown."""
    return format_timestamp(ms) if ms > 0 else ""


def normalize_conversation(
    conversation: ReconstructedConversation | None,
    workspace: str = "",
    source: str = DEFAULT_SOURCE,
) -> Session:
    """Convert one conversation into a Session.

    The session id is the composer id, and the workspace is stored as given.

    Raises:
        ReconstructionError: If the conversation is None or has no messages
    """
    if conversation is None:
        raise ReconstructionError("", "conversation is nil")
    if not conversation.messages:
        raise ReconstructionError(conversation.composer_id, "conversation has no messages")

    messages = [
        Message(
            actor=normalize_actor(msg.type),
            content=msg.text,
            timestamp=normalize_timestamp(msg.timestamp),
        )
        for msg in conversation.messages
    ]

    return Session(
        id=conversation.composer_id,
        workspace=workspace,
        source=source,
        messages=messages,
        metadata=SessionMetadata(
            composer_id=conversation.composer_id,
            name=conversation.name,
            message_count=len(messages),
            created_at=normalize_timestamp(conversation.created_at),
            updated_at=normalize_timestamp(conversation.updated_at),
        ),
    )


def normalize_all(
    conversations: list[ReconstructedConversation],
    workspaces: dict[str, str] | None = None,
    source: str = DEFAULT_SOURCE,
    logger: logging.Logger | None = None,
) -> list[Session]:
    """Normalize many conversations, skipping any that fail.

    Args:
        conversations: Reconstructed conversations
        workspaces: Composer id to workspace identifier
        source: Source tag for every session
        logger: Logger handle (defaults to the module logger)
    """
    log = logger if logger is not None else get_logger("normalizer")
    workspaces = workspaces or {}
    sessions = []
    for conversation in conversations:
        try:
            sessions.append(
                normalize_conversation(
                    conversation, workspaces.get(conversation.composer_id, ""), source
                )
            )
        except ReconstructionError as e:
            log.warning("Skipping conversation: %s", e)
    return sessions
