"""Joins bubbles, composers and contexts into ordered conversations."""

import logging
from collections.abc import Iterable

from session_salvage.errors import ReconstructionError
from session_salvage.logging import get_logger
from session_salvage.models import (
    Bubble,
    Composer,
    ConversationHeader,
    MessageContext,
    ReconstructedConversation,
    ReconstructedMessage,
)
from session_salvage.processor.bubble_map import BubbleMap
from session_salvage.processor.text_extractor import extract_bubble_text, has_text

DEFAULT_CHAT_ID = "default-session"


class Reconstructor:
    """Builds one ReconstructedConversation per composer.

    The bubble map must be fully built before reconstruction starts; it is
    only read here.
    """

    def __init__(
        self,
        bubbles: BubbleMap,
        contexts: dict[str, list[MessageContext]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._bubbles = bubbles
        self._contexts = contexts or {}
        self._logger = logger if logger is not None else get_logger("reconstructor")

    def _context_for(self, composer_id: str, bubble_id: str) -> MessageContext | None:
        match = None
        for context in self._contexts.get(composer_id, []):
            if context.bubble_id == bubble_id:
                match = context
        return match

    def reconstruct(self, composer: Composer | None) -> ReconstructedConversation:
        """Reconstruct a single conversation.

        Headers whose bubble is missing are skipped, as are messages with no
        extractable text. The result is stably sorted by timestamp, so equal
        timestamps keep header order.

        Raises:
            ReconstructionError: If ``composer`` is None
        """
        if composer is None:
            raise ReconstructionError("", "composer is nil")

        messages: list[ReconstructedMessage] = []
        missing = 0
        for header in composer.headers:
            bubble = self._bubbles.get(header.bubble_id)
            if bubble is None:
                missing += 1
                continue

            text = extract_bubble_text(bubble, self._logger)
            if not has_text(text):
                self._logger.debug(
                    "Dropping empty message: composer=%s bubble=%s",
                    composer.composer_id,
                    header.bubble_id,
                )
                continue

            messages.append(
                ReconstructedMessage(
                    bubble_id=header.bubble_id,
                    type=header.type or bubble.type,
                    text=text,
                    timestamp=bubble.timestamp,
                    context=self._context_for(composer.composer_id, header.bubble_id),
                )
            )

        if missing:
            self._logger.debug(
                "Missing bubbles: composer=%s missing=%d headers=%d",
                composer.composer_id,
                missing,
                len(composer.headers),
            )

        messages.sort(key=lambda m: m.timestamp)

        return ReconstructedConversation(
            composer_id=composer.composer_id,
            name=composer.name,
            messages=messages,
            created_at=composer.created_at,
            updated_at=composer.last_updated_at,
        )

    def reconstruct_all(self, composers: Iterable[Composer]) -> list[ReconstructedConversation]:
        """Reconstruct every composer, excluding those with no messages."""
        conversations = []
        for composer in composers:
            try:
                conversation = self.reconstruct(composer)
            except ReconstructionError as e:
                self._logger.warning("Skipping composer: %s", e)
                continue
            if not conversation.messages:
                self._logger.warning(
                    "Skipping composer with no messages: composer=%s headers=%d",
                    composer.composer_id,
                    len(composer.headers),
                )
                continue
            conversations.append(conversation)

        self._logger.debug("Reconstructed conversations: count=%d", len(conversations))
        return conversations


def synthesize_composers(bubbles: Iterable[Bubble]) -> list[Composer]:
    """Create one composer per chat id when storage holds no composers.

    Headers follow bubble order, stably sorted by timestamp. Bubbles without
    a chat id are grouped under ``default-session``.
    """
    grouped: dict[str, list[Bubble]] = {}
    for bubble in bubbles:
        grouped.setdefault(bubble.chat_id or DEFAULT_CHAT_ID, []).append(bubble)

    composers = []
    for chat_id, chat_bubbles in grouped.items():
        chat_bubbles.sort(key=lambda b: b.timestamp)
        timestamps = [b.timestamp for b in chat_bubbles if b.timestamp > 0]
        composers.append(
            Composer(
                composer_id=chat_id,
                headers=[
                    ConversationHeader(bubble_id=b.bubble_id, type=b.type) for b in chat_bubbles
                ],
                created_at=min(timestamps) if timestamps else 0,
                last_updated_at=max(timestamps) if timestamps else 0,
            )
        )
    return composers
