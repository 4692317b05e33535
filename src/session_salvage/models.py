"""Canonical data models.

Raw records (bubbles, composers, message contexts) are read-only views over
data recovered from the IDE's storage. Their ``from_dict`` constructors are
schema tolerant: a field of the wrong type is treated as absent rather than
raising, so a single odd value never costs the whole record.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ACTOR_USER = 1
ACTOR_ASSISTANT = 2


def get_str(data: dict, key: str, default: str = "") -> str:
    """Return ``data[key]`` if it is a string, else ``default``."""
    value = data.get(key)
    return value if isinstance(value, str) else default


def get_int(data: dict, key: str, default: int = 0) -> int:
    """Return ``data[key]`` as an int if it is numeric, else ``default``.

    JSON numbers may arrive as floats (``1700000000000.0``); booleans are
    rejected even though ``bool`` subclasses ``int``.
    """
    value = data.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return default


def get_list(data: dict, key: str) -> list:
    """Return ``data[key]`` if it is a list, else an empty list."""
    value = data.get(key)
    return value if isinstance(value, list) else []


def get_str_list(data: dict, key: str) -> list[str]:
    """Return the string members of the list at ``data[key]``."""
    return [item for item in get_list(data, key) if isinstance(item, str)]


def format_timestamp(ms: int) -> str:
    """Format a millisecond epoch as an ISO-8601 UTC timestamp.

    Values outside the platform's datetime range give "".
    """
    try:
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return ""
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class RawRecord:
    """A key and its stored value, exactly as read from storage."""

    key: str
    value: str


@dataclass
class CodeBlock:
    """A code block attached to a message."""

    content: str
    language: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CodeBlock":
        return cls(content=get_str(data, "content"), language=get_str(data, "language"))


@dataclass
class Bubble:
    """One message record."""

    bubble_id: str
    chat_id: str = ""
    text: str = ""
    rich_text: Any = None  # JSON string, or an already-parsed tree
    code_blocks: list[CodeBlock] = field(default_factory=list)
    timestamp: int = 0  # milliseconds
    type: int = 0  # 1=user, 2=assistant

    @classmethod
    def from_dict(cls, data: dict, bubble_id: str = "", chat_id: str = "") -> "Bubble":
        """Build a bubble from a decoded JSON object.

        Explicit ``bubble_id``/``chat_id`` arguments (taken from the storage
        key) win over ids found inside the object.
        """
        rich_text = data.get("richText")
        if not isinstance(rich_text, (str, dict, list)):
            rich_text = None

        code_blocks = [
            CodeBlock.from_dict(item)
            for item in get_list(data, "codeBlocks")
            if isinstance(item, dict)
        ]

        return cls(
            bubble_id=bubble_id or get_str(data, "bubbleId"),
            chat_id=chat_id or get_str(data, "chatId"),
            text=get_str(data, "text"),
            rich_text=rich_text,
            code_blocks=code_blocks,
            timestamp=get_int(data, "timestamp"),
            type=get_int(data, "type"),
        )


@dataclass
class ConversationHeader:
    """A (bubble id, actor code) pair defining message order and authorship."""

    bubble_id: str
    type: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationHeader":
        return cls(bubble_id=get_str(data, "bubbleId"), type=get_int(data, "type"))


@dataclass
class Composer:
    """One conversation's metadata and ordered header list."""

    composer_id: str
    name: str = ""
    headers: list[ConversationHeader] = field(default_factory=list)
    created_at: int = 0
    last_updated_at: int = 0

    @classmethod
    def from_dict(cls, data: dict, composer_id: str = "") -> "Composer":
        """Build a composer from a decoded JSON object.

        Headers come from ``fullConversationHeadersOnly``; older records keep
        them in a ``conversation`` array instead, where entries without a
        bubble id are ignored.
        """
        headers = [
            ConversationHeader.from_dict(item)
            for item in get_list(data, "fullConversationHeadersOnly")
            if isinstance(item, dict)
        ]
        if not headers:
            headers = [
                ConversationHeader.from_dict(item)
                for item in get_list(data, "conversation")
                if isinstance(item, dict) and get_str(item, "bubbleId")
            ]

        return cls(
            composer_id=composer_id or get_str(data, "composerId"),
            name=get_str(data, "name"),
            headers=headers,
            created_at=get_int(data, "createdAt"),
            last_updated_at=get_int(data, "lastUpdatedAt"),
        )


@dataclass
class MessageContext:
    """Environment snapshot recorded alongside a message."""

    composer_id: str
    bubble_id: str = ""
    context_id: str = ""
    git_status_raw: str = ""
    terminal_files: list[str] = field(default_factory=list)
    project_layouts: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(
        cls, data: dict, composer_id: str = "", context_id: str = ""
    ) -> "MessageContext":
        return cls(
            composer_id=composer_id or get_str(data, "composerId"),
            bubble_id=get_str(data, "bubbleId"),
            context_id=context_id or get_str(data, "contextId"),
            git_status_raw=get_str(data, "gitStatusRaw"),
            terminal_files=get_str_list(data, "terminalFiles"),
            project_layouts=get_str_list(data, "projectLayouts"),
        )


@dataclass
class ReconstructedMessage:
    """A resolved message inside a reconstructed conversation."""

    bubble_id: str
    type: int
    text: str
    timestamp: int
    context: MessageContext | None = None


@dataclass
class ReconstructedConversation:
    """One composer's messages, joined and ordered."""

    composer_id: str
    name: str = ""
    messages: list[ReconstructedMessage] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict:
        """Intermediary (debug) representation."""
        return {
            "composerId": self.composer_id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [
                {
                    "bubbleId": msg.bubble_id,
                    "type": msg.type,
                    "text": msg.text,
                    "timestamp": msg.timestamp,
                    "context": None if msg.context is None else {
                        "contextId": msg.context.context_id,
                        "gitStatusRaw": msg.context.git_status_raw,
                        "terminalFiles": msg.context.terminal_files,
                        "projectLayouts": msg.context.project_layouts,
                    },
                }
                for msg in self.messages
            ],
        }


@dataclass
class Message:
    """A normalized message."""

    actor: str  # user, assistant
    content: str
    timestamp: str = ""  # ISO-8601, empty when unknown

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "actor": self.actor, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            actor=get_str(data, "actor"),
            content=get_str(data, "content"),
            timestamp=get_str(data, "timestamp"),
        )


@dataclass
class SessionMetadata:
    """Summary information carried with a session."""

    composer_id: str = ""
    name: str = ""
    message_count: int = 0
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "composer_id": self.composer_id,
            "name": self.name,
            "message_count": self.message_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMetadata":
        return cls(
            composer_id=get_str(data, "composer_id"),
            name=get_str(data, "name"),
            message_count=get_int(data, "message_count"),
            created_at=get_str(data, "created_at"),
            updated_at=get_str(data, "updated_at"),
        )


@dataclass
class Session:
    """The canonical, exportable conversation record."""

    id: str
    source: str
    messages: list[Message]
    metadata: SessionMetadata
    workspace: str = ""

    @property
    def content_hash(self) -> str:
        """SHA256 over the ordered (actor, content, timestamp) triples."""
        hasher = hashlib.sha256()
        for msg in self.messages:
            for part in (msg.actor, msg.content, msg.timestamp):
                encoded = part.encode()
                # Length prefix keeps ("ab", "c") and ("a", "bc") distinct
                hasher.update(f"{len(encoded)}:".encode())
                hasher.update(encoded)
        return hasher.hexdigest()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workspace": self.workspace,
            "source": self.source,
            "messages": [msg.to_dict() for msg in self.messages],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        metadata = data.get("metadata")
        return cls(
            id=get_str(data, "id"),
            workspace=get_str(data, "workspace"),
            source=get_str(data, "source"),
            messages=[
                Message.from_dict(item)
                for item in get_list(data, "messages")
                if isinstance(item, dict)
            ],
            metadata=SessionMetadata.from_dict(metadata if isinstance(metadata, dict) else {}),
        )
