"""
Chat session list owned by the host application.

Lifecycle of the active chat is an explicit state machine:

    NO_ACTIVE_SESSION --new_chat--> DRAFTING --record_activity--> PERSISTED

A drafted chat only joins the persisted list once it receives its first
message, so empty "New Chat" entries never accumulate.
"""

import itertools
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from . import config
from .types import Message, Role, TextPart, message_from_dict, message_to_dict

logger = logging.getLogger(__name__)


class ChatLifecycle(str, Enum):
    NO_ACTIVE_SESSION = "no_active_session"
    DRAFTING = "drafting"
    PERSISTED = "persisted"


@dataclass
class ChatSession:
    """A titled, ordered list of messages."""

    id: str
    title: str = config.NEW_CHAT_TITLE
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message_to_dict(m) for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatSession":
        return cls(
            id=data["id"],
            title=data.get("title") or config.NEW_CHAT_TITLE,
            messages=[message_from_dict(m) for m in data.get("messages", [])],
        )


def derive_title(messages: list[Message]) -> str:
    """Title from the first user message's text, truncated."""
    if not messages or messages[0].role is not Role.USER:
        return config.NEW_CHAT_TITLE
    for part in messages[0].parts:
        if isinstance(part, TextPart) and part.text:
            return part.text[: config.TITLE_MAX_CHARS]
    return config.UNTITLED_CHAT_TITLE


_chat_sequence = itertools.count(1)


def _new_chat_id() -> str:
    return f"chat-{time.time_ns() // 1000}-{next(_chat_sequence)}"


class ChatHistory:
    """Persisted list of chat sessions, newest first, with one active chat."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self.sessions: list[ChatSession] = []
        self.state = ChatLifecycle.NO_ACTIVE_SESSION
        self._active: ChatSession | None = None

    @property
    def active(self) -> ChatSession | None:
        return self._active

    def get(self, session_id: str) -> ChatSession:
        for session in self.sessions:
            if session.id == session_id:
                return session
        if self._active is not None and self._active.id == session_id:
            return self._active
        raise KeyError(f"Chat {session_id} not found")

    # -------------------------
    # TRANSITIONS
    # -------------------------
    def new_chat(self) -> ChatSession:
        """Start drafting a fresh chat; it is not persisted until used."""
        self._active = ChatSession(id=_new_chat_id())
        self.state = ChatLifecycle.DRAFTING
        return self._active

    def ensure_active(self) -> ChatSession:
        """Return the active chat, drafting one if there is none."""
        if self._active is None:
            return self.new_chat()
        return self._active

    def record_activity(self) -> None:
        """Called after the active chat's messages change."""
        session = self._active
        if session is None:
            raise RuntimeError("No active chat to record activity on")
        if self.state is ChatLifecycle.DRAFTING and session.messages:
            self.sessions.insert(0, session)
            self.state = ChatLifecycle.PERSISTED
            logger.info("Chat %s persisted", session.id)
        if session.title == config.NEW_CHAT_TITLE:
            session.title = derive_title(session.messages)

    def select(self, session_id: str) -> ChatSession:
        session = next((s for s in self.sessions if s.id == session_id), None)
        if session is None:
            raise KeyError(f"Chat {session_id} not found")
        self._active = session
        self.state = ChatLifecycle.PERSISTED
        return session

    def rename(self, session_id: str, title: str) -> None:
        title = title.strip()
        if not title:
            raise ValueError("Title must not be empty")
        self.get(session_id).title = title

    def delete(self, session_id: str) -> None:
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if self._active is not None and self._active.id == session_id:
            if self.sessions:
                self._active = self.sessions[0]
                self.state = ChatLifecycle.PERSISTED
            else:
                self._active = None
                self.state = ChatLifecycle.NO_ACTIVE_SESSION

    def clear_all(self) -> None:
        self.sessions = []
        self._active = None
        self.state = ChatLifecycle.NO_ACTIVE_SESSION
        if self.path is not None and self.path.exists():
            self.path.unlink()

    # -------------------------
    # PERSISTENCE
    # -------------------------
    def load(self) -> None:
        """Load sessions from disk; a corrupt file is treated as empty."""
        self.sessions = []
        if self.path is None or not self.path.exists():
            return
        try:
            records = json.loads(self.path.read_text(encoding="utf-8"))
            self.sessions = [ChatSession.from_dict(r) for r in records]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Failed to parse chat history from %s: %s", self.path, exc)
            self.sessions = []
            return
        if self.sessions:
            self._active = self.sessions[0]
            self.state = ChatLifecycle.PERSISTED
        logger.info("Loaded %d chats from %s", len(self.sessions), self.path)

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [s.to_dict() for s in self.sessions]
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        tmp_path.replace(self.path)
