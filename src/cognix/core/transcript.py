"""
Transcript assembly: folds streamed response fragments into chat messages,
and live-audio transcriptions into speaker-tagged entries.
This module is independent of any transport or UI.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import ResponseClosedError
from .types import (
    Citation,
    CitationBatch,
    CitationsPart,
    Fragment,
    FunctionInvocation,
    Message,
    Part,
    Role,
    TextDelta,
    TextPart,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, list[Part]], None]


def merge_citations(
    existing: Sequence[Citation], incoming: Sequence[Citation]
) -> tuple[Citation, ...]:
    """Append unseen citations, keeping first-seen order; later duplicates are dropped."""
    seen = {c.uri for c in existing}
    merged = list(existing)
    for citation in incoming:
        if citation.uri in seen:
            continue
        seen.add(citation.uri)
        merged.append(citation)
    return tuple(merged)


class TranscriptAssembler:
    """
    Builds model messages from a stream of fragments.

    Operates in place on a session's message list. At most one response is
    expected in flight at a time, but ids are tracked individually.
    """

    def __init__(
        self,
        messages: list[Message] | None = None,
        on_message_updated: MessageCallback | None = None,
    ):
        self.messages = messages if messages is not None else []
        self.on_message_updated = on_message_updated
        self._in_flight: set[str] = set()

    def add_user_message(self, parts: list[Part]) -> Message:
        """Append a user message to the transcript."""
        message = Message(role=Role.USER, parts=list(parts))
        self.messages.append(message)
        self._notify(message)
        return message

    def begin_response(self) -> str:
        """Append a model placeholder with one empty text part and return its id."""
        message = Message(role=Role.MODEL, parts=[TextPart("")])
        self.messages.append(message)
        self._in_flight.add(message.id)
        self._notify(message)
        return message.id

    def is_open(self, message_id: str) -> bool:
        return message_id in self._in_flight

    def apply_fragment(self, message_id: str, fragment: Fragment) -> None:
        """Fold one fragment into the in-flight message."""
        message = self._open_message(message_id)

        if isinstance(fragment, TextDelta):
            if not fragment.text:
                return
            self._append_text(message, fragment.text)
        elif isinstance(fragment, CitationBatch):
            if not fragment.citations:
                return
            self._merge_citations(message, fragment.citations)
        elif isinstance(fragment, FunctionInvocation):
            message.pending_invocations.append(fragment)
        else:
            raise TypeError(f"Unsupported fragment: {type(fragment).__name__}")

        self._notify(message)

    def end_response(self, message_id: str) -> Message:
        """Mark the message complete; no further fragments are accepted."""
        message = self._open_message(message_id)
        self._in_flight.discard(message_id)
        logger.debug("Response %s complete (%d parts)", message_id, len(message.parts))
        return message

    def fail_response(self, message_id: str, error_text: str) -> Message:
        """Discard partial content and leave a single error text part."""
        message = self._open_message(message_id)
        message.parts = [TextPart(error_text)]
        message.pending_invocations.clear()
        self._in_flight.discard(message_id)
        logger.warning("Response %s failed: %s", message_id, error_text)
        self._notify(message)
        return message

    def resolve_invocation(self, message_id: str, parts: list[Part]) -> Message:
        """
        Replace a message's parts with the result of its pending side effect.

        Allowed after end_response as long as an invocation is still pending.
        """
        message = self.get(message_id)
        if not message.pending_invocations:
            raise ResponseClosedError(
                f"Message {message_id} has no pending function invocation"
            )
        message.pending_invocations.pop(0)
        message.parts = list(parts)
        self._notify(message)
        return message

    def get(self, message_id: str) -> Message:
        for message in reversed(self.messages):
            if message.id == message_id:
                return message
        raise KeyError(f"Message {message_id} not found")

    def _open_message(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message_id not in self._in_flight:
            raise ResponseClosedError(f"Response {message_id} has already ended")
        return message

    def _append_text(self, message: Message, delta: str) -> None:
        for index, part in enumerate(message.parts):
            if isinstance(part, TextPart):
                message.parts[index] = TextPart(part.text + delta)
                return
        message.parts.insert(0, TextPart(delta))

    def _merge_citations(self, message: Message, citations: Sequence[Citation]) -> None:
        for index, part in enumerate(message.parts):
            if isinstance(part, CitationsPart):
                merged = merge_citations(part.citations, citations)
                message.parts[index] = CitationsPart(merged)
                return
        message.parts.append(CitationsPart(merge_citations((), citations)))

    def _notify(self, message: Message) -> None:
        if self.on_message_updated:
            self.on_message_updated(message.id, list(message.parts))


@dataclass
class TranscriptEntry:
    """One speaker turn in a live conversation."""

    speaker: Role
    text: str


class LiveTranscript:
    """
    Speaker-tagged transcript for a live audio session.

    Consecutive fragments from the same speaker extend the last entry until
    the turn completes.
    """

    def __init__(self, on_entry: Callable[[Role, str], None] | None = None):
        self.on_entry = on_entry
        self._entries: list[TranscriptEntry] = []
        self._open = False

    @property
    def entries(self) -> list[TranscriptEntry]:
        return [TranscriptEntry(e.speaker, e.text) for e in self._entries]

    def append(self, speaker: Role, text: str) -> None:
        if not text:
            return
        last = self._entries[-1] if self._entries else None
        if self._open and last is not None and last.speaker == speaker:
            last.text += text
        else:
            last = TranscriptEntry(speaker, text)
            self._entries.append(last)
            self._open = True
        if self.on_entry:
            self.on_entry(last.speaker, last.text)

    def complete_turn(self) -> None:
        """Finalize current entries; the next fragment starts a new one."""
        self._open = False

    def clear(self) -> None:
        self._entries.clear()
        self._open = False
