"""
Chat data model: messages, parts, citations and streamed fragments.
"""

import base64
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class CitationKind(str, Enum):
    WEB = "web"
    MAP = "map"


@dataclass(frozen=True)
class Citation:
    """A grounding source attached to a response."""

    uri: str
    title: str = ""
    kind: CitationKind = CitationKind.WEB


# -------------------------
# PARTS
# -------------------------
@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineMediaPart:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class CitationsPart:
    citations: tuple[Citation, ...] = ()


@dataclass(frozen=True)
class FunctionInvocationPart:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


Part = Union[TextPart, InlineMediaPart, CitationsPart, FunctionInvocationPart]


# -------------------------
# FRAGMENTS
# -------------------------
@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class CitationBatch:
    citations: tuple[Citation, ...]


@dataclass(frozen=True)
class FunctionInvocation:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


Fragment = Union[TextDelta, CitationBatch, FunctionInvocation]


# -------------------------
# MESSAGES
# -------------------------
_sequence = itertools.count(1)


def new_message_id() -> str:
    """Return a unique id that sorts in generation order."""
    return f"msg-{int(time.time() * 1000)}-{next(_sequence):06d}"


@dataclass
class Message:
    """One transcript entry; parts grow while the model is streaming."""

    role: Role
    parts: list[Part] = field(default_factory=list)
    id: str = field(default_factory=new_message_id)
    pending_invocations: list[FunctionInvocation] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def citations(self) -> tuple[Citation, ...]:
        for part in self.parts:
            if isinstance(part, CitationsPart):
                return part.citations
        return ()


# -------------------------
# SERIALIZATION
# -------------------------
def part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineMediaPart):
        return {
            "inlineData": {
                "mimeType": part.mime_type,
                "data": base64.b64encode(part.data).decode("ascii"),
            }
        }
    if isinstance(part, CitationsPart):
        return {
            "searchResults": [
                {"uri": c.uri, "title": c.title, "kind": c.kind.value}
                for c in part.citations
            ]
        }
    if isinstance(part, FunctionInvocationPart):
        return {"functionCall": {"name": part.name, "args": dict(part.args)}}
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def part_from_dict(data: dict[str, Any]) -> Part:
    if "inlineData" in data:
        inline = data["inlineData"]
        return InlineMediaPart(
            mime_type=inline["mimeType"], data=base64.b64decode(inline["data"])
        )
    if "searchResults" in data:
        return CitationsPart(
            citations=tuple(
                Citation(
                    uri=c["uri"],
                    title=c.get("title", ""),
                    kind=CitationKind(c.get("kind", CitationKind.WEB.value)),
                )
                for c in data["searchResults"]
            )
        )
    if "functionCall" in data:
        call = data["functionCall"]
        return FunctionInvocationPart(name=call["name"], args=call.get("args") or {})
    if "text" in data:
        return TextPart(text=data["text"])
    raise ValueError(f"Unrecognized part record: {sorted(data)}")


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role.value,
        "parts": [part_to_dict(p) for p in message.parts],
    }


def message_from_dict(data: dict[str, Any]) -> Message:
    return Message(
        id=data["id"],
        role=Role(data["role"]),
        parts=[part_from_dict(p) for p in data.get("parts", [])],
    )
