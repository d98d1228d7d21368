"""
Chat controller: turns a user prompt into a streamed, assembled model reply.
"""

import logging
from typing import Any, Callable

import numpy as np

from ..core import config
from ..core.codec import decode_pcm
from ..core.errors import CognixError, RequestInFlightError
from ..core.runtime_config import ConfigStore
from ..core.sessions import ChatHistory
from ..core.transcript import TranscriptAssembler
from ..core.types import InlineMediaPart, Message, Part, TextPart
from ..interfaces.gemini import GENERATE_IMAGE_FUNCTION, ChatOptions

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_TEXT = "Sorry, an unknown error occurred."


def _error_text(exc: Exception) -> str:
    return str(exc) or UNKNOWN_ERROR_TEXT


class ChatController:
    """
    Sends chat requests for the active session and folds the streamed
    response into its transcript.
    """

    def __init__(
        self,
        client: Any,
        history: ChatHistory,
        config_store: ConfigStore,
        on_message_updated: Callable[[str, list[Part]], None] | None = None,
    ):
        self.client = client
        self.history = history
        self.config_store = config_store
        self.on_message_updated = on_message_updated
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    def _chat_options(self) -> ChatOptions:
        runtime = self.config_store.get()
        return ChatOptions(
            enable_web_search=runtime.enable_web_search,
            enable_maps_grounding=runtime.enable_maps_grounding,
            system_instruction=runtime.chat_system_instruction,
            location=runtime.location,
        )

    async def send_message(
        self, text: str, image: InlineMediaPart | None = None
    ) -> Message | None:
        """
        Send a prompt and return the finished model message.

        Transport and generation failures become an error text part on the
        model message; the chat stays usable for the next request. Any other
        exception propagates. Returns None for an empty prompt.

        Raises:
            RequestInFlightError: If a previous request is still streaming
        """
        text = text.strip()
        if not text and image is None:
            return None
        if self._in_flight:
            raise RequestInFlightError("A chat request is already in progress")

        self._in_flight = True
        try:
            return await self._send(text, image)
        finally:
            self._in_flight = False

    async def _send(self, text: str, image: InlineMediaPart | None) -> Message:
        session = self.history.ensure_active()
        prior = list(session.messages)
        assembler = TranscriptAssembler(session.messages, self.on_message_updated)

        user_parts: list[Part] = []
        if text:
            user_parts.append(TextPart(text))
        if image is not None:
            user_parts.append(image)
        assembler.add_user_message(user_parts)
        message_id = assembler.begin_response()
        self.history.record_activity()

        try:
            async for fragment in self.client.stream_chat(
                prior, user_parts, self._chat_options()
            ):
                assembler.apply_fragment(message_id, fragment)
        except CognixError as exc:
            logger.error("Chat request failed: %s", exc)
            message = assembler.fail_response(message_id, _error_text(exc))
        else:
            message = assembler.end_response(message_id)
            await self._resolve_invocations(assembler, message)

        self._save()
        return message

    async def _resolve_invocations(
        self, assembler: TranscriptAssembler, message: Message
    ) -> None:
        while message.pending_invocations:
            invocation = message.pending_invocations[0]
            if invocation.name != GENERATE_IMAGE_FUNCTION:
                logger.warning("Ignoring unknown function call %s", invocation.name)
                message.pending_invocations.pop(0)
                continue
            prompt = str(invocation.args.get("prompt") or message.text or "")
            try:
                parts = await self.client.generate_image(prompt)
            except CognixError as exc:
                logger.error("Image generation failed: %s", exc)
                parts = [TextPart(f"Sorry, I couldn't generate that image. {exc}".strip())]
            assembler.resolve_invocation(message.id, parts)

    def _save(self) -> None:
        try:
            self.history.save()
        except OSError as exc:
            logger.error("Failed to save chat history: %s", exc)

    async def read_aloud(self, text: str) -> tuple[int, np.ndarray]:
        """Synthesize speech for text; returns (sample_rate, float32 samples)."""
        pcm = await self.client.synthesize_speech(text)
        return config.OUTPUT_SAMPLE_RATE, decode_pcm(pcm)
