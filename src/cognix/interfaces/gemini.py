"""
Gemini API client wrapper.

One GeminiClient is constructed by the composition root and handed to the
components that talk to the model. The helpers at module level translate
between SDK objects and the core data model and are safe to call without a
network connection.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Sequence

from google import genai
from google.genai import errors, types

from ..core import config
from ..core.errors import ConfigurationError, GenerationError, TransportError
from ..core.types import (
    Citation,
    CitationBatch,
    CitationKind,
    Fragment,
    FunctionInvocation,
    InlineMediaPart,
    Message,
    Part,
    TextDelta,
    TextPart,
)

logger = logging.getLogger(__name__)

# WebSocket close code for a normal end of session
NORMAL_CLOSURE = 1000

GENERATE_IMAGE_FUNCTION = "generate_image"

GENERATE_IMAGE_DECLARATION = types.FunctionDeclaration(
    name=GENERATE_IMAGE_FUNCTION,
    description="Create an image from a text description when the user asks for a picture.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "prompt": types.Schema(
                type=types.Type.STRING,
                description="What the image should show.",
            )
        },
        required=["prompt"],
    ),
)


@dataclass
class ChatOptions:
    """Per-request options for a streamed chat call."""

    enable_web_search: bool = True
    enable_maps_grounding: bool = False
    system_instruction: str = config.CHAT_SYSTEM_INSTRUCTION
    location: tuple[float, float] | None = None


@dataclass
class LiveOptions:
    """Options for opening a live audio session."""

    system_instruction: str = config.LIVE_SYSTEM_INSTRUCTION
    voice: str | None = None


@dataclass
class LiveEvent:
    """Transport-neutral view of one server message in a live session."""

    audio: bytes | None = None
    interrupted: bool = False
    input_text: str | None = None
    output_text: str | None = None
    turn_complete: bool = False


# -------------------------
# REQUEST BUILDING
# -------------------------
def build_chat_config(options: ChatOptions) -> types.GenerateContentConfig:
    """
    Build the request config for a chat call.

    Grounding tools and the image function are mutually exclusive: the
    function is only declared when no grounding tool is enabled.
    """
    tools: list[types.Tool] = []
    tool_config = None
    if options.enable_web_search:
        tools.append(types.Tool(google_search=types.GoogleSearch()))
    if options.enable_maps_grounding:
        tools.append(types.Tool(google_maps=types.GoogleMaps()))
        if options.location is not None:
            latitude, longitude = options.location
            tool_config = types.ToolConfig(
                retrieval_config=types.RetrievalConfig(
                    lat_lng=types.LatLng(latitude=latitude, longitude=longitude)
                )
            )
    if not tools:
        tools.append(types.Tool(function_declarations=[GENERATE_IMAGE_DECLARATION]))

    return types.GenerateContentConfig(
        system_instruction=options.system_instruction or None,
        tools=tools,
        tool_config=tool_config,
    )


def _to_sdk_part(part: Part) -> types.Part | None:
    if isinstance(part, TextPart):
        return types.Part(text=part.text) if part.text else None
    if isinstance(part, InlineMediaPart):
        return types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
    return None


def to_contents(
    history: Sequence[Message], new_parts: Sequence[Part]
) -> list[types.Content]:
    """
    Convert history plus the new user turn into request contents.

    Prior messages are sent text-only; messages without text are skipped.
    """
    contents: list[types.Content] = []
    for message in history:
        parts = [
            types.Part(text=p.text)
            for p in message.parts
            if isinstance(p, TextPart) and p.text
        ]
        if parts:
            contents.append(types.Content(role=message.role.value, parts=parts))

    user_parts = [sdk for sdk in (_to_sdk_part(p) for p in new_parts) if sdk is not None]
    contents.append(types.Content(role="user", parts=user_parts))
    return contents


# -------------------------
# RESPONSE PARSING
# -------------------------
def fragments_from_chunk(chunk: Any) -> list[Fragment]:
    """Extract text deltas, citations and function calls from one streamed chunk."""
    candidates = getattr(chunk, "candidates", None) or []
    if not candidates:
        return []
    candidate = candidates[0]
    fragments: list[Fragment] = []

    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        if getattr(part, "thought", False):
            continue
        text = getattr(part, "text", None)
        if text:
            fragments.append(TextDelta(text))
        call = getattr(part, "function_call", None)
        if call is not None and getattr(call, "name", None):
            fragments.append(FunctionInvocation(call.name, dict(call.args or {})))

    metadata = getattr(candidate, "grounding_metadata", None)
    citations = []
    for grounding_chunk in getattr(metadata, "grounding_chunks", None) or []:
        source = getattr(grounding_chunk, "web", None)
        kind = CitationKind.WEB
        if source is None:
            source = getattr(grounding_chunk, "maps", None)
            kind = CitationKind.MAP
        uri = getattr(source, "uri", None) if source is not None else None
        if not uri:
            continue
        citations.append(Citation(uri=uri, title=getattr(source, "title", None) or uri, kind=kind))
    if citations:
        fragments.append(CitationBatch(tuple(citations)))

    return fragments


def live_event_from_message(message: Any) -> LiveEvent:
    """Flatten a live server message into a LiveEvent."""
    event = LiveEvent()
    server_content = getattr(message, "server_content", None)
    if server_content is None:
        return event

    model_turn = getattr(server_content, "model_turn", None)
    audio = bytearray()
    for part in getattr(model_turn, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            audio.extend(inline.data)
    if audio:
        event.audio = bytes(audio)

    event.interrupted = bool(getattr(server_content, "interrupted", False))
    event.turn_complete = bool(getattr(server_content, "turn_complete", False))

    input_transcription = getattr(server_content, "input_transcription", None)
    if input_transcription is not None and input_transcription.text:
        event.input_text = input_transcription.text
    output_transcription = getattr(server_content, "output_transcription", None)
    if output_transcription is not None and output_transcription.text:
        event.output_text = output_transcription.text
    return event


def build_live_config(options: LiveOptions) -> types.LiveConnectConfig:
    live_config: dict[str, Any] = {
        "response_modalities": [types.Modality.AUDIO],
        "input_audio_transcription": types.AudioTranscriptionConfig(),
        "output_audio_transcription": types.AudioTranscriptionConfig(),
    }
    if options.system_instruction:
        live_config["system_instruction"] = options.system_instruction
    if options.voice:
        live_config["speech_config"] = types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=options.voice)
            )
        )
    return types.LiveConnectConfig(**live_config)


# -------------------------
# LIVE CONNECTION
# -------------------------
class LiveConnection:
    """An open live session: send PCM frames, iterate server events, close."""

    def __init__(self, ctxmgr: Any, session: Any):
        self._ctxmgr = ctxmgr
        self._session = session
        self._closed = False

    async def send_audio(self, pcm: bytes) -> None:
        await self._session.send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=config.INPUT_MIME_TYPE)
        )

    async def events(self) -> AsyncIterator[LiveEvent]:
        """
        Yield events across turns until the remote closes.

        receive() ends after each turn_complete, so it is re-entered. The SDK
        reports every websocket close as an APIError carrying the close code;
        a normal closure ends the iteration, anything else is a TransportError.
        """
        while not self._closed:
            try:
                async for message in self._session.receive():
                    yield live_event_from_message(message)
            except errors.APIError as exc:
                if exc.code == NORMAL_CLOSURE:
                    logger.info("Live session ended by server: %s", exc.details)
                    return
                raise TransportError(f"Live transport failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ctxmgr.__aexit__(None, None, None)


# -------------------------
# CLIENT
# -------------------------
class GeminiClient:
    """Thin async facade over the google-genai client."""

    def __init__(
        self,
        api_key: str = config.API_KEY,
        *,
        chat_model: str = config.CHAT_MODEL,
        live_model: str = config.LIVE_MODEL,
        image_model: str = config.IMAGE_MODEL,
        tts_model: str = config.TTS_MODEL,
        sdk_client: Any = None,
    ):
        if sdk_client is None:
            if not api_key:
                raise ConfigurationError(
                    "GEMINI_API_KEY (or API_KEY) environment variable is not set"
                )
            sdk_client = genai.Client(api_key=api_key)
        self._client = sdk_client
        self.chat_model = chat_model
        self.live_model = live_model
        self.image_model = image_model
        self.tts_model = tts_model

    async def stream_chat(
        self,
        history: Sequence[Message],
        new_parts: Sequence[Part],
        options: ChatOptions,
    ) -> AsyncIterator[Fragment]:
        """
        Stream fragments for one chat request.

        Raises:
            TransportError: If the request or the stream fails; the message is
                the SDK's error text
        """
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self.chat_model,
                contents=to_contents(history, new_parts),
                config=build_chat_config(options),
            )
        except Exception as exc:
            raise TransportError(str(exc)) from exc

        chunks = aiter(stream)
        while True:
            try:
                chunk = await anext(chunks)
            except StopAsyncIteration:
                return
            except Exception as exc:
                raise TransportError(str(exc)) from exc
            for fragment in fragments_from_chunk(chunk):
                yield fragment

    async def open_audio_session(self, options: LiveOptions) -> LiveConnection:
        """Perform the live handshake and return the open connection."""
        ctxmgr = self._client.aio.live.connect(
            model=self.live_model, config=build_live_config(options)
        )
        try:
            session = await ctxmgr.__aenter__()
        except Exception as exc:
            raise TransportError(f"Live session handshake failed: {exc}") from exc
        logger.info("Live session connected (model=%s)", self.live_model)
        return LiveConnection(ctxmgr, session)

    async def generate_image(self, prompt: str) -> list[Part]:
        """
        Return [summary text, image] for a prompt.

        Raises:
            TransportError: If the request fails
            GenerationError: If no image came back; carries the model's text
                reply when it gave one
        """
        try:
            response = await self._client.aio.models.generate_content(
                model=self.image_model,
                contents=config.IMAGE_PROMPT_TEMPLATE.format(prompt=prompt.strip()),
            )
        except Exception as exc:
            raise TransportError(f"Image request failed: {exc}") from exc

        images: list[Part] = []
        texts: list[str] = []
        for candidate in response.candidates or []:
            for part in getattr(candidate.content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    images.append(
                        InlineMediaPart(
                            mime_type=inline.mime_type or "image/png", data=inline.data
                        )
                    )
                elif getattr(part, "text", None):
                    texts.append(part.text)
        if not images:
            reply = " ".join(t.strip() for t in texts).strip()
            raise GenerationError(reply or "No image was generated. Try a different prompt.")
        return [TextPart(f"Generated image of {prompt.strip()}"), *images[:1]]

    async def synthesize_speech(self, text: str, voice: str = config.TTS_VOICE) -> bytes:
        """
        Return 24 kHz int16 PCM speech for text.

        Raises:
            TransportError: If the request fails
            GenerationError: If the response carries no audio
        """
        try:
            response = await self._client.aio.models.generate_content(
                model=self.tts_model,
                contents=config.TTS_PROMPT_TEMPLATE.format(text=text),
                config=types.GenerateContentConfig(
                    response_modalities=[types.Modality.AUDIO],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                        )
                    ),
                ),
            )
        except Exception as exc:
            raise TransportError(f"Speech request failed: {exc}") from exc
        for candidate in response.candidates or []:
            for part in getattr(candidate.content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return inline.data
        raise GenerationError("No audio data received from API.")
