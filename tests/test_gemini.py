"""
Tests for the Gemini client wrapper: request building, chunk parsing and the
client facade against a mocked SDK client.

Run: python -m unittest tests.test_gemini -v
"""

import json
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from google.genai import errors
from google.genai.live import AsyncSession
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from cognix.core.errors import ConfigurationError, GenerationError, TransportError
from cognix.core.types import (
    Citation,
    CitationBatch,
    CitationKind,
    FunctionInvocation,
    InlineMediaPart,
    Message,
    Role,
    TextDelta,
    TextPart,
)
from cognix.interfaces.gemini import (
    GENERATE_IMAGE_FUNCTION,
    ChatOptions,
    GeminiClient,
    LiveConnection,
    LiveOptions,
    build_chat_config,
    build_live_config,
    fragments_from_chunk,
    live_event_from_message,
    to_contents,
)


def _chunk(parts=(), grounding_chunks=None):
    metadata = None
    if grounding_chunks is not None:
        metadata = SimpleNamespace(grounding_chunks=grounding_chunks)
    candidate = SimpleNamespace(
        content=SimpleNamespace(parts=list(parts)),
        grounding_metadata=metadata,
    )
    return SimpleNamespace(candidates=[candidate])


def _part(text=None, thought=False, function_call=None, inline_data=None):
    return SimpleNamespace(
        text=text, thought=thought, function_call=function_call, inline_data=inline_data
    )


async def _aiter(items):
    for item in items:
        yield item


async def _failing_stream(items, error):
    for item in items:
        yield item
    raise error


class FakeWebSocket:
    """Replays server frames, then closes with the given code."""

    def __init__(self, frames, close_code=1000, reason="session ended"):
        self.frames = [json.dumps(f).encode() for f in frames]
        self.close_code = close_code
        self.reason = reason

    async def recv(self, decode=None):
        if self.frames:
            return self.frames.pop(0)
        raise ConnectionClosed(Close(self.close_code, self.reason), None)


def _sdk_session(websocket):
    return AsyncSession(api_client=SimpleNamespace(vertexai=False), websocket=websocket)


class TestBuildChatConfig(unittest.TestCase):
    def test_web_search_only(self):
        cfg = build_chat_config(ChatOptions(enable_web_search=True))
        self.assertEqual(len(cfg.tools), 1)
        self.assertIsNotNone(cfg.tools[0].google_search)
        self.assertIsNone(cfg.tool_config)

    def test_maps_with_location_sets_retrieval_config(self):
        cfg = build_chat_config(
            ChatOptions(
                enable_web_search=False,
                enable_maps_grounding=True,
                location=(59.91, 10.75),
            )
        )
        self.assertIsNotNone(cfg.tools[0].google_maps)
        lat_lng = cfg.tool_config.retrieval_config.lat_lng
        self.assertAlmostEqual(lat_lng.latitude, 59.91)
        self.assertAlmostEqual(lat_lng.longitude, 10.75)

    def test_both_grounding_tools(self):
        cfg = build_chat_config(
            ChatOptions(enable_web_search=True, enable_maps_grounding=True)
        )
        self.assertEqual(len(cfg.tools), 2)
        self.assertIsNone(cfg.tool_config)

    def test_image_function_when_no_grounding(self):
        cfg = build_chat_config(
            ChatOptions(enable_web_search=False, enable_maps_grounding=False)
        )
        declarations = cfg.tools[0].function_declarations
        self.assertEqual([d.name for d in declarations], [GENERATE_IMAGE_FUNCTION])

    def test_system_instruction(self):
        cfg = build_chat_config(ChatOptions(system_instruction="Be brief."))
        self.assertEqual(cfg.system_instruction, "Be brief.")


class TestToContents(unittest.TestCase):
    def test_history_is_text_only(self):
        history = [
            Message(
                role=Role.USER,
                parts=[TextPart("Draw a fox"), InlineMediaPart("image/png", b"img")],
            ),
            Message(role=Role.MODEL, parts=[InlineMediaPart("image/png", b"fox")]),
            Message(role=Role.MODEL, parts=[TextPart("Anything else?")]),
        ]
        contents = to_contents(history, [TextPart("Thanks")])

        self.assertEqual([c.role for c in contents], ["user", "model", "user"])
        self.assertEqual([p.text for p in contents[0].parts], ["Draw a fox"])
        self.assertEqual(contents[2].parts[0].text, "Thanks")

    def test_new_turn_carries_image(self):
        contents = to_contents(
            [], [TextPart("What is this?"), InlineMediaPart("image/jpeg", b"\xff\xd8")]
        )
        parts = contents[0].parts
        self.assertEqual(parts[0].text, "What is this?")
        self.assertEqual(parts[1].inline_data.mime_type, "image/jpeg")
        self.assertEqual(parts[1].inline_data.data, b"\xff\xd8")


class TestFragmentsFromChunk(unittest.TestCase):
    def test_text_delta(self):
        fragments = fragments_from_chunk(_chunk([_part(text="Sure! ")]))
        self.assertEqual(fragments, [TextDelta("Sure! ")])

    def test_thought_parts_skipped(self):
        fragments = fragments_from_chunk(
            _chunk([_part(text="thinking...", thought=True), _part(text="Answer")])
        )
        self.assertEqual(fragments, [TextDelta("Answer")])

    def test_function_call(self):
        call = SimpleNamespace(name="generate_image", args={"prompt": "a fox"})
        fragments = fragments_from_chunk(_chunk([_part(function_call=call)]))
        self.assertEqual(
            fragments, [FunctionInvocation("generate_image", {"prompt": "a fox"})]
        )

    def test_grounding_chunks_become_one_batch(self):
        grounding = [
            SimpleNamespace(web=SimpleNamespace(uri="https://a.example", title="A"), maps=None),
            SimpleNamespace(web=None, maps=SimpleNamespace(uri="https://maps.example/1", title=None)),
            SimpleNamespace(web=None, maps=None),
        ]
        fragments = fragments_from_chunk(_chunk([], grounding_chunks=grounding))
        self.assertEqual(
            fragments,
            [
                CitationBatch(
                    (
                        Citation("https://a.example", "A", CitationKind.WEB),
                        Citation(
                            "https://maps.example/1",
                            "https://maps.example/1",
                            CitationKind.MAP,
                        ),
                    )
                )
            ],
        )

    def test_empty_chunk(self):
        self.assertEqual(fragments_from_chunk(SimpleNamespace(candidates=None)), [])


class TestLiveEvents(unittest.TestCase):
    def test_audio_and_transcriptions(self):
        message = SimpleNamespace(
            server_content=SimpleNamespace(
                model_turn=SimpleNamespace(
                    parts=[
                        _part(inline_data=SimpleNamespace(data=b"\x01\x00")),
                        _part(inline_data=SimpleNamespace(data=b"\x02\x00")),
                    ]
                ),
                interrupted=None,
                turn_complete=True,
                input_transcription=SimpleNamespace(text="Hi"),
                output_transcription=SimpleNamespace(text="Hello!"),
            )
        )
        event = live_event_from_message(message)
        self.assertEqual(event.audio, b"\x01\x00\x02\x00")
        self.assertFalse(event.interrupted)
        self.assertTrue(event.turn_complete)
        self.assertEqual(event.input_text, "Hi")
        self.assertEqual(event.output_text, "Hello!")

    def test_interrupted(self):
        message = SimpleNamespace(
            server_content=SimpleNamespace(model_turn=None, interrupted=True)
        )
        event = live_event_from_message(message)
        self.assertTrue(event.interrupted)
        self.assertIsNone(event.audio)

    def test_non_content_message(self):
        event = live_event_from_message(SimpleNamespace(server_content=None))
        self.assertIsNone(event.audio)
        self.assertFalse(event.turn_complete)

    def test_live_config_voice(self):
        cfg = build_live_config(LiveOptions(system_instruction="Hi", voice="Puck"))
        self.assertEqual(
            cfg.speech_config.voice_config.prebuilt_voice_config.voice_name, "Puck"
        )
        self.assertIsNotNone(cfg.input_audio_transcription)
        self.assertIsNotNone(cfg.output_audio_transcription)


class TestLiveConnection(unittest.IsolatedAsyncioTestCase):
    async def test_events_span_turns_until_normal_close(self):
        websocket = FakeWebSocket(
            [
                {"serverContent": {"outputTranscription": {"text": "one"}, "turnComplete": True}},
                {"serverContent": {"outputTranscription": {"text": "two"}, "turnComplete": True}},
            ],
            close_code=1000,
        )
        connection = LiveConnection(MagicMock(), _sdk_session(websocket))

        texts = [event.output_text async for event in connection.events()]

        self.assertEqual(texts, ["one", "two"])

    async def test_abnormal_close_raises_transport_error(self):
        websocket = FakeWebSocket(
            [{"serverContent": {"outputTranscription": {"text": "one"}, "turnComplete": True}}],
            close_code=1011,
            reason="internal error",
        )
        connection = LiveConnection(MagicMock(), _sdk_session(websocket))
        texts = []

        with self.assertRaises(TransportError):
            async for event in connection.events():
                texts.append(event.output_text)

        self.assertEqual(texts, ["one"])

    async def test_close_is_idempotent(self):
        ctxmgr = MagicMock()
        ctxmgr.__aexit__ = AsyncMock()
        connection = LiveConnection(ctxmgr, MagicMock())
        await connection.close()
        await connection.close()
        ctxmgr.__aexit__.assert_awaited_once()

    async def test_send_audio_uses_pcm_blob(self):
        session = MagicMock()
        session.send_realtime_input = AsyncMock()
        connection = LiveConnection(MagicMock(), session)

        await connection.send_audio(b"\x00\x01")

        blob = session.send_realtime_input.await_args.kwargs["audio"]
        self.assertEqual(blob.data, b"\x00\x01")
        self.assertEqual(blob.mime_type, "audio/pcm;rate=16000")


class TestGeminiClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.sdk = MagicMock()
        self.client = GeminiClient(sdk_client=self.sdk)

    def test_missing_api_key(self):
        with self.assertRaises(ConfigurationError):
            GeminiClient(api_key="")

    async def test_stream_chat_yields_fragments(self):
        chunks = [_chunk([_part(text="Sure! ")]), _chunk([_part(text="Day 1...")])]
        self.sdk.aio.models.generate_content_stream = AsyncMock(return_value=_aiter(chunks))

        fragments = [
            f async for f in self.client.stream_chat([], [TextPart("Plan")], ChatOptions())
        ]

        self.assertEqual(fragments, [TextDelta("Sure! "), TextDelta("Day 1...")])
        kwargs = self.sdk.aio.models.generate_content_stream.await_args.kwargs
        self.assertEqual(kwargs["model"], self.client.chat_model)

    async def test_generate_image(self):
        inline = SimpleNamespace(mime_type="image/png", data=b"\x89PNG")
        response = SimpleNamespace(
            candidates=[
                SimpleNamespace(
                    content=SimpleNamespace(parts=[_part(text="ok"), _part(inline_data=inline)])
                )
            ]
        )
        self.sdk.aio.models.generate_content = AsyncMock(return_value=response)

        parts = await self.client.generate_image("  a fox ")

        self.assertEqual(
            parts, [TextPart("Generated image of a fox"), InlineMediaPart("image/png", b"\x89PNG")]
        )
        kwargs = self.sdk.aio.models.generate_content.await_args.kwargs
        self.assertEqual(kwargs["contents"], "Create an image of a fox")

    async def test_generate_image_refusal_carries_model_text(self):
        refusal = "I can't create images of real people."
        response = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[_part(text=refusal)]))]
        )
        self.sdk.aio.models.generate_content = AsyncMock(return_value=response)

        with self.assertRaises(GenerationError) as ctx:
            await self.client.generate_image("a famous actor")

        self.assertEqual(str(ctx.exception), refusal)

    async def test_generate_image_empty_response(self):
        self.sdk.aio.models.generate_content = AsyncMock(
            return_value=SimpleNamespace(candidates=[])
        )
        with self.assertRaises(GenerationError) as ctx:
            await self.client.generate_image("a fox")
        self.assertIn("No image was generated", str(ctx.exception))

    async def test_generate_image_sdk_error_is_transport_error(self):
        self.sdk.aio.models.generate_content = AsyncMock(
            side_effect=errors.ServerError(
                503, {"error": {"code": 503, "message": "Overloaded", "status": "UNAVAILABLE"}}
            )
        )
        with self.assertRaises(TransportError):
            await self.client.generate_image("a fox")

    async def test_synthesize_speech_sdk_error_is_transport_error(self):
        self.sdk.aio.models.generate_content = AsyncMock(
            side_effect=errors.ServerError(
                503, {"error": {"code": 503, "message": "Overloaded", "status": "UNAVAILABLE"}}
            )
        )
        with self.assertRaises(TransportError) as ctx:
            await self.client.synthesize_speech("hello")
        self.assertIsInstance(ctx.exception.__cause__, errors.APIError)

    async def test_synthesize_speech_network_error_is_transport_error(self):
        self.sdk.aio.models.generate_content = AsyncMock(
            side_effect=ConnectionError("connection reset")
        )
        with self.assertRaises(TransportError):
            await self.client.synthesize_speech("hello")

    async def test_stream_chat_failure_mid_stream(self):
        chunks = [_chunk([_part(text="Sure! ")])]
        self.sdk.aio.models.generate_content_stream = AsyncMock(
            return_value=_failing_stream(chunks, ConnectionError("Network error"))
        )
        received = []

        with self.assertRaises(TransportError) as ctx:
            async for fragment in self.client.stream_chat([], [TextPart("Plan")], ChatOptions()):
                received.append(fragment)

        self.assertEqual(received, [TextDelta("Sure! ")])
        self.assertEqual(str(ctx.exception), "Network error")

    async def test_stream_chat_request_failure(self):
        self.sdk.aio.models.generate_content_stream = AsyncMock(
            side_effect=ConnectionError("Network error")
        )
        with self.assertRaises(TransportError):
            async for _ in self.client.stream_chat([], [TextPart("Plan")], ChatOptions()):
                pass

    async def test_synthesize_speech(self):
        inline = SimpleNamespace(mime_type="audio/pcm", data=b"\x00\x00")
        response = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[_part(inline_data=inline)]))]
        )
        self.sdk.aio.models.generate_content = AsyncMock(return_value=response)
        self.assertEqual(await self.client.synthesize_speech("hello"), b"\x00\x00")

    async def test_synthesize_speech_without_audio(self):
        self.sdk.aio.models.generate_content = AsyncMock(
            return_value=SimpleNamespace(candidates=[])
        )
        with self.assertRaises(GenerationError):
            await self.client.synthesize_speech("hello")

    async def test_handshake_failure_is_transport_error(self):
        ctxmgr = MagicMock()
        ctxmgr.__aenter__ = AsyncMock(side_effect=ConnectionError("refused"))
        self.sdk.aio.live.connect = MagicMock(return_value=ctxmgr)

        with self.assertRaises(TransportError):
            await self.client.open_audio_session(LiveOptions())

    async def test_open_audio_session(self):
        session = MagicMock()
        ctxmgr = MagicMock()
        ctxmgr.__aenter__ = AsyncMock(return_value=session)
        self.sdk.aio.live.connect = MagicMock(return_value=ctxmgr)

        connection = await self.client.open_audio_session(LiveOptions(voice="Kore"))

        self.assertIsInstance(connection, LiveConnection)
        kwargs = self.sdk.aio.live.connect.call_args.kwargs
        self.assertEqual(kwargs["model"], self.client.live_model)


if __name__ == "__main__":
    unittest.main()
