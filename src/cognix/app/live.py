"""
Realtime audio session: microphone -> model -> speaker.

    IDLE --start()--> CONNECTING --open--> ACTIVE --stop()/error/close--> CLOSING --> IDLE
    CONNECTING --error--> IDLE

The capture callbacks and the network receiver never touch session state
directly. They post frames and failures onto one asyncio queue per session
and a single consumer task handles them in arrival order. A watcher task
fails the session if the capture stream stops on its own. Outbound frames go
through a second queue drained by a sender task, so capture never waits on
the network.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import numpy as np

from ..core import config
from ..core.codec import decode_pcm, encode_pcm
from ..core.errors import (
    CognixError,
    MicrophoneUnavailableError,
    SessionActiveError,
    TransportError,
)
from ..core.runtime_config import ConfigStore
from ..core.transcript import LiveTranscript, TranscriptEntry
from ..core.types import Role
from ..interfaces.gemini import LiveEvent, LiveOptions

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


@dataclass
class _CaptureFrame:
    samples: np.ndarray


@dataclass
class _ServerEvent:
    event: LiveEvent


@dataclass
class _Failure:
    error: Exception


class _RemoteClosed:
    pass


class AudioSession:
    """
    One live voice conversation. Single-use: create a new instance per
    conversation.

    Args:
        client: Object with an async open_audio_session(options) method
        options: Live session options
        microphone_factory: Callable(on_audio=..., on_error=...) returning an
            object with start()/stop()/is_active()
        speaker_factory: Callable() returning an object with start()/play()/interrupt()/stop()
        on_state_changed: Called with each new SessionState
        on_transcript_entry: Called with (speaker, accumulated text)
        on_error: Called with the exception that ended the session
        capture_watch_interval: Seconds between checks that the capture
            stream is still running
    """

    def __init__(
        self,
        client: Any,
        options: LiveOptions,
        *,
        microphone_factory: Callable[..., Any],
        speaker_factory: Callable[[], Any],
        on_state_changed: Callable[[SessionState], None] | None = None,
        on_transcript_entry: Callable[[Role, str], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        capture_watch_interval: float = config.CAPTURE_WATCH_SECONDS,
    ):
        self.client = client
        self.options = options
        self.microphone_factory = microphone_factory
        self.speaker_factory = speaker_factory
        self.on_state_changed = on_state_changed
        self.on_error = on_error
        self.capture_watch_interval = capture_watch_interval
        self.transcript = LiveTranscript(on_entry=on_transcript_entry)

        self.state = SessionState.IDLE
        self._started = False
        self._accepting = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._outbound: asyncio.Queue[bytes] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

        self._connection: Any = None
        self._microphone: Any = None
        self._speaker: Any = None

        self.frames_sent = 0
        self.chunks_received = 0

    # -------------------------
    # LIFECYCLE
    # -------------------------
    async def start(self) -> None:
        """
        Connect, open the microphone and begin streaming.

        Failures while connecting tear the session down to IDLE and are
        reported through on_error rather than raised.

        Raises:
            SessionActiveError: If this session object was already started
        """
        if self._started:
            raise SessionActiveError("AudioSession is single-use; create a new one")
        self._started = True
        self._loop = asyncio.get_running_loop()
        self._set_state(SessionState.CONNECTING)

        try:
            connection = await self.client.open_audio_session(self.options)
        except Exception as exc:
            await self._fail(exc)
            return

        if self.state is not SessionState.CONNECTING:
            # stop() was called during the handshake
            await connection.close()
            return
        self._connection = connection

        try:
            self._microphone = self.microphone_factory(
                on_audio=self._on_capture, on_error=self._on_capture_error
            )
            self._microphone.start()
            self._speaker = self.speaker_factory()
            self._speaker.start()
        except Exception as exc:
            await self._fail(exc)
            return

        self._accepting = True
        self._set_state(SessionState.ACTIVE)
        self._tasks = [
            asyncio.create_task(self._consume(), name="live_consume"),
            asyncio.create_task(self._receive(), name="live_receive"),
            asyncio.create_task(self._send(), name="live_send"),
            asyncio.create_task(self._watch_capture(), name="live_watch_capture"),
        ]

    async def stop(self) -> None:
        """Tear the session down. Safe to call from any state."""
        if self.state in (SessionState.IDLE, SessionState.CLOSING):
            return
        logger.info("Stopping live session")
        await self._teardown()

    async def _fail(self, error: Exception) -> None:
        if self.state in (SessionState.IDLE, SessionState.CLOSING):
            return
        logger.error("Live session failed: %s", error)
        await self._teardown()
        if self.on_error:
            self.on_error(error)

    async def _teardown(self) -> None:
        # Stop capture and output before awaiting anything
        self._accepting = False
        self._set_state(SessionState.CLOSING)
        if self._microphone is not None:
            self._microphone.stop()
            self._microphone = None
        if self._speaker is not None:
            self._speaker.stop()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        self._tasks = []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as exc:
                logger.warning("Error closing live session: %s", exc)

        logger.info(
            "Live session closed (%d frames sent, %d chunks received)",
            self.frames_sent,
            self.chunks_received,
        )
        self._set_state(SessionState.IDLE)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug("Live session %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state_changed:
            self.on_state_changed(state)

    # -------------------------
    # EVENT SOURCES
    # -------------------------
    def _on_capture(self, samples: np.ndarray, timestamp: float) -> None:
        """Microphone callback; runs on the audio thread."""
        if not self._accepting or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(
                self._events.put_nowait, _CaptureFrame(np.array(samples, copy=True))
            )
        except RuntimeError:
            # Event loop already closed during shutdown
            logger.debug("Dropped capture frame after loop shutdown")

    def _on_capture_error(self, error: Exception) -> None:
        """Microphone error callback; runs on the audio thread."""
        if not self._accepting or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._events.put_nowait, _Failure(error))
        except RuntimeError:
            logger.debug("Dropped capture error after loop shutdown: %s", error)

    async def _watch_capture(self) -> None:
        """Fail the session if the capture stream stops on its own."""
        while True:
            await asyncio.sleep(self.capture_watch_interval)
            microphone = self._microphone
            if self._accepting and microphone is not None and not microphone.is_active():
                self._events.put_nowait(
                    _Failure(MicrophoneUnavailableError("Microphone stream stopped"))
                )
                return

    async def _receive(self) -> None:
        try:
            async for event in self._connection.events():
                self._events.put_nowait(_ServerEvent(event))
        except asyncio.CancelledError:
            raise
        except CognixError as exc:
            self._events.put_nowait(_Failure(exc))
            return
        except Exception as exc:
            self._events.put_nowait(_Failure(TransportError(f"Live transport failed: {exc}")))
            return
        self._events.put_nowait(_RemoteClosed())

    async def _send(self) -> None:
        while True:
            pcm = await self._outbound.get()
            if not self._accepting:
                continue
            try:
                await self._connection.send_audio(pcm)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._events.put_nowait(_Failure(TransportError(f"Failed to send audio: {exc}")))
                return
            self.frames_sent += 1

    # -------------------------
    # CONSUMER
    # -------------------------
    async def _consume(self) -> None:
        while True:
            item = await self._events.get()
            if isinstance(item, _CaptureFrame):
                if self._accepting:
                    self._outbound.put_nowait(encode_pcm(item.samples))
            elif isinstance(item, _ServerEvent):
                try:
                    self._handle_server_event(item.event)
                except Exception as exc:
                    await self._fail(exc)
                    return
            elif isinstance(item, _Failure):
                await self._fail(item.error)
                return
            elif isinstance(item, _RemoteClosed):
                logger.info("Live session closed by remote")
                await self._teardown()
                return

    def _handle_server_event(self, event: LiveEvent) -> None:
        if event.audio:
            samples = decode_pcm(event.audio)
            self.chunks_received += 1
            if self._accepting:
                self._speaker.play(samples)

        if event.interrupted:
            dropped = self._speaker.interrupt()
            logger.info("Model interrupted; dropped %d queued chunks", dropped)

        if event.input_text:
            self.transcript.append(Role.USER, event.input_text)
        if event.output_text:
            self.transcript.append(Role.MODEL, event.output_text)

        if event.turn_complete:
            self.transcript.complete_turn()


class LiveController:
    """
    Host-side owner of the live conversation: one AudioSession at a time,
    a new one per conversation.
    """

    def __init__(
        self,
        client: Any,
        config_store: ConfigStore,
        *,
        microphone_factory: Callable[..., Any],
        speaker_factory: Callable[[], Any],
        on_state_changed: Callable[[SessionState], None] | None = None,
    ):
        self.client = client
        self.config_store = config_store
        self.microphone_factory = microphone_factory
        self.speaker_factory = speaker_factory
        self.on_state_changed = on_state_changed
        self.session: AudioSession | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session is not None else SessionState.IDLE

    @property
    def entries(self) -> list[TranscriptEntry]:
        return self.session.transcript.entries if self.session is not None else []

    async def start(self) -> AudioSession:
        """
        Start a new conversation.

        Raises:
            SessionActiveError: If a session is already connecting or active
        """
        if self.state in (SessionState.CONNECTING, SessionState.ACTIVE):
            raise SessionActiveError("A live session is already running")
        runtime = self.config_store.get()
        options = LiveOptions(
            system_instruction=runtime.live_system_instruction,
            voice=runtime.live_voice,
        )
        self.last_error = None
        self.session = AudioSession(
            self.client,
            options,
            microphone_factory=self.microphone_factory,
            speaker_factory=self.speaker_factory,
            on_state_changed=self.on_state_changed,
            on_error=self._on_error,
        )
        await self.session.start()
        return self.session

    async def stop(self) -> None:
        if self.session is not None:
            await self.session.stop()

    def _on_error(self, error: Exception) -> None:
        self.last_error = str(error) or type(error).__name__
