"""
Gradio UI for chat, live voice and image generation.

This module is the composition root: it builds the API client, history and
controllers once and wires them into the Blocks app.
"""

import asyncio
import logging
import mimetypes
import tempfile
from pathlib import Path

import gradio as gr

from ..core import config
from ..core.errors import CognixError, SessionActiveError
from ..core.runtime_config import ConfigStore, RuntimeConfig
from ..core.sessions import ChatHistory
from ..core.types import CitationsPart, InlineMediaPart, Message, Role, TextPart
from ..interfaces.gemini import GeminiClient
from ..interfaces.microphone import MicrophoneInput
from ..interfaces.speaker import SpeakerOutput
from .chat import ChatController
from .live import LiveController, SessionState

logger = logging.getLogger(__name__)

LIVE_VOICES = ["Puck", "Charon", "Kore", "Fenrir", "Aoede"]

_STATUS_LABELS = {
    SessionState.IDLE: "⚪ Idle",
    SessionState.CONNECTING: "🟡 Connecting...",
    SessionState.ACTIVE: "🔴 Live",
    SessionState.CLOSING: "⏹️ Closing...",
}


class CognixApp:
    """Host application state shared by all UI callbacks."""

    def __init__(self, client: GeminiClient, history: ChatHistory, config_store: ConfigStore):
        self.client = client
        self.history = history
        self.config_store = config_store
        self.chat = ChatController(client, history, config_store)
        self.live = LiveController(
            client,
            config_store,
            microphone_factory=MicrophoneInput,
            speaker_factory=SpeakerOutput,
        )
        self._media_dir = Path(tempfile.mkdtemp(prefix="cognix-media-"))

    # -------------------------
    # RENDERING
    # -------------------------
    def _media_path(self, message: Message, index: int, part: InlineMediaPart) -> str:
        suffix = "." + part.mime_type.split("/")[-1].split(";")[0]
        path = self._media_dir / f"{message.id}-{index}{suffix}"
        if not path.exists():
            path.write_bytes(part.data)
        return str(path)

    def render_messages(self) -> list[dict]:
        session = self.history.active
        if session is None:
            return []
        rendered = []
        for message in session.messages:
            role = "user" if message.role is Role.USER else "assistant"
            for index, part in enumerate(message.parts):
                if isinstance(part, TextPart):
                    if part.text:
                        rendered.append({"role": role, "content": part.text})
                elif isinstance(part, InlineMediaPart):
                    path = self._media_path(message, index, part)
                    rendered.append({"role": role, "content": {"path": path}})
                elif isinstance(part, CitationsPart) and part.citations:
                    links = "\n".join(
                        f"- [{c.title or c.uri}]({c.uri})" for c in part.citations
                    )
                    rendered.append({"role": role, "content": f"Sources:\n{links}"})
        return rendered

    def chat_choices(self) -> gr.Dropdown:
        choices = [(s.title, s.id) for s in self.history.sessions]
        active = self.history.active
        value = active.id if active is not None and choices else None
        return gr.Dropdown(choices=choices, value=value)

    def live_transcript(self) -> str:
        lines = []
        for entry in self.live.entries:
            speaker = "You" if entry.speaker is Role.USER else "Cognix"
            lines.append(f"{speaker}: {entry.text}")
        return "\n".join(lines)

    def live_status(self) -> str:
        status = _STATUS_LABELS[self.live.state]
        if self.live.last_error and self.live.state is SessionState.IDLE:
            return f"{status} (last error: {self.live.last_error})"
        return status

    # -------------------------
    # CHAT ACTIONS
    # -------------------------
    async def send(self, text: str, image_path: str | None):
        image = None
        if image_path:
            mime, _ = mimetypes.guess_type(image_path)
            image = InlineMediaPart(
                mime_type=mime or "image/png", data=Path(image_path).read_bytes()
            )
        if self.chat.busy:
            yield self.render_messages(), text, image_path
            return

        task = asyncio.create_task(self.chat.send_message(text, image))
        while not task.done():
            yield self.render_messages(), "", None
            await asyncio.sleep(config.UI_REFRESH_SECONDS / 3)
        await task
        yield self.render_messages(), "", None

    async def read_last_reply(self):
        session = self.history.active
        replies = [m for m in (session.messages if session else []) if m.role is Role.MODEL]
        if not replies or not replies[-1].text:
            return None
        try:
            return await self.chat.read_aloud(replies[-1].text)
        except CognixError as exc:
            gr.Warning(f"Sorry, I couldn't play the audio. {exc}")
            return None

    def new_chat(self):
        self.history.new_chat()
        return self.render_messages(), self.chat_choices()

    def select_chat(self, session_id: str | None):
        if session_id:
            self.history.select(session_id)
        return self.render_messages()

    def rename_chat(self, title: str):
        active = self.history.active
        if active is not None and title.strip():
            self.history.rename(active.id, title)
            self.history.save()
        return self.chat_choices(), ""

    def delete_chat(self):
        active = self.history.active
        if active is not None:
            self.history.delete(active.id)
            self.history.save()
        return self.render_messages(), self.chat_choices()

    def clear_history(self):
        self.history.clear_all()
        return self.render_messages(), self.chat_choices()

    # -------------------------
    # LIVE ACTIONS
    # -------------------------
    async def start_live(self) -> str:
        try:
            await self.live.start()
        except SessionActiveError:
            return "Already live..."
        return self.live_status()

    async def stop_live(self) -> str:
        await self.live.stop()
        return self.live_status()

    # -------------------------
    # IMAGE ACTIONS
    # -------------------------
    async def generate_image(self, prompt: str):
        if not prompt.strip():
            return None, ""
        try:
            parts = await self.client.generate_image(prompt)
        except CognixError as exc:
            logger.error("Image generation failed: %s", exc)
            return None, f"Failed to generate image: {exc}"
        caption = next((p.text for p in parts if isinstance(p, TextPart)), "")
        media = next(p for p in parts if isinstance(p, InlineMediaPart))
        suffix = "." + media.mime_type.split("/")[-1]
        with tempfile.NamedTemporaryFile(
            delete=False, suffix=suffix, dir=self._media_dir
        ) as fh:
            fh.write(media.data)
        return fh.name, caption

    # -------------------------
    # SETTINGS
    # -------------------------
    def update_settings(
        self,
        web_search: bool,
        maps: bool,
        latitude: float | None,
        longitude: float | None,
        chat_instruction: str,
        live_instruction: str,
        voice: str | None,
    ) -> None:
        self.config_store.update(
            enable_web_search=bool(web_search),
            enable_maps_grounding=bool(maps),
            latitude=latitude,
            longitude=longitude,
            chat_system_instruction=chat_instruction,
            live_system_instruction=live_instruction,
            live_voice=voice or None,
        )


def _log_config_change(runtime: RuntimeConfig) -> None:
    logger.info(
        "Settings updated: web_search=%s maps=%s location=%s voice=%s",
        runtime.enable_web_search,
        runtime.enable_maps_grounding,
        runtime.location,
        runtime.live_voice,
    )


def create_ui() -> gr.Blocks:
    """Create the Gradio UI."""
    config_store = ConfigStore()
    config_store.add_listener(_log_config_change)
    history = ChatHistory(config.HISTORY_PATH)
    history.load()
    app = CognixApp(GeminiClient(config.API_KEY), history, config_store)
    defaults = config_store.get()

    with gr.Blocks(title="Cognix AI") as demo:
        gr.Markdown("# Cognix AI")

        with gr.Tab("💬 Chat"):
            with gr.Row():
                with gr.Column(scale=1):
                    chat_list = gr.Dropdown(label="Chats", interactive=True)
                    new_btn = gr.Button("➕ New Chat")
                    rename_box = gr.Textbox(label="Rename chat", lines=1)
                    delete_btn = gr.Button("🗑️ Delete Chat", variant="stop")
                    clear_btn = gr.Button("Clear All History", variant="stop")

                with gr.Column(scale=3):
                    chatbot = gr.Chatbot(type="messages", height=520)
                    with gr.Row():
                        prompt_box = gr.Textbox(
                            placeholder="Ask Cognix anything...",
                            show_label=False,
                            lines=2,
                            scale=4,
                        )
                        image_input = gr.Image(type="filepath", label="Image", scale=1)
                    with gr.Row():
                        send_btn = gr.Button("Send", variant="primary")
                        speak_btn = gr.Button("🔊 Read last reply")
                    reply_audio = gr.Audio(label="Reply audio", autoplay=True)

        with gr.Tab("🎙️ Live"):
            with gr.Row():
                live_status = gr.Textbox(
                    label="Status", value=app.live_status(), interactive=False, lines=1
                )
                start_btn = gr.Button("🎙️ Start Conversation", variant="primary")
                stop_btn = gr.Button("⏹️ Stop", variant="stop")
            live_box = gr.Textbox(
                label="Transcript",
                placeholder="Start a conversation and speak into your microphone...",
                lines=14,
                max_lines=20,
                interactive=False,
                autoscroll=True,
            )

        with gr.Tab("🖼️ Image"):
            image_prompt = gr.Textbox(label="Describe the image", lines=2)
            image_btn = gr.Button("Generate", variant="primary")
            image_output = gr.Image(label="Result", type="filepath")
            image_caption = gr.Markdown()

        with gr.Accordion("⚙️ Settings", open=False):
            with gr.Row():
                with gr.Column():
                    web_search = gr.Checkbox(value=defaults.enable_web_search, label="Web search")
                    maps = gr.Checkbox(value=defaults.enable_maps_grounding, label="Maps grounding")
                    latitude = gr.Number(label="Latitude", value=None)
                    longitude = gr.Number(label="Longitude", value=None)
                with gr.Column():
                    chat_instruction = gr.Textbox(
                        value=defaults.chat_system_instruction, label="Chat instruction", lines=4
                    )
                    live_instruction = gr.Textbox(
                        value=defaults.live_system_instruction, label="Live instruction", lines=4
                    )
                    voice = gr.Dropdown(choices=LIVE_VOICES, value=None, label="Live voice")
            settings = [web_search, maps, latitude, longitude, chat_instruction, live_instruction, voice]
            for component in settings:
                component.change(fn=app.update_settings, inputs=settings)

        # Chat wiring
        send_btn.click(
            fn=app.send,
            inputs=[prompt_box, image_input],
            outputs=[chatbot, prompt_box, image_input],
        ).then(fn=app.chat_choices, outputs=[chat_list])
        prompt_box.submit(
            fn=app.send,
            inputs=[prompt_box, image_input],
            outputs=[chatbot, prompt_box, image_input],
        ).then(fn=app.chat_choices, outputs=[chat_list])
        speak_btn.click(fn=app.read_last_reply, outputs=[reply_audio])
        new_btn.click(fn=app.new_chat, outputs=[chatbot, chat_list])
        chat_list.input(fn=app.select_chat, inputs=[chat_list], outputs=[chatbot])
        rename_box.submit(fn=app.rename_chat, inputs=[rename_box], outputs=[chat_list, rename_box])
        delete_btn.click(fn=app.delete_chat, outputs=[chatbot, chat_list])
        clear_btn.click(fn=app.clear_history, outputs=[chatbot, chat_list])

        # Live wiring
        start_btn.click(fn=app.start_live, outputs=[live_status])
        stop_btn.click(fn=app.stop_live, outputs=[live_status])

        def refresh_live():
            return app.live_transcript(), app.live_status()

        timer = gr.Timer(value=config.UI_REFRESH_SECONDS, active=True)
        timer.tick(fn=refresh_live, outputs=[live_box, live_status])

        # Image wiring
        image_btn.click(
            fn=app.generate_image,
            inputs=[image_prompt],
            outputs=[image_output, image_caption],
        )

        demo.load(fn=lambda: (app.render_messages(), app.chat_choices()), outputs=[chatbot, chat_list])

    return demo


def launch():
    """Launch the Gradio UI."""
    demo = create_ui()
    demo.launch(server_name=config.HOST, server_port=config.PORT, share=False)
