"""
Core configuration constants for the chat and live audio client.
Environment-derived values are read once at import time.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# -------------------------
# API
# -------------------------
API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY", "")

CHAT_MODEL = os.environ.get("COGNIX_CHAT_MODEL", "gemini-2.5-flash")
LIVE_MODEL = os.environ.get(
    "COGNIX_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025"
)
IMAGE_MODEL = os.environ.get("COGNIX_IMAGE_MODEL", "gemini-2.5-flash-image")
TTS_MODEL = os.environ.get("COGNIX_TTS_MODEL", "gemini-2.5-flash-preview-tts")
TTS_VOICE = "Kore"

# -------------------------
# AUDIO CONFIG
# -------------------------
INPUT_SAMPLE_RATE = 16000  # microphone -> model
OUTPUT_SAMPLE_RATE = 24000  # model -> speaker
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per sample (int16)
CAPTURE_FRAME_SAMPLES = 4096  # fixed-size capture frames
CAPTURE_WATCH_SECONDS = 0.5  # capture stream liveness check
OUTPUT_FRAMES_PER_BUFFER = 1024

INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

# -------------------------
# PROMPTS
# -------------------------
CHAT_SYSTEM_INSTRUCTION = (
    "You are Cognix AI, a powerful, friendly, and helpful assistant. "
    "Your goal is to provide short, engaging, and highly effective conversational "
    "responses. Keep your answers to one or two sentences if possible. "
    "Absolutely NO markdown. For lists, use numbered lists (e.g., 1., 2., 3.)."
)
LIVE_SYSTEM_INSTRUCTION = (
    "You are Cognix AI, a friendly and helpful assistant. "
    "Provide short, engaging, and highly effective conversational responses. "
    "Keep your answers to one or two sentences if possible. Absolutely NO markdown."
)
IMAGE_PROMPT_TEMPLATE = "Create an image of {prompt}"
TTS_PROMPT_TEMPLATE = "Say this: {text}"

# -------------------------
# CHAT HISTORY
# -------------------------
NEW_CHAT_TITLE = "New Chat"
UNTITLED_CHAT_TITLE = "Untitled Chat"
TITLE_MAX_CHARS = 40
HISTORY_PATH = Path(
    os.environ.get(
        "COGNIX_HISTORY_PATH", str(Path.home() / ".cognix" / "chat_history.json")
    )
)

# -------------------------
# HOST APP
# -------------------------
LOG_LEVEL = os.environ.get("COGNIX_LOG_LEVEL", "INFO")
HOST = os.environ.get("COGNIX_HOST", "127.0.0.1")
PORT = int(os.environ.get("COGNIX_PORT", "7860"))
UI_REFRESH_SECONDS = 0.3
