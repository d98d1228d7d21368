#!/usr/bin/env python3
"""
Cognix: chat, live voice and image generation over the Gemini API.

- chat -> streamed fragments folded into the session transcript
- live -> microphone frames out, model audio scheduled gaplessly back
- Gradio UI -> chat history, live conversation control, image prompts
"""

import logging

from .core import config
from .app.gradio_ui import launch


def main():
    """Main entry point for the Cognix application with Gradio UI."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    launch()


if __name__ == "__main__":
    main()
