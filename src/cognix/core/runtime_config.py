"""
Runtime configuration that can be modified during execution.
Thread-safe configuration store for the chat and live options the UI exposes.
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from . import config

logger = logging.getLogger(__name__)


@dataclass
class RuntimeConfig:
    """
    Runtime-tunable configuration values.
    These can be changed while the application is running and apply to the
    next request or live session.
    """

    # Chat grounding
    enable_web_search: bool = True
    enable_maps_grounding: bool = False
    latitude: float | None = None
    longitude: float | None = None

    # Instructions
    chat_system_instruction: str = config.CHAT_SYSTEM_INSTRUCTION
    live_system_instruction: str = config.LIVE_SYSTEM_INSTRUCTION

    # Live voice
    live_voice: str | None = None

    @property
    def location(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class ConfigStore:
    """
    Thread-safe configuration store with change notifications.
    """

    def __init__(self, initial: RuntimeConfig | None = None):
        self._config = initial or RuntimeConfig()
        self._lock = threading.RLock()
        self._listeners: list[Callable[[RuntimeConfig], None]] = []

    def get(self) -> RuntimeConfig:
        """Get a copy of the current configuration."""
        with self._lock:
            return dataclasses.replace(self._config)

    def update(self, **kwargs) -> None:
        """
        Update configuration values.

        Args:
            **kwargs: Configuration fields to update

        Raises:
            AttributeError: If a key is not a configuration field
        """
        field_names = {f.name for f in dataclasses.fields(RuntimeConfig)}
        with self._lock:
            for key, value in kwargs.items():
                if key not in field_names:
                    raise AttributeError(f"Unknown configuration field: {key}")
                setattr(self._config, key, value)

            # Notify listeners
            config_copy = self.get()
            for listener in self._listeners:
                try:
                    listener(config_copy)
                except Exception:
                    logger.exception("Configuration listener failed")

    def add_listener(self, callback: Callable[[RuntimeConfig], None]) -> None:
        """Add a listener for configuration changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[RuntimeConfig], None]) -> None:
        """Remove a configuration change listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)
