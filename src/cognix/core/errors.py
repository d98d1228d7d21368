"""
Error taxonomy for the client core.

Recoverable failures derive from CognixError and are absorbed at component
boundaries. Invariant violations derive from RuntimeError and are meant to
fail loudly.
"""


class CognixError(Exception):
    """Base class for recoverable client errors."""


class ConfigurationError(CognixError):
    """A required setting (such as the API key) is missing."""


class TransportError(CognixError):
    """The remote session or request stream failed."""


class DecodeError(CognixError):
    """An inbound audio payload could not be decoded."""


class MicrophoneUnavailableError(CognixError):
    """The capture device could not be opened (denied or missing)."""


class GenerationError(CognixError):
    """A generation side effect returned no usable result."""


class ResponseClosedError(RuntimeError):
    """A fragment was applied to a response that has already ended."""


class SessionActiveError(RuntimeError):
    """An audio session was started while another one is live or it was reused."""


class RequestInFlightError(RuntimeError):
    """A chat request was sent while another is still streaming."""
