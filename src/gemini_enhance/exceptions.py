"""Exceptions for the Gemini enhancement pipeline.

Segment-level problems (rate limits, transient failures, safety blocks) are
reported as data through ``core.types`` outcomes and never raised. The
exceptions below cover document-level preconditions and misuse.
"""


class GeminiEnhanceError(Exception):
    """Base exception for gemini_enhance errors."""


class ConfigurationError(GeminiEnhanceError):
    """Raised when configuration cannot be resolved or is invalid."""


class CredentialsExhaustedError(GeminiEnhanceError):
    """Raised before any work starts when no usable API key is configured."""


class PipelineBusyError(GeminiEnhanceError):
    """Raised when a second document is submitted to a busy orchestrator."""


class APIError(GeminiEnhanceError):
    """Raised for misuse of the remote client (e.g. calling it after close)."""
