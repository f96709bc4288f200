"""Resilient chunked enhancement of long documents with the Gemini API."""

import importlib.metadata
import logging

from gemini_enhance.config import FrozenConfig, resolve_config
from gemini_enhance.core.models import ModelCapabilities, get_model_capabilities
from gemini_enhance.core.types import (
    ConversationTurn,
    Credential,
    EnhanceRequest,
    FatalError,
    Outcome,
    RateLimited,
    Role,
    RotationPolicy,
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunResult,
    SafetyBlocked,
    Segment,
    SegmentError,
    SegmentOutcome,
    SegmentProcessed,
    SegmentStatus,
    Success,
    TransientError,
)
from gemini_enhance.exceptions import (
    APIError,
    ConfigurationError,
    CredentialsExhaustedError,
    GeminiEnhanceError,
    PipelineBusyError,
)
from gemini_enhance.frontdoor import create_orchestrator, enhance_chapter
from gemini_enhance.pipeline import (
    ContextManager,
    CredentialPool,
    JSONRotationStore,
    RemoteClient,
    SegmentOrchestrator,
    split,
)
from gemini_enhance.telemetry import TelemetryContext, TelemetryReporter

# Version handling
try:
    __version__ = importlib.metadata.version("gemini-enhance")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Set up a null handler for the library's root logger.
# This prevents 'No handler found' errors if the consuming app has no logging configured.
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Entry points
    "enhance_chapter",
    "create_orchestrator",
    "resolve_config",
    "FrozenConfig",
    # Pipeline components
    "SegmentOrchestrator",
    "RemoteClient",
    "CredentialPool",
    "JSONRotationStore",
    "ContextManager",
    "split",
    # Telemetry (extension points)
    "TelemetryContext",
    "TelemetryReporter",
    # Core types
    "Segment",
    "Credential",
    "RotationPolicy",
    "Role",
    "ConversationTurn",
    "EnhanceRequest",
    "Outcome",
    "Success",
    "RateLimited",
    "SafetyBlocked",
    "TransientError",
    "FatalError",
    "SegmentStatus",
    "SegmentOutcome",
    "RunResult",
    # Events
    "RunEvent",
    "SegmentProcessed",
    "SegmentError",
    "RunCompleted",
    "RunCancelled",
    # Model metadata
    "ModelCapabilities",
    "get_model_capabilities",
    # Exceptions
    "GeminiEnhanceError",
    "ConfigurationError",
    "CredentialsExhaustedError",
    "PipelineBusyError",
    "APIError",
]
