"""Enhancement pipeline: segmenting, credentials, remote calls and orchestration."""

from gemini_enhance.pipeline.context import (
    ContextManager,
    Payload,
    append_exchange,
    normalize_role,
    sanitize_history,
)
from gemini_enhance.pipeline.credentials import (
    CredentialPool,
    InMemoryRotationStore,
    JSONRotationStore,
    RotationStore,
)
from gemini_enhance.pipeline.orchestrator import (
    RunState,
    SegmentOrchestrator,
    SegmentState,
    Transition,
    backoff_ms,
    check_retention,
    transition,
)
from gemini_enhance.pipeline.remote_client import RemoteClient, decode_response
from gemini_enhance.pipeline.segmenter import (
    compute_max_chars,
    count_words,
    plan_segments,
    split,
)

__all__ = [
    "ContextManager",
    "CredentialPool",
    "InMemoryRotationStore",
    "JSONRotationStore",
    "Payload",
    "RemoteClient",
    "RotationStore",
    "RunState",
    "SegmentOrchestrator",
    "SegmentState",
    "Transition",
    "append_exchange",
    "backoff_ms",
    "check_retention",
    "compute_max_chars",
    "count_words",
    "decode_response",
    "normalize_role",
    "plan_segments",
    "sanitize_history",
    "split",
    "transition",
]
