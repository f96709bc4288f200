"""Core data types that flow through the enhancement pipeline.

Every value here is immutable. Segments are produced once by the segmenter,
remote outcomes are produced once per attempt by the remote client, and
segment outcomes are produced once per segment by the orchestrator. Events
describe progress to whatever consumer is listening.
"""

from __future__ import annotations

import dataclasses
import enum
import typing

from gemini_enhance.constants import DEFAULT_RETRY_AFTER_MS

# --- Minimal guard helpers (clarity > boilerplate) ---


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


def _require_index(value: object, field_name: str) -> None:
    _require(
        condition=isinstance(value, int) and not isinstance(value, bool),
        message="must be an int",
        field_name=field_name,
        exc=TypeError,
    )
    _require(
        condition=typing.cast("int", value) >= 0,
        message="must be >= 0",
        field_name=field_name,
    )


# --- Segments ---


@dataclasses.dataclass(frozen=True, slots=True)
class Segment:
    """A bounded piece of the original document sent as one request."""

    index: int
    text: str

    def __post_init__(self) -> None:
        """Validate invariants for type safety."""
        _require_index(self.index, "index")
        _require(
            condition=isinstance(self.text, str),
            message="must be str",
            field_name="text",
            exc=TypeError,
        )

    @property
    def char_length(self) -> int:
        return len(self.text)


# --- Credentials ---


class RotationPolicy(str, enum.Enum):
    """How the credential pool moves between API keys."""

    FAILOVER = "failover"  # ordered fallback chain, exhaustion is terminal
    ROUND_ROBIN = "round-robin"  # steady-state load spreading, wraps around


@dataclasses.dataclass(frozen=True, slots=True)
class Credential:
    """One API key and its position in the pool."""

    value: str
    position: int

    def __post_init__(self) -> None:
        """Validate invariants for type safety."""
        _require(
            condition=isinstance(self.value, str) and self.value.strip() != "",
            message="must be a non-empty str",
            field_name="value",
            exc=TypeError,
        )
        _require_index(self.position, "position")

    def __repr__(self) -> str:
        """Repr with the key redacted for safe logging."""
        return f"Credential(value='[REDACTED]', position={self.position})"


@dataclasses.dataclass(frozen=True, slots=True)
class RotationState:
    """Snapshot of the pool's selection policy and position."""

    policy: RotationPolicy
    current_index: int


# --- Conversation ---


class Role(str, enum.Enum):
    """Conversation roles accepted by the remote API."""

    USER = "user"
    MODEL = "model"


@dataclasses.dataclass(frozen=True, slots=True)
class ConversationTurn:
    """A single turn of the forwarded conversation history."""

    role: Role
    text: str

    def __post_init__(self) -> None:
        """Validate invariants for type safety."""
        _require(
            condition=isinstance(self.role, Role),
            message="must be a Role",
            field_name="role",
            exc=TypeError,
        )
        _require(
            condition=isinstance(self.text, str) and self.text.strip() != "",
            message="must be a non-empty str",
            field_name="text",
        )

    def to_api(self) -> dict[str, typing.Any]:
        """Return the REST ``contents`` entry for this turn."""
        return {"role": self.role.value, "parts": [{"text": self.text}]}


# --- Remote call outcomes ---


@dataclasses.dataclass(frozen=True, slots=True)
class Success:
    """Normal completion with non-empty generated text."""

    text: str
    raw_response: typing.Mapping[str, typing.Any] = dataclasses.field(
        default_factory=dict
    )


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimited:
    """The remote throttled the request (HTTP 429 or quota exhaustion)."""

    retry_after_ms: int = DEFAULT_RETRY_AFTER_MS
    message: str = "Rate limit reached"


@dataclasses.dataclass(frozen=True, slots=True)
class SafetyBlocked:
    """The remote safety layer refused the content; never retried."""

    reason: str


@dataclasses.dataclass(frozen=True, slots=True)
class TransientError:
    """Network failure, malformed body or unexpected status; retryable."""

    message: str


@dataclasses.dataclass(frozen=True, slots=True)
class FatalError:
    """Invalid credential or request; surfaced without retry."""

    message: str


Outcome = Success | RateLimited | SafetyBlocked | TransientError | FatalError


# --- Segment and run results ---


class SegmentStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclasses.dataclass(frozen=True, slots=True)
class SegmentOutcome:
    """Terminal result for one segment.

    ``original_text`` is kept on failures so a caller can offer a standalone
    "retry this segment" action.
    """

    index: int
    status: SegmentStatus
    original_text: str
    enhanced_text: str | None = None
    error: str | None = None
    attempts: int = 0

    def __post_init__(self) -> None:
        """Validate that the payload matches the status."""
        _require_index(self.index, "index")
        if self.status is SegmentStatus.SUCCESS:
            _require(
                condition=self.enhanced_text is not None,
                message="required for successful outcomes",
                field_name="enhanced_text",
            )
        else:
            _require(
                condition=self.error is not None,
                message="required for failed outcomes",
                field_name="error",
            )

    def to_segment(self) -> Segment:
        """Rebuild the input segment, e.g. for a resume run."""
        return Segment(index=self.index, text=self.original_text)


@dataclasses.dataclass(frozen=True, slots=True)
class RunResult:
    """Aggregate of one orchestrator run. Partial success is a valid result."""

    total: int
    succeeded: tuple[SegmentOutcome, ...] = ()
    failed: tuple[SegmentOutcome, ...] = ()
    cancelled: bool = False

    @property
    def failed_indexes(self) -> tuple[int, ...]:
        return tuple(o.index for o in self.failed)

    @property
    def is_complete(self) -> bool:
        """True when every segment of the document succeeded."""
        return (
            not self.cancelled
            and not self.failed
            and len(self.succeeded) == self.total
        )

    def enhanced_text(self, separator: str = "\n\n") -> str:
        """Join the successful segments in index order."""
        ordered = sorted(self.succeeded, key=lambda o: o.index)
        return separator.join(o.enhanced_text or "" for o in ordered)


# --- Inbound request ---


@dataclasses.dataclass(frozen=True, slots=True)
class EnhanceRequest:
    """What the host hands to the pipeline for one document."""

    title: str
    raw_text: str
    use_emoji_annotations: bool = False
    site_context_prompt: str = ""
    force_chunking: bool = False

    def __post_init__(self) -> None:
        """Validate invariants for type safety."""
        _require(
            condition=isinstance(self.title, str),
            message="must be str",
            field_name="title",
            exc=TypeError,
        )
        _require(
            condition=isinstance(self.raw_text, str),
            message="must be str",
            field_name="raw_text",
            exc=TypeError,
        )


# --- Outbound events ---


@dataclasses.dataclass(frozen=True, slots=True)
class SegmentProcessed:
    index: int
    total: int
    enhanced_text: str
    progress_percent: int
    original_text: str = ""
    is_resumed: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class SegmentError:
    index: int
    total: int
    message: str
    is_rate_limit: bool = False
    final_failure: bool = False
    retry_count: int = 0
    wait_ms: int = 0


@dataclasses.dataclass(frozen=True, slots=True)
class RunCompleted:
    succeeded_count: int
    failed_count: int
    total: int
    failed_indexes: tuple[int, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class RunCancelled:
    processed_count: int
    remaining_count: int
    total: int


RunEvent = SegmentProcessed | SegmentError | RunCompleted | RunCancelled
