"""Frozen configuration handed to the pipeline.

Configuration is resolved once, frozen, and passed explicitly into each
orchestrator at construction time. Nothing inside the pipeline re-reads
the environment or files.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from gemini_enhance.constants import API_BASE_URL
from gemini_enhance.core.models import model_id_from_endpoint
from gemini_enhance.core.types import RotationPolicy

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SECRET_FIELDS = frozenset({"api_key", "backup_api_keys"})


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration for one or more pipeline runs.

    The caller re-resolves between runs when settings change; a run never
    observes a configuration change midway.
    """

    api_key: str | None
    backup_api_keys: tuple[str, ...]
    rotation: RotationPolicy
    rotation_state_path: Path | None
    model: str
    endpoint: str | None
    model_context_sizes: Mapping[str, int]
    request_timeout_seconds: float
    temperature: float
    top_p: float
    top_k: int
    max_output_tokens: int
    default_prompt: str
    permanent_prompt: str
    chunking_enabled: bool
    chunk_size: int
    max_attempts: int
    backoff_base_ms: int
    rate_limit_slice_seconds: float
    inter_segment_delay_seconds: float
    min_retention_ratio: float
    retention_min_words: int
    min_content_chars: int
    origin: SourceMap = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        """Freeze the mapping fields."""
        object.__setattr__(self, "backup_api_keys", tuple(self.backup_api_keys))
        object.__setattr__(
            self, "model_context_sizes", MappingProxyType(dict(self.model_context_sizes))
        )
        object.__setattr__(self, "origin", MappingProxyType(dict(self.origin)))

    @classmethod
    def from_values(
        cls, values: Mapping[str, Any], origin: SourceMap | None = None
    ) -> "FrozenConfig":
        """Build from a mapping of validated settings, ignoring unknown keys."""
        known = {f.name for f in fields(cls)} - {"origin"}
        return cls(
            **{k: v for k, v in values.items() if k in known}, origin=origin or {}
        )

    @property
    def all_keys(self) -> tuple[str, ...]:
        """Primary then backups, blank entries removed."""
        keys = (self.api_key or "", *self.backup_api_keys)
        return tuple(k.strip() for k in keys if k and k.strip())

    @property
    def model_id(self) -> str:
        if self.endpoint:
            return model_id_from_endpoint(self.endpoint)
        return self.model

    @property
    def effective_endpoint(self) -> str:
        return self.endpoint or f"{API_BASE_URL}/{self.model}:generateContent"

    def to_redacted_dict(self) -> dict[str, Any]:
        """Plain values with secrets redacted, suitable for printing."""
        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "origin":
                continue
            value = getattr(self, f.name)
            if f.name == "api_key":
                value = "[REDACTED]" if value else None
            elif f.name == "backup_api_keys":
                value = [f"[REDACTED {i + 1}]" for i in range(len(value))]
            elif isinstance(value, RotationPolicy):
                value = value.value
            elif isinstance(value, Path):
                value = str(value)
            elif isinstance(value, Mapping):
                value = dict(value)
            out[f.name] = value
        return out

    def __str__(self) -> str:
        """String representation with redacted keys for safe logging."""
        shown = ", ".join(
            f"{k}={v!r}"
            for k, v in self.to_redacted_dict().items()
            if k in _SECRET_FIELDS or k in ("model", "rotation", "chunk_size")
        )
        return f"FrozenConfig({shown})"

    def __repr__(self) -> str:
        """Representation with redacted keys for safe debugging."""
        return self.__str__()
