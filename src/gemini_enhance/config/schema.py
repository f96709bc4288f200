"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from various sources (environment, files, programmatic) into the correct
types with proper defaults.
"""

from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from gemini_enhance.constants import (
    BACKOFF_BASE_MS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL_ID,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_K,
    DEFAULT_TOP_P,
    INTER_SEGMENT_DELAY_SECONDS,
    MAX_ATTEMPTS,
    MIN_CONTENT_CHARS,
    MIN_RETENTION_RATIO,
    NETWORK_TIMEOUT,
    RATE_LIMIT_SLICE_SECONDS,
    RETENTION_MIN_WORDS,
)
from gemini_enhance.core.types import RotationPolicy
from gemini_enhance.prompts import DEFAULT_PERMANENT_PROMPT, DEFAULT_PROMPT


class EnhancerSettings(BaseSettings):
    """Pydantic settings schema for the enhancement pipeline.

    Handles validation, type coercion and defaults for every configuration
    field. Environment variables use the ``GEMINI_ENHANCE_`` prefix, e.g.
    ``GEMINI_ENHANCE_API_KEY`` or ``GEMINI_ENHANCE_BACKUP_API_KEYS=k1,k2``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_ENHANCE_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown keys for forward compatibility
    )

    # --- Credentials ---

    api_key: str | None = Field(default=None, description="Primary Gemini API key")
    backup_api_keys: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Backup API keys, tried after (or rotated with) the primary",
    )
    rotation: RotationPolicy = Field(
        default=RotationPolicy.FAILOVER,
        description="Credential selection policy",
    )
    rotation_state_path: Path | None = Field(
        default=None,
        description="JSON file persisting the round-robin position between runs",
    )

    # --- Model and endpoint ---

    model: str = Field(default=DEFAULT_MODEL_ID, min_length=1)
    endpoint: str | None = Field(
        default=None,
        description="Full :generateContent URL; derived from model when unset",
    )
    model_context_sizes: dict[str, int] = Field(
        default_factory=dict,
        description="Context size overrides (tokens) keyed by model identifier",
    )
    request_timeout_seconds: float = Field(default=NETWORK_TIMEOUT, gt=0)

    # --- Generation ---

    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    top_p: float = Field(default=DEFAULT_TOP_P, ge=0.0, le=1.0)
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1)
    max_output_tokens: int = Field(default=DEFAULT_MAX_OUTPUT_TOKENS, ge=1)
    default_prompt: str = Field(default=DEFAULT_PROMPT, min_length=1)
    permanent_prompt: str = Field(default=DEFAULT_PERMANENT_PROMPT)

    # --- Segmenting ---

    chunking_enabled: bool = True
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        ge=1,
        description="Chunking threshold and maximum segment size, in characters",
    )

    # --- Orchestration ---

    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)
    backoff_base_ms: int = Field(default=BACKOFF_BASE_MS, ge=0)
    rate_limit_slice_seconds: float = Field(default=RATE_LIMIT_SLICE_SECONDS, gt=0)
    inter_segment_delay_seconds: float = Field(
        default=INTER_SEGMENT_DELAY_SECONDS, ge=0
    )
    min_retention_ratio: float = Field(default=MIN_RETENTION_RATIO, ge=0.0, le=1.0)
    retention_min_words: int = Field(default=RETENTION_MIN_WORDS, ge=0)
    min_content_chars: int = Field(default=MIN_CONTENT_CHARS, ge=0)

    # --- Validation Rules ---

    @field_validator("rotation", mode="before")
    @classmethod
    def parse_rotation(cls, v: Any) -> RotationPolicy:
        """Parse rotation policy from enum, value or common spellings."""
        if isinstance(v, RotationPolicy):
            return v
        if isinstance(v, str):
            normalized = v.strip().lower().replace("_", "-")
            if normalized in ("roundrobin", "rr"):
                normalized = RotationPolicy.ROUND_ROBIN.value
            for policy in RotationPolicy:
                if policy.value == normalized:
                    return policy
        raise ValueError(f"Invalid rotation: {v}. Must be one of: failover, round-robin")

    @field_validator("backup_api_keys", mode="before")
    @classmethod
    def parse_key_list(cls, v: Any) -> list[str]:
        """Accept a list or a comma-separated string; drop blank entries."""
        if v is None:
            return []
        items = v.split(",") if isinstance(v, str) else list(v)
        return [str(k).strip() for k in items if str(k).strip()]

    @model_validator(mode="after")
    def normalize_credentials_and_endpoint(self) -> "EnhancerSettings":
        """Treat a blank primary key as unset and require an http(s) endpoint."""
        if self.api_key is not None and not self.api_key.strip():
            self.api_key = None
        elif self.api_key is not None:
            self.api_key = self.api_key.strip()
        if self.endpoint is not None and not self.endpoint.startswith(
            ("http://", "https://")
        ):
            raise ValueError(f"endpoint must be an http(s) URL, got {self.endpoint!r}")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain dictionary of resolved values (keys are not redacted)."""
        return self.model_dump()
