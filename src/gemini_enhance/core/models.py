"""Model metadata used to size segments.

The segmenter only needs a context budget; this module maps a model
identifier (or a full ``:generateContent`` endpoint) to that budget.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from gemini_enhance.constants import (
    DEFAULT_CONTEXT_TOKENS,
    DEFAULT_MAX_OUTPUT_TOKENS,
    MODEL_CONTEXT_TOKENS,
)


@dataclass(frozen=True, slots=True)
class ModelCapabilities:
    """Context and output budgets for one model."""

    model_id: str
    context_tokens: int
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS


def model_id_from_endpoint(endpoint: str) -> str:
    """Extract ``gemini-2.5-flash`` from ``.../models/gemini-2.5-flash:generateContent``."""
    tail = endpoint.rstrip("/").rsplit("/", 1)[-1]
    return tail.split(":", 1)[0]


def get_model_capabilities(
    model_id: str,
    overrides: Mapping[str, int] | None = None,
    *,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> ModelCapabilities:
    """Look up the context size for a model.

    Table keys match by substring so dated or suffixed variants
    (``gemini-2.5-flash-preview-05-20``) resolve to their family. Longer keys
    win, and ``overrides`` take precedence over the built-in table. Unknown
    models get a conservative default.
    """
    table = {**MODEL_CONTEXT_TOKENS, **(overrides or {})}
    for key in sorted(table, key=len, reverse=True):
        if key in model_id:
            return ModelCapabilities(model_id, table[key], max_output_tokens)
    return ModelCapabilities(model_id, DEFAULT_CONTEXT_TOKENS, max_output_tokens)
