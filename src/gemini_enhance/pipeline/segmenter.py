"""Content-aware splitting of a document into model-safe segments.

Boundaries are tried as a cascade, coarsest first:

1. blank-line paragraph breaks
2. single newlines
3. sentence end followed by whitespace and a capital letter
4. any sentence end followed by whitespace

The first strategy that yields more than one part wins. Parts are packed
greedily up to ``max_chars``; a part that is still too large is refined with
the next strategies in the cascade, and anything left oversized is split on
word boundaries as a last resort.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, TypeAlias

from gemini_enhance.constants import (
    CHARS_PER_TOKEN,
    HISTORY_OVERHEAD_TOKENS,
    MIN_SEGMENT_CHARS,
    PROMPT_OVERHEAD_TOKENS,
)
from gemini_enhance.core.models import get_model_capabilities
from gemini_enhance.core.types import Segment

if TYPE_CHECKING:
    from gemini_enhance.config import FrozenConfig
    from gemini_enhance.core.types import EnhanceRequest

logger = logging.getLogger(__name__)

# (name, pattern, joiner used when packing parts back together)
_STRATEGIES: tuple[tuple[str, re.Pattern[str], str], ...] = (
    ("paragraphs", re.compile(r"\n\s*\n+"), "\n\n"),
    ("lines", re.compile(r"\n"), "\n"),
    ("sentences_capitalized", re.compile(r"(?<=[.!?])\s+(?=[A-Z])"), " "),
    ("sentences", re.compile(r"(?<=[.!?])\s+"), " "),
)

_TAG_RE = re.compile(r"<[^>]+>")

# A piece of text plus the joiner that goes in front of it when it is
# appended to a non-empty buffer.
_Piece: TypeAlias = tuple[str, str]


def split(text: str, max_chars: int) -> list[Segment]:
    """Split ``text`` into ordered segments of at most ``max_chars`` characters.

    Text that already fits is returned unchanged as a single segment. The
    result always holds at least one segment.
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be >= 1, got {max_chars}")

    if len(text) <= max_chars:
        return [Segment(index=0, text=text)]

    pieces = _refine(text, max_chars, level=0, joiner="")
    packed = _pack(pieces, max_chars)

    bounded: list[str] = []
    for chunk in packed:
        if len(chunk) > max_chars:
            logger.debug(
                "Segment of %d chars exceeds %d, splitting on words",
                len(chunk),
                max_chars,
            )
            bounded.extend(_split_words(chunk, max_chars))
        else:
            bounded.append(chunk)

    texts = [t for t in bounded if t.strip()]
    if not texts:
        return [Segment(index=0, text=text)]

    logger.debug(
        "Split %d chars into %d segments: %s",
        len(text),
        len(texts),
        ", ".join(f"[{i}]={len(t)}" for i, t in enumerate(texts)),
    )
    return [Segment(index=i, text=t) for i, t in enumerate(texts)]


def _refine(text: str, max_chars: int, *, level: int, joiner: str) -> list[_Piece]:
    """Break ``text`` using the cascade starting at ``level``.

    Oversized parts are refined again with the strategies after the one that
    produced them.
    """
    for offset, (name, pattern, part_joiner) in enumerate(_STRATEGIES[level:]):
        parts = [p.strip() for p in pattern.split(text)]
        parts = [p for p in parts if p]
        if len(parts) <= 1:
            continue
        logger.debug("Strategy %s produced %d parts", name, len(parts))
        next_level = level + offset + 1
        pieces: list[_Piece] = []
        for i, part in enumerate(parts):
            lead = joiner if i == 0 else part_joiner
            if len(part) > max_chars and next_level < len(_STRATEGIES):
                pieces.extend(_refine(part, max_chars, level=next_level, joiner=lead))
            else:
                pieces.append((part, lead))
        return pieces
    return [(text.strip(), joiner)]


def _pack(pieces: list[_Piece], max_chars: int) -> list[str]:
    """Greedily accumulate pieces, flushing before the buffer would overflow."""
    chunks: list[str] = []
    buffer = ""
    for piece, joiner in pieces:
        candidate = f"{buffer}{joiner}{piece}" if buffer else piece
        if len(candidate) > max_chars and buffer:
            chunks.append(buffer)
            buffer = piece
        else:
            buffer = candidate
    if buffer:
        chunks.append(buffer)
    return chunks


def _split_words(text: str, max_chars: int) -> list[str]:
    """Split on whitespace; a single word longer than ``max_chars`` is cut."""
    chunks: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars:
            chunks.append(current)
            current = word
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def count_words(text: str) -> int:
    """Whitespace-delimited word count with HTML tags removed."""
    return len(_TAG_RE.sub(" ", text).split())


def compute_max_chars(
    *,
    model_context_tokens: int,
    output_tokens: int,
    chunk_size: int,
    prompt_overhead_tokens: int = PROMPT_OVERHEAD_TOKENS,
    history_overhead_tokens: int = HISTORY_OVERHEAD_TOKENS,
    chars_per_token: int = CHARS_PER_TOKEN,
) -> int:
    """Derive the segment ceiling from the model's context budget.

    Reserves room for the system prompt, forwarded history and the output,
    never goes below ``MIN_SEGMENT_CHARS`` and never exceeds the configured
    ``chunk_size``.
    """
    available = (
        model_context_tokens
        - prompt_overhead_tokens
        - history_overhead_tokens
        - output_tokens
    )
    derived = max(MIN_SEGMENT_CHARS, available * chars_per_token)
    return min(chunk_size, derived)


def plan_segments(request: EnhanceRequest, cfg: FrozenConfig) -> list[Segment]:
    """Produce the segments for one document according to configuration.

    With chunking disabled the whole text is one segment. ``force_chunking``
    splits with the configured ``chunk_size`` so the segment count matches
    wrappers a host may already have created with that size.
    """
    text = request.raw_text
    if not cfg.chunking_enabled:
        logger.debug("Chunking disabled; processing %d chars as one segment", len(text))
        return [Segment(index=0, text=text)]

    if request.force_chunking:
        return split(text, cfg.chunk_size)

    caps = get_model_capabilities(
        cfg.model_id,
        cfg.model_context_sizes,
        max_output_tokens=cfg.max_output_tokens,
    )
    max_chars = compute_max_chars(
        model_context_tokens=caps.context_tokens,
        output_tokens=cfg.max_output_tokens,
        chunk_size=cfg.chunk_size,
    )
    if max_chars < cfg.chunk_size:
        logger.info(
            "Model %s (%d tokens) limits segments to %d chars, below configured %d",
            caps.model_id,
            caps.context_tokens,
            max_chars,
            cfg.chunk_size,
        )
    return split(text, max_chars)
