"""Conversation history and request payload construction.

History is a plain tuple of ``ConversationTurn`` values owned by a single
run. Every function here returns a new tuple; nothing is mutated in place.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import dataclasses
import logging
from typing import TYPE_CHECKING, Any, TypeAlias

from gemini_enhance.constants import HISTORY_TURN_LIMIT
from gemini_enhance.core.types import ConversationTurn, Role
from gemini_enhance.prompts import (
    build_system_instruction,
    preserve_elements,
    user_message,
)

if TYPE_CHECKING:
    from gemini_enhance.config import FrozenConfig
    from gemini_enhance.core.types import EnhanceRequest

logger = logging.getLogger(__name__)

History: TypeAlias = tuple[ConversationTurn, ...]

_ROLE_ALIASES: dict[str, Role] = {
    "user": Role.USER,
    "model": Role.MODEL,
    "assistant": Role.MODEL,
}


def normalize_role(value: object) -> Role | None:
    """Map a role-like value to ``Role``; anything unrecognized is ``None``."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        return _ROLE_ALIASES.get(value.strip().lower())
    return None


def _coerce_turn(raw: object) -> ConversationTurn | None:
    if isinstance(raw, ConversationTurn):
        return raw
    if not isinstance(raw, Mapping):
        return None
    role = normalize_role(raw.get("role"))
    if role is None:
        return None
    text = raw.get("text")
    if text is None:
        parts = raw.get("parts")
        if isinstance(parts, list | tuple) and parts and isinstance(parts[0], Mapping):
            text = parts[0].get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    return ConversationTurn(role=role, text=text)


def sanitize_history(turns: Iterable[ConversationTurn | Mapping[str, Any]]) -> History:
    """Return history that is safe to send ahead of a new user turn.

    Malformed or empty turns are dropped, the sequence is forced to start
    with a user turn and alternate strictly, and a dangling trailing user
    turn is discarded.
    """
    clean: list[ConversationTurn] = []
    dropped = 0
    for raw in turns:
        turn = _coerce_turn(raw)
        if turn is None:
            dropped += 1
            continue
        expected = Role.USER if not clean or clean[-1].role is Role.MODEL else Role.MODEL
        if turn.role is not expected:
            dropped += 1
            continue
        clean.append(turn)
    if clean and clean[-1].role is Role.USER:
        clean.pop()
        dropped += 1
    if dropped:
        logger.debug("Dropped %d history turns during sanitization", dropped)
    return tuple(clean)


def append_exchange(
    history: Iterable[ConversationTurn],
    user_text: str,
    model_text: str,
    *,
    limit: int = HISTORY_TURN_LIMIT,
) -> History:
    """Append one user/model exchange and keep only the last ``limit`` turns."""
    turns = (
        *sanitize_history(history),
        ConversationTurn(Role.USER, user_text),
        ConversationTurn(Role.MODEL, model_text),
    )
    return turns[-limit:] if limit > 0 else ()


@dataclasses.dataclass(frozen=True, slots=True)
class Payload:
    """One fully-built request body plus the markup removed from it."""

    system_instruction: str
    contents: tuple[ConversationTurn, ...]
    generation_config: Mapping[str, Any]
    preserved: tuple[str, ...] = ()

    @property
    def user_text(self) -> str:
        """Text of the trailing user turn, as recorded in history."""
        return self.contents[-1].text

    def to_json(self) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
            "contents": [turn.to_api() for turn in self.contents],
            "generationConfig": dict(self.generation_config),
        }


class ContextManager:
    """Builds request payloads for the segments of one document."""

    def __init__(self, cfg: FrozenConfig, request: EnhanceRequest) -> None:
        self._cfg = cfg
        self._request = request
        self._generation_config = {
            "temperature": cfg.temperature,
            "maxOutputTokens": cfg.max_output_tokens,
            "topP": cfg.top_p,
            "topK": cfg.top_k,
        }

    def build_request(
        self,
        segment_text: str,
        history: Iterable[ConversationTurn | Mapping[str, Any]],
        *,
        part: tuple[int, int] | None = None,
    ) -> Payload:
        """Sanitize ``history`` and append a user turn for ``segment_text``.

        ``part`` is the 1-based ``(current, total)`` position of the segment.
        """
        text, preserved = preserve_elements(segment_text)
        if preserved:
            logger.debug("Preserved %d embedded elements", len(preserved))
        system_instruction = build_system_instruction(
            base_prompt=self._cfg.default_prompt,
            title=self._request.title,
            permanent_prompt=self._cfg.permanent_prompt,
            site_context_prompt=self._request.site_context_prompt,
            use_emoji=self._request.use_emoji_annotations,
            part=part,
        )
        contents = (
            *sanitize_history(history),
            ConversationTurn(Role.USER, user_message(text)),
        )
        return Payload(
            system_instruction=system_instruction,
            contents=contents,
            generation_config=self._generation_config,
            preserved=preserved,
        )
