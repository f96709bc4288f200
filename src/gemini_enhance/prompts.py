"""Prompt text and system-instruction composition."""

from __future__ import annotations

import re

DEFAULT_PROMPT = """Please enhance this novel chapter translation with the following improvements:

1. Fix grammatical errors, punctuation mistakes, and spelling issues
2. Improve the narrative flow and overall readability
3. Ensure consistent character voice, tone, and gender pronouns throughout
4. Make dialogue sound more natural and conversational
5. Refine descriptions to be more vivid and engaging
6. Maintain the original plot points, character development, and story elements exactly
7. Ensure proper transitioning between scenes and ideas
8. Format game-like status windows, character stats, skill lists, or system messages into a div with class="game-stats-box", preserving every line exactly
9. Remove any advertising snippets or irrelevant promotional content

Keep the core meaning of the original text intact while making it read like a professionally translated novel. Do not summarize: every scene, line of dialogue and detail must remain."""

DEFAULT_PERMANENT_PROMPT = (
    "Ensure the output is formatted using only HTML paragraph tags (<p>) for each "
    "paragraph. Handle dialogue formatting with appropriate punctuation and paragraph "
    "breaks. Do not use markdown formatting in your response."
)

EMOJI_INSTRUCTION = (
    "Additional instruction: Add appropriate emojis next to dialogues to enhance "
    "emotional expressions. Place the emoji immediately after the quotation marks "
    'that end the dialogue. For example: "I\'m so happy!" 😊 she said. Choose emojis '
    "that fit the emotion being expressed in the dialogue."
)

SITE_CONTEXT_HEADER = "## Site-Specific Context:"
PERMANENT_HEADER = "## Always Follow These Instructions:"
TITLE_HEADER = "### Title:"
CONTENT_HEADER = "### Content to Enhance:"

# Markup the model must never rewrite: media embeds and pre-formatted stat boxes
_PRESERVE_RE = re.compile(
    r"<img[^>]+>|<iframe[^>]+>|<video[^>]+>|<audio[^>]+>|<source[^>]+>"
    r'|<div class="game-stats-box">[\s\S]*?</div>',
    re.IGNORECASE,
)
_PLACEHOLDER = "[PRESERVED_ELEMENT_{}]"


def part_note(current: int, total: int) -> str:
    """Instruction appended when a document is processed in several segments."""
    return (
        f"Note: This is part {current} of {total} parts. Please enhance this part "
        "while maintaining consistency with other parts."
    )


def build_system_instruction(
    *,
    base_prompt: str,
    title: str,
    permanent_prompt: str = "",
    site_context_prompt: str = "",
    use_emoji: bool = False,
    part: tuple[int, int] | None = None,
) -> str:
    """Compose the system instruction for one request.

    ``part`` is the 1-based ``(current, total)`` pair and is only added for
    multi-segment runs.
    """
    sections = [base_prompt.strip()]
    if part is not None and part[1] > 1:
        sections.append(part_note(*part))
    if use_emoji:
        sections.append(EMOJI_INSTRUCTION)
    if site_context_prompt.strip():
        sections.append(f"{SITE_CONTEXT_HEADER}\n{site_context_prompt.strip()}")
    if permanent_prompt.strip():
        sections.append(f"{PERMANENT_HEADER}\n{permanent_prompt.strip()}")
    sections.append(f"{TITLE_HEADER}\n{title}")
    return "\n\n".join(sections)


def user_message(segment_text: str) -> str:
    return f"{CONTENT_HEADER}\n{segment_text}"


def preserve_elements(text: str) -> tuple[str, tuple[str, ...]]:
    """Swap protected markup for numbered placeholders.

    Returns the rewritten text and the removed elements in placeholder order.
    """
    preserved: list[str] = []

    def _swap(match: re.Match[str]) -> str:
        preserved.append(match.group(0))
        return _PLACEHOLDER.format(len(preserved) - 1)

    return _PRESERVE_RE.sub(_swap, text), tuple(preserved)


def restore_elements(text: str, preserved: tuple[str, ...]) -> str:
    """Put preserved markup back in place of its placeholders."""
    for index, element in enumerate(preserved):
        text = text.replace(_PLACEHOLDER.format(index), element)
    return text
