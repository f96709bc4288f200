import pytest

from gemini_enhance.prompts import (
    PERMANENT_HEADER,
    SITE_CONTEXT_HEADER,
    TITLE_HEADER,
    build_system_instruction,
    preserve_elements,
    restore_elements,
    user_message,
)

pytestmark = pytest.mark.unit


def test_minimal_instruction_is_prompt_then_title():
    text = build_system_instruction(base_prompt="Improve it.", title="Chapter 1")

    assert text == f"Improve it.\n\n{TITLE_HEADER}\nChapter 1"


def test_section_order():
    text = build_system_instruction(
        base_prompt="Base",
        title="T",
        permanent_prompt="Always",
        site_context_prompt="Site",
        use_emoji=True,
        part=(1, 2),
    )

    positions = [
        text.index("Base"),
        text.index("part 1 of 2"),
        text.index("emojis"),
        text.index(SITE_CONTEXT_HEADER),
        text.index(PERMANENT_HEADER),
        text.index(TITLE_HEADER),
    ]
    assert positions == sorted(positions)


def test_blank_optional_sections_are_omitted():
    text = build_system_instruction(
        base_prompt="Base", title="T", permanent_prompt="  ", site_context_prompt=""
    )

    assert SITE_CONTEXT_HEADER not in text
    assert PERMANENT_HEADER not in text


def test_user_message_has_content_header():
    assert user_message("Body").endswith("\nBody")


def test_preserve_and_restore_media_and_stat_boxes():
    text = (
        '<p>Start</p><iframe src="v"></iframe>'
        '<div class="game-stats-box">Name: Hero\nLevel: 3</div><p>End</p>'
    )

    swapped, preserved = preserve_elements(text)

    assert preserved == ('<iframe src="v">', '<div class="game-stats-box">Name: Hero\nLevel: 3</div>')
    assert "game-stats-box" not in swapped
    assert restore_elements(swapped, preserved) == text


def test_text_without_markup_is_untouched():
    assert preserve_elements("plain text") == ("plain text", ())
