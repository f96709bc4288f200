import pytest

from gemini_enhance.core.types import EnhanceRequest, Segment
from gemini_enhance.pipeline.segmenter import (
    compute_max_chars,
    count_words,
    plan_segments,
    split,
)

pytestmark = pytest.mark.unit

SENTENCE = "The quick brown fox jumps over the lazy dog. "


class TestSplit:
    def test_text_that_fits_is_returned_unchanged(self):
        text = "Short chapter.\n\nStill short."
        assert split(text, 1000) == [Segment(index=0, text=text)]

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError, match="max_chars"):
            split("anything", 0)

    def test_long_run_of_sentences_without_paragraphs(self):
        text = SENTENCE * 1000  # 45,000 chars, no newlines

        segments = split(text, 20000)

        assert len(segments) == 3
        assert all(s.char_length <= 20000 for s in segments)
        assert [s.index for s in segments] == [0, 1, 2]

    def test_prefers_paragraph_boundaries(self):
        paragraphs = [f"Paragraph {i} " + "word " * 10 for i in range(6)]
        text = "\n\n".join(p.strip() for p in paragraphs)

        segments = split(text, 130)

        assert len(segments) > 1
        for segment in segments:
            assert segment.char_length <= 130
            # No paragraph is cut in half
            for part in segment.text.split("\n\n"):
                assert part.startswith("Paragraph")

    def test_oversized_paragraph_is_refined_by_sentences(self):
        big = SENTENCE.strip() + " " + (SENTENCE * 5).strip()
        text = f"Intro line.\n\n{big}\n\nOutro line."

        segments = split(text, 100)

        assert all(s.char_length <= 100 for s in segments)
        joined = " ".join(s.text for s in segments)
        assert joined.count("lazy dog.") == 6
        assert "Intro line." in segments[0].text
        assert "Outro line." in segments[-1].text

    def test_content_is_preserved_in_order(self):
        text = "".join(f"Sentence number {i} ends here. " for i in range(200))

        segments = split(text, 500)

        words = " ".join(s.text for s in segments).split()
        assert words == text.split()

    def test_single_giant_word_is_hard_cut(self):
        segments = split("x" * 25, 10)

        assert [s.text for s in segments] == ["x" * 10, "x" * 10, "x" * 5]

    def test_whitespace_only_input_yields_the_input(self):
        text = "   \n\n   \n\n   "

        assert split(text, 2) == [Segment(index=0, text=text)]

    def test_no_empty_segments(self):
        text = "\n\n\n".join(["Alpha beta gamma.", "", "Delta epsilon.", "   "]) * 20

        segments = split(text, 60)

        assert segments
        assert all(s.text.strip() for s in segments)


class TestCountWords:
    def test_strips_html_tags(self):
        assert count_words("<p>Hello world</p> <b>again</b>") == 3

    def test_empty(self):
        assert count_words("   ") == 0


class TestComputeMaxChars:
    def test_small_context_model_limits_segments(self):
        # 16000 - 1500 - 2000 - 8192 = 4308 tokens available
        assert (
            compute_max_chars(
                model_context_tokens=16_000, output_tokens=8192, chunk_size=20_000
            )
            == 4308 * 4
        )

    def test_large_context_is_clamped_to_chunk_size(self):
        assert (
            compute_max_chars(
                model_context_tokens=1_000_000, output_tokens=8192, chunk_size=20_000
            )
            == 20_000
        )

    def test_never_below_floor(self):
        assert (
            compute_max_chars(
                model_context_tokens=4000, output_tokens=8192, chunk_size=20_000
            )
            == 4000
        )


class TestPlanSegments:
    def test_chunking_disabled_keeps_one_segment(self, make_config):
        cfg = make_config(chunking_enabled=False)
        request = EnhanceRequest(title="T", raw_text=SENTENCE * 1000)

        segments = plan_segments(request, cfg)

        assert len(segments) == 1
        assert segments[0].text == request.raw_text

    def test_model_budget_applies(self, make_config):
        cfg = make_config(model="gemini-2.5-flash")
        request = EnhanceRequest(title="T", raw_text=SENTENCE * 1000)

        segments = plan_segments(request, cfg)

        assert all(s.char_length <= 4308 * 4 for s in segments)
        assert len(segments) == 3

    def test_force_chunking_uses_configured_size(self, make_config):
        cfg = make_config(model="gemini-2.5-pro", chunk_size=10_000)
        request = EnhanceRequest(
            title="T", raw_text=SENTENCE * 1000, force_chunking=True
        )

        segments = plan_segments(request, cfg)

        assert len(segments) == 5
        assert all(s.char_length <= 10_000 for s in segments)
