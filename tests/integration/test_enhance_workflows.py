"""End-to-end runs through the real client and orchestrator over a mocked wire."""

import json

import httpx
import pytest

from gemini_enhance import (
    CredentialsExhaustedError,
    SegmentError,
    SegmentProcessed,
    enhance_chapter,
)
from gemini_enhance.constants import API_KEY_HEADER

pytestmark = pytest.mark.integration

BODY = "The caravan crossed the dunes at dawn while the merchants argued about prices."
CHAPTER = "\n\n".join(f"Paragraph {i}. {BODY}" for i in range(3))


class FakeGemini:
    """Answers ``:generateContent`` requests by echoing the segment back.

    ``script`` maps a 0-based request number to a canned response, letting a
    test inject rate limits or errors at precise points.
    """

    def __init__(self, script=None):
        self.script = dict(script or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        number = len(self.requests)
        self.requests.append(request)
        if number in self.script:
            return self.script[number]
        body = json.loads(request.content)
        text = body["contents"][-1]["parts"][0]["text"].split("\n", 1)[1]
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"role": "model", "parts": [{"text": f"<p>{text}</p>"}]},
                        "finishReason": "STOP",
                    }
                ]
            },
        )

    @property
    def keys(self) -> list[str]:
        return [r.headers[API_KEY_HEADER] for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.mark.asyncio
async def test_chapter_is_enhanced_segment_by_segment(make_config):
    fake = FakeGemini()
    cfg = make_config(chunk_size=100)
    events = []

    async with fake.client() as http:
        result = await enhance_chapter(
            "Chapter 1",
            CHAPTER,
            cfg=cfg,
            listener=events.append,
            force_chunking=True,
            http_client=http,
        )

    assert result.is_complete
    assert result.total == 3
    assert result.enhanced_text().count("<p>Paragraph") == 3
    assert [e.index for e in events if isinstance(e, SegmentProcessed)] == [0, 1, 2]
    assert all(str(r.url) == cfg.effective_endpoint for r in fake.requests)

    last = json.loads(fake.requests[-1].content)
    assert [c["role"] for c in last["contents"]] == ["user", "model", "user", "model", "user"]
    assert "part 3 of 3" in last["systemInstruction"]["parts"][0]["text"]
    assert last["generationConfig"]["maxOutputTokens"] == cfg.max_output_tokens


@pytest.mark.asyncio
async def test_failover_to_backup_key_on_429(make_config, mock_api_key):
    fake = FakeGemini({0: httpx.Response(429, headers={"retry-after": "0"}, json={})})
    cfg = make_config(backup_api_keys=["backup-key"])

    async with fake.client() as http:
        result = await enhance_chapter("T", BODY, cfg=cfg, http_client=http)

    assert result.is_complete
    assert fake.keys == [mock_api_key, "backup-key"]


@pytest.mark.asyncio
async def test_round_robin_position_survives_between_chapters(make_config, tmp_path):
    cfg = make_config(
        api_key="k0",
        backup_api_keys=["k1", "k2"],
        rotation="round-robin",
        rotation_state_path=str(tmp_path / "rotation.json"),
    )
    fake = FakeGemini({0: httpx.Response(429, json={})})

    async with fake.client() as http:
        await enhance_chapter("First", BODY, cfg=cfg, http_client=http)
        await enhance_chapter("Second", BODY, cfg=cfg, http_client=http)

    assert fake.keys == ["k0", "k1", "k1"]


@pytest.mark.asyncio
async def test_server_errors_retry_then_partial_result(make_config):
    fake = FakeGemini(
        {
            1: httpx.Response(500, text="boom"),
            2: httpx.Response(500, text="boom"),
            3: httpx.Response(500, text="boom"),
        }
    )
    cfg = make_config(chunk_size=100, backoff_base_ms=0)
    events = []

    async with fake.client() as http:
        result = await enhance_chapter(
            "T",
            CHAPTER,
            cfg=cfg,
            listener=events.append,
            force_chunking=True,
            http_client=http,
        )

    assert result.failed_indexes == (1,)
    assert [o.index for o in result.succeeded] == [0, 2]
    final = [e for e in events if isinstance(e, SegmentError) and e.final_failure]
    assert len(final) == 1
    assert "API error 500" in final[0].message


@pytest.mark.asyncio
async def test_safety_block_is_not_retried(make_config):
    blocked = httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
    fake = FakeGemini({0: blocked})

    async with fake.client() as http:
        result = await enhance_chapter("T", BODY, cfg=make_config(), http_client=http)

    assert len(fake.requests) == 1
    assert "safety" in result.failed[0].error.lower()


@pytest.mark.asyncio
async def test_no_api_key_makes_no_requests(make_config):
    fake = FakeGemini()

    async with fake.client() as http:
        with pytest.raises(CredentialsExhaustedError):
            await enhance_chapter("T", BODY, cfg=make_config(api_key=None), http_client=http)

    assert fake.requests == []


@pytest.mark.asyncio
async def test_undecodable_body_fails_only_that_segment(make_config):
    class CorruptGzip(httpx.AsyncByteStream):
        async def __aiter__(self):
            yield b"not gzip at all"

    fake = FakeGemini()

    def handler(request: httpx.Request) -> httpx.Response:
        if len(fake.requests) < 3:
            fake.requests.append(request)
            return httpx.Response(
                200, headers={"content-encoding": "gzip"}, stream=CorruptGzip()
            )
        return fake(request)

    cfg = make_config(chunk_size=100, backoff_base_ms=0)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        result = await enhance_chapter(
            "T", CHAPTER, cfg=cfg, force_chunking=True, http_client=http
        )

    assert result.failed_indexes == (0,)
    assert "Request failed" in result.failed[0].error
    assert [o.index for o in result.succeeded] == [1, 2]
