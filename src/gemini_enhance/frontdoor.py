"""Scenario-first convenience helpers.

These functions wire configuration, credentials, the remote client and the
orchestrator together for the common "enhance one chapter" case without
changing core behavior.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from gemini_enhance.config import FrozenConfig, resolve_config
from gemini_enhance.core.types import EnhanceRequest
from gemini_enhance.pipeline.credentials import CredentialPool
from gemini_enhance.pipeline.orchestrator import SegmentOrchestrator
from gemini_enhance.pipeline.remote_client import RemoteClient

if TYPE_CHECKING:  # pragma: no cover - typing only
    from gemini_enhance.core.types import RunResult
    from gemini_enhance.pipeline.credentials import RotationStore
    from gemini_enhance.pipeline.orchestrator import EventListener


def create_orchestrator(
    cfg: FrozenConfig,
    *,
    listener: EventListener | None = None,
    http_client: httpx.AsyncClient | None = None,
    store: RotationStore | None = None,
) -> SegmentOrchestrator:
    """Build an orchestrator from a frozen configuration.

    Without ``http_client`` the remote client opens its own connection pool;
    close it with ``await orchestrator.client.aclose()`` when done.
    """
    client = RemoteClient(http_client, timeout_seconds=cfg.request_timeout_seconds)
    pool = CredentialPool.from_config(cfg, store)
    return SegmentOrchestrator(cfg, client, pool, listener=listener)


async def enhance_chapter(
    title: str,
    raw_text: str,
    *,
    cfg: FrozenConfig | None = None,
    listener: EventListener | None = None,
    use_emoji_annotations: bool = False,
    site_context_prompt: str = "",
    force_chunking: bool = False,
    http_client: httpx.AsyncClient | None = None,
) -> RunResult:
    """Enhance one chapter and return the aggregated result.

    Args:
        title: Chapter title, included in the system instruction.
        raw_text: The chapter body to enhance.
        cfg: Optional frozen configuration. If omitted, `resolve_config()` is used.
        listener: Optional callback receiving progress events.
        use_emoji_annotations: Ask the model to annotate dialogue with emojis.
        site_context_prompt: Extra context about the source site.
        force_chunking: Split with the configured chunk size even when the
            model could take larger segments.
        http_client: Optional shared HTTP client; a short-lived one is
            opened and closed around the run otherwise.

    Returns:
        The run result; failed segments are listed, not raised.

    Raises:
        CredentialsExhaustedError: No API key is configured.

    Example:
        ```python
        result = await enhance_chapter("Chapter 1", text)
        if result.is_complete:
            print(result.enhanced_text())
        ```
    """
    final_cfg = cfg or resolve_config()
    request = EnhanceRequest(
        title=title,
        raw_text=raw_text,
        use_emoji_annotations=use_emoji_annotations,
        site_context_prompt=site_context_prompt,
        force_chunking=force_chunking,
    )
    if http_client is not None:
        orchestrator = create_orchestrator(
            final_cfg, listener=listener, http_client=http_client
        )
        return await orchestrator.run(request)
    async with httpx.AsyncClient(timeout=final_cfg.request_timeout_seconds) as http:
        orchestrator = create_orchestrator(final_cfg, listener=listener, http_client=http)
        return await orchestrator.run(request)
