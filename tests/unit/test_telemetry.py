import pytest

from gemini_enhance.core.types import EnhanceRequest, RateLimited, Success
from gemini_enhance.pipeline.credentials import CredentialPool
from gemini_enhance.pipeline.orchestrator import SegmentOrchestrator
from gemini_enhance.telemetry import SimpleReporter, TelemetryContext

pytestmark = pytest.mark.unit


class ExplodingReporter:
    def record_timing(self, scope, duration, **metadata):
        raise RuntimeError("reporter down")

    def record_metric(self, scope, value, **metadata):
        raise RuntimeError("reporter down")


def test_disabled_by_default_returns_shared_no_op():
    first = TelemetryContext(SimpleReporter())
    second = TelemetryContext(SimpleReporter())

    assert first is second
    with first("anything") as ctx:
        ctx.count("ignored")


def test_enabled_context_records_nested_scopes(monkeypatch):
    monkeypatch.setenv("GEMINI_ENHANCE_TELEMETRY", "1")
    reporter = SimpleReporter()
    tele = TelemetryContext(reporter)

    with tele("outer"), tele("inner", index=3):
        tele.count("hits", 2)

    assert set(reporter.timings) == {"outer", "outer.inner"}
    _, metadata = reporter.timings["outer.inner"][0]
    assert metadata["index"] == 3
    assert metadata["parent_scope"] == "outer"
    assert reporter.metric_total("outer.inner.hits") == 2
    assert "outer.inner" in reporter.get_report()


def test_reporter_failure_is_contained(monkeypatch, caplog):
    monkeypatch.setenv("DEBUG", "1")
    tele = TelemetryContext(ExplodingReporter())

    with tele("scope"):
        tele.gauge("level", 1.0)

    assert "ExplodingReporter" in caplog.text


def test_empty_scope_name_rejected(monkeypatch):
    monkeypatch.setenv("GEMINI_ENHANCE_TELEMETRY", "1")
    tele = TelemetryContext(SimpleReporter())

    with pytest.raises(ValueError, match="non-empty"), tele(""):
        pass


@pytest.mark.asyncio
async def test_orchestrator_reports_run_segment_and_attempt_scopes(
    monkeypatch, make_config, scripted_client, fake_sleep
):
    monkeypatch.setenv("GEMINI_ENHANCE_TELEMETRY", "1")
    reporter = SimpleReporter()
    cfg = make_config(backup_api_keys=["backup"])
    client = scripted_client([RateLimited(), Success("Enhanced text " * 10)])
    orchestrator = SegmentOrchestrator(
        cfg,
        client,
        CredentialPool.from_config(cfg),
        sleep=fake_sleep,
        telemetry=TelemetryContext(reporter),
    )

    await orchestrator.run(EnhanceRequest(title="T", raw_text="Original text " * 10))

    assert "enhance.run" in reporter.timings
    assert len(reporter.timings["enhance.run.enhance.segment"]) == 1
    assert len(reporter.timings["enhance.run.enhance.segment.enhance.attempt"]) == 2
    assert reporter.metric_total("enhance.run.enhance.segment.rate_limits") == 1
    assert reporter.metric_total("enhance.run.segments_succeeded") == 1
