"""
Global test configuration with support for different test types.
"""

from collections.abc import Callable, Iterable, Mapping
import os
from typing import Any

import httpx
import pytest

from gemini_enhance.config import FrozenConfig, resolve_config
from gemini_enhance.core.types import Credential, Outcome, Success

# --- Environment Isolation (Autouse) ---


@pytest.fixture(autouse=True)
def isolate_gemini_env(request, monkeypatch):
    """Ensure a clean GEMINI_* environment for each test.

    - Removes all GEMINI_* variables and debug toggles before each test
    - Leaves non-GEMINI_* variables intact for stability

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("GEMINI_"):
            monkeypatch.delenv(key, raising=False)
    # Avoid DEBUG toggles affecting telemetry
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_config_files(request, monkeypatch, tmp_path):
    """Point home and project config paths at isolated temp files.

    Prevents reading a developer's real ~/.config/gemini_enhance.toml or a
    pyproject.toml found above the working directory.

    Escape hatch: mark test with @pytest.mark.allow_real_config_files.
    """
    if request.node.get_closest_marker("allow_real_config_files"):
        return

    isolated = tmp_path / "config_isolated"
    isolated.mkdir(parents=True, exist_ok=True)
    # Prefer environment overrides to avoid monkeypatching internals
    monkeypatch.setenv("GEMINI_ENHANCE_CONFIG_HOME", str(isolated / "gemini_enhance.toml"))
    monkeypatch.setenv("GEMINI_ENHANCE_PYPROJECT_PATH", str(isolated / "pyproject.toml"))


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Component integration tests with mocked HTTP",
        "contract: Behavioral contracts that must hold across refactors",
        "security: Tests that prove secrets never leak",
        "allow_env_pollution: Skip GEMINI_* environment isolation",
        "allow_real_config_files: Read the real home/project config files",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture
def mock_api_key():
    """Provide a consistent, fake API key for tests."""
    return "test_api_key_12345_67890_abcdef_ghijkl"


@pytest.fixture
def make_config(mock_api_key) -> Callable[..., FrozenConfig]:
    """Build a frozen config with test-friendly defaults plus overrides."""

    def _make(**overrides: Any) -> FrozenConfig:
        values: dict[str, Any] = {
            "api_key": mock_api_key,
            "inter_segment_delay_seconds": 0.0,
        }
        values.update(overrides)
        return resolve_config(values)

    return _make


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self, on_sleep: Callable[[float], None] | None = None) -> None:
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


class ScriptedClient:
    """Stands in for ``RemoteClient``; replays outcomes in order.

    The last outcome repeats once the script runs out.
    """

    def __init__(self, outcomes: Iterable[Outcome]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, Credential, Mapping[str, Any]]] = []

    async def call(
        self, endpoint: str, credential: Credential, payload: Mapping[str, Any]
    ) -> Outcome:
        self.calls.append((endpoint, credential, payload))
        if len(self._outcomes) > 1:
            return self._outcomes.pop(0)
        return self._outcomes[0]

    @property
    def positions(self) -> list[int]:
        return [credential.position for _, credential, _ in self.calls]


class EchoClient(ScriptedClient):
    """Succeeds with the user text it was sent, minus the content header."""

    def __init__(self) -> None:
        super().__init__([])

    async def call(
        self, endpoint: str, credential: Credential, payload: Mapping[str, Any]
    ) -> Outcome:
        self.calls.append((endpoint, credential, payload))
        text = payload["contents"][-1]["parts"][0]["text"]
        return Success(text=text.split("\n", 1)[1])


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def scripted_client() -> Callable[..., ScriptedClient]:
    return ScriptedClient


@pytest.fixture
def echo_client() -> EchoClient:
    return EchoClient()


def _gemini_body(text: str, finish_reason: str = "STOP") -> dict[str, Any]:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": finish_reason,
            }
        ]
    }


@pytest.fixture
def gemini_body() -> Callable[..., dict[str, Any]]:
    """Build a minimal successful ``:generateContent`` response body."""
    return _gemini_body


@pytest.fixture
def mock_transport() -> Callable[..., httpx.MockTransport]:
    """Build an ``httpx.MockTransport`` from a list of responses.

    Requests are recorded on the returned transport's ``requests`` list.
    """

    def _build(responses: Iterable[httpx.Response | Exception]) -> httpx.MockTransport:
        queue = list(responses)
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            item = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(item, Exception):
                raise item
            # Fresh copy so a repeated response is never read twice
            return httpx.Response(
                item.status_code, headers=item.headers, content=item.content
            )

        transport = httpx.MockTransport(handler)
        transport.requests = seen  # type: ignore[attr-defined]
        return transport

    return _build
