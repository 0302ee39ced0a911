"""Shared pytest fixtures."""

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest

from config.config_loader import AppConfig, DefaultsConfig, OllamaConfig, PromptsConfig
from ollama_debate.debate import DebateSession
from ollama_debate.models import Turn
from ollama_debate.providers.base import StreamingBackend
from ollama_debate.providers.ollama import OllamaClient
from ollama_debate.stream import CancelToken, Emit, Generation

TEST_BASE_URL = "http://ollama.test"


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        preamble="Topic: {topic}\nYou are {participant}. Present arguments and counter your opponent.\n",
        opening_position="OPEN\n",
        opposing_position="OPPOSE\n",
        history_header="History:\n",
        opening_instruction="Give your opening.\n",
        continue_instruction="Engage with the previous point.\n",
    )


@pytest.fixture
def sample_app_config(sample_prompts_config: PromptsConfig) -> AppConfig:
    return AppConfig(
        ollama=OllamaConfig(base_url=TEST_BASE_URL, connect_timeout_sec=1.0),
        defaults=DefaultsConfig(model1="model_a", model2="model_b", max_consecutive_failures=3),
        prompts=sample_prompts_config,
    )


@pytest.fixture
def sample_turns() -> list[Turn]:
    return [
        Turn("model_a", "Remote work wins.", None),
        Turn("model_b", "Offices build culture.", None),
    ]


@dataclass
class Script:
    """One scripted generation: increments, then a final text, an error, or a hang."""

    increments: list[str] = field(default_factory=list)
    final: str | None = None  # None: the joined increments
    error: Exception | None = None
    hold: bool = False  # block after the increments until canceled


class ScriptedBackend(StreamingBackend):
    """Test double backend that plays scripts in call order, then hangs."""

    def __init__(self, scripts: list[Script] | None = None, models: list[str] | None = None) -> None:
        self.scripts = list(scripts or [])
        self.models = list(models or [])
        self.calls: list[tuple[str, str]] = []  # (participant, prompt)
        self.tokens: list[CancelToken] = []
        self.base_url = TEST_BASE_URL

    def generate(self, cancel: CancelToken, participant: str, prompt: str) -> Generation:
        self.calls.append((participant, prompt))
        self.tokens.append(cancel)
        script = self.scripts.pop(0) if self.scripts else Script(hold=True)

        async def produce(emit: Emit, token: CancelToken) -> str:
            for text in script.increments:
                await emit(text)
            if script.hold:
                await asyncio.Event().wait()
            if script.error is not None:
                raise script.error
            return script.final if script.final is not None else "".join(script.increments)

        return Generation(participant, cancel, produce)

    async def list_models(self) -> list[str]:
        return list(self.models)

    async def __aenter__(self) -> "ScriptedBackend":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
async def make_session():
    """Build DebateSessions that are stopped and drained at teardown."""
    sessions: list[DebateSession] = []

    def _make(backend: StreamingBackend, participants: tuple[str, str] = ("A", "B"), **kwargs) -> DebateSession:
        session = DebateSession(backend, participants, **kwargs)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        await session.aclose()


async def run_until(session: DebateSession, predicate: Callable[[DebateSession], bool], timeout: float = 2.0) -> None:
    """Pump events until ``predicate`` holds or the session stops expecting events."""

    async def _loop() -> None:
        while not predicate(session) and await session.pump():
            pass

    await asyncio.wait_for(_loop(), timeout)


def ndjson(*records: dict) -> bytes:
    return b"".join(json.dumps(r).encode("utf-8") + b"\n" for r in records)


class ScriptedByteStream(httpx.AsyncByteStream):
    """Response body that yields chunks, then optionally blocks on a gate or raises."""

    def __init__(
        self,
        chunks: list[bytes],
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self._chunks = chunks
        self._gate = gate
        self._error = error

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        return None


@pytest.fixture
async def make_client():
    """Build OllamaClients on an httpx.MockTransport; closed at teardown."""
    clients: list[OllamaClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> OllamaClient:
        client = OllamaClient(TEST_BASE_URL, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
def settings_file(tmp_path: Path) -> Callable[[str], Path]:
    def _write(text: str) -> Path:
        path = tmp_path / "settings.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    return _write
