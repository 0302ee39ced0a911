"""Ollama backend: streaming /api/generate over httpx, plus the /api/tags model catalog."""

import json
import logging
import time

import httpx

from config.config_loader import DEFAULT_BASE_URL
from ollama_debate.models import StreamRecord
from ollama_debate.providers.base import (
    BackendError,
    BadStatusError,
    ConnectionFailedError,
    MalformedRecordError,
    ModelNotFoundError,
    ProviderError,
    StreamingBackend,
    StreamInterruptedError,
    model_matches,
)
from ollama_debate.stream import CancelToken, Emit, Generation

logger = logging.getLogger(__name__)


def parse_record(participant: str, line: str) -> StreamRecord:
    """Parse one NDJSON line of a generate stream.

    Raises:
        MalformedRecordError: If the line is not a JSON object with the
            expected field types.
        BackendError: If the record carries an ``error`` field.
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(participant, line, "invalid JSON") from exc
    if not isinstance(raw, dict):
        raise MalformedRecordError(participant, line, "not an object")
    if "error" in raw:
        raise BackendError(participant, str(raw["error"]))

    response = raw.pop("response", "")
    done = raw.pop("done", False)
    model = raw.pop("model", participant)
    if not isinstance(response, str):
        raise MalformedRecordError(participant, line, "'response' is not a string")
    if not isinstance(done, bool):
        raise MalformedRecordError(participant, line, "'done' is not a boolean")
    return StreamRecord(model=str(model), response=response, done=done, extra=raw)


class OllamaClient(StreamingBackend):
    """Client for one Ollama server. Both debate participants share it."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        connect_timeout_sec: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        # No read timeout: a model may think for a long time between tokens.
        # Per-turn limits go through CancelToken.cancel_after instead.
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(None, connect=connect_timeout_sec),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_models(self) -> list[str]:
        name = "ollama"
        try:
            response = await self._client.get("/api/tags")
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ConnectionFailedError(name, f"Failed to connect to Ollama at {self._base_url}: {exc}") from exc
        except httpx.RequestError as exc:
            raise ProviderError(name, f"Model catalog request failed: {exc}") from exc

        if response.status_code != 200:
            raise BadStatusError(name, response.status_code)

        try:
            payload = response.json()
            models = [str(m["name"]) for m in payload.get("models") or []]
        except (ValueError, AttributeError, KeyError, TypeError) as exc:
            raise ProviderError(name, f"Failed to parse model catalog: {exc}") from exc

        logger.debug("Ollama at %s serves %d models", self._base_url, len(models))
        return models

    async def validate_model(self, model: str) -> None:
        """Raise ModelNotFoundError unless ``model`` is installed on the server."""
        available = await self.list_models()
        if not any(model_matches(model, m) for m in available):
            raise ModelNotFoundError(model, available)

    def generate(self, cancel: CancelToken, participant: str, prompt: str) -> Generation:
        async def produce(emit: Emit, token: CancelToken) -> str:
            return await self._stream(participant, prompt, emit, token)

        return Generation(participant, cancel, produce)

    async def _stream(self, participant: str, prompt: str, emit: Emit, token: CancelToken) -> str:
        payload = {"model": participant, "prompt": prompt, "stream": True}
        parts: list[str] = []
        start = time.monotonic()
        logger.debug("Generate request: model=%s, prompt=%d chars", participant, len(prompt))

        try:
            async with self._client.stream("POST", "/api/generate", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise BadStatusError(participant, response.status_code, body.strip()[:200])

                async for line in response.aiter_lines():
                    token.raise_if_cancelled(participant)
                    if not line.strip():
                        continue
                    record = parse_record(participant, line)
                    if record.model != participant:
                        logger.debug("Record names model %s, expected %s", record.model, participant)
                    if record.response:
                        parts.append(record.response)
                        await emit(record.response)
                    if record.done:
                        logger.info(
                            "%s finished: %.2fs, %s tokens",
                            participant,
                            time.monotonic() - start,
                            record.extra.get("eval_count"),
                        )
                        return "".join(parts)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ConnectionFailedError(participant, f"Failed to connect to Ollama at {self._base_url}: {exc}") from exc
        except (httpx.ReadError, httpx.RemoteProtocolError, httpx.ReadTimeout) as exc:
            raise StreamInterruptedError(participant, f"Connection dropped mid-stream: {exc}") from exc
        except httpx.RequestError as exc:
            raise ProviderError(participant, f"Request failed: {exc}") from exc

        raise StreamInterruptedError(participant, "Stream ended before the final record")
