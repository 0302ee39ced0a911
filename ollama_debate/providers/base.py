"""Abstract base for generation backends, and the errors they report."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ollama_debate.stream import CancelToken, Generation


class ProviderError(Exception):
    """Raised when a backend call fails."""

    cause = "error"

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class ConnectionFailedError(ProviderError):
    """The backend could not be reached at all."""

    cause = "connect"


class StreamInterruptedError(ProviderError):
    """The connection dropped, or the stream ended before the final record."""

    cause = "dropped"


class BadStatusError(ProviderError):
    cause = "status"

    def __init__(self, provider_name: str, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        message = f"Backend returned status {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(provider_name, message)


class MalformedRecordError(ProviderError):
    cause = "protocol"

    def __init__(self, provider_name: str, line: str, reason: str) -> None:
        self.line = line
        super().__init__(provider_name, f"Malformed stream record ({reason}): {line[:80]!r}")


class BackendError(ProviderError):
    """The backend reported an error inside the stream."""

    cause = "backend"


class GenerationCancelled(ProviderError):
    cause = "canceled"

    def __init__(self, provider_name: str, reason: str = "canceled") -> None:
        self.reason = reason
        super().__init__(provider_name, f"Generation {reason}")


class ModelNotFoundError(ProviderError):
    cause = "validation"

    def __init__(self, provider_name: str, available: list[str]) -> None:
        self.available = available
        super().__init__(provider_name, "Model not found on the backend")


class StreamingBackend(ABC):
    """A text-generation backend that streams increments."""

    @abstractmethod
    def generate(self, cancel: "CancelToken", participant: str, prompt: str) -> "Generation":
        """Start one generation for ``participant`` and return its channel.

        Must be called with a running event loop; the transport work happens
        in a background task owned by the returned Generation. Never raises
        for transport problems: those arrive as the Generation's Failed event.
        """
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return the model identifiers the backend can serve.

        Raises:
            ProviderError: On connection failure, bad status or a bad payload.
        """
        ...


def model_matches(requested: str, available: str) -> bool:
    """Ollama resolves an untagged name to its ``:latest`` tag."""
    if requested == available:
        return True
    return ":" not in requested and available == f"{requested}:latest"
