"""Model availability checks: confirm both participants exist before starting a debate."""

import asyncio
import logging

from ollama_debate.providers.base import ModelNotFoundError, StreamingBackend, model_matches

logger = logging.getLogger(__name__)

_TIMEOUT_SEC = 15.0


async def _check_one(backend: StreamingBackend, participant: str) -> tuple[str, bool, str]:
    """Check a single participant. Returns (name, ok, error_message)."""
    try:
        available = await asyncio.wait_for(backend.list_models(), timeout=_TIMEOUT_SEC)
    except TimeoutError:
        return participant, False, f"Model catalog did not answer within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        return participant, False, str(exc)
    if not any(model_matches(participant, m) for m in available):
        return participant, False, str(ModelNotFoundError(participant, available))
    return participant, True, ""


async def run_health_checks(
    backend: StreamingBackend,
    participants: list[str],
) -> dict[str, tuple[bool, str]]:
    """Check every participant against the backend's model catalog.

    Returns:
        Dict mapping participant -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(backend, p) for p in participants))
    for name, ok, err in results:
        if not ok:
            logger.warning("Model check failed for %s: %s", name, err)
    return {name: (ok, err) for name, ok, err in results}
