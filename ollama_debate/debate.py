"""Debate orchestration: alternate two models, stream their turns, recover from failures."""

import logging
from collections.abc import Callable
from datetime import datetime

from config.config_loader import PromptsConfig
from ollama_debate.models import (
    Completed,
    Failed,
    GenerationEvent,
    Increment,
    SessionSnapshot,
    SessionState,
)
from ollama_debate.prompt import compose
from ollama_debate.providers.base import GenerationCancelled, StreamingBackend
from ollama_debate.stream import CancelToken, Generation
from ollama_debate.transcript import Transcript

logger = logging.getLogger(__name__)


class TopicValidationError(ValueError):
    """Raised when a submitted topic is empty or whitespace only."""


def participant_for(participants: tuple[str, str], role: int) -> str:
    return participants[role]


class DebateSession:
    """State machine for one debate between two participants.

    Every transition runs synchronously on the event loop, so two transitions
    never interleave. At most one generation is in flight; a new one is
    scheduled only by ``submit`` and by the terminal events of the previous
    one.
    """

    def __init__(
        self,
        backend: StreamingBackend,
        participants: tuple[str, str],
        prompts: PromptsConfig | None = None,
        max_consecutive_failures: int | None = None,
        max_context_turns: int | None = None,
        generation_timeout_sec: float | None = None,
        on_change: Callable[[SessionSnapshot], None] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if len(participants) != 2 or participants[0] == participants[1]:
            raise ValueError(f"A debate needs two distinct participants, got {participants!r}")
        self._backend = backend
        self._participants = tuple(participants)
        self._prompts = prompts or PromptsConfig()
        self._max_failures = max_consecutive_failures
        self._max_context_turns = max_context_turns
        self._timeout = generation_timeout_sec
        self._on_change = on_change
        self._clock = clock

        self._state = SessionState.AWAITING_TOPIC
        self._topic: str | None = None
        self._transcript = Transcript()
        self._active_role = 0
        self._generation: Generation | None = None
        self._retired: list[Generation] = []
        self._last_error: str | None = None
        self._consecutive_failures = 0

    # --- read access -----------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def topic(self) -> str | None:
        return self._topic

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def active_participant(self) -> str:
        return participant_for(self._participants, self._active_role)

    @property
    def generating(self) -> bool:
        return self._generation is not None

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            participants=self._participants,
            topic=self._topic,
            turns=tuple(self._transcript.turns),
            active_role=self._active_role,
            generating=self.generating,
            last_error=self._last_error,
            consecutive_failures=self._consecutive_failures,
            failed_attempts=self._transcript.failed_attempts,
        )

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

    # --- transitions -----------------------------------------------------

    def submit(self, topic: str) -> None:
        """Bind the topic and start the first turn.

        Raises:
            TopicValidationError: If the topic is blank. Nothing else changes.
        """
        if self._state is not SessionState.AWAITING_TOPIC:
            logger.debug("Ignoring topic submitted while %s", self._state.value)
            return
        if not topic or not topic.strip():
            self._last_error = "Topic cannot be empty"
            self._notify()
            raise TopicValidationError(self._last_error)

        self._topic = topic.strip()
        self._state = SessionState.RUNNING
        self._active_role = 0
        self._last_error = None
        logger.info("Debate started: %s vs %s on %r", *self._participants, self._topic)
        self._schedule()
        self._notify()

    def handle_event(self, event: GenerationEvent) -> None:
        """Apply one generation event. Events arriving outside RUNNING are dropped."""
        if self._state is not SessionState.RUNNING:
            logger.debug("Dropping %s received while %s", type(event).__name__, self._state.value)
            return
        if isinstance(event, Increment):
            self._on_increment(event.text)
        elif isinstance(event, Completed):
            self._on_complete(event.text)
        elif isinstance(event, Failed):
            self._on_failure(event.error)
        else:
            raise TypeError(f"Unknown generation event: {event!r}")
        self._notify()

    def stop(self) -> None:
        """Cancel the in-flight generation and freeze the session. Idempotent."""
        if self._state is SessionState.STOPPED:
            return
        self._release_generation()
        self._state = SessionState.STOPPED
        logger.info(
            "Debate stopped after %d turns (%d failed attempts)",
            len(self._transcript),
            self._transcript.failed_attempts,
        )
        self._notify()

    def _on_increment(self, text: str) -> None:
        self._transcript.append_increment(self.active_participant, text)

    def _on_complete(self, final_text: str) -> None:
        speaker = self.active_participant
        self._release_generation()
        turn = self._transcript.close_turn(speaker, final_text, self._clock())
        logger.info("Turn %d closed: %s (%d chars)", len(self._transcript), speaker, len(turn.content))
        self._last_error = None
        self._consecutive_failures = 0
        self._toggle()
        self._schedule()

    def _on_failure(self, error: Exception) -> None:
        speaker = self.active_participant
        self._release_generation()
        self._transcript.record_failure()

        if isinstance(error, GenerationCancelled) and error.reason != "timeout":
            logger.info("Generation for %s was canceled", speaker)
        else:
            self._consecutive_failures += 1
            self._last_error = f"Error: {error}"
            logger.warning("Turn by %s failed (%d in a row): %s", speaker, self._consecutive_failures, error)

        if self._max_failures and self._consecutive_failures >= self._max_failures:
            self._last_error = f"{self._last_error} (stopping after {self._consecutive_failures} failures in a row)"
            logger.error("Giving up after %d consecutive failures", self._consecutive_failures)
            self.stop()
            return

        self._toggle()
        self._schedule()

    def _toggle(self) -> None:
        self._active_role = 1 - self._active_role

    def _release_generation(self) -> None:
        if self._generation is not None:
            # No-op for a generation that already finished.
            self._generation.cancel()
            if not self._generation.done:
                self._retired.append(self._generation)
            self._generation = None

    def _schedule(self) -> None:
        if self._generation is not None:
            raise RuntimeError("A generation is already in flight")
        speaker = self.active_participant
        history = self._transcript.closed_turns()
        if self._max_context_turns is not None:
            history = history[-self._max_context_turns:] if self._max_context_turns > 0 else []
        prompt = compose(
            self._topic or "",
            history,
            speaker,
            is_opening_turn=not self._transcript.has_spoken(speaker),
            prompts=self._prompts,
        )
        token = CancelToken()
        if self._timeout is not None:
            token.cancel_after(self._timeout)
        logger.debug("Scheduling turn for %s (%d turns of context)", speaker, len(history))
        self._generation = self._backend.generate(token, speaker, prompt)

    # --- control loop ----------------------------------------------------

    async def pump(self) -> bool:
        """Deliver the next event of the in-flight generation.

        Returns:
            False once the session no longer expects events.
        """
        generation = self._generation
        if self._state is not SessionState.RUNNING or generation is None:
            return False
        event = await generation.next_event()
        if generation is self._generation:
            self.handle_event(event)
        return self._state is SessionState.RUNNING

    async def run(self) -> None:
        """Pump events until the session is stopped."""
        while await self.pump():
            pass

    async def aclose(self) -> None:
        """Stop, then wait for background generation tasks to exit."""
        self.stop()
        retired, self._retired = self._retired, []
        for generation in retired:
            await generation.aclose()
