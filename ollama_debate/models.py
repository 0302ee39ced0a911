"""Dataclasses for the debate pipeline: turns, generation events, snapshots."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Union


class TurnClosedError(RuntimeError):
    """Raised when a closed Turn is written to."""


class SessionState(Enum):
    AWAITING_TOPIC = "awaiting_topic"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"  # display only: running, with the last attempt's error on screen


@dataclass
class Turn:
    participant: str
    content: str = ""
    completed_at: datetime | None = None  # set exactly once, on close

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    def append(self, text: str) -> None:
        if not self.is_open:
            raise TurnClosedError(f"Turn by {self.participant} is closed")
        self.content += text

    def close(self, at: datetime) -> None:
        if not self.is_open:
            raise TurnClosedError(f"Turn by {self.participant} is already closed")
        self.completed_at = at

    def copy(self) -> "Turn":
        return replace(self)


@dataclass(frozen=True)
class Increment:
    participant: str
    text: str


@dataclass(frozen=True)
class Completed:
    participant: str
    text: str  # full response, possibly empty


@dataclass(frozen=True)
class Failed:
    participant: str
    error: Exception


GenerationEvent = Union[Increment, Completed, Failed]


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    participants: tuple[str, str]
    topic: str | None = None
    turns: tuple[Turn, ...] = ()
    active_role: int = 0
    generating: bool = False
    last_error: str | None = None
    consecutive_failures: int = 0
    failed_attempts: int = 0

    @property
    def active_participant(self) -> str:
        return self.participants[self.active_role]

    @property
    def display_state(self) -> SessionState:
        if self.state is SessionState.RUNNING and self.last_error:
            return SessionState.FAILED
        return self.state

    @property
    def open_turn(self) -> Turn | None:
        if self.turns and self.turns[-1].is_open:
            return self.turns[-1]
        return None

    @property
    def closed_turns(self) -> tuple[Turn, ...]:
        return tuple(t for t in self.turns if not t.is_open)

    def role_of(self, participant: str) -> int:
        return self.participants.index(participant)


@dataclass
class StreamRecord:
    """One parsed line of a streaming generate response."""
    model: str
    response: str = ""
    done: bool = False
    extra: dict = field(default_factory=dict)
