"""Ordered record of closed turns plus at most one open turn."""

import logging
from datetime import datetime

from ollama_debate.models import Turn

logger = logging.getLogger(__name__)


class AlternationError(RuntimeError):
    """Raised when one participant would close two consecutive turns."""


class Transcript:
    """Append-only turn list. Only the open (last) turn's content ever changes."""

    def __init__(self) -> None:
        self._turns: list[Turn] = []
        self._failed_since_close = False
        self.failed_attempts = 0

    def __len__(self) -> int:
        return len(self.closed_turns())

    @property
    def turns(self) -> list[Turn]:
        """All turns, including the open one, as copies."""
        return [t.copy() for t in self._turns]

    @property
    def open_turn(self) -> Turn | None:
        if self._turns and self._turns[-1].is_open:
            return self._turns[-1]
        return None

    def closed_turns(self) -> list[Turn]:
        return [t for t in self._turns if not t.is_open]

    def last_closed(self) -> Turn | None:
        closed = self.closed_turns()
        return closed[-1] if closed else None

    def has_spoken(self, participant: str) -> bool:
        return any(t.participant == participant for t in self.closed_turns())

    def append_increment(self, participant: str, text: str) -> Turn:
        """Append to the open turn if it is ``participant``'s, else open a new one."""
        turn = self.open_turn
        if turn is not None and turn.participant == participant:
            turn.append(text)
            return turn
        if turn is not None:
            # A stale open turn from another participant cannot coexist with a new one.
            logger.warning("Dropping unfinished turn by %s", turn.participant)
            self._turns.pop()
        turn = Turn(participant=participant, content=text)
        self._turns.append(turn)
        return turn

    def close_turn(self, participant: str, final_text: str, at: datetime) -> Turn:
        """Close the open turn with ``final_text`` as its authoritative content.

        Opens (and closes) a turn when no increments arrived. Raises
        AlternationError if ``participant`` also closed the previous turn and
        the other participant has not failed an attempt since.
        """
        previous = self.last_closed()
        if previous is not None and previous.participant == participant and not self._failed_since_close:
            raise AlternationError(f"{participant} cannot close two consecutive turns")

        turn = self.open_turn
        if turn is None or turn.participant != participant:
            turn = self.append_increment(participant, final_text)
        elif turn.content != final_text:
            logger.warning(
                "Streamed text for %s disagrees with final text (%d vs %d chars), keeping final",
                participant, len(turn.content), len(final_text),
            )
            turn.content = final_text
        turn.close(at)
        self._failed_since_close = False
        return turn

    def record_failure(self) -> None:
        """Count a failed attempt and discard the partial turn it left open."""
        self.failed_attempts += 1
        self._failed_since_close = True
        if self.open_turn is not None:
            dropped = self._turns.pop()
            logger.debug("Discarded %d chars of partial output from %s", len(dropped.content), dropped.participant)
