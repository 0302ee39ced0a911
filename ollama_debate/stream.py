"""Cancellation tokens and the back-pressured channel between a generation task and its consumer."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from ollama_debate.models import Completed, Failed, GenerationEvent, Increment
from ollama_debate.providers.base import GenerationCancelled, ProviderError

logger = logging.getLogger(__name__)

Emit = Callable[[str], Awaitable[None]]


class CancelToken:
    """One-shot cancellation signal shared by a generation and whoever may stop it."""

    def __init__(self) -> None:
        self._reason: str | None = None
        self._callbacks: list[Callable[[], object]] = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "canceled") -> None:
        if self._reason is not None:
            return
        self._reason = reason
        self.clear_timer()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], object]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def cancel_after(self, delay_sec: float) -> None:
        """Cancel with reason "timeout" once ``delay_sec`` has passed."""
        self.clear_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_sec, self.cancel, "timeout")

    def clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self, participant: str) -> None:
        if self._reason is not None:
            raise GenerationCancelled(participant, self._reason)


Producer = Callable[[Emit, CancelToken], Awaitable[str]]


class Generation:
    """A single in-flight generation.

    The producer runs in its own task and hands increments over a queue that
    holds at most one item, so it suspends instead of buffering when the
    consumer falls behind. The terminal event lives in ``outcome``. Cancelling
    the token also cancels the task, so a producer blocked on network I/O
    stops immediately.
    """

    def __init__(self, participant: str, token: CancelToken, producer: Producer) -> None:
        self.participant = participant
        self.token = token
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=1)
        loop = asyncio.get_running_loop()
        self.outcome: asyncio.Future[Completed | Failed] = loop.create_future()
        self._task = loop.create_task(self._run(producer), name=f"generate:{participant}")
        self._task.add_done_callback(self._on_task_done)
        token.add_callback(self._task.cancel)

    @property
    def done(self) -> bool:
        return self._task.done()

    async def _emit(self, text: str) -> None:
        self.token.raise_if_cancelled(self.participant)
        await self._queue.put(text)

    async def _run(self, producer: Producer) -> None:
        try:
            self.token.raise_if_cancelled(self.participant)
            text = await producer(self._emit, self.token)
        except ProviderError as exc:
            self._finish(Failed(self.participant, exc))
        except Exception as exc:
            logger.exception("Unexpected failure generating for %s", self.participant)
            self._finish(Failed(self.participant, ProviderError(self.participant, f"Unexpected error: {exc}")))
        else:
            self._finish(Completed(self.participant, text))

    def _finish(self, event: Completed | Failed) -> None:
        if not self.outcome.done():
            self.outcome.set_result(event)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self.token.clear_timer()
        if task.cancelled():
            self._finish(Failed(self.participant, GenerationCancelled(self.participant, self.token.reason or "canceled")))

    async def next_event(self) -> GenerationEvent:
        """Wait for the next increment, or the terminal event once the stream is over.

        After cancellation no increment is returned, even one already queued.
        """
        while not self.token.cancelled:
            if not self._queue.empty():
                return Increment(self.participant, self._queue.get_nowait())
            if self.outcome.done():
                break
            getter = asyncio.ensure_future(self._queue.get())
            try:
                await asyncio.wait({getter, self.outcome}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not getter.done():
                    getter.cancel()
            if self.token.cancelled:
                break
            if getter.done() and not getter.cancelled():
                return Increment(self.participant, getter.result())
        return await asyncio.shield(self.outcome)

    async def __aiter__(self) -> AsyncIterator[GenerationEvent]:
        while True:
            event = await self.next_event()
            yield event
            if not isinstance(event, Increment):
                return

    def cancel(self, reason: str = "canceled") -> None:
        self.token.cancel(reason)

    async def aclose(self) -> None:
        """Cancel if still running and wait for the background task to exit."""
        if not self._task.done():
            self.cancel()
        await asyncio.wait({self._task})
