import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)

Callback = Callable[[Any], Awaitable[None] | None]


class DebouncedSaver:
    """
    Single re-armable timer that saves once changes have been quiet for `delay` seconds.

    `snapshot` runs on the event loop and returns the document to write (or None
    to skip the save); the blocking `write` runs in the default executor so the
    loop keeps serving clients while the file is written.
    """

    def __init__(
        self,
        snapshot: Callable[[], Any],
        write: Callable[[Any], Any],
        delay: float,
        on_saved: Callback | None = None,
        on_error: Callback | None = None,
    ):
        self._snapshot = snapshot
        self._write = write
        self._delay = delay
        self._on_saved = on_saved
        self._on_error = on_error
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Future | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def delay(self) -> float:
        return self._delay

    def schedule(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)

    def cancel(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def flush(self) -> None:
        """Run a pending save now and wait until every save started so far has finished."""
        if self.cancel():
            self._start()
        if self._inflight is not None and not self._inflight.done():
            await asyncio.shield(self._inflight)

    def _fire(self) -> None:
        self._timer = None
        self._start()

    def _start(self) -> None:
        self._inflight = asyncio.ensure_future(self._run(self._inflight))

    async def _run(self, previous: asyncio.Future | None) -> None:
        # Saves run one at a time so an older snapshot never lands after a newer one.
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        document = self._snapshot()
        if document is None:
            return

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self._write, document)
        except Exception as exc:
            logger.warning("Deferred session save failed: %s", exc)
            await _maybe_await(self._on_error, exc)
            return
        await _maybe_await(self._on_saved, result)


async def _maybe_await(callback: Callback | None, value: Any) -> None:
    if callback is None:
        return
    outcome = callback(value)
    if asyncio.iscoroutine(outcome):
        await outcome
