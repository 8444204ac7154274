"""Client-side retry countdown.

``ClientCountdown`` turns the server's ``retry_after`` into a whole-second
countdown a UI can bind to. It is advisory: the server stays authoritative,
and a send attempted before the countdown ends is simply rejected again and
restarts the countdown from the server's fresh value.

State machine::

    Idle --start(retry_after)--> Limited(ceil(retry_after))
    Limited(n) --tick, n > 1--> Limited(n - 1)
    Limited(1) --tick--> Idle
    Limited(n) --clear()--> Idle

At most one timer handle is live at a time; it is canceled on every exit
path (natural end, clear, restart, close).
"""

import asyncio
import enum
import logging
import math
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownState(str, enum.Enum):
    IDLE = "idle"
    LIMITED = "limited"


ChangeListener = Callable[[CountdownState, int], None]


def format_retry_time(seconds: int) -> str:
    """Render a countdown value the way the chat UI shows it.

    >>> format_retry_time(7)
    '7 seconds'
    >>> format_retry_time(95)
    '1m 35s'
    """
    if seconds < 60:
        return f"{seconds} seconds"
    minutes, remaining_seconds = divmod(seconds, 60)
    return f"{minutes}m {remaining_seconds}s"


class ClientCountdown:
    """Cancelable, locally ticking countdown driven by ``retry_after``.

    Args:
        tick_seconds: Length of one countdown step
        on_change: Called with ``(state, seconds_remaining)`` on every change
    """

    def __init__(
        self,
        tick_seconds: float = 1.0,
        on_change: Optional[ChangeListener] = None,
    ):
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.tick_seconds = tick_seconds
        self._on_change = on_change
        self._state = CountdownState.IDLE
        self._remaining = 0
        self._handle: Optional[asyncio.Task] = None
        # Bumped on every start/clear so a stale timer cannot touch newer state
        self._generation = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    @property
    def state(self) -> CountdownState:
        return self._state

    @property
    def is_limited(self) -> bool:
        return self._state is CountdownState.LIMITED

    @property
    def seconds_remaining(self) -> int:
        return self._remaining

    @property
    def has_live_timer(self) -> bool:
        return self._handle is not None and not self._handle.done()

    def start(self, retry_after: float) -> int:
        """Enter ``Limited(ceil(retry_after))`` and schedule ticking.

        Any countdown already running is canceled first.

        Returns:
            The whole seconds the countdown starts from
        """
        if self._closed:
            raise RuntimeError("countdown is closed")
        self._cancel_timer()
        self._generation += 1
        self._state = CountdownState.LIMITED
        self._remaining = max(1, math.ceil(retry_after))
        self._idle.clear()
        self._handle = asyncio.get_running_loop().create_task(
            self._run(self._generation)
        )
        logger.debug(f"Countdown started at {self._remaining}s (retry_after={retry_after})")
        self._notify()
        return self._remaining

    def tick(self) -> int:
        """Advance the countdown by one step.

        Returns:
            Seconds remaining after the step, 0 once idle
        """
        if self._state is CountdownState.IDLE:
            return 0
        self._remaining -= 1
        if self._remaining <= 0:
            self._cancel_timer()
            self._to_idle()
        else:
            self._notify()
        return self._remaining

    def clear(self) -> None:
        """Return to idle early, e.g. after a send was admitted."""
        self._cancel_timer()
        self._generation += 1
        if self._state is not CountdownState.IDLE:
            self._to_idle()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def close(self) -> None:
        """Tear down: cancel any pending timer; further starts are refused."""
        self.clear()
        self._closed = True

    async def __aenter__(self) -> "ClientCountdown":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def _to_idle(self) -> None:
        self._state = CountdownState.IDLE
        self._remaining = 0
        self._idle.set()
        self._notify()

    def _cancel_timer(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None or handle.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The timer retiring itself just returns
        if handle is not current:
            handle.cancel()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._state, self._remaining)

    async def _run(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            if generation != self._generation:
                return
            if self.tick() == 0:
                return
