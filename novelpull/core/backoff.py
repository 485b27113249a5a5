"""Fixed-delay retry policy for rate-limited units of work.

The supported sources answer with HTTP 200 and a banner when they want the
client to slow down, so detection is a substring check on the body rather
than a status code. Delays are constant, not exponential: the observed
sources reopen after a fixed window.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from ..models import log, RetryState, RATE_LIMIT_MARKER, RATE_LIMIT_MAX_ATTEMPTS, RATE_LIMIT_DELAY
from ..errors import Result, ResultKind


def is_rate_limited(body: Optional[str], marker: str = RATE_LIMIT_MARKER) -> bool:
    return bool(body) and marker in body


class BackoffController:
    def __init__(self, max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS, delay: float = RATE_LIMIT_DELAY,
                 marker: str = RATE_LIMIT_MARKER, sleep: Callable[[float], Awaitable[None]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self.marker = marker
        self._sleep = sleep or asyncio.sleep

    def detect(self, body: Optional[str]) -> bool:
        return is_rate_limited(body, self.marker)

    def new_state(self) -> RetryState:
        return RetryState(max_attempts=self.max_attempts, delay=self.delay)

    async def run(self, unit: Callable[[int], Awaitable[Result]], label: str = "request",
                  state: Optional[RetryState] = None) -> Result:
        """Run ``unit(attempt)`` until it stops reporting RATE_LIMITED.

        Waits ``delay`` seconds between attempts, never after the last one.
        Returns the final result with the number of attempts used; a
        RATE_LIMITED result here means the budget is exhausted.
        """
        state = state or self.new_state()
        if state.exhausted:
            raise ValueError(f"Retry state for {label} is already exhausted")
        result = None
        while not state.exhausted:
            state.record_attempt()
            result = await unit(state.attempts_used)
            if result.kind is not ResultKind.RATE_LIMITED:
                return result.with_attempts(state.attempts_used)
            if state.exhausted:
                break
            log.warning(f"Rate limited on {label} (attempt {state.attempts_used}/{state.max_attempts}). Waiting {state.delay}s.")
            await self._sleep(state.delay)

        log.error(f"Rate limit retries exhausted for {label} after {state.attempts_used} attempts.")
        return result.with_attempts(state.attempts_used)
