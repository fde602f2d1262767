from __future__ import annotations

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("runtime.retry")

BASE_DELAY = 2.0
MAX_DELAY = 60.0
JITTER_RANGE = (0.5, 1.5)

_UNAUTHORIZED_MARKERS = ("401", "unauthorized")


class RetryExhausted(RuntimeError):
    """Raised by execute_with_retry once every attempt has failed."""


def extract_error_message(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        text = str(error)
        return text or type(error).__name__
    if isinstance(error, dict):
        for key in ("message", "error", "reason"):
            value = error.get(key)
            if value:
                return str(value)
    return str(error)


def is_unauthorized(error: Any) -> bool:
    message = extract_error_message(error).lower()
    return any(marker in message for marker in _UNAUTHORIZED_MARKERS)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RetrySystem:
    """
    Exponential backoff with multiplicative jitter.

    delay_n = min(max_delay, base_delay * 2 ** (n - 1) * U[0.5, 1.5])

    Responsibilities:
    - Track consecutive connection failures and cap them at max_attempts
    - Run the cleanup callback, then schedule a reconnect after the delay
    - Stop retrying on unauthorized errors
    - Reset on success
    """

    def __init__(
        self,
        *,
        platform: str,
        max_attempts: int = 3,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise RuntimeError("max_attempts must be at least 1")
        self.platform = platform
        self.max_attempts = int(max_attempts)
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._attempts = 0
        self._total_retries = 0
        self._successes = 0
        self._exhausted = 0
        self._pending: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # Counters
    # ------------------------------------------------------------------ #

    @property
    def attempts(self) -> int:
        return self._attempts

    def calculate_delay(self, attempt: int) -> float:
        attempt = max(1, int(attempt))
        jitter = self._rng.uniform(*JITTER_RANGE)
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)) * jitter)

    def increment(self) -> float:
        self._attempts += 1
        self._total_retries += 1
        return self.calculate_delay(self._attempts)

    def reset(self) -> None:
        self._attempts = 0

    def has_exceeded(self) -> bool:
        return self._attempts > self.max_attempts

    # ------------------------------------------------------------------ #
    # Connection failures
    # ------------------------------------------------------------------ #

    async def handle_connection_error(
        self,
        error: BaseException,
        reconnect: Callable[[], Any],
        cleanup: Optional[Callable[[], Any]] = None,
    ) -> Optional[float]:
        """
        Clean up after a failed connection and schedule a reconnect.

        Returns the scheduled delay in seconds, or None when no reconnect
        was scheduled (unauthorized error or attempts exhausted).
        """
        message = extract_error_message(error)

        if is_unauthorized(error):
            log.warning(
                f"[Retry][{self.platform}] Unauthorized ({message}); "
                "not retrying"
            )
            await self._run_cleanup(cleanup)
            return None

        delay = self.increment()
        if self.has_exceeded():
            self._exhausted += 1
            log.error(
                f"[Retry][{self.platform}] Maximum retries reached "
                f"({self.max_attempts}); halting reconnect attempts"
            )
            await self._run_cleanup(cleanup)
            return None

        log.warning(
            f"[Retry][{self.platform}] Connection failed "
            f"(attempt {self._attempts}/{self.max_attempts}): {message}"
        )
        log.info(f"[Retry][{self.platform}] Retrying in {delay:.1f}s")

        await self._run_cleanup(cleanup)

        self.cancel_pending()
        self._pending = asyncio.create_task(
            self._reconnect_later(delay, reconnect, cleanup)
        )
        return delay

    async def _reconnect_later(
        self,
        delay: float,
        reconnect: Callable[[], Any],
        cleanup: Optional[Callable[[], Any]],
    ) -> None:
        await self._sleep(delay)
        try:
            await _maybe_await(reconnect())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._pending = None
            await self.handle_connection_error(e, reconnect, cleanup)

    async def _run_cleanup(self, cleanup: Optional[Callable[[], Any]]) -> None:
        if cleanup is None:
            return
        try:
            await _maybe_await(cleanup())
            log.debug(f"[Retry][{self.platform}] Cleanup executed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[Retry][{self.platform}] Cleanup failed: {e}")

    def handle_connection_success(self, context: str = "") -> None:
        if self._attempts:
            log.info(
                f"[Retry][{self.platform}] Connected after "
                f"{self._attempts} retr{'y' if self._attempts == 1 else 'ies'}"
                + (f" ({context})" if context else "")
            )
        self._successes += 1
        self.reset()

    def cancel_pending(self) -> None:
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.done():
            if pending is not asyncio.current_task():
                pending.cancel()

    @property
    def has_pending_retry(self) -> bool:
        return self._pending is not None and not self._pending.done()

    # ------------------------------------------------------------------ #
    # Generic retry
    # ------------------------------------------------------------------ #

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        attempts: Optional[int] = None,
        context: str = "operation",
    ) -> Any:
        """
        Run `operation` until it succeeds, sleeping with backoff between tries.

        Unauthorized errors are not retried. Raises RetryExhausted (chained to
        the last error) when all attempts fail.
        """
        limit = int(attempts or self.max_attempts)
        last_error: Optional[BaseException] = None

        for attempt in range(1, limit + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if is_unauthorized(e) or attempt == limit:
                    break
                delay = self.calculate_delay(attempt)
                log.warning(
                    f"[Retry][{self.platform}] {context} failed "
                    f"(attempt {attempt}/{limit}): {extract_error_message(e)}; "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        raise RetryExhausted(
            f"{context} failed after {limit} attempt(s): "
            f"{extract_error_message(last_error)}"
        ) from last_error

    # ------------------------------------------------------------------ #

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "attempts": self._attempts,
            "max_attempts": self.max_attempts,
            "total_retries": self._total_retries,
            "successes": self._successes,
            "exhausted": self._exhausted,
            "pending_retry": self.has_pending_retry,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
        }


__all__ = [
    "BASE_DELAY",
    "JITTER_RANGE",
    "MAX_DELAY",
    "RetryExhausted",
    "RetrySystem",
    "extract_error_message",
    "is_unauthorized",
]
