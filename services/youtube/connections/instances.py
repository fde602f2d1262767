from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from services.youtube.errors import ClientUnavailable
from shared.logging.logger import get_logger

log = get_logger("youtube.instances")

SHARED_INSTANCE_ID = "shared-youtube-instance"
DEFAULT_CREATION_TIMEOUT = 3.0
DEFAULT_INSTANCE_TTL = 30 * 60.0
MIN_INSTANCE_TTL = 60.0

CreateFunction = Callable[[], Awaitable[Any]]


@dataclass
class CachedInstance:
    instance: Any
    created_at: float
    last_accessed: float
    healthy: bool = True
    error: Optional[str] = None


async def _dispose(instance: Any) -> None:
    for name in ("aclose", "close"):
        closer = getattr(instance, name, None)
        if callable(closer):
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


class ClientInstanceManager:
    """
    Process-wide cache of YouTube client instances.

    Responsibilities:
    - Share one client per identifier across components
    - Coalesce concurrent creations for the same identifier (single-flight)
    - Bound creation time; a timeout surfaces as ClientUnavailable
    - Expire instances past their TTL or marked unhealthy
    - Keep at most `max_instances`, evicting the least recently used
    """

    def __init__(
        self,
        *,
        max_instances: int = 2,
        instance_ttl: float = DEFAULT_INSTANCE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_instances = max(1, int(max_instances))
        self.instance_ttl = max(float(instance_ttl), MIN_INSTANCE_TTL)
        self._clock = clock
        self._instances: Dict[str, CachedInstance] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self.disposed = False

    # ------------------------------------------------------------------ #

    async def get_instance(
        self,
        identifier: str = SHARED_INSTANCE_ID,
        create_function: Optional[CreateFunction] = None,
        *,
        timeout: float = DEFAULT_CREATION_TIMEOUT,
    ) -> Any:
        if self.disposed:
            raise ClientUnavailable("Client instance manager has been disposed")

        cached = self._instances.get(identifier)
        if cached is not None and self._is_healthy(cached):
            cached.last_accessed = self._clock()
            return cached.instance

        if cached is not None:
            log.debug(f"[YouTube] Replacing stale client instance: {identifier}")
            await self.dispose_instance(identifier)

        pending = self._pending.get(identifier)
        if pending is not None:
            return await asyncio.shield(pending)

        if create_function is None:
            raise ClientUnavailable(
                f"No client factory available for instance {identifier}"
            )

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending[identifier] = future

        try:
            if len(self._instances) >= self.max_instances:
                log.warning(
                    f"[YouTube] Maximum client instances reached "
                    f"({self.max_instances}); disposing least recently used"
                )
                await self._dispose_oldest()

            try:
                instance = await asyncio.wait_for(create_function(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise ClientUnavailable(
                    f"Client creation timed out after {timeout:.1f}s"
                ) from e
            except ClientUnavailable:
                raise
            except Exception as e:
                raise ClientUnavailable(f"Failed to create client instance: {e}") from e

            now = self._clock()
            self._instances[identifier] = CachedInstance(
                instance=instance,
                created_at=now,
                last_accessed=now,
            )
            log.debug(f"[YouTube] Cached new client instance: {identifier}")
            future.set_result(instance)
            return instance

        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
                # consumed here so an un-awaited future does not warn
                future.exception()
            raise
        finally:
            self._pending.pop(identifier, None)

    def _is_healthy(self, cached: CachedInstance) -> bool:
        if not cached.healthy:
            return False
        return (self._clock() - cached.created_at) <= self.instance_ttl

    async def _dispose_oldest(self) -> None:
        if not self._instances:
            return
        oldest = min(self._instances.items(), key=lambda kv: kv[1].last_accessed)[0]
        await self.dispose_instance(oldest)

    # ------------------------------------------------------------------ #

    def mark_unhealthy(self, identifier: str, error: Any = None) -> None:
        cached = self._instances.get(identifier)
        if cached is not None:
            cached.healthy = False
            cached.error = str(error) if error is not None else None
            log.warning(f"[YouTube] Client instance marked unhealthy: {identifier} ({error})")

    async def dispose_instance(self, identifier: str) -> None:
        cached = self._instances.pop(identifier, None)
        if cached is None:
            return
        try:
            await _dispose(cached.instance)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[YouTube] Error disposing client instance {identifier}: {e}")
        log.debug(f"[YouTube] Disposed client instance: {identifier}")

    async def cleanup(self) -> None:
        """Dispose every instance. The manager remains usable afterwards."""
        for identifier in list(self._instances.keys()):
            await self.dispose_instance(identifier)

    async def shutdown(self) -> None:
        await self.cleanup()
        self.disposed = True

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "active_instances": len(self._instances),
            "max_instances": self.max_instances,
            "instances": [
                {
                    "identifier": identifier,
                    "healthy": cached.healthy,
                    "age": now - cached.created_at,
                    "idle": now - cached.last_accessed,
                }
                for identifier, cached in self._instances.items()
            ],
        }


client_instances = ClientInstanceManager()


__all__ = [
    "CachedInstance",
    "ClientInstanceManager",
    "DEFAULT_CREATION_TIMEOUT",
    "SHARED_INSTANCE_ID",
    "client_instances",
]
