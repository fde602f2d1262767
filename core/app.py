import asyncio
import signal
import sys
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from core.config_loader import ConfigLoader
from services.youtube.api.client import YouTubeDataClient
from services.youtube.connections.instances import client_instances
from services.youtube.platform import YouTubePlatform
from shared.chat.events import PLATFORM_EVENT
from shared.config.youtube import YouTubeConfig
from shared.logging.logger import get_logger
from shared.runtime.quotas import quota_registry

log = get_logger("core.app")


def build_client_factory(config: YouTubeConfig):
    """
    Return the coroutine that creates the shared Data API client.

    The instance manager calls it at most once per live instance.
    """
    quota = quota_registry.register(
        scope=config.username or "default",
        platform="youtube",
        max_units=config.daily_units_max,
        buffer_units=config.daily_units_buffer,
    )

    async def create_client() -> YouTubeDataClient:
        client = YouTubeDataClient(api_key=config.api_key, quota_tracker=quota)
        if config.channel_cache_path:
            client.channel_resolver.configure_cache(True, config.channel_cache_path)
        log.info("[YouTube] Data API client created")
        return client

    return create_client


def _log_platform_event(envelope: Dict[str, Any]) -> None:
    data = envelope.get("data") or {}
    event_type = envelope.get("type")
    if event_type == "chat-message":
        text = (data.get("message") or {}).get("text")
        log.info(f"[YouTube][{data.get('video_id')}] {data.get('username')}: {text}")
    else:
        log.info(f"[YouTube] {event_type}: {data}")


async def main(stop_event: asyncio.Event, *, platform: Optional[YouTubePlatform] = None):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("[BOOT] Environment variables loaded")

    config, issues = ConfigLoader().load_youtube_config()
    if issues:
        log.warning(f"[BOOT] {len(issues)} configuration issue(s) found")

    if platform is None:
        if not config.api_key:
            log.error("[BOOT] YOUTUBE_API_KEY is not set; nothing to do")
            return
        platform = YouTubePlatform(
            config,
            client_factory=build_client_factory(config),
        )

    platform.on(PLATFORM_EVENT, _log_platform_event)

    # --------------------------------------------------
    # START
    # --------------------------------------------------
    try:
        await platform.initialize()
        log.info(f"[BOOT] YouTube platform started for @{config.username}")
    except Exception as e:
        log.error(f"[BOOT] YouTube platform failed to start: {e}")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN
    # --------------------------------------------------
    try:
        await platform.cleanup()
    except Exception as e:
        log.warning(f"Platform cleanup error ignored: {e}")

    # --------------------------------------------------
    # CLIENT CLEANUP (closes the shared httpx client)
    # --------------------------------------------------
    try:
        await client_instances.shutdown()
    except Exception as e:
        log.warning(f"Client shutdown error ignored: {e}")

    log.info("YouTube chat runtime stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
