import asyncio
import signal
import sys

from dotenv import load_dotenv

from core.config_loader import load_config
from core.session import ChatSession
from runtime.version import as_string
from services.chat_api.server import ChatApiServer
from shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    # --------------------------------------------------
    # CONFIG
    # --------------------------------------------------
    config = load_config()
    log.info(
        f"Config loaded (port={config.api.port}, "
        f"max_regular={config.buffer.max_regular_messages}, "
        f"mock={'ON' if config.ingestion.mock_enabled else 'OFF'})"
    )

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    session = ChatSession(config)
    server = ChatApiServer(session, config.api, config.overlay)

    # --------------------------------------------------
    # START SESSION + API
    # --------------------------------------------------
    await session.start()

    try:
        server.start()
    except OSError as e:
        log.error(f"Failed to start Chat API server: {e}")
        await session.shutdown()
        raise

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: API FIRST, THEN INGESTION
    # --------------------------------------------------
    try:
        server.stop()
    except Exception as e:
        log.warning(f"Chat API shutdown error ignored: {e}")

    try:
        await session.shutdown()
    except Exception as e:
        log.warning(f"Session shutdown error ignored: {e}")

    log.info("ChatDirector stopped")


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
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

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
        log.info("KeyboardInterrupt received, shutdown initiated")
        stop_event.set()
        loop.run_until_complete(asyncio.sleep(0))

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        # --------------------------------------------------
        # FINAL LOOP CLEANUP
        # --------------------------------------------------
        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
