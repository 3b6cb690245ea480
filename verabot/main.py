"""Main entry point for verabot.

Initializes logging in two phases (defaults then config-driven), builds
the App and serves the console adapter until EOF, /quit, or
SIGTERM/SIGINT.

stdin is read by a daemon thread that feeds an asyncio.Queue. A
blocked readline() therefore never holds up shutdown: the loop stops
waiting on the queue and the interpreter does not join daemon threads.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper for the ``verabot`` console script.
"""

import asyncio
import signal
import sys
import threading
from typing import Optional, TextIO

import structlog

from . import __version__
from .logging_config import setup_logging

_QUIT_COMMANDS = ("/quit", "/exit")


def _start_line_reader(stream: TextIO) -> asyncio.Queue:
    """Pump lines from ``stream`` into a queue; "" marks EOF."""
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue = asyncio.Queue()

    def _put(line: str) -> bool:
        try:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        except RuntimeError:
            # Event loop already closed
            return False
        return True

    def _pump():
        for line in iter(stream.readline, ""):
            if not _put(line):
                return
        _put("")

    threading.Thread(target=_pump, name="verabot-stdin", daemon=True).start()
    return lines


async def console_loop(app, shutdown_event: asyncio.Event,
                       stream: Optional[TextIO] = None) -> None:
    """Read lines from ``stream`` (stdin), dispatch them, print the results."""
    from .console import parse_line, render_result

    logger = structlog.get_logger("verabot.bot")
    user_id = app.config.console_user
    lines = _start_line_reader(stream or sys.stdin)
    print("verabot ready. Type /help for commands, /quit to exit.", flush=True)

    while not shutdown_event.is_set():
        line = await lines.get()
        if not line:
            break
        if line.strip().lower() in _QUIT_COMMANDS:
            break
        try:
            command = parse_line(line, user_id)
        except ValueError as e:
            print(f"Error: {e}", flush=True)
            continue
        if command is None:
            continue

        result = await app.dispatcher.dispatch(command)
        print(render_result(result), flush=True)

    logger.info("console_closed")
    shutdown_event.set()


def _install_signal_handlers(loop, handle_shutdown) -> list:
    """Route SIGTERM/SIGINT to ``handle_shutdown``. Returns the signals installed."""
    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
            installed.append(sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: loop.call_soon_threadsafe(handle_shutdown, signal.SIGINT),
                )
        except (RuntimeError, ValueError):
            # Not running in the main thread
            pass
    return installed


async def main(shutdown_event: Optional[asyncio.Event] = None,
               stream: Optional[TextIO] = None):
    """Main async entry point.

    Args:
        shutdown_event: Set to stop the bot; created when omitted.
        stream: Console input, stdin when omitted.
    """
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("verabot")

    logger.info("verabot_starting", version=__version__)

    loop = asyncio.get_running_loop()
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    installed = _install_signal_handlers(loop, handle_shutdown)

    # Import here to ensure logging is configured first
    from .bootstrap import build_app
    from .config import get_config

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config
    setup_logging(config)

    app = await build_app(config)

    try:
        console_task = asyncio.create_task(console_loop(app, shutdown_event, stream))

        await shutdown_event.wait()

        console_task.cancel()
        try:
            await console_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await app.close()
        for sig in installed:
            loop.remove_signal_handler(sig)
        logger.info("verabot_stopped")


def run():
    """Synchronous entry point for the ``verabot`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
