"""Tests for the entry point: console loop, startup and shutdown."""

import asyncio
import io
import os
import signal
import sys
import threading
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

import verabot.bootstrap
import verabot.config
from verabot import main as entry
from verabot.commands.base import CommandResult
from verabot.config import Config
from verabot.logging_config import setup_logging


class SilentStdin:
    """stdin whose readline() blocks until released, like an idle terminal."""

    def __init__(self):
        self.released = threading.Event()

    def readline(self):
        self.released.wait()
        return ""


@pytest.fixture
def config(tmp_path, monkeypatch):
    settings = {"database_path": str(tmp_path / "main.db"), "logging": {"to_file": False}}
    (tmp_path / "settings.yaml").write_text(yaml.safe_dump(settings))
    cfg = Config(tmp_path)
    monkeypatch.setattr(verabot.config, "get_config", lambda: cfg)
    yield cfg
    setup_logging()


@pytest.fixture
def silent_stdin(monkeypatch):
    stdin = SilentStdin()
    monkeypatch.setattr(sys, "stdin", stdin)
    yield stdin
    stdin.released.set()


def _console_app():
    app = MagicMock()
    app.config.console_user = "console"
    app.dispatcher.dispatch = AsyncMock(return_value=CommandResult.ok({"message": "pong"}))
    return app


@pytest.mark.asyncio
async def test_console_loop_dispatches_until_quit(capsys):
    app = _console_app()
    shutdown = asyncio.Event()
    stream = io.StringIO("/ping\nhello\n/quit\n/ping\n")

    await asyncio.wait_for(entry.console_loop(app, shutdown, stream), 5)

    assert shutdown.is_set()
    app.dispatcher.dispatch.assert_awaited_once()
    assert app.dispatcher.dispatch.await_args.args[0].user_id == "console"
    assert "pong" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_console_loop_stops_at_eof():
    shutdown = asyncio.Event()
    await asyncio.wait_for(entry.console_loop(_console_app(), shutdown, io.StringIO("")), 5)
    assert shutdown.is_set()


@pytest.mark.asyncio
async def test_console_loop_reports_parse_errors(capsys):
    app = _console_app()
    stream = io.StringIO('/quote.add text="oops\n')
    await asyncio.wait_for(entry.console_loop(app, asyncio.Event(), stream), 5)
    assert "Error:" in capsys.readouterr().out
    app.dispatcher.dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_main_returns_on_shutdown_while_stdin_is_idle(config, silent_stdin):
    shutdown = asyncio.Event()
    task = asyncio.create_task(entry.main(shutdown_event=shutdown))
    await asyncio.sleep(0.2)
    assert not task.done()

    shutdown.set()
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_run_exits_on_sigterm_while_stdin_is_idle(config, silent_stdin, monkeypatch):
    built = threading.Event()
    real_build_app = verabot.bootstrap.build_app

    async def build_app(cfg, **kwargs):
        app = await real_build_app(cfg, **kwargs)
        built.set()
        return app

    monkeypatch.setattr(verabot.bootstrap, "build_app", build_app)

    def send_sigterm():
        if built.wait(10):
            time.sleep(0.1)
            os.kill(os.getpid(), signal.SIGTERM)

    threading.Thread(target=send_sigterm, daemon=True).start()
    started = time.monotonic()
    entry.run()

    assert built.is_set()
    assert time.monotonic() - started < 10
