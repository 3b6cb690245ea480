"""Core command handlers: ping, info, help, uptime, stats.

Help is built from the registry's own entries so it always matches
what is actually registered.
"""

from __future__ import annotations

import math
import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import psutil

from ..exceptions import ErrorKind
from .base import Command, CommandRegistry, CommandResult, ServiceHandler, is_missing

HELP_PAGE_SIZE = 10


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours or days:
        parts.append(f"{hours}h")
    if minutes or hours or days:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


class _CoreHandler(ServiceHandler):
    category = "core"


class PingHandler(_CoreHandler):
    description = "Check that the bot is responding"
    usage = "/ping"

    async def execute(self, command: Command) -> CommandResult:
        return CommandResult.ok({"message": "pong"})


class InfoHandler(_CoreHandler):
    """System status from a status provider.

    Args:
        status_provider: Async callable returning a flat dict of status
            values (versions, connection flags, counts).
    """

    description = "Show system status"
    usage = "/info"

    def __init__(self, status_provider: Callable[[], Awaitable[Dict[str, Any]]]):
        self.status_provider = status_provider

    async def execute(self, command: Command) -> CommandResult:
        status = dict(await self.status_provider())
        lines = ["System status:"]
        for key, value in status.items():
            if isinstance(value, bool):
                value = "ok" if value else "down"
            elif isinstance(value, dict):
                value = ", ".join(f"{k} {v}" for k, v in value.items())
            lines.append(f"  {key.replace('_', ' ')}: {value}")
        return CommandResult.ok({"message": "\n".join(lines), **status})


class HelpHandler(_CoreHandler):
    """Command detail for ``command=``, otherwise a paginated listing."""

    description = "List commands or show help for one command"
    usage = "/help [command=<name>] [category=<category>] [page=<n>]"

    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    async def execute(self, command: Command) -> CommandResult:
        name = command.get("command")
        if not is_missing(name):
            name = str(name).lstrip("/")
            entry = self.registry.get_entry(name)
            if entry is None:
                return CommandResult.fail(
                    f"Unknown command: {name}", kind=ErrorKind.NOT_FOUND
                )
            return CommandResult.ok({
                "message": f"/{entry.name}: {entry.description}\nUsage: {entry.usage}",
                "command": entry.name,
                "category": entry.category,
                "description": entry.description,
                "usage": entry.usage,
                "examples": list(entry.examples),
            })

        entries = self.registry.list_commands()
        category = command.get("category")
        if not is_missing(category):
            entries = [e for e in entries if e.category == category]
            if not entries:
                return CommandResult.fail(
                    f"No commands in category '{category}'", kind=ErrorKind.NOT_FOUND
                )

        try:
            page = max(1, int(command.get("page") or 1))
        except (TypeError, ValueError):
            return CommandResult.fail("Page must be a number")
        total_pages = max(1, math.ceil(len(entries) / HELP_PAGE_SIZE))
        page = min(page, total_pages)
        shown = entries[(page - 1) * HELP_PAGE_SIZE: page * HELP_PAGE_SIZE]

        lines = [f"Commands (Page {page} of {total_pages}):"]
        lines.extend(f"  /{e.name} - {e.description}" for e in shown)
        return CommandResult.ok({
            "message": "\n".join(lines),
            "commands": [
                {"name": e.name, "category": e.category, "description": e.description}
                for e in shown
            ],
            "page": page,
            "total_pages": total_pages,
            "total": len(entries),
        })


class UptimeHandler(_CoreHandler):
    description = "Show how long the bot has been running"
    usage = "/uptime"

    def __init__(self, started_at: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.started_at = clock() if started_at is None else started_at

    async def execute(self, command: Command) -> CommandResult:
        uptime = max(0.0, self.clock() - self.started_at)
        return CommandResult.ok({
            "message": f"Uptime: {_format_duration(uptime)}",
            "uptime_seconds": round(uptime, 1),
        })


class StatsHandler(UptimeHandler):
    """Process and host statistics via psutil."""

    description = "Show bot and system statistics"
    usage = "/stats"

    async def execute(self, command: Command) -> CommandResult:
        uptime = max(0.0, self.clock() - self.started_at)
        mem = psutil.virtual_memory()
        process_mb = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
        try:
            load = [round(x, 2) for x in psutil.getloadavg()]
        except (AttributeError, OSError):
            load = []

        lines = [
            f"Uptime: {_format_duration(uptime)}",
            f"Memory: {mem.percent:.1f}% used ({mem.available / (1024 * 1024):.0f}MB free)",
            f"Process memory: {process_mb:.1f}MB",
        ]
        if load:
            lines.append("Load average: " + ", ".join(str(x) for x in load))

        return CommandResult.ok({
            "message": "\n".join(lines),
            "uptime_seconds": round(uptime, 1),
            "load_average": load,
            "memory_percent": mem.percent,
            "memory_available_mb": round(mem.available / (1024 * 1024), 1),
            "process_memory_mb": round(process_mb, 1),
            "cpu_count": psutil.cpu_count() or 1,
        })


def core_handlers(
    registry: CommandRegistry,
    status_provider: Callable[[], Awaitable[Dict[str, Any]]],
    started_at: Optional[float] = None,
) -> dict:
    """Return {command_name: handler} for every core command."""
    started_at = time.monotonic() if started_at is None else started_at
    return {
        "ping": PingHandler(),
        "info": InfoHandler(status_provider),
        "help": HelpHandler(registry),
        "uptime": UptimeHandler(started_at),
        "stats": StatsHandler(started_at),
    }
