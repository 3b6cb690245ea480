"""Dare command handlers.

Handles: dare.create, dare.get, dare.list, dare.update, dare.delete,
dare.give, dare.complete.

dare.create and dare.give acquire fresh content through the dare
service, which falls back to stored dares when the external generator
is down; the result says which source was used.
"""

from __future__ import annotations

import structlog

from ..exceptions import ErrorKind
from .base import Command, CommandResult, ServiceHandler, as_text, is_missing, to_payload

logger = structlog.get_logger("verabot.bot")

_TRUTHY = (True, "true", "yes", "1", 1)


class _DareHandler(ServiceHandler):
    category = "dares"

    def __init__(self, dare_service):
        self.dare_service = dare_service


class DareCreateHandler(_DareHandler):
    """Generate a new dare, optionally for a theme and generator."""

    description = "Generate a new dare"
    usage = "/dare.create [theme=<theme>] [generator=<name>]"

    async def execute(self, command: Command) -> CommandResult:
        acquisition = await self.dare_service.generate_dare(
            as_text(command.get("theme")) or "general",
            command.user_id,
            generator_name=as_text(command.get("generator")),
        )
        dare = acquisition.dare
        if acquisition.fallback:
            logger.info("dare_create_fallback", dare_id=dare.id)
        return CommandResult.ok({
            "message": f"Dare #{dare.id} created successfully!",
            "dare": to_payload(dare),
            "source": acquisition.source,
            "fallback": acquisition.fallback,
        })


class DareGetHandler(_DareHandler):
    """Show one dare by id."""

    description = "Show a dare by ID"
    usage = "/dare.get id=<id>"

    async def execute(self, command: Command) -> CommandResult:
        dare_id = command.get("id")
        if is_missing(dare_id):
            return CommandResult.fail("Dare ID is required")

        dare = await self.dare_service.get_dare(dare_id)
        if not dare:
            return CommandResult.fail(f"Dare #{dare_id} not found", kind=ErrorKind.NOT_FOUND)

        return CommandResult.ok({
            "dare": to_payload(dare),
            "message": f"Dare #{dare_id} retrieved successfully",
        })


class DareListHandler(_DareHandler):
    """Paginated dare listing with optional status/theme filters.

    An empty listing is reported as a failure ("No dares available"),
    unlike e.g. dare.give which treats an empty store as a reason to
    generate instead.
    """

    description = "List dares"
    usage = "/dare.list [page=<n>] [per_page=<n>] [status=<status>] [theme=<theme>]"

    async def execute(self, command: Command) -> CommandResult:
        page = await self.dare_service.list_dares(
            page=command.get("page") or 1,
            per_page=command.get("per_page") or 20,
            status=as_text(command.get("status")) or None,
            theme=as_text(command.get("theme")) or None,
        )
        if not page.dares:
            return CommandResult.fail("No dares available", kind=ErrorKind.NOT_FOUND)

        p = page.pagination
        plural = "" if p.total == 1 else "s"
        return CommandResult.ok({
            "dares": [to_payload(d) for d in page.dares],
            "pagination": to_payload(p),
            "message": f"Found {p.total} dare{plural} (Page {p.page} of {p.total_pages})",
        })


class DareUpdateHandler(_DareHandler):
    """Change a dare's content, status or theme."""

    description = "Update a dare"
    usage = "/dare.update dare_id=<id> [content=<text>] [status=<status>] [theme=<theme>]"
    fields = ("content", "status", "theme")

    async def execute(self, command: Command) -> CommandResult:
        dare_id = command.get("dare_id")
        if is_missing(dare_id):
            return CommandResult.fail("Dare ID is required")

        updates = {
            field: as_text(command.get(field))
            for field in self.fields
            if command.get(field) is not None
        }
        if not updates:
            return CommandResult.fail("No update fields provided")

        dare = await self.dare_service.update_dare(dare_id, updates)
        return CommandResult.ok({
            "message": f"Dare #{dare_id} updated successfully!",
            "dare_id": dare.id,
            "updates": updates,
            "dare": to_payload(dare),
        })


class DareDeleteHandler(_DareHandler):
    description = "Delete a dare"
    usage = "/dare.delete dare_id=<id>"

    async def execute(self, command: Command) -> CommandResult:
        dare_id = command.get("dare_id")
        if is_missing(dare_id):
            return CommandResult.fail("Dare ID is required")

        await self.dare_service.delete_dare(dare_id)
        return CommandResult.ok({
            "message": f"Dare #{dare_id} deleted successfully!",
            "dare_id": dare_id,
        })


class DareGiveHandler(_DareHandler):
    """Assign a dare to another user.

    With ``random`` set, a stored dare is picked first; otherwise (or if
    none is stored) a new one is acquired.
    """

    description = "Give a dare to a user"
    usage = "/dare.give user=<user> [random=true] [theme=<theme>]"

    async def execute(self, command: Command) -> CommandResult:
        target = command.get("user")
        if is_missing(target):
            return CommandResult.fail("Target user is required")

        theme = as_text(command.get("theme")) or None
        source, fallback = "database", False
        dare = None
        if command.get("random") in _TRUTHY:
            dare = await self.dare_service.random_dare(theme=theme)
        if dare is None:
            acquisition = await self.dare_service.generate_dare(
                theme or "general", command.user_id,
                generator_name=as_text(command.get("generator")),
            )
            dare = acquisition.dare
            source, fallback = acquisition.source, acquisition.fallback

        dare = await self.dare_service.assign_dare(dare.id, str(target))
        return CommandResult.ok({
            "message": f"Dare #{dare.id} assigned to <@{target}>!",
            "dare": to_payload(dare),
            "source": source,
            "fallback": fallback,
        })


class DareCompleteHandler(_DareHandler):
    description = "Mark a dare as completed"
    usage = "/dare.complete dare_id=<id> [notes=<text>]"

    async def execute(self, command: Command) -> CommandResult:
        dare_id = command.get("dare_id")
        if is_missing(dare_id):
            return CommandResult.fail("Dare ID is required")

        notes = as_text(command.get("notes")) or None
        dare = await self.dare_service.complete_dare(dare_id, command.user_id, notes)
        return CommandResult.ok({
            "message": f"Dare #{dare_id} marked as completed!",
            "dare_id": dare.id,
            "notes": notes,
        })


def dare_handlers(dare_service) -> dict:
    """Return {command_name: handler} for every dare command."""
    return {
        "dare.create": DareCreateHandler(dare_service),
        "dare.get": DareGetHandler(dare_service),
        "dare.list": DareListHandler(dare_service),
        "dare.update": DareUpdateHandler(dare_service),
        "dare.delete": DareDeleteHandler(dare_service),
        "dare.give": DareGiveHandler(dare_service),
        "dare.complete": DareCompleteHandler(dare_service),
    }
