"""Admin command handlers.

Handles: admin.allow, admin.deny, admin.allow_user, admin.allow_channel,
admin.allow_role, admin.allowed, admin.audit. Everything in the "admin" category is restricted to
configured admins by PermissionService.
"""

from __future__ import annotations

import math

import structlog

from ..exceptions import ErrorKind
from ..security import mask_user_id
from .base import (
    Command,
    CommandRegistry,
    CommandResult,
    ServiceHandler,
    as_text,
    is_missing,
    to_payload,
)

logger = structlog.get_logger("verabot.security")

RULES_PAGE_SIZE = 10
MAX_AUDIT_LIMIT = 100


class _AdminHandler(ServiceHandler):
    category = "admin"

    def __init__(self, permissions, registry: CommandRegistry):
        self.permissions = permissions
        self.registry = registry

    def _target(self, command: Command):
        """Registered command named by ``command=``, or a failed result."""
        name = command.get("command")
        if is_missing(name):
            return None, CommandResult.fail("Command is required")
        name = str(name).lstrip("/")
        if not self.registry.has(name):
            return None, CommandResult.fail(
                f"Unknown command: {name}", kind=ErrorKind.NOT_FOUND
            )
        return name, None


class AllowCommandHandler(_AdminHandler):
    description = "Allow a command for everyone"
    usage = "/admin.allow command=<name>"
    allowed = True

    async def execute(self, command: Command) -> CommandResult:
        name, failure = self._target(command)
        if failure:
            return failure
        await self.permissions.set_rule(name, self.allowed, command.user_id)
        state = "allowed" if self.allowed else "denied"
        logger.info(
            "command_rule_changed",
            command=name,
            allowed=self.allowed,
            by=mask_user_id(command.user_id),
        )
        return CommandResult.ok({
            "message": f"Command '{name}' is now {state}.",
            "command": name,
            "allowed": self.allowed,
        })


class DenyCommandHandler(AllowCommandHandler):
    description = "Deny a command for everyone but admins"
    usage = "/admin.deny command=<name>"
    allowed = False


class _AllowScopeHandler(_AdminHandler):
    """Restrict a command to a list, adding one member to it.

    Subclasses name the ``scope`` ("user", "channel" or "role"); the
    member is read from the metadata key of the same name.
    """

    scope = "user"

    async def execute(self, command: Command) -> CommandResult:
        name, failure = self._target(command)
        if failure:
            return failure
        member = as_text(command.get(self.scope))
        if is_missing(member):
            return CommandResult.fail(f"{self.scope.capitalize()} is required")
        member = member.strip()

        rule = await self.permissions.get_rule(name)
        if rule is None or not rule.allowed:
            await self.permissions.set_rule(name, True, command.user_id)
        await getattr(self.permissions, f"add_{self.scope}")(name, member)
        logger.info(
            "command_scope_allowed",
            command=name,
            scope=self.scope,
            member=mask_user_id(member) if self.scope == "user" else member,
            by=mask_user_id(command.user_id),
        )
        return CommandResult.ok({
            "message": f"{self.scope.capitalize()} {member} allowed for '{name}'.",
            "command": name,
            self.scope: member,
        })


class AllowUserHandler(_AllowScopeHandler):
    description = "Allow a specific user to use a command"
    usage = "/admin.allow_user command=<name> user=<user>"
    scope = "user"


class AllowChannelHandler(_AllowScopeHandler):
    description = "Allow a command in a specific channel"
    usage = "/admin.allow_channel command=<name> channel=<channel id>"
    scope = "channel"


class AllowRoleHandler(_AllowScopeHandler):
    description = "Allow a specific role to use a command"
    usage = "/admin.allow_role command=<name> role=<role id>"
    scope = "role"


class ListRulesHandler(_AdminHandler):
    description = "List explicit command rules"
    usage = "/admin.allowed [category=<category>] [page=<n>]"

    async def execute(self, command: Command) -> CommandResult:
        rules = await self.permissions.list_rules()
        category = command.get("category")
        if not is_missing(category):
            rules = [r for r in rules if self.registry.category_of(r.command) == category]
        if not rules:
            return CommandResult.ok({
                "message": "No command rules configured.",
                "rules": [],
                "page": 1,
                "total_pages": 1,
            })

        try:
            page = max(1, int(command.get("page") or 1))
        except (TypeError, ValueError):
            return CommandResult.fail("Page must be a number")
        total_pages = max(1, math.ceil(len(rules) / RULES_PAGE_SIZE))
        page = min(page, total_pages)
        shown = rules[(page - 1) * RULES_PAGE_SIZE: page * RULES_PAGE_SIZE]

        lines = [f"Command rules (Page {page} of {total_pages}):"]
        for rule in shown:
            scopes = {
                "users": await self.permissions.get_users(rule.command),
                "channels": await self.permissions.get_channels(rule.command),
                "roles": await self.permissions.get_roles(rule.command),
            }
            listed = [f"{label}: {', '.join(v)}" for label, v in scopes.items() if v]
            state = "allowed" if rule.allowed else "denied"
            suffix = f" ({'; '.join(listed)})" if listed else ""
            lines.append(f"  /{rule.command}: {state}{suffix}")

        return CommandResult.ok({
            "message": "\n".join(lines),
            "rules": [to_payload(r) for r in shown],
            "page": page,
            "total_pages": total_pages,
        })


class AuditHandler(ServiceHandler):
    description = "Show recent audit log entries"
    usage = "/admin.audit [limit=<n>]"
    category = "admin"

    def __init__(self, audit):
        self.audit = audit

    async def execute(self, command: Command) -> CommandResult:
        try:
            limit = int(command.get("limit") or 20)
        except (TypeError, ValueError):
            return CommandResult.fail("Limit must be a number")
        limit = min(MAX_AUDIT_LIMIT, max(1, limit))

        entries = await self.audit.latest(limit)
        lines = [f"Last {len(entries)} command(s):"]
        for e in entries:
            status = "ok" if e.success else (e.error_kind or "failed")
            lines.append(
                f"  {e.timestamp:%Y-%m-%d %H:%M:%S} /{e.command}"
                f" by {mask_user_id(e.user_id)} [{status}]"
            )
        return CommandResult.ok({
            "message": "\n".join(lines),
            "entries": [to_payload(e) for e in entries],
        })


def admin_handlers(permissions, registry: CommandRegistry, audit) -> dict:
    """Return {command_name: handler} for every admin command."""
    return {
        "admin.allow": AllowCommandHandler(permissions, registry),
        "admin.deny": DenyCommandHandler(permissions, registry),
        "admin.allow_user": AllowUserHandler(permissions, registry),
        "admin.allow_channel": AllowChannelHandler(permissions, registry),
        "admin.allow_role": AllowRoleHandler(permissions, registry),
        "admin.allowed": ListRulesHandler(permissions, registry),
        "admin.audit": AuditHandler(audit),
    }
