"""Tests for core and admin command handlers."""

from collections import namedtuple
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from verabot.commands.admin import (
    AllowChannelHandler,
    AllowCommandHandler,
    AllowRoleHandler,
    AllowUserHandler,
    AuditHandler,
    DenyCommandHandler,
    ListRulesHandler,
)
from verabot.commands.base import Command, CommandRegistry
from verabot.commands.core import (
    HelpHandler,
    InfoHandler,
    PingHandler,
    StatsHandler,
    UptimeHandler,
    _format_duration,
)
from verabot.exceptions import ErrorKind
from verabot.models import AuditEntry, CommandRule


def _cmd(name, **metadata):
    return Command(name=name, user_id="admin-1", metadata=metadata)


def _registry():
    registry = CommandRegistry()
    registry.register("ping", PingHandler())
    registry.register("help", HelpHandler(registry))
    registry.register("uptime", UptimeHandler())
    return registry


# -------------------------------------------------------------------
# Core
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ping():
    result = await PingHandler().handle(_cmd("ping"))
    assert result.message == "pong"


@pytest.mark.asyncio
async def test_info_reports_status_provider():
    async def status():
        return {"version": "1.0.0", "database": True, "generator": "dare-generator",
                "jobs": {"waiting": 1, "active": 0}}

    result = await InfoHandler(status).handle(_cmd("info"))
    assert result.success is True
    assert result.data["database"] is True
    assert "  database: ok" in result.message
    assert "  version: 1.0.0" in result.message
    assert "  jobs: waiting 1, active 0" in result.message


@pytest.mark.asyncio
async def test_info_provider_failure_is_a_failed_result():
    status = AsyncMock(side_effect=RuntimeError("db gone"))
    result = await InfoHandler(status).handle(_cmd("info"))
    assert result.success is False
    assert result.error.kind == ErrorKind.INTERNAL


@pytest.mark.asyncio
async def test_help_lists_registered_commands():
    registry = _registry()
    result = await registry.resolve("help").handle(_cmd("help"))
    assert result.success is True
    assert [c["name"] for c in result.data["commands"]] == ["help", "ping", "uptime"]
    assert "/ping" in result.message


@pytest.mark.asyncio
async def test_help_for_one_command():
    registry = _registry()
    result = await registry.resolve("help").handle(_cmd("help", command="/ping"))
    assert result.data["command"] == "ping"
    assert result.data["usage"] == "/ping"


@pytest.mark.asyncio
async def test_help_unknown_command():
    registry = _registry()
    result = await registry.resolve("help").handle(_cmd("help", command="nope"))
    assert result.error.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_help_paginates():
    registry = CommandRegistry()
    for i in range(25):
        registry.register(f"cmd{i:02d}", PingHandler())
    result = await HelpHandler(registry).handle(_cmd("help", page=3))
    assert result.data["page"] == 3
    assert result.data["total_pages"] == 3
    assert len(result.data["commands"]) == 5


@pytest.mark.asyncio
async def test_uptime_uses_clock():
    clock = MagicMock(side_effect=[100.0, 3825.0])
    result = await UptimeHandler(clock=clock).handle(_cmd("uptime"))
    assert result.data["uptime_seconds"] == 3725.0
    assert result.message == "Uptime: 1h 2m 5s"


def test_format_duration():
    assert _format_duration(5) == "5s"
    assert _format_duration(90061) == "1d 1h 1m 1s"


@pytest.mark.asyncio
async def test_stats_reports_psutil_values():
    Mem = namedtuple("Mem", "percent available")
    proc = MagicMock()
    proc.memory_info.return_value.rss = 50 * 1024 * 1024

    with patch("verabot.commands.core.psutil") as mock_psutil:
        mock_psutil.virtual_memory.return_value = Mem(42.0, 2048 * 1024 * 1024)
        mock_psutil.Process.return_value = proc
        mock_psutil.getloadavg.return_value = (0.5, 0.25, 0.125)
        mock_psutil.cpu_count.return_value = 4
        result = await StatsHandler(started_at=0.0, clock=lambda: 60.0).handle(_cmd("stats"))

    assert result.success is True
    assert result.data["memory_percent"] == 42.0
    assert result.data["load_average"] == [0.5, 0.25, 0.12]
    assert result.data["process_memory_mb"] == 50.0
    assert result.data["uptime_seconds"] == 60.0


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------

@pytest.fixture
def permissions():
    repo = AsyncMock()
    repo.get_rule.return_value = None
    repo.list_rules.return_value = []
    repo.get_users.return_value = []
    repo.get_channels.return_value = []
    repo.get_roles.return_value = []
    return repo


@pytest.mark.asyncio
async def test_allow_and_deny(permissions):
    registry = _registry()
    result = await AllowCommandHandler(permissions, registry).handle(
        _cmd("admin.allow", command="ping")
    )
    assert result.message == "Command 'ping' is now allowed."
    permissions.set_rule.assert_awaited_with("ping", True, "admin-1")

    result = await DenyCommandHandler(permissions, registry).handle(
        _cmd("admin.deny", command="/ping")
    )
    assert result.message == "Command 'ping' is now denied."
    permissions.set_rule.assert_awaited_with("ping", False, "admin-1")


@pytest.mark.asyncio
async def test_allow_unknown_command(permissions):
    result = await AllowCommandHandler(permissions, _registry()).handle(
        _cmd("admin.allow", command="nope")
    )
    assert result.error.kind == ErrorKind.NOT_FOUND
    permissions.set_rule.assert_not_called()


@pytest.mark.asyncio
async def test_allow_requires_command(permissions):
    result = await AllowCommandHandler(permissions, _registry()).handle(_cmd("admin.allow"))
    assert result.error.message == "Command is required"


@pytest.mark.asyncio
async def test_allow_user(permissions):
    result = await AllowUserHandler(permissions, _registry()).handle(
        _cmd("admin.allow_user", command="ping", user="bob")
    )
    assert result.message == "User bob allowed for 'ping'."
    permissions.set_rule.assert_awaited_once_with("ping", True, "admin-1")
    permissions.add_user.assert_awaited_once_with("ping", "bob")


@pytest.mark.asyncio
async def test_list_rules(permissions):
    permissions.list_rules.return_value = [
        CommandRule(command="ping", allowed=True),
        CommandRule(command="uptime", allowed=False),
    ]
    permissions.get_users.side_effect = lambda name: ["bob"] if name == "ping" else []

    result = await ListRulesHandler(permissions, _registry()).handle(_cmd("admin.allowed"))

    assert "/ping: allowed (users: bob)" in result.message
    assert "/uptime: denied" in result.message
    assert len(result.data["rules"]) == 2


@pytest.mark.asyncio
async def test_list_rules_empty(permissions):
    result = await ListRulesHandler(permissions, _registry()).handle(_cmd("admin.allowed"))
    assert result.success is True
    assert result.data["rules"] == []


@pytest.mark.asyncio
async def test_audit_caps_limit():
    audit = AsyncMock()
    audit.latest.return_value = [
        AuditEntry(id=1, source="console", command="ping", user_id="123456789",
                   timestamp=datetime(2024, 1, 1, 12, 0, 0), success=True),
    ]
    result = await AuditHandler(audit).handle(_cmd("admin.audit", limit=500))
    audit.latest.assert_awaited_once_with(100)
    assert "/ping by ...6789 [ok]" in result.message


@pytest.mark.asyncio
async def test_allow_channel(permissions):
    result = await AllowChannelHandler(permissions, _registry()).handle(
        _cmd("admin.allow_channel", command="ping", channel=42)
    )
    assert result.message == "Channel 42 allowed for 'ping'."
    permissions.add_channel.assert_awaited_once_with("ping", "42")


@pytest.mark.asyncio
async def test_allow_role_keeps_existing_allow_rule(permissions):
    permissions.get_rule.return_value = CommandRule(command="ping", allowed=True)
    result = await AllowRoleHandler(permissions, _registry()).handle(
        _cmd("admin.allow_role", command="ping", role="mods")
    )
    assert result.data["role"] == "mods"
    permissions.set_rule.assert_not_called()
    permissions.add_role.assert_awaited_once_with("ping", "mods")


@pytest.mark.asyncio
async def test_allow_role_requires_role(permissions):
    result = await AllowRoleHandler(permissions, _registry()).handle(
        _cmd("admin.allow_role", command="ping")
    )
    assert result.error.message == "Role is required"
    permissions.add_role.assert_not_called()


@pytest.mark.asyncio
async def test_list_rules_shows_every_restriction(permissions):
    permissions.list_rules.return_value = [CommandRule(command="ping", allowed=True)]
    permissions.get_users.return_value = ["bob"]
    permissions.get_channels.return_value = ["c1"]
    permissions.get_roles.return_value = ["mods"]

    result = await ListRulesHandler(permissions, _registry()).handle(_cmd("admin.allowed"))

    assert "/ping: allowed (users: bob; channels: c1; roles: mods)" in result.message
