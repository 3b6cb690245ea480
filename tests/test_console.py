"""Tests for the console adapter."""

import pytest

from verabot.commands.base import CommandResult
from verabot.console import parse_line, render_result
from verabot.exceptions import RateLimitedError


def test_parse_key_value_metadata():
    cmd = parse_line("/dare.get id=1", "u1")
    assert cmd.name == "dare.get"
    assert cmd.user_id == "u1"
    assert cmd.source == "console"
    assert cmd.get("id") == 1


def test_parse_quoted_values():
    cmd = parse_line('/quote.add text="Be yourself" author=Wilde', "u1")
    assert cmd.get("text") == "Be yourself"
    assert cmd.get("author") == "Wilde"


def test_parse_booleans_and_positional_field():
    cmd = parse_line("/dare.give friend random=true", "u1")
    assert cmd.get("user") == "friend"
    assert cmd.get("random") is True
    assert cmd.args == ("friend",)


def test_parse_search_joins_words():
    cmd = parse_line("/quote.search stay hungry", "u1")
    assert cmd.get("query") == "stay hungry"


def test_command_names_are_lowercased():
    assert parse_line("/PING", "u1").name == "ping"


def test_non_commands_are_ignored():
    assert parse_line("", "u1") is None
    assert parse_line("hello", "u1") is None
    assert parse_line("/", "u1") is None


def test_unbalanced_quotes_raise():
    with pytest.raises(ValueError):
        parse_line('/quote.add text="oops', "u1")


def test_render_success_and_fallback():
    assert render_result(CommandResult.ok({"message": "pong"})) == "pong"
    text = render_result(CommandResult.ok({"message": "Dare #1 created successfully!",
                                           "fallback": True}))
    assert text.startswith("Dare #1 created successfully!")
    assert "saved dares" in text


def test_render_failure():
    assert render_result(CommandResult.fail("No quotes available")) == "Error: No quotes available"
    text = render_result(CommandResult.fail(RateLimitedError(retry_after=30)))
    assert text == "Error: Rate limit exceeded. Try again in 30s"


def test_text_fields_stay_strings():
    cmd = parse_line('/quote.add text="War is peace" author=1984', "u1")
    assert cmd.get("author") == "1984"
    cmd = parse_line("/dare.update dare_id=1 content=100", "u1")
    assert cmd.get("dare_id") == 1
    assert cmd.get("content") == "100"


def test_roles_cannot_be_typed():
    cmd = parse_line("/dare.give user=bob roles=mods", "u1")
    assert "roles" not in cmd.metadata


def test_ops_positional_fields():
    assert parse_line("/ops.heavywork process 5000 items", "u1").get("task") == "process 5000 items"
    assert parse_line("/ops.deploy staging", "u1").get("target") == "staging"
    assert parse_line("/ops.jobstatus 3", "u1").get("id") == 3
