"""Tests for SQLite storage and the dare/quote services on top of it."""

from unittest.mock import AsyncMock

import pytest

from verabot.commands.base import Command, CommandResult
from verabot.dare_service import DareService
from verabot.database import (
    AuditRepository,
    Database,
    DareRepository,
    PermissionRepository,
    QuoteRepository,
)
from verabot.exceptions import (
    ContentUnavailableError,
    DatabaseError,
    GeneratorError,
    NotFoundError,
    ValidationError,
)
from verabot.generator import DareGenerator
from verabot.quote_service import QuoteService


async def _open(tmp_path):
    db = Database(tmp_path / "verabot.db")
    await db.initialize()
    return db


def _failing_generator():
    gen = AsyncMock()
    gen.generate.side_effect = GeneratorError("upstream down")
    return gen


# -------------------------------------------------------------------
# Database
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_uninitialized_database_raises(tmp_path):
    db = Database(tmp_path / "x.db")
    with pytest.raises(DatabaseError):
        await DareRepository(db).count()


@pytest.mark.asyncio
async def test_sqlite_errors_are_wrapped(tmp_path):
    db = await _open(tmp_path)
    try:
        with pytest.raises(DatabaseError) as exc_info:
            await db.run(lambda conn: conn.execute("SELECT * FROM missing_table"),
                         table="missing_table")
        assert exc_info.value.table == "missing_table"
    finally:
        await db.close()


# -------------------------------------------------------------------
# DareRepository / DareService
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dare_crud(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db))
        dare = await service.add_dare("Do ten push-ups", "u1", theme="physical")
        assert dare.id == 1
        assert dare.source == "user"

        fetched = await service.get_dare("1")
        assert fetched.content == "Do ten push-ups"
        assert fetched.theme == "physical"

        updated = await service.update_dare(1, {"status": "archived"})
        assert updated.status == "archived"
        assert updated.updated_at is not None

        await service.delete_dare(1)
        assert await service.get_dare(1) is None
        with pytest.raises(NotFoundError):
            await service.delete_dare(1)
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_dare_validation(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db))
        with pytest.raises(ValidationError):
            await service.get_dare("abc")
        with pytest.raises(ValidationError):
            await service.get_dare(0)
        with pytest.raises(ValidationError):
            await service.add_dare("   ", "u1")
        with pytest.raises(ValidationError):
            await service.add_dare("x" * 2001, "u1")
        await service.add_dare("ok", "u1")
        with pytest.raises(ValidationError, match="No update fields"):
            await service.update_dare(1, {})
        with pytest.raises(ValidationError, match="Invalid status"):
            await service.update_dare(1, {"status": "bogus"})
        with pytest.raises(NotFoundError):
            await service.update_dare(99, {"status": "archived"})
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_list_pagination_and_filters(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db))
        for i in range(5):
            await service.add_dare(f"dare {i}", "u1", theme="funny" if i % 2 else "general")

        page = await service.list_dares(page=2, per_page=2)
        assert [d.content for d in page.dares] == ["dare 2", "dare 3"]
        assert page.pagination.total == 5
        assert page.pagination.total_pages == 3

        funny = await service.list_dares(theme="funny")
        assert [d.content for d in funny.dares] == ["dare 1", "dare 3"]

        with pytest.raises(ValidationError):
            await service.list_dares(status="bogus")
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_assign_and_complete(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db))
        await service.add_dare("Tell a joke", "u1")
        assigned = await service.assign_dare(1, "u2")
        assert assigned.assigned_to == "u2"

        with pytest.raises(ValidationError, match="assigned to you"):
            await service.complete_dare(1, "u3")

        done = await service.complete_dare(1, "u2", "it was funny")
        assert done.status == "completed"
        assert done.completion_notes == "it was funny"
        assert done.completed_at is not None

        with pytest.raises(ValidationError, match="already completed"):
            await service.complete_dare(1, "u2")
        assert await service.count(status="completed") == 1
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_generate_stores_external_dare(tmp_path):
    db = await _open(tmp_path)
    try:
        gen = AsyncMock()
        gen.generate.return_value = "Hop on one foot"
        service = DareService(DareRepository(db), gen)

        acquisition = await service.generate_dare("physical", "u1")

        assert acquisition.source == "external"
        stored = await service.get_dare(acquisition.dare.id)
        assert stored.content == "Hop on one foot"
        assert stored.source == "external"
        assert stored.theme == "physical"
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_cached_generator_text_is_stored_once(tmp_path):
    db = await _open(tmp_path)
    try:
        gen = DareGenerator(cache_enabled=True)
        gen._fetch = AsyncMock(return_value="Sing loudly")
        service = DareService(DareRepository(db), gen)

        first = await service.generate_dare("funny", "u1")
        second = await service.generate_dare("funny", "u2")

        assert gen._fetch.await_count == 1
        assert first.source == second.source == "external"
        assert second.dare.id == first.dare.id
        assert await service.count() == 1
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_repeated_text_in_another_theme_gets_its_own_row(tmp_path):
    db = await _open(tmp_path)
    try:
        gen = AsyncMock()
        gen.generate.return_value = "Tell a joke"
        service = DareService(DareRepository(db), gen)

        funny = await service.generate_dare("funny", "u1")
        social = await service.generate_dare("social", "u1")

        assert funny.dare.id != social.dare.id
        assert await service.count() == 2
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_fallback_prefers_oldest_dare_for_theme(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db), _failing_generator())
        await service.add_dare("general one", "u1")
        await service.add_dare("funny one", "u1", theme="funny")
        await service.add_dare("funny two", "u1", theme="funny")

        acquisition = await service.generate_dare("funny", "u1")
        assert acquisition.fallback is True
        assert acquisition.source == "database_fallback"
        assert acquisition.dare.content == "funny one"

        # No dare for this theme: any theme will do
        acquisition = await service.generate_dare("mental", "u1")
        assert acquisition.dare.content == "general one"
        assert await service.count() == 3
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_fallback_with_empty_store(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db), _failing_generator())
        with pytest.raises(ContentUnavailableError):
            await service.generate_dare("funny", "u1")
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_service_without_generator_uses_store(tmp_path):
    db = await _open(tmp_path)
    try:
        service = DareService(DareRepository(db))
        await service.add_dare("stored", "u1")
        acquisition = await service.generate_dare(None, "u1")
        assert acquisition.fallback is True
    finally:
        await db.close()


# -------------------------------------------------------------------
# QuoteRepository / QuoteService
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_quotes(tmp_path):
    db = await _open(tmp_path)
    try:
        service = QuoteService(QuoteRepository(db))
        assert await service.random_quote() is None

        q = await service.add_quote("Less is more", None, "u1")
        assert q.author == "Anonymous"
        await service.add_quote("Stay hungry, stay foolish", "Steve Jobs", "u1")

        assert (await service.get_quote(1)).text == "Less is more"
        assert await service.get_quote(99) is None
        assert len(await service.list_quotes()) == 2
        assert [x.id for x in await service.search_quotes("HUNGRY")] == [2]
        assert [x.id for x in await service.search_quotes("jobs")] == [2]
        assert (await service.random_quote()) is not None
        assert await service.count() == 2

        with pytest.raises(ValidationError):
            await service.add_quote("", "x", "u1")
        with pytest.raises(ValidationError):
            await service.search_quotes("  ")
        with pytest.raises(ValidationError):
            await service.get_quote("nope")
    finally:
        await db.close()


# -------------------------------------------------------------------
# PermissionRepository / AuditRepository
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_permission_rules(tmp_path):
    db = await _open(tmp_path)
    try:
        repo = PermissionRepository(db)
        assert await repo.get_rule("ping") is None

        await repo.set_rule("ping", True, "admin")
        await repo.add_user("ping", "bob")
        await repo.add_user("ping", "bob")
        rule = await repo.get_rule("ping")
        assert rule.allowed is True
        assert await repo.get_users("ping") == ["bob"]

        await repo.set_rule("ping", False, "admin")
        assert (await repo.get_rule("ping")).allowed is False
        assert await repo.get_users("ping") == []
        assert [r.command for r in await repo.list_rules()] == ["ping"]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_channel_and_role_restrictions(tmp_path):
    db = await _open(tmp_path)
    try:
        repo = PermissionRepository(db)
        await repo.set_rule("dare.give", True, "admin")
        await repo.add_channel("dare.give", "c2")
        await repo.add_channel("dare.give", "c1")
        await repo.add_role("dare.give", "mods")
        assert await repo.get_channels("dare.give") == ["c1", "c2"]
        assert await repo.get_roles("dare.give") == ["mods"]
        assert await repo.get_channels("ping") == []

        await repo.set_rule("dare.give", False, "admin")
        assert await repo.get_channels("dare.give") == []
        assert await repo.get_roles("dare.give") == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_audit_log(tmp_path):
    db = await _open(tmp_path)
    try:
        audit = AuditRepository(db)
        cmd = Command(name="dare.get", user_id="u1", metadata={"id": 1}, channel_id="c1")
        await audit.record(cmd, CommandResult.ok({"message": "ok"}))
        await audit.record(cmd, CommandResult.fail(NotFoundError("Dare", 1)))

        entries = await audit.latest(10)
        assert [e.success for e in entries] == [False, True]
        assert entries[0].error_kind == "not_found"
        assert entries[1].channel_id == "c1"
        assert entries[1].metadata == '{"id": 1}'
    finally:
        await db.close()
