"""Tests for quote command handlers."""

from unittest.mock import AsyncMock

import pytest

from verabot.commands.base import Command
from verabot.commands.quotes import (
    QuoteAddHandler,
    QuoteGetHandler,
    QuoteListHandler,
    QuoteRandomHandler,
    QuoteSearchHandler,
)
from verabot.exceptions import ErrorKind, ValidationError
from verabot.models import Quote


def _quote(quote_id=1, text="Stay hungry", author="Jobs"):
    return Quote(id=quote_id, text=text, author=author)


def _cmd(name, **metadata):
    return Command(name=name, user_id="user-42", metadata=metadata)


@pytest.fixture
def service():
    return AsyncMock()


@pytest.mark.asyncio
async def test_random_with_empty_store(service):
    service.random_quote.return_value = None
    result = await QuoteRandomHandler(service).handle(_cmd("quote.random"))
    assert result.success is False
    assert result.error.message == "No quotes available"


@pytest.mark.asyncio
async def test_random_returns_formatted_quote(service):
    service.random_quote.return_value = _quote()
    result = await QuoteRandomHandler(service).handle(_cmd("quote.random"))
    assert result.message == "> Stay hungry\n- Jobs"
    assert result.data["quote"]["author"] == "Jobs"


@pytest.mark.asyncio
async def test_add(service):
    service.add_quote.return_value = _quote(5)
    result = await QuoteAddHandler(service).handle(
        _cmd("quote.add", text="Stay hungry", author="Jobs")
    )
    assert result.message == "Quote #5 added successfully!"
    service.add_quote.assert_awaited_once_with("Stay hungry", "Jobs", "user-42")


@pytest.mark.asyncio
async def test_add_requires_text(service):
    result = await QuoteAddHandler(service).handle(_cmd("quote.add", text="  "))
    assert result.error.message == "Quote text is required"
    service.add_quote.assert_not_called()


@pytest.mark.asyncio
async def test_add_too_long_is_validation_failure(service):
    service.add_quote.side_effect = ValidationError("Quote is too long")
    result = await QuoteAddHandler(service).handle(_cmd("quote.add", text="x"))
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_get_missing_quote(service):
    service.get_quote.return_value = None
    result = await QuoteGetHandler(service).handle(_cmd("quote.get", id=3))
    assert result.error.message == "Quote #3 not found"


@pytest.mark.asyncio
async def test_list(service):
    service.list_quotes.return_value = [_quote(1), _quote(2)]
    result = await QuoteListHandler(service).handle(_cmd("quote.list"))
    assert result.message == "Found 2 quotes"
    assert len(result.data["quotes"]) == 2


@pytest.mark.asyncio
async def test_list_single_quote_wording(service):
    service.list_quotes.return_value = [_quote(1)]
    result = await QuoteListHandler(service).handle(_cmd("quote.list"))
    assert result.message == "Found 1 quote"


@pytest.mark.asyncio
async def test_list_empty_is_failure(service):
    service.list_quotes.return_value = []
    result = await QuoteListHandler(service).handle(_cmd("quote.list"))
    assert result.error.message == "No quotes available"


@pytest.mark.asyncio
async def test_search(service):
    service.search_quotes.return_value = [_quote(1)]
    result = await QuoteSearchHandler(service).handle(_cmd("quote.search", query="hungry"))
    assert result.message == 'Found 1 quote matching "hungry"'


@pytest.mark.asyncio
async def test_search_no_matches(service):
    service.search_quotes.return_value = []
    result = await QuoteSearchHandler(service).handle(_cmd("quote.search", query="zzz"))
    assert result.success is False
    assert result.error.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_search_requires_query(service):
    result = await QuoteSearchHandler(service).handle(_cmd("quote.search"))
    assert result.error.message == "Search query is required"


@pytest.mark.asyncio
async def test_add_accepts_numeric_author(service):
    service.add_quote.return_value = _quote(text="War is peace", author="1984")
    result = await QuoteAddHandler(service).handle(
        _cmd("quote.add", text="War is peace", author=1984)
    )
    assert result.success is True
    service.add_quote.assert_awaited_once_with("War is peace", "1984", "user-42")


@pytest.mark.asyncio
async def test_add_accepts_numeric_text(service):
    service.add_quote.return_value = _quote(text="42", author="Adams")
    await QuoteAddHandler(service).handle(_cmd("quote.add", text=42, author="Adams"))
    service.add_quote.assert_awaited_once_with("42", "Adams", "user-42")


@pytest.mark.asyncio
async def test_search_accepts_numeric_query(service):
    service.search_quotes.return_value = [_quote(text="Room 101")]
    result = await QuoteSearchHandler(service).handle(_cmd("quote.search", query=101))
    assert result.message == 'Found 1 quote matching "101"'
    service.search_quotes.assert_awaited_once_with("101")
