"""Quote command handlers.

Handles: quote.add, quote.get, quote.random, quote.list, quote.search.
"""

from __future__ import annotations

from ..exceptions import ErrorKind
from .base import Command, CommandResult, ServiceHandler, as_text, is_missing, to_payload


class _QuoteHandler(ServiceHandler):
    category = "quotes"

    def __init__(self, quote_service):
        self.quote_service = quote_service


class QuoteAddHandler(_QuoteHandler):
    description = "Add a quote"
    usage = "/quote.add text=<text> [author=<name>]"

    async def execute(self, command: Command) -> CommandResult:
        text = as_text(command.get("text"))
        if is_missing(text):
            return CommandResult.fail("Quote text is required")

        quote = await self.quote_service.add_quote(
            text, as_text(command.get("author")), command.user_id
        )
        return CommandResult.ok({
            "message": f"Quote #{quote.id} added successfully!",
            "quote": to_payload(quote),
        })


class QuoteGetHandler(_QuoteHandler):
    description = "Show a quote by ID"
    usage = "/quote.get id=<id>"

    async def execute(self, command: Command) -> CommandResult:
        quote_id = command.get("id")
        if is_missing(quote_id):
            return CommandResult.fail("Quote ID is required")

        quote = await self.quote_service.get_quote(quote_id)
        if not quote:
            return CommandResult.fail(f"Quote #{quote_id} not found", kind=ErrorKind.NOT_FOUND)
        return CommandResult.ok({
            "message": quote.formatted(),
            "quote": to_payload(quote),
        })


class QuoteRandomHandler(_QuoteHandler):
    description = "Show a random quote"
    usage = "/quote.random"

    async def execute(self, command: Command) -> CommandResult:
        quote = await self.quote_service.random_quote()
        if not quote:
            return CommandResult.fail("No quotes available", kind=ErrorKind.NOT_FOUND)
        return CommandResult.ok({
            "message": quote.formatted(),
            "quote": to_payload(quote),
        })


class QuoteListHandler(_QuoteHandler):
    description = "List all quotes"
    usage = "/quote.list"

    async def execute(self, command: Command) -> CommandResult:
        quotes = await self.quote_service.list_quotes()
        if not quotes:
            return CommandResult.fail("No quotes available", kind=ErrorKind.NOT_FOUND)
        plural = "" if len(quotes) == 1 else "s"
        return CommandResult.ok({
            "message": f"Found {len(quotes)} quote{plural}",
            "quotes": [to_payload(q) for q in quotes],
        })


class QuoteSearchHandler(_QuoteHandler):
    """Case-insensitive substring search over quote text and author."""

    description = "Search quotes"
    usage = "/quote.search query=<text>"

    async def execute(self, command: Command) -> CommandResult:
        query = as_text(command.get("query"))
        if is_missing(query):
            return CommandResult.fail("Search query is required")

        quotes = await self.quote_service.search_quotes(query)
        if not quotes:
            return CommandResult.fail(
                f'No quotes found matching "{query}"', kind=ErrorKind.NOT_FOUND
            )
        plural = "" if len(quotes) == 1 else "s"
        return CommandResult.ok({
            "message": f'Found {len(quotes)} quote{plural} matching "{query}"',
            "quotes": [to_payload(q) for q in quotes],
            "query": query,
        })


def quote_handlers(quote_service) -> dict:
    """Return {command_name: handler} for every quote command."""
    return {
        "quote.add": QuoteAddHandler(quote_service),
        "quote.get": QuoteGetHandler(quote_service),
        "quote.random": QuoteRandomHandler(quote_service),
        "quote.list": QuoteListHandler(quote_service),
        "quote.search": QuoteSearchHandler(quote_service),
    }
