"""Quote business logic on top of QuoteRepository."""

from typing import Any, List, Optional

import structlog

from .exceptions import ValidationError
from .models import Quote

logger = structlog.get_logger("verabot.bot")

MAX_QUOTE_LENGTH = 1000
MAX_AUTHOR_LENGTH = 100


class QuoteService:
    """Operations on stored quotes."""

    def __init__(self, repository):
        self.repository = repository

    async def add_quote(self, text: str, author: Optional[str],
                        added_by: Optional[str]) -> Quote:
        text = (text or "").strip()
        author = (author or "").strip() or "Anonymous"
        if not text:
            raise ValidationError("Quote text cannot be empty")
        if len(text) > MAX_QUOTE_LENGTH:
            raise ValidationError(
                f"Quote is too long (maximum {MAX_QUOTE_LENGTH} characters)"
            )
        if len(author) > MAX_AUTHOR_LENGTH:
            raise ValidationError(
                f"Author name is too long (maximum {MAX_AUTHOR_LENGTH} characters)"
            )
        quote = await self.repository.add(text, author, added_by)
        logger.info("quote_added", quote_id=quote.id)
        return quote

    async def get_quote(self, quote_id: Any) -> Optional[Quote]:
        try:
            quote_id = int(quote_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid quote ID") from None
        if quote_id < 1:
            raise ValidationError("Invalid quote ID")
        return await self.repository.get(quote_id)

    async def random_quote(self) -> Optional[Quote]:
        return await self.repository.random()

    async def list_quotes(self) -> List[Quote]:
        return await self.repository.all()

    async def search_quotes(self, query: str) -> List[Quote]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query cannot be empty")
        return await self.repository.search(query)

    async def count(self) -> int:
        return await self.repository.count()
