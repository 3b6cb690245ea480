"""Dare business logic.

Validates input, enforces status transitions and assignment rules, and
acquires generated dares through the fallback-aware ContentAcquirer.
Storage goes through DareRepository.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from .acquisition import Acquisition, ContentAcquirer
from .exceptions import GeneratorError, NotFoundError, ValidationError
from .generator import normalize_theme
from .models import DARE_STATUSES, SOURCE_EXTERNAL, SOURCE_USER, Dare, DarePage

logger = structlog.get_logger("verabot.bot")

MAX_DARE_CONTENT_LENGTH = 2000
MAX_PER_PAGE = 50


def _check_id(dare_id: Any) -> int:
    try:
        dare_id = int(dare_id)
    except (TypeError, ValueError):
        raise ValidationError("Invalid dare ID", module="dare_service") from None
    if dare_id < 1:
        raise ValidationError("Invalid dare ID", module="dare_service")
    return dare_id


class DareService:
    """Operations on dares.

    Args:
        repository: DareRepository for persistence.
        generator: External generator client; when None, generate_dare()
            relies on the local fallback alone.
    """

    def __init__(self, repository, generator=None):
        self.repository = repository
        self.acquirer = ContentAcquirer(generator or _NoGenerator(), self)

    # --- Acquisition store protocol ---

    async def save_generated(self, content: str, theme: str,
                             created_by: Optional[str]) -> Dare:
        """Persist generated text, reusing an identical active dare if one exists."""
        content = content[:MAX_DARE_CONTENT_LENGTH]
        theme = normalize_theme(theme)
        existing = await self.repository.find_by_content(content, theme=theme)
        if existing is not None:
            logger.debug("generated_dare_reused", dare_id=existing.id)
            return existing
        return await self.repository.add(
            content,
            theme=theme,
            source=SOURCE_EXTERNAL,
            created_by=created_by,
        )

    async def pick_fallback(self, theme: Optional[str]) -> Optional[Dare]:
        """Oldest active dare for ``theme``, else the oldest active dare of any theme."""
        if theme:
            dare = await self.repository.oldest(theme=normalize_theme(theme))
            if dare is not None:
                return dare
        return await self.repository.oldest()

    # --- Operations ---

    async def generate_dare(
        self,
        theme: Optional[str],
        created_by: Optional[str],
        generator_name: Optional[str] = None,
    ) -> Acquisition:
        """Generate a new dare, falling back to a stored one on failure."""
        return await self.acquirer.acquire(
            theme=normalize_theme(theme),
            generator_name=generator_name,
            created_by=created_by,
        )

    async def add_dare(self, content: str, created_by: Optional[str],
                       theme: str = "general") -> Dare:
        """Store a user-written dare."""
        if not content or not content.strip():
            raise ValidationError("Dare content cannot be empty")
        if len(content) > MAX_DARE_CONTENT_LENGTH:
            raise ValidationError(
                f"Dare content is too long (maximum {MAX_DARE_CONTENT_LENGTH} characters)"
            )
        return await self.repository.add(
            content.strip(), theme=normalize_theme(theme), source=SOURCE_USER,
            created_by=created_by,
        )

    async def get_dare(self, dare_id: Any) -> Optional[Dare]:
        return await self.repository.get(_check_id(dare_id))

    async def list_dares(
        self,
        page: int = 1,
        per_page: int = 20,
        status: Optional[str] = None,
        theme: Optional[str] = None,
    ) -> DarePage:
        try:
            page = max(1, int(page))
            per_page = min(MAX_PER_PAGE, max(1, int(per_page)))
        except (TypeError, ValueError):
            raise ValidationError("Page and per_page must be numbers") from None
        if status is not None and status not in DARE_STATUSES:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(DARE_STATUSES)}"
            )
        return await self.repository.list(
            page=page, per_page=per_page, status=status, theme=theme
        )

    async def random_dare(self, theme: Optional[str] = None,
                          status: str = "active") -> Optional[Dare]:
        return await self.repository.random(theme=theme, status=status)

    async def update_dare(self, dare_id: Any, updates: Dict[str, Any]) -> Dare:
        """Apply ``updates`` and return the updated dare.

        Raises:
            ValidationError: On a bad id, status or content.
            NotFoundError: If the dare does not exist.
        """
        dare_id = _check_id(dare_id)
        if not updates:
            raise ValidationError("No update fields provided")

        status = updates.get("status")
        if status is not None and status not in DARE_STATUSES:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(DARE_STATUSES)}"
            )
        content = updates.get("content")
        if content is not None:
            if not str(content).strip():
                raise ValidationError("Dare content cannot be empty")
            if len(content) > MAX_DARE_CONTENT_LENGTH:
                raise ValidationError(
                    f"Dare content is too long (maximum {MAX_DARE_CONTENT_LENGTH} characters)"
                )
        if "theme" in updates and updates["theme"] is not None:
            updates = {**updates, "theme": normalize_theme(updates["theme"])}

        if not await self.repository.update(dare_id, updates):
            raise NotFoundError("Dare", dare_id)
        logger.info("dare_updated", dare_id=dare_id, fields=sorted(updates))
        return await self.repository.get(dare_id)

    async def delete_dare(self, dare_id: Any) -> None:
        dare_id = _check_id(dare_id)
        if not await self.repository.delete(dare_id):
            raise NotFoundError("Dare", dare_id)
        logger.info("dare_deleted", dare_id=dare_id)

    async def assign_dare(self, dare_id: Any, user_id: str) -> Dare:
        if not user_id:
            raise ValidationError("User ID is required")
        dare_id = _check_id(dare_id)
        if not await self.repository.update(dare_id, {"assigned_to": str(user_id)}):
            raise NotFoundError("Dare", dare_id)
        return await self.repository.get(dare_id)

    async def complete_dare(self, dare_id: Any, user_id: str,
                            notes: Optional[str] = None) -> Dare:
        """Mark a dare completed.

        Only the assignee may complete an assigned dare; unassigned dares
        can be completed by anyone.
        """
        dare_id = _check_id(dare_id)
        dare = await self.repository.get(dare_id)
        if dare is None:
            raise NotFoundError("Dare", dare_id)
        if dare.assigned_to and dare.assigned_to != str(user_id):
            raise ValidationError("You can only complete dares assigned to you")
        if dare.status == "completed":
            raise ValidationError(f"Dare #{dare_id} is already completed")

        updates = {"status": "completed", "completed_at": datetime.now().isoformat()}
        if notes:
            updates["completion_notes"] = notes
        await self.repository.update(dare_id, updates)
        return await self.repository.get(dare_id)

    async def count(self, status: Optional[str] = None) -> int:
        return await self.repository.count(status=status)


class _NoGenerator:
    """Stand-in used when no external generator is configured."""

    async def generate(self, theme, generator_name=None) -> str:
        raise GeneratorError("No dare generator configured")
