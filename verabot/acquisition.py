"""Fallback-aware acquisition of generated content.

Commands that need fresh dare text ask the external generator first.
When the generator fails for any reason the user still gets a dare:
one is picked from local storage instead. Only when both sources come
up empty does acquisition fail.

Key classes:
    Acquisition: What was obtained and where it came from.
    ContentAcquirer: Applies the generator-then-local-store policy.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .exceptions import ContentUnavailableError, GeneratorError, VeraBotError
from .models import SOURCE_EXTERNAL, SOURCE_FALLBACK, Dare

logger = structlog.get_logger("verabot.generator")


@dataclass(frozen=True)
class Acquisition:
    """Result of acquiring one dare.

    Attributes:
        dare: The persisted dare handed to the user.
        source: "external" or "database_fallback".
        fallback: True when the local store stood in for the generator.
        upstream_error: The generator failure that triggered the fallback.
    """
    dare: Dare
    source: str
    fallback: bool = False
    upstream_error: Optional[BaseException] = None


class ContentAcquirer:
    """Generator first, local store second.

    Args:
        generator: Object with async ``generate(theme, generator_name) -> str``.
        store: Object with async ``save_generated(content, theme, created_by)
            -> Dare`` and ``pick_fallback(theme) -> Optional[Dare]``.
    """

    def __init__(self, generator, store):
        self.generator = generator
        self.store = store

    async def acquire(
        self,
        theme: str = "general",
        generator_name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Acquisition:
        """Obtain one dare for ``theme``.

        Raises:
            ContentUnavailableError: If the generator and the local store
                both failed to produce a dare.
        """
        try:
            content = await self.generator.generate(theme, generator_name)
            dare = await self.store.save_generated(content, theme, created_by)
            return Acquisition(dare=dare, source=SOURCE_EXTERNAL)
        except GeneratorError as e:
            upstream_error = e
        except VeraBotError as e:
            # Generated fine but could not be stored
            upstream_error = e
        except Exception as e:
            logger.error("generator_unexpected_error", error=str(e),
                         error_type=type(e).__name__)
            upstream_error = e

        logger.warning(
            "acquisition_falling_back",
            theme=theme,
            generator=generator_name,
            error=str(upstream_error),
        )

        try:
            dare = await self.store.pick_fallback(theme)
        except Exception as e:
            logger.error("acquisition_fallback_error", theme=theme, error=str(e))
            raise ContentUnavailableError(
                theme=theme, upstream=str(upstream_error)
            ) from e

        if dare is None:
            logger.error("acquisition_no_fallback", theme=theme)
            raise ContentUnavailableError(
                theme=theme, upstream=str(upstream_error)
            ) from upstream_error

        logger.info("acquisition_fallback_used", theme=theme, dare_id=dare.id)
        return Acquisition(
            dare=dare,
            source=SOURCE_FALLBACK,
            fallback=True,
            upstream_error=upstream_error,
        )
