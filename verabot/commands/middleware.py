"""Middleware chain run before a command reaches its handler.

A middleware receives a Command and either returns a Command (the same
one, or a new one with enriched metadata) or raises a VeraBotError to
reject it. The chain runs middleware strictly in registration order;
the first rejection ends the dispatch.

Authorization must run before rate limiting so that users who are not
allowed to run a command never spend rate-limit budget on it.
MiddlewareChain enforces that ordering at construction time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from ..exceptions import ConfigurationError, PermissionDeniedError, RateLimitedError
from ..security import mask_user_id, sanitize_input
from .base import Command

logger = structlog.get_logger("verabot.security")


@dataclass(frozen=True)
class RateLimitDecision:
    """Answer from a rate-limit service.

    Attributes:
        allowed: Whether the command may proceed.
        retry_after: Seconds until it would be allowed, when known.
    """
    allowed: bool
    retry_after: Optional[float] = None


class Middleware(ABC):
    """A pre-processing step in the dispatch pipeline."""

    @abstractmethod
    async def process(self, command: Command) -> Command:
        """Return the command to pass on, or raise to reject it."""
        ...


class AuthorizationMiddleware(Middleware):
    """Rejects commands the permission service does not allow.

    Fails closed: if the permission service raises, the command is
    denied and the underlying error is attached as the cause.

    Args:
        permission_service: Object with an async
            ``check_permission(user_id, command_name, *, channel_id, roles) -> bool``.
            Roles come from the ``roles`` metadata the caller adapter sets.
    """

    def __init__(self, permission_service):
        self.permission_service = permission_service

    async def process(self, command: Command) -> Command:
        try:
            roles = command.get("roles") or ()
            if isinstance(roles, str):
                roles = (roles,)
            allowed = await self.permission_service.check_permission(
                command.user_id,
                command.name,
                channel_id=command.channel_id,
                roles=tuple(str(r) for r in roles),
            )
        except Exception as e:
            logger.error(
                "permission_check_error",
                command=command.name,
                user=mask_user_id(command.user_id),
                error=str(e),
            )
            raise PermissionDeniedError(
                f"Permission denied: permission check failed ({e})",
                command=command.name,
            ) from e

        if not allowed:
            logger.warning(
                "permission_denied",
                command=command.name,
                user=mask_user_id(command.user_id),
            )
            raise PermissionDeniedError(
                f"You do not have permission to use '{command.name}'",
                command=command.name,
            )
        return command


class RateLimitMiddleware(Middleware):
    """Rejects commands once the rate-limit service says stop.

    Args:
        rate_limit_service: Object with an async
            ``check_limit(user_id, command_name) -> RateLimitDecision``.
    """

    def __init__(self, rate_limit_service):
        self.rate_limit_service = rate_limit_service

    async def process(self, command: Command) -> Command:
        decision = await self.rate_limit_service.check_limit(
            command.user_id, command.name
        )
        if not decision.allowed:
            logger.warning(
                "rate_limited",
                command=command.name,
                user=mask_user_id(command.user_id),
                retry_after=decision.retry_after,
            )
            raise RateLimitedError(
                retry_after=decision.retry_after, command=command.name
            )
        return command


class SanitizeMiddleware(Middleware):
    """Strips control and bidi characters from string metadata values.

    Produces a new Command when anything changed; the incoming one is
    left untouched.
    """

    async def process(self, command: Command) -> Command:
        cleaned = {
            key: sanitize_input(value) if isinstance(value, str) else value
            for key, value in command.metadata.items()
        }
        if cleaned == dict(command.metadata):
            return command
        logger.debug("metadata_sanitized", command=command.name)
        return command.replace_metadata(cleaned)


class MiddlewareChain:
    """Ordered, immutable list of middleware.

    Raises:
        ConfigurationError: If a RateLimitMiddleware is placed before
            an AuthorizationMiddleware.
    """

    def __init__(self, middlewares: Sequence[Middleware] = ()):
        self._middlewares: List[Middleware] = list(middlewares)
        self._check_order()

    def _check_order(self) -> None:
        seen_rate_limit = False
        for mw in self._middlewares:
            if isinstance(mw, RateLimitMiddleware):
                seen_rate_limit = True
            elif isinstance(mw, AuthorizationMiddleware) and seen_rate_limit:
                raise ConfigurationError(
                    "AuthorizationMiddleware must run before RateLimitMiddleware",
                    setting_name="middleware",
                )

    @property
    def middlewares(self) -> tuple:
        return tuple(self._middlewares)

    async def run(self, command: Command) -> Command:
        """Pass ``command`` through every middleware in order.

        Any exception raised by a middleware propagates unchanged and
        no later middleware runs.
        """
        for mw in self._middlewares:
            command = await mw.process(command)
        return command

    def __len__(self) -> int:
        return len(self._middlewares)
