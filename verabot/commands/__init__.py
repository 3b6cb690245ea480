"""Command dispatch pipeline for verabot.

Provides the Command/CommandResult value types, the CommandHandler ABC,
the CommandRegistry, the middleware chain and the Dispatcher. Handler
modules (core, dares, quotes, admin) are imported by bootstrap.
"""

from .base import (
    Command,
    CommandEntry,
    CommandHandler,
    CommandRegistry,
    CommandResult,
    ResultError,
    ServiceHandler,
)
from .dispatcher import Dispatcher
from .middleware import (
    AuthorizationMiddleware,
    Middleware,
    MiddlewareChain,
    RateLimitDecision,
    RateLimitMiddleware,
    SanitizeMiddleware,
)

__all__ = [
    "AuthorizationMiddleware",
    "Command",
    "CommandEntry",
    "CommandHandler",
    "CommandRegistry",
    "CommandResult",
    "Dispatcher",
    "Middleware",
    "MiddlewareChain",
    "RateLimitDecision",
    "RateLimitMiddleware",
    "ResultError",
    "SanitizeMiddleware",
    "ServiceHandler",
]
