"""Application wiring.

build_app() turns a Config into a ready-to-use App: an initialized
database, the domain services, the background job queue, a registry
with every command handler, and a dispatcher whose middleware chain is
Authorization -> RateLimit -> Sanitize.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from . import __version__
from .commands.admin import admin_handlers
from .commands.base import CommandRegistry
from .commands.core import core_handlers
from .commands.dares import dare_handlers
from .commands.dispatcher import Dispatcher
from .commands.middleware import (
    AuthorizationMiddleware,
    MiddlewareChain,
    RateLimitMiddleware,
    SanitizeMiddleware,
)
from .commands.operations import operations_handlers
from .commands.quotes import quote_handlers
from .config import Config
from .dare_service import DareService
from .database import (
    AuditRepository,
    Database,
    DareRepository,
    PermissionRepository,
    QuoteRepository,
)
from .generator import DareGenerator
from .jobs import LocalJobQueue
from .quote_service import QuoteService
from .rate_limit import RateLimitService
from .security import PermissionService

logger = structlog.get_logger("verabot.bot")


@dataclass
class App:
    """Everything a caller adapter needs to serve commands."""

    config: Config
    database: Database
    registry: CommandRegistry
    dispatcher: Dispatcher
    generator: Optional[DareGenerator]
    dare_service: DareService
    quote_service: QuoteService
    permissions: PermissionService
    rate_limits: RateLimitService
    audit: AuditRepository
    job_queue: LocalJobQueue

    async def close(self) -> None:
        """Stop queued jobs, then release the HTTP session and database."""
        await self.job_queue.close()
        if self.generator is not None:
            await self.generator.close()
        await self.database.close()
        logger.info("app_closed")


def build_generator(config: Config) -> DareGenerator:
    return DareGenerator(
        config.generator_api_url,
        config.generator_name,
        timeout=config.generator_timeout,
        max_retries=config.generator_max_retries,
        cache_enabled=config.generator_cache_enabled,
        cache_ttl=config.generator_cache_ttl,
    )


async def build_app(
    config: Config,
    *,
    database: Optional[Database] = None,
    generator: Optional[DareGenerator] = None,
    job_queue: Optional[LocalJobQueue] = None,
) -> App:
    """Create and wire an App.

    Args:
        config: Loaded configuration.
        database: Database to use; one is opened at config.database_path
            when omitted. It is initialized here either way.
        generator: Generator client; built from config when omitted.
        job_queue: Queue for operations commands; a LocalJobQueue with
            the default workers is built from config when omitted.
    """
    if database is None:
        database = Database(config.database_path)
    if not database.is_connected:
        await database.initialize()
    if generator is None:
        generator = build_generator(config)
    if job_queue is None:
        job_queue = LocalJobQueue(
            max_parallel=config.jobs_max_parallel,
            backoff_seconds=config.jobs_backoff_seconds,
        )

    dare_service = DareService(DareRepository(database), generator)
    quote_service = QuoteService(QuoteRepository(database))
    permission_repo = PermissionRepository(database)
    audit = AuditRepository(database)

    registry = CommandRegistry()
    permissions = PermissionService(
        permission_repo,
        admin_users=config.admin_users,
        mode=config.permission_mode,
        category_of=registry.category_of,
    )
    rate_limits = RateLimitService(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
        category_cooldowns=config.rate_limit_category_cooldowns,
        default_cooldown=config.rate_limit_default_cooldown,
        category_of=registry.category_of,
    )

    async def status() -> Dict[str, Any]:
        return {
            "version": __version__,
            "database": database.is_connected,
            "generator": generator.generator_name,
            "permission_mode": permissions.mode,
            "commands": len(registry),
            "jobs": job_queue.stats(),
        }

    handlers = {}
    handlers.update(core_handlers(registry, status, started_at=time.monotonic()))
    handlers.update(dare_handlers(dare_service))
    handlers.update(quote_handlers(quote_service))
    handlers.update(operations_handlers(job_queue))
    handlers.update(admin_handlers(permission_repo, registry, audit))
    for name, handler in handlers.items():
        registry.register(name, handler)

    chain = MiddlewareChain([
        AuthorizationMiddleware(permissions),
        RateLimitMiddleware(rate_limits),
        SanitizeMiddleware(),
    ])
    dispatcher = Dispatcher(registry, chain, audit=audit)

    logger.info(
        "app_built",
        commands=len(registry),
        permission_mode=permissions.mode,
        generator=generator.generator_name,
    )
    return App(
        config=config,
        database=database,
        registry=registry,
        dispatcher=dispatcher,
        generator=generator,
        dare_service=dare_service,
        quote_service=quote_service,
        permissions=permissions,
        rate_limits=rate_limits,
        audit=audit,
        job_queue=job_queue,
    )
