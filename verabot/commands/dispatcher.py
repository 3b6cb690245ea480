"""Dispatcher: the single exception-safe entry point of the pipeline.

dispatch() runs a Command through the middleware chain, resolves its
handler, runs it, and returns the handler's CommandResult. Every
failure on the way (middleware rejection, unknown command, handler
crash, bad return value) comes back as CommandResult.fail. Nothing
above the dispatcher ever sees a raised exception.
"""

from __future__ import annotations

import time
from typing import Optional

import structlog

from ..exceptions import ErrorKind, UnknownCommandError
from ..security import mask_user_id
from .base import Command, CommandRegistry, CommandResult, ResultError
from .middleware import MiddlewareChain

logger = structlog.get_logger("verabot.dispatch")


class Dispatcher:
    """Routes commands through middleware to their handler.

    Holds no per-request state; concurrent dispatches are independent.

    Args:
        registry: CommandRegistry to resolve handlers from.
        chain: Middleware chain run before every handler.
        audit: Optional object with async ``record(command, result)``,
            called after every dispatch. Audit failures are logged only.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        chain: Optional[MiddlewareChain] = None,
        *,
        audit=None,
    ):
        self.registry = registry
        self.chain = chain or MiddlewareChain()
        self.audit = audit

    async def dispatch(self, command: Command) -> CommandResult:
        """Run ``command`` and return its result. Never raises."""
        started = time.monotonic()
        log = logger.bind(
            command=command.name,
            source=command.source,
            user=mask_user_id(command.user_id),
        )
        log.info("command_dispatch")

        try:
            result = await self._dispatch(command, log)
        except Exception as e:
            # Only reachable if logging or the result factory itself fails
            log.exception("dispatch_internal_error", error=str(e))
            result = CommandResult.fail(e)

        await self._record_audit(command, result, log)
        log.info(
            "command_complete",
            success=result.success,
            error_kind=None if result.success else result.error.kind.value,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return result

    async def _dispatch(self, command: Command, log) -> CommandResult:
        try:
            command = await self.chain.run(command)
        except Exception as e:
            log.info("command_rejected", error=str(e), error_type=type(e).__name__)
            return CommandResult.fail(e)

        handler = self.registry.resolve(command.name)
        if handler is None:
            log.warning("command_unknown")
            return CommandResult.fail(UnknownCommandError(command.name))

        try:
            result = await handler.handle(command)
        except Exception as e:
            log.error(
                "command_handler_crashed",
                handler=type(handler).__name__,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return CommandResult.fail(e)

        if not isinstance(result, CommandResult):
            log.error(
                "command_handler_bad_result",
                handler=type(handler).__name__,
                result_type=type(result).__name__,
            )
            return CommandResult.fail(ResultError(
                kind=ErrorKind.INTERNAL,
                message=f"Handler for '{command.name}' returned no result",
            ))
        return result

    async def _record_audit(self, command: Command, result: CommandResult, log) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.record(command, result)
        except Exception as e:
            log.warning("audit_record_failed", error=str(e))
