"""Custom exception hierarchy for VeraBot.

Provides precise error classification across the dispatch pipeline,
domain services, storage, and the external dare generator. Every
exception carries an ``ErrorKind`` so the dispatcher can turn it into
a tagged ``ResultError`` without inspecting message strings.

The ErrorCategory enum drives retry decisions in the generator client;
ErrorKind drives how a failure is reported back to the caller.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (timeout, 5xx, locked db)
    PERMANENT = "permanent"          # Not worth retrying (bad input, denied)
    INFRASTRUCTURE = "infrastructure"  # Misconfiguration, missing files


class ErrorKind(str, Enum):
    """What went wrong, as reported to the caller in a ResultError."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    UPSTREAM = "upstream"
    UNKNOWN_COMMAND = "unknown_command"
    INTERNAL = "internal"


class VeraBotError(Exception):
    """Base exception for all VeraBot errors.

    Attributes:
        message: Human-readable error description, safe to show users.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "generator").
        context: Arbitrary key-value pairs for structured logging.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        return self.message or self.__class__.__name__

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Request-level errors (surfaced to the user as CommandResult.fail)
# ---------------------------------------------------------------------------

class ValidationError(VeraBotError):
    """A required field is missing or a value is out of range."""

    kind = ErrorKind.VALIDATION


class NotFoundError(VeraBotError):
    """A referenced entity does not exist.

    Attributes:
        entity: Entity label as shown to users (e.g. "Dare").
        entity_id: The id that was looked up.
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} #{entity_id} not found", module=module, **context
        )


class PermissionDeniedError(VeraBotError):
    """The user may not run this command.

    Raised by the authorization middleware, including the fail-closed
    path where the permission service itself errored.
    """

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(
        self,
        message: str = "Permission denied",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(message, module=module or "security", **context)


class RateLimitedError(VeraBotError):
    """The user exceeded a rate limit or command cooldown.

    Attributes:
        retry_after: Seconds until the request would be accepted, if known.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: Optional[float] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.retry_after = retry_after
        if retry_after is not None and message == "Rate limit exceeded":
            message = f"Rate limit exceeded. Try again in {retry_after:.0f}s"
        super().__init__(
            message,
            category=ErrorCategory.TRANSIENT,
            module=module or "rate_limit",
            **context,
        )


class UnknownCommandError(VeraBotError):
    """No handler is registered under the requested name."""

    kind = ErrorKind.UNKNOWN_COMMAND

    def __init__(self, name: str, **context: Any) -> None:
        self.name = name
        super().__init__(f"unknown command: {name}", module="dispatch", **context)


# ---------------------------------------------------------------------------
# Upstream / infrastructure errors
# ---------------------------------------------------------------------------

class GeneratorError(VeraBotError):
    """The external dare generator failed (timeout, non-2xx, bad payload).

    Attributes:
        status: HTTP status code, when the failure was a non-2xx response.
    """

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        super().__init__(
            message, category=category, module=module or "generator", **context
        )


class ContentUnavailableError(VeraBotError):
    """Neither the generator nor the local fallback store produced content."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str = "No dare content is available right now. Please try again later.",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message,
            category=ErrorCategory.TRANSIENT,
            module=module or "acquisition",
            **context,
        )


class DatabaseError(VeraBotError):
    """Error during database operations.

    Attributes:
        operation: The DB operation that failed (e.g. "insert", "query").
        table: The table involved (if known).
    """

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str = "",
        *,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.operation = operation
        self.table = table
        super().__init__(
            message, category=category, module=module or "database", **context
        )


class JobQueueError(VeraBotError):
    """A job could not be handed off to the background queue."""

    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str = "", *, module: Optional[str] = None,
                 **context: Any) -> None:
        super().__init__(message, module=module or "jobs", **context)


# ---------------------------------------------------------------------------
# Startup-time errors
# ---------------------------------------------------------------------------

class ConfigurationError(VeraBotError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )


class DuplicateCommandError(ConfigurationError):
    """Two handlers were registered under the same command name."""

    def __init__(self, name: str, **context: Any) -> None:
        self.name = name
        super().__init__(
            f"Command '{name}' is already registered", module="registry", **context
        )
