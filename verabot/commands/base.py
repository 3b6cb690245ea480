"""Base types for the command dispatch pipeline.

Defines the values that flow through the pipeline and the registry
that maps command names to handlers. A caller builds a Command, the
Dispatcher runs it through the middleware chain, resolves a handler
here, and always hands back a CommandResult.

Key classes:
    Command: Immutable description of one requested unit of work.
    ResultError: Tagged error value carried by failed results.
    CommandResult: Uniform success/failure envelope.
    CommandHandler: ABC every per-command handler implements.
    CommandRegistry: Maps command names to handler instances.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import structlog

from ..exceptions import DuplicateCommandError, ErrorKind, VeraBotError

logger = structlog.get_logger("verabot.dispatch")


@dataclass(frozen=True)
class Command:
    """One invocation of a named command.

    Attributes:
        name: Handler name (e.g. "dare.get").
        user_id: Invoking user; required and non-empty.
        metadata: Handler-specific arguments and options. Stored as a
            read-only mapping; use with_metadata() to derive a new Command.
        source: Where the command came from (discord, api, cli, console).
        channel_id: Channel the command was issued in, if any.
        args: Positional words after the command name.
    """

    name: str
    user_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    source: str = "console"
    channel_id: Optional[str] = None
    args: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValueError("Command name is required")
        if not self.user_id or not str(self.user_id).strip():
            raise ValueError("Command user_id is required")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        object.__setattr__(self, "args", tuple(self.args))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a metadata value."""
        return self.metadata.get(key, default)

    def with_metadata(self, **updates: Any) -> "Command":
        """Return a new Command with metadata merged with ``updates``."""
        return replace(self, metadata={**self.metadata, **updates})

    def replace_metadata(self, metadata: Mapping[str, Any]) -> "Command":
        """Return a new Command carrying exactly ``metadata``."""
        return replace(self, metadata=metadata)


@dataclass(frozen=True)
class ResultError:
    """Error value carried by a failed CommandResult.

    Attributes:
        kind: Classification of the failure.
        message: Text safe to show the user.
        cause: Underlying exception, kept for diagnostics.
        retry_after: Seconds until a rate-limited request may succeed.
    """

    kind: ErrorKind
    message: str
    cause: Optional[BaseException] = field(default=None, compare=False)
    retry_after: Optional[float] = None

    def __str__(self) -> str:
        return self.message

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ResultError":
        """Build a ResultError from any exception.

        VeraBotError subclasses keep their kind and message; anything
        else is reported as an internal error.
        """
        if isinstance(exc, VeraBotError):
            return cls(
                kind=exc.kind,
                message=str(exc),
                cause=exc,
                retry_after=getattr(exc, "retry_after", None),
            )
        return cls(
            kind=ErrorKind.INTERNAL,
            message=str(exc) or type(exc).__name__,
            cause=exc,
        )


ErrorLike = Union[str, ResultError, BaseException]


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one dispatch. Build with ok() or fail(), never directly.

    Exactly one of ``data`` (on success) and ``error`` (on failure) is set.
    """

    success: bool
    data: Optional[Mapping[str, Any]] = None
    error: Optional[ResultError] = None

    def __post_init__(self):
        if self.success and self.data is None:
            raise ValueError("Successful result requires data")
        if not self.success and self.error is None:
            raise ValueError("Failed result requires an error")

    @classmethod
    def ok(cls, data: Mapping[str, Any]) -> "CommandResult":
        """Create a successful result. ``data`` should include ``message``."""
        return cls(success=True, data=MappingProxyType(dict(data)))

    @classmethod
    def fail(
        cls, error: ErrorLike, kind: ErrorKind = ErrorKind.VALIDATION
    ) -> "CommandResult":
        """Create a failed result.

        Args:
            error: A message string, a ResultError, or an exception.
            kind: Kind to use when ``error`` is a plain string.
        """
        if isinstance(error, ResultError):
            result_error = error
        elif isinstance(error, BaseException):
            result_error = ResultError.from_exception(error)
        else:
            result_error = ResultError(kind=kind, message=str(error))
        return cls(success=False, error=result_error)

    @property
    def message(self) -> str:
        """The text a caller should display for this result."""
        if self.success:
            return str(self.data.get("message", ""))
        return self.error.message

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form for logging and auditing."""
        if self.success:
            return {"success": True, "data": dict(self.data)}
        return {
            "success": False,
            "error": {
                "kind": self.error.kind.value,
                "message": self.error.message,
                "retry_after": self.error.retry_after,
            },
        }


class CommandHandler(ABC):
    """Executes the business logic for exactly one command name.

    Subclasses implement handle() and must convert their own domain
    exceptions into CommandResult.fail. Class attributes feed the
    registry and /help output.
    """

    category: str = "core"
    description: str = "No description provided."
    usage: str = ""
    examples: Tuple[str, ...] = ()

    @abstractmethod
    async def handle(self, command: Command) -> CommandResult:
        """Run the command and return its result."""
        ...


class ServiceHandler(CommandHandler):
    """Handler that talks to a domain service.

    Subclasses implement execute(); handle() converts any exception it
    raises into CommandResult.fail so service errors never escape.
    """

    async def handle(self, command: Command) -> CommandResult:
        try:
            return await self.execute(command)
        except VeraBotError as e:
            logger.info(
                "command_failed",
                command=command.name,
                error_kind=e.kind.value,
                error=str(e),
            )
            return CommandResult.fail(e)
        except Exception as e:
            logger.error(
                "command_service_error",
                command=command.name,
                handler=type(self).__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CommandResult.fail(e)

    @abstractmethod
    async def execute(self, command: Command) -> CommandResult:
        ...


def is_missing(value: Any) -> bool:
    """True for metadata values that count as not supplied."""
    return value is None or (isinstance(value, str) and not value.strip())


def as_text(value: Any) -> Optional[str]:
    """Narrow a metadata value to str. None stays None."""
    if value is None or isinstance(value, str):
        return value
    return str(value)


def to_payload(entity: Any) -> Dict[str, Any]:
    """Plain-dict form of a model (or mapping) for result data."""
    if hasattr(entity, "model_dump"):
        return entity.model_dump(mode="json")
    return dict(entity)


@dataclass(frozen=True)
class CommandEntry:
    """A registered handler plus its help metadata."""

    name: str
    handler: CommandHandler
    category: str
    description: str
    usage: str
    examples: Tuple[str, ...] = ()


class CommandRegistry:
    """Maps command names to handler instances.

    Populated once at startup. Duplicate names are a configuration
    error and raise immediately. Lookups never mutate state, so one
    registry serves any number of in-flight dispatches.
    """

    def __init__(self):
        self._entries: Dict[str, CommandEntry] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        *,
        category: Optional[str] = None,
        description: Optional[str] = None,
        usage: Optional[str] = None,
        examples: Tuple[str, ...] = (),
    ) -> None:
        """Register ``handler`` under ``name``.

        Raises:
            DuplicateCommandError: If ``name`` is already registered.
            ValueError: If ``name`` is empty or the handler has no handle().
        """
        if not name or not name.strip():
            raise ValueError("Command name is required")
        if not callable(getattr(handler, "handle", None)):
            raise ValueError(f"Handler for '{name}' has no handle() method")
        if name in self._entries:
            logger.error(
                "command_handler_conflict",
                command=name,
                handler=type(handler).__name__,
                existing=type(self._entries[name].handler).__name__,
            )
            raise DuplicateCommandError(name)

        category = category or getattr(handler, "category", "core")
        self._entries[name] = CommandEntry(
            name=name,
            handler=handler,
            category=category,
            description=description or getattr(
                handler, "description", "No description provided."
            ),
            usage=usage or getattr(handler, "usage", "") or f"/{name}",
            examples=tuple(examples or getattr(handler, "examples", ())),
        )
        logger.debug("command_registered", command=name, category=category)

    def resolve(self, name: str) -> Optional[CommandHandler]:
        """Return the handler registered under ``name``, or None."""
        entry = self._entries.get(name)
        return entry.handler if entry else None

    def has(self, name: str) -> bool:
        return name in self._entries

    def get_entry(self, name: str) -> Optional[CommandEntry]:
        return self._entries.get(name)

    def get_all(self) -> Dict[str, CommandHandler]:
        """Snapshot of name -> handler."""
        return {name: entry.handler for name, entry in self._entries.items()}

    def category_of(self, name: str) -> Optional[str]:
        entry = self._entries.get(name)
        return entry.category if entry else None

    def list_commands(self) -> List[CommandEntry]:
        """All entries sorted by name."""
        return [self._entries[name] for name in sorted(self._entries)]

    def list_by_category(self) -> Dict[str, List[CommandEntry]]:
        """Entries grouped by category, each group sorted by name."""
        groups: Dict[str, List[CommandEntry]] = {}
        for entry in self.list_commands():
            groups.setdefault(entry.category, []).append(entry)
        return groups

    @property
    def command_names(self) -> frozenset:
        """All registered command names."""
        return frozenset(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)
