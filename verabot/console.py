"""Console adapter: turns typed lines into Commands and renders results.

Line format::

    /dare.get id=1
    /quote.add text="Be yourself" author=Wilde
    /help dare.create

``key=value`` words become metadata (quotes follow shell rules); other
words are positional args. For a handful of commands a single bare
word is also mapped onto their main field, so ``/help dare.get`` works.
"""

import shlex
from typing import Optional

from .commands.base import Command, CommandResult

# Commands whose first positional word fills a metadata field
_POSITIONAL_FIELDS = {
    "help": "command",
    "dare.get": "id",
    "dare.delete": "dare_id",
    "dare.complete": "dare_id",
    "dare.create": "theme",
    "dare.give": "user",
    "quote.get": "id",
    "quote.search": "query",
    "admin.allow": "command",
    "admin.deny": "command",
    "ops.heavywork": "task",
    "ops.deploy": "target",
    "ops.jobstatus": "id",
}

# Positional words joined into one value
_JOINED_FIELDS = frozenset({"query", "task"})

# Set by the adapter, never by the person typing
_ADAPTER_KEYS = frozenset({"roles"})

# Free-text fields keep the typed string even when it looks like a number
_TEXT_FIELDS = frozenset({
    "text", "author", "content", "notes", "query", "theme", "status",
    "user", "command", "generator", "category", "channel", "role",
    "task", "target",
})


def _coerce(key: str, value: str):
    if key in _TEXT_FIELDS:
        return value
    if value.isdigit():
        return int(value)
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return value


def parse_line(line: str, user_id: str, *, source: str = "console",
               channel_id: Optional[str] = None) -> Optional[Command]:
    """Parse one console line into a Command.

    Returns None for blank lines and lines that are not commands.

    Raises:
        ValueError: On unbalanced quotes.
    """
    line = line.strip()
    if not line.startswith("/") or len(line) < 2:
        return None

    words = shlex.split(line[1:])
    if not words:
        return None
    name = words[0].lower()

    metadata = {}
    args = []
    for word in words[1:]:
        key, sep, value = word.partition("=")
        if sep and key:
            if key not in _ADAPTER_KEYS:
                metadata[key] = _coerce(key, value)
        else:
            args.append(word)

    field = _POSITIONAL_FIELDS.get(name)
    if field and args and field not in metadata:
        value = " ".join(args) if field in _JOINED_FIELDS else args[0]
        metadata[field] = _coerce(field, value)

    return Command(
        name=name,
        user_id=user_id,
        metadata=metadata,
        source=source,
        channel_id=channel_id,
        args=tuple(args),
    )


def render_result(result: CommandResult) -> str:
    """Text shown to the console user for ``result``."""
    if result.success:
        text = result.message or "Done."
        if result.data.get("fallback"):
            text += "\n(generator unavailable, picked from saved dares)"
        return text

    return f"Error: {result.error.message}"
