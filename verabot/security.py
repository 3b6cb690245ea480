"""Security module for VeraBot.

Provides the permission service consulted by the authorization
middleware, input sanitization for user-supplied metadata, and user id
masking for log privacy.
"""

import unicodedata
from typing import Callable, Iterable, Optional

import structlog

logger = structlog.get_logger("verabot.security")

PERMISSION_MODES = ("open", "allowlist")
ADMIN_CATEGORY = "admin"

MAX_INPUT_LENGTH = 10000
_BIDI_CHARS = set('\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069')


def mask_user_id(user_id: Optional[str]) -> str:
    """Mask a user id for logging, keeping the last 4 characters."""
    if not user_id:
        return ""
    user_id = str(user_id)
    if len(user_id) <= 4:
        return user_id
    return "..." + user_id[-4:]


def sanitize_input(text: str) -> str:
    """Sanitize user input: strip control characters and enforce length limit."""
    # Remove all control characters except newline, tab, carriage return
    text = ''.join(
        ch for ch in text
        if ch in ('\n', '\r', '\t') or not unicodedata.category(ch).startswith('C')
    )
    text = ''.join(ch for ch in text if ch not in _BIDI_CHARS)
    if len(text) > MAX_INPUT_LENGTH:
        text = text[:MAX_INPUT_LENGTH]
    return text


class PermissionService:
    """Decides whether a user may run a command.

    Rules, first match wins:
        1. Admin users may run everything.
        2. Commands in the ``admin`` category require an admin.
        3. An explicit deny rule blocks the command for everyone.
        4. In ``allowlist`` mode the command needs an explicit allow rule;
           in ``open`` mode commands without a rule are allowed.
        5. If the command has a user restriction list, the user must be on it.
        6. If the command has a channel restriction list and the command
           was issued in a channel, that channel must be on it.
        7. If the command has a role restriction list, the user must hold
           at least one of those roles.

    Args:
        repository: PermissionRepository-like object with async
            ``get_rule``, ``get_users``, ``get_channels`` and ``get_roles``.
        admin_users: User ids with full access.
        mode: "open" or "allowlist".
        category_of: Callable returning a command's category (or None).
    """

    def __init__(
        self,
        repository,
        *,
        admin_users: Iterable[str] = (),
        mode: str = "open",
        category_of: Optional[Callable[[str], Optional[str]]] = None,
    ):
        if mode not in PERMISSION_MODES:
            raise ValueError(f"Unknown permission mode: {mode!r}")
        self.repository = repository
        self.admin_users = frozenset(str(u) for u in admin_users)
        self.mode = mode
        self._category_of = category_of or (lambda name: None)

    def is_admin(self, user_id: str) -> bool:
        return str(user_id) in self.admin_users

    async def check_permission(
        self,
        user_id: str,
        command_name: str,
        *,
        channel_id: Optional[str] = None,
        roles: Iterable[str] = (),
    ) -> bool:
        """Return True if ``user_id`` may run ``command_name``.

        Repository errors propagate; the authorization middleware treats
        them as a denial.
        """
        if self.is_admin(user_id):
            return True

        if self._category_of(command_name) == ADMIN_CATEGORY:
            logger.info(
                "admin_command_refused",
                command=command_name,
                user=mask_user_id(user_id),
            )
            return False

        rule = await self.repository.get_rule(command_name)
        if rule is not None and not rule.allowed:
            return False
        if rule is None and self.mode == "allowlist":
            return False

        users = await self.repository.get_users(command_name)
        if users and str(user_id) not in users:
            return False

        channels = await self.repository.get_channels(command_name)
        if channels and channel_id and str(channel_id) not in channels:
            return False

        allowed_roles = await self.repository.get_roles(command_name)
        if allowed_roles and not set(allowed_roles) & {str(r) for r in roles}:
            return False

        return True
