"""Rate limiting for VeraBot commands.

Two limits are enforced per user:
    * a sliding window over all commands (default 30 requests / 60s);
    * a per-command cooldown chosen by the command's category
      (e.g. dare commands can only be repeated every 3 seconds).

Rejected requests do not consume budget. State is in memory and
guarded by an asyncio.Lock so concurrent dispatches see a consistent
view.
"""

import asyncio
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from .commands.middleware import RateLimitDecision
from .security import mask_user_id

logger = structlog.get_logger("verabot.security")

# Default configuration values
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 30
DEFAULT_CATEGORY_COOLDOWNS = {
    "core": 0,
    "dares": 3,
    "quotes": 0,
    "operations": 10,
    "admin": 0,
}
_CLEANUP_INTERVAL = 300  # Prune stale users every 5 minutes


class RateLimitService:
    """Per-user sliding window plus per-command category cooldowns.

    Args:
        window_seconds: Length of the sliding window.
        max_requests: Requests allowed per user within the window.
        category_cooldowns: Seconds between uses of one command, by category.
            Merged over DEFAULT_CATEGORY_COOLDOWNS.
        default_cooldown: Cooldown for categories not listed.
        category_of: Callable returning a command's category (or None).
        clock: Monotonic time source, injectable for tests.

    Raises:
        ValueError: If max_requests is below 1 or window_seconds is not positive.
    """

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        category_cooldowns: Optional[Dict[str, float]] = None,
        default_cooldown: float = 0,
        category_of: Optional[Callable[[str], Optional[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.category_cooldowns = {
            **DEFAULT_CATEGORY_COOLDOWNS,
            **(category_cooldowns or {}),
        }
        self.default_cooldown = default_cooldown
        self._category_of = category_of or (lambda name: None)
        self._clock = clock

        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._last_used: Dict[Tuple[str, str], float] = {}
        self._last_cleanup: float = clock()
        self._lock = asyncio.Lock()

    def cooldown_for(self, command_name: str) -> float:
        """Cooldown in seconds between two uses of ``command_name``."""
        category = self._category_of(command_name)
        if category is None:
            return self.default_cooldown
        return self.category_cooldowns.get(category, self.default_cooldown)

    async def check_limit(self, user_id: str, command_name: str) -> RateLimitDecision:
        """Check and, if allowed, record one use of ``command_name``."""
        async with self._lock:
            return self._check_limit(user_id, command_name)

    def _check_limit(self, user_id: str, command_name: str) -> RateLimitDecision:
        now = self._clock()
        window_start = now - self.window_seconds

        self._requests[user_id] = [
            ts for ts in self._requests[user_id] if ts > window_start
        ]
        if now - self._last_cleanup > _CLEANUP_INTERVAL:
            self._prune(now, window_start)

        recent = self._requests[user_id]
        if len(recent) >= self.max_requests:
            retry_after = max(0.0, recent[0] + self.window_seconds - now)
            logger.warning(
                "rate_limit_exceeded",
                user=mask_user_id(user_id),
                requests_in_window=len(recent),
            )
            return RateLimitDecision(allowed=False, retry_after=retry_after)

        cooldown = self.cooldown_for(command_name)
        key = (user_id, command_name)
        last = self._last_used.get(key)
        if cooldown > 0 and last is not None and now - last < cooldown:
            retry_after = cooldown - (now - last)
            logger.info(
                "command_cooldown_active",
                user=mask_user_id(user_id),
                command=command_name,
                retry_after=round(retry_after, 2),
            )
            return RateLimitDecision(allowed=False, retry_after=retry_after)

        recent.append(now)
        self._last_used[key] = now
        return RateLimitDecision(allowed=True)

    def _prune(self, now: float, window_start: float) -> None:
        """Drop users and cooldown entries with no recent activity."""
        self._last_cleanup = now
        stale_users = [
            user for user, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for user in stale_users:
            del self._requests[user]

        longest = max([self.default_cooldown, *self.category_cooldowns.values()])
        stale_keys = [
            key for key, ts in self._last_used.items() if now - ts > longest
        ]
        for key in stale_keys:
            del self._last_used[key]

    def reset(self) -> None:
        """Reset all rate limit state (for testing)."""
        self._requests.clear()
        self._last_used.clear()
        self._last_cleanup = self._clock()
