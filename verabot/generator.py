"""External dare generator client (Perchance-style HTTP API).

Fetches dare text from a remote generator keyed by (generator, theme).
Every failure mode (timeout, connection error, non-2xx status, empty or
unrecognized payload) surfaces as a single GeneratorError so callers
can apply their fallback policy without caring which one happened.

Key classes:
    DareGenerator: Manages the HTTP session, retries with backoff and
        an optional in-memory TTL cache.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import structlog

from .exceptions import ErrorCategory, GeneratorError

logger = structlog.get_logger("verabot.generator")

DEFAULT_API_URL = "https://perchance.org/api1"
DEFAULT_GENERATOR = "dare-generator"
DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_CACHE_TTL = 300  # seconds
MAX_CACHE_ENTRIES = 100
MAX_CONTENT_LENGTH = 2000

THEMES = ("general", "funny", "creative", "social", "physical", "mental")

# JSON keys the generator has been seen to put its text under
_CONTENT_KEYS = ("result", "output", "text", "dare", "content")


def normalize_theme(theme: Optional[str]) -> str:
    """Map a requested theme onto a known one, defaulting to "general"."""
    if theme and theme.lower() in THEMES:
        return theme.lower()
    return "general"


class DareGenerator:
    """Client for the external dare generator.

    Args:
        api_url: Base URL; the generator name is appended as a path segment.
        generator_name: Default generator when callers don't pick one.
        timeout: Total per-request timeout in seconds.
        max_retries: Attempts per generate() call (minimum 1).
        cache_enabled: Cache generated text per (generator, theme).
        cache_ttl: Seconds a cached entry stays valid.
        user_agent: User-Agent header sent with every request.

    Raises:
        ValueError: If api_url has no scheme or host.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        generator_name: str = DEFAULT_GENERATOR,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        cache_enabled: bool = False,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        user_agent: str = "VeraBot/1.0",
        backoff_seconds: float = 1.0,
    ):
        parsed = urlparse(api_url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            logger.warning("invalid_generator_url", url=api_url)
            raise ValueError(f"Generator URL must be http(s) with a host: {api_url!r}")
        if parsed.scheme != "https":
            logger.warning("insecure_generator_url", host=parsed.hostname)

        self.api_url = api_url.rstrip("/")
        self.generator_name = generator_name
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.user_agent = user_agent
        self.backoff_seconds = backoff_seconds
        self._cache: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create a shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the shared HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def generate(self, theme: Optional[str] = None,
                       generator_name: Optional[str] = None) -> str:
        """Generate dare text for ``theme``.

        Retries transient failures up to max_retries times with linear
        backoff (1s, 2s, ...).

        Returns:
            The generated text, stripped and capped at 2000 characters.

        Raises:
            GeneratorError: When every attempt failed.
        """
        theme = normalize_theme(theme)
        generator_name = generator_name or self.generator_name
        cache_key = f"{generator_name}:{theme}"

        if self.cache_enabled:
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.debug("generator_cache_hit", generator=generator_name, theme=theme)
                return cached

        last_error: Optional[GeneratorError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                content = await self._fetch(generator_name, theme)
            except GeneratorError as e:
                last_error = e
                logger.warning(
                    "generator_attempt_failed",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                )
                if not e.is_retryable:
                    break
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_seconds * attempt)
                continue

            if self.cache_enabled:
                self._put_cached(cache_key, content)
            logger.info(
                "generator_success", generator=generator_name, theme=theme,
                length=len(content), attempt=attempt,
            )
            return content

        logger.error("generator_failed", generator=generator_name, theme=theme,
                     error=str(last_error))
        raise GeneratorError(
            f"Dare generator failed after {attempt} attempt(s): {last_error}",
            category=last_error.category,
            status=last_error.status,
            generator=generator_name,
            theme=theme,
        ) from last_error

    async def _fetch(self, generator_name: str, theme: str) -> str:
        """Single request to the generator."""
        url = f"{self.api_url}/{generator_name}"
        headers = {"User-Agent": self.user_agent, "Accept": "application/json, text/plain"}
        logger.debug("generator_request", url=url, theme=theme)

        try:
            session = await self._get_session()
            async with session.get(
                url,
                params={"theme": theme},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning(
                        "generator_api_error", status=resp.status, body=body[:200]
                    )
                    raise GeneratorError(
                        f"Generator returned status {resp.status}",
                        status=resp.status,
                        category=(
                            ErrorCategory.TRANSIENT if resp.status >= 500 or resp.status == 429
                            else ErrorCategory.PERMANENT
                        ),
                    )
                content_type = resp.headers.get("Content-Type", "")
                if "application/json" in content_type:
                    data = await resp.json()
                    return self._parse_json(data)
                return self._parse_text(await resp.text())

        except asyncio.TimeoutError as e:
            logger.warning("generator_timeout", timeout=self.timeout)
            raise GeneratorError("Generator request timed out") from e
        except aiohttp.ClientError as e:
            logger.warning("generator_connection_error", error=str(e))
            raise GeneratorError(f"Generator request failed: {e}") from e
        except ValueError as e:
            logger.warning("generator_invalid_json", error=str(e))
            raise GeneratorError(
                "Generator returned invalid JSON", category=ErrorCategory.PERMANENT
            ) from e

    def _parse_json(self, data) -> str:
        if isinstance(data, dict):
            for key in _CONTENT_KEYS:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return self._clip(value)
            logger.error("generator_malformed_response",
                         data_keys=sorted(data.keys())[:10])
        else:
            logger.error("generator_malformed_response", data_type=type(data).__name__)
        raise GeneratorError(
            "Generator returned an unrecognized payload",
            category=ErrorCategory.PERMANENT,
        )

    def _parse_text(self, body: str) -> str:
        if not body or not body.strip():
            raise GeneratorError(
                "Generator returned an empty response",
                category=ErrorCategory.PERMANENT,
            )
        return self._clip(body)

    @staticmethod
    def _clip(text: str) -> str:
        text = text.strip()
        if len(text) > MAX_CONTENT_LENGTH:
            logger.warning("generator_content_truncated", length=len(text))
            text = text[:MAX_CONTENT_LENGTH]
        return text

    def _get_cached(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        content, stored_at = entry
        if time.monotonic() - stored_at > self.cache_ttl:
            del self._cache[key]
            return None
        return content

    def _put_cached(self, key: str, content: str) -> None:
        self._cache[key] = (content, time.monotonic())
        self._cache.move_to_end(key)
        while len(self._cache) > MAX_CACHE_ENTRIES:
            self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("generator_cache_cleared")

    def cache_stats(self) -> dict:
        return {
            "size": len(self._cache),
            "enabled": self.cache_enabled,
            "ttl": self.cache_ttl,
        }
