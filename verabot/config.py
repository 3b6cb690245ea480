"""Configuration management for verabot.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a Config object. Property getters provide safe access with
defaults for storage, permissions, rate limiting, the external
generator, the console adapter and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv

from .rate_limit import DEFAULT_CATEGORY_COOLDOWNS
from .security import PERMISSION_MODES

logger = structlog.get_logger("verabot.bot")


class Config:
    """Central configuration manager for verabot.

    Loads settings.yaml and .env from the config directory. Settings
    are read-only after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``; the VERABOT_CONFIG_DIR environment
            variable overrides the default.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            env_dir = os.environ.get("VERABOT_CONFIG_DIR")
            config_dir = Path(env_dir) if env_dir else Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str) -> dict:
        section = self.settings.get(name, {})
        return section if isinstance(section, dict) else {}

    def validate(self):
        """Validate critical settings at startup.

        Logs errors and warnings but does not raise; bad values fall
        back to their defaults through the property getters.
        """
        if self.settings.get("permission_mode", "open") not in PERMISSION_MODES:
            logger.error(
                "config_invalid_value",
                key="permission_mode",
                value=self.settings.get("permission_mode"),
                valid=", ".join(PERMISSION_MODES),
            )
        if not self.admin_users:
            logger.warning("no_admin_users", msg="Admin commands will be unavailable")

        rl = self._section("rate_limit")
        for key in ("window_seconds", "max_requests"):
            value = rl.get(key)
            if value is not None and (not isinstance(value, int) or value < 1):
                logger.error("config_invalid_value", key=f"rate_limit.{key}",
                             value=value, valid=">= 1")

        gen = self._section("generator")
        timeout = gen.get("timeout")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            logger.error("config_invalid_value", key="generator.timeout",
                         value=timeout, valid="> 0")

    # --- Storage ---

    @property
    def database_path(self) -> Path:
        """SQLite file path. Env var VERABOT_DATABASE wins."""
        configured = os.environ.get("VERABOT_DATABASE") or self.settings.get("database_path")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "data" / "verabot.db"

    # --- Permissions ---

    @property
    def admin_users(self) -> List[str]:
        """User ids with unrestricted access. Env var VERABOT_ADMINS
        (comma-separated) is merged in."""
        users = self.settings.get("admin_users", [])
        if not isinstance(users, list):
            logger.error("admin_users_invalid_type", type=type(users).__name__)
            users = []
        env_users = os.environ.get("VERABOT_ADMINS", "")
        users = [str(u) for u in users]
        users.extend(u.strip() for u in env_users.split(",") if u.strip())
        return users

    @property
    def permission_mode(self) -> str:
        """"open" (default) or "allowlist"."""
        mode = self.settings.get("permission_mode", "open")
        return mode if mode in PERMISSION_MODES else "open"

    # --- Rate limiting ---

    @property
    def rate_limit_window_seconds(self) -> int:
        value = self._section("rate_limit").get("window_seconds", 60)
        return value if isinstance(value, int) and value >= 1 else 60

    @property
    def rate_limit_max_requests(self) -> int:
        value = self._section("rate_limit").get("max_requests", 30)
        return value if isinstance(value, int) and value >= 1 else 30

    @property
    def rate_limit_category_cooldowns(self) -> Dict[str, float]:
        """Per-category cooldowns, user overrides merged onto defaults."""
        cooldowns = dict(DEFAULT_CATEGORY_COOLDOWNS)
        overrides = self._section("rate_limit").get("category_cooldowns", {})
        if isinstance(overrides, dict):
            for category, seconds in overrides.items():
                if isinstance(seconds, (int, float)) and seconds >= 0:
                    cooldowns[str(category)] = float(seconds)
        return cooldowns

    @property
    def rate_limit_default_cooldown(self) -> float:
        return float(self._section("rate_limit").get("default_cooldown", 0))

    # --- External generator ---

    @property
    def generator_api_url(self) -> str:
        """Generator base URL. Env var VERABOT_GENERATOR_URL wins."""
        return (
            os.environ.get("VERABOT_GENERATOR_URL")
            or self._section("generator").get("api_url", "https://perchance.org/api1")
        )

    @property
    def generator_name(self) -> str:
        return self._section("generator").get("name", "dare-generator")

    @property
    def generator_timeout(self) -> float:
        value = self._section("generator").get("timeout", 10)
        return value if isinstance(value, (int, float)) and value > 0 else 10

    @property
    def generator_max_retries(self) -> int:
        value = self._section("generator").get("max_retries", 2)
        return max(1, value) if isinstance(value, int) else 2

    @property
    def generator_cache_enabled(self) -> bool:
        return bool(self._section("generator").get("cache_enabled", False))

    @property
    def generator_cache_ttl(self) -> int:
        return self._section("generator").get("cache_ttl", 300)

    # --- Background jobs ---

    @property
    def jobs_max_parallel(self) -> int:
        value = self._section("jobs").get("max_parallel", 2)
        return value if isinstance(value, int) and value >= 1 else 2

    @property
    def jobs_backoff_seconds(self) -> float:
        """Delay before the first retry of a failed job, doubled per retry."""
        value = self._section("jobs").get("backoff_seconds", 2.0)
        return float(value) if isinstance(value, (int, float)) and value >= 0 else 2.0

    # --- Console adapter ---

    @property
    def console_user(self) -> str:
        """User id the console adapter dispatches as."""
        return str(
            os.environ.get("VERABOT_CONSOLE_USER")
            or self._section("console").get("user_id", "console")
        )

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO)."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem overrides, e.g. {"generator": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        return self._section("logging").get("backup_count", 5)

    @property
    def logging_to_file(self) -> bool:
        """Write rotating log files under log_dir (default True)."""
        return bool(self._section("logging").get("to_file", True))


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
