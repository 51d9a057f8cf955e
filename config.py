"""Configuration loader for the reportd daemon.

Loads reportd.toml, applies environment variable overrides for secrets and
deployment ids, validates required fields, and provides typed access to all
settings. Immutable after load — no runtime config reloading.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# Environment variable overrides (hosting platforms inject these)
_ENV_OVERRIDES = {
    "REPORTD_FOLDER_ID": ("storage", "folder_id"),
    "REPLIT_APP_URL": ("http", "self_ping_url"),
    "REPORTD_SELF_PING_URL": ("http", "self_ping_url"),  # wins over REPLIT_APP_URL
    "PORT": ("http", "port"),
}

_CHANNEL_TYPES = ("whatsapp", "cli")
_STORAGE_TYPES = ("gdrive", "local")
_COOLDOWN_POLICIES = ("notify", "drop")


def _deep_get(d: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if not isinstance(d, dict):
            return default
        d = d.get(key, default)
    return d


def _resolve_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


class Config:
    """Immutable configuration loaded from reportd.toml."""

    def __init__(self, data: dict, config_dir: Path | None = None):
        self._data = data
        self._config_dir = config_dir or Path.cwd()
        self._apply_env_overrides()
        self._validate()

    def _apply_env_overrides(self):
        for env_var, key_path in _ENV_OVERRIDES.items():
            val = os.environ.get(env_var)
            if val:
                section, key = key_path
                if section not in self._data:
                    self._data[section] = {}
                self._data[section][key] = val

    def _validate(self):
        errors = []
        ch_type = _deep_get(self._data, "channel", "type")
        if not ch_type:
            errors.append("[channel] type is required")
        elif ch_type not in _CHANNEL_TYPES:
            errors.append(f"[channel] type must be one of {', '.join(_CHANNEL_TYPES)}")
        if ch_type == "whatsapp":
            wa = _deep_get(self._data, "channel", "whatsapp", default={})
            if not wa.get("bridge_url"):
                errors.append("[channel.whatsapp] bridge_url is required")

        st_type = _deep_get(self._data, "storage", "type")
        if not st_type:
            errors.append("[storage] type is required")
        elif st_type not in _STORAGE_TYPES:
            errors.append(f"[storage] type must be one of {', '.join(_STORAGE_TYPES)}")
        if not _deep_get(self._data, "storage", "folder_id"):
            errors.append("[storage] folder_id is required (or set REPORTD_FOLDER_ID)")
        if st_type == "local" and not _deep_get(self._data, "storage", "root"):
            errors.append("[storage] root is required for local storage")

        if not _deep_get(self._data, "ai", "provider"):
            errors.append("[ai] provider is required")
        if not _deep_get(self._data, "ai", "model"):
            errors.append("[ai] model is required")
        policy = _deep_get(self._data, "ai", "cooldown_policy", default="notify")
        if policy not in _COOLDOWN_POLICIES:
            errors.append(f"[ai] cooldown_policy must be one of {', '.join(_COOLDOWN_POLICIES)}")

        port = _deep_get(self._data, "http", "port", default=3000)
        try:
            int(port)
        except (TypeError, ValueError):
            errors.append(f"[http] port must be an integer, got {port!r}")

        messages = _deep_get(self._data, "messages", default={})
        if not isinstance(messages, dict):
            errors.append("[messages] must be a table")
        if errors:
            raise ConfigError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    # --- Bot ---

    @property
    def bot_name(self) -> str:
        return _deep_get(self._data, "bot", "name", default="reportd")

    # --- Channel ---

    @property
    def channel_type(self) -> str:
        return self._data["channel"]["type"]

    @property
    def whatsapp_config(self) -> dict:
        return _deep_get(self._data, "channel", "whatsapp", default={})

    @property
    def bridge_token(self) -> str:
        env_var = self.whatsapp_config.get("token_env", "REPORTD_BRIDGE_TOKEN")
        return os.environ.get(env_var, "") if env_var else ""

    # --- Connection ---

    @property
    def retry_delay(self) -> float:
        return float(_deep_get(self._data, "connection", "retry_delay", default=5.0))

    @property
    def rejected_cooldown(self) -> float:
        return float(_deep_get(self._data, "connection", "rejected_cooldown", default=3600.0))

    @property
    def rejected_retries(self) -> int:
        return int(_deep_get(self._data, "connection", "rejected_retries", default=1))

    @property
    def logged_out_codes(self) -> frozenset[int]:
        return frozenset(_deep_get(self._data, "connection", "logged_out_codes", default=[401]))

    @property
    def rejected_codes(self) -> frozenset[int]:
        return frozenset(_deep_get(self._data, "connection", "rejected_codes", default=[403, 405]))

    @property
    def drain_timeout(self) -> float:
        return float(_deep_get(self._data, "connection", "drain_timeout", default=10.0))

    # --- Storage ---

    @property
    def storage_type(self) -> str:
        return self._data["storage"]["type"]

    @property
    def folder_id(self) -> str:
        return str(self._data["storage"]["folder_id"])

    @property
    def storage_credentials_env(self) -> str:
        return _deep_get(self._data, "storage", "credentials_env", default="GOOGLE_DRIVE_KEY")

    @property
    def storage_timeout(self) -> float:
        return float(_deep_get(self._data, "storage", "timeout", default=30.0))

    @property
    def storage_root(self) -> Path:
        root = Path(_deep_get(self._data, "storage", "root", default="reports")).expanduser()
        if not root.is_absolute():
            root = self._config_dir / root
        return root.resolve()

    # --- Reports ---

    @property
    def daily_extension(self) -> str:
        return _deep_get(self._data, "reports", "daily_extension", default=".png")

    @property
    def daily_caption(self) -> str:
        return _deep_get(self._data, "reports", "daily_caption",
                         default="📄 Surgery Report\n🗓 {date}")

    @property
    def monthly_name_template(self) -> str:
        return _deep_get(self._data, "reports", "monthly_name",
                         default="Monthly_Report_{month}_{year}.xlsx")

    @property
    def monthly_caption(self) -> str:
        return _deep_get(self._data, "reports", "monthly_caption",
                         default="📊 Monthly Report\n🗓 {month} {year}")

    # --- AI ---

    @property
    def ai_config(self) -> dict:
        return _deep_get(self._data, "ai", default={})

    @property
    def ai_api_key(self) -> str:
        env_var = self.ai_config.get("api_key_env", "GEMINI_API_KEY")
        return os.environ.get(env_var, "") if env_var else ""

    @property
    def ai_cooldown(self) -> float:
        return float(_deep_get(self._data, "ai", "cooldown_seconds", default=5.0))

    @property
    def ai_cooldown_policy(self) -> str:
        return _deep_get(self._data, "ai", "cooldown_policy", default="notify")

    @property
    def ai_timeout(self) -> float:
        return float(_deep_get(self._data, "ai", "timeout", default=60.0))

    @property
    def handler_timeout(self) -> float:
        return float(_deep_get(self._data, "behavior", "handler_timeout", default=90.0))

    # --- Messages ---

    @property
    def messages(self) -> dict:
        return _deep_get(self._data, "messages", default={})

    # --- HTTP ---

    @property
    def http_enabled(self) -> bool:
        return _deep_get(self._data, "http", "enabled", default=True)

    @property
    def http_host(self) -> str:
        return _deep_get(self._data, "http", "host", default="0.0.0.0")  # noqa: S104

    @property
    def http_port(self) -> int:
        return int(_deep_get(self._data, "http", "port", default=3000))

    @property
    def self_ping_url(self) -> str:
        return _deep_get(self._data, "http", "self_ping_url", default="")

    @property
    def self_ping_interval(self) -> float:
        return float(_deep_get(self._data, "http", "self_ping_interval", default=240.0))

    # --- Paths ---

    @property
    def state_dir(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "state_dir", default="~/.reportd"))

    @property
    def credentials_file(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "credentials_file",
                                       default="~/.reportd/auth/creds.json"))

    @property
    def log_file(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "log_file",
                                       default="~/.reportd/reportd.log"))

    @property
    def log_max_bytes(self) -> int:
        return _deep_get(self._data, "logging", "max_bytes", default=10 * 1024 * 1024)

    @property
    def log_backup_count(self) -> int:
        return _deep_get(self._data, "logging", "backup_count", default=3)


def _load_dotenv(toml_path: Path) -> None:
    """Load .env file from same directory as reportd.toml if it exists."""
    env_file = toml_path.parent / ".env"
    if not env_file.exists():
        return
    with open(env_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, val = line.partition("=")
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            # Only set if not already in environment (env takes precedence)
            if key not in os.environ:
                os.environ[key] = val


def load_config(path: str | Path, overrides: dict | None = None) -> Config:
    """Load and validate config from a TOML file.

    Args:
        path: Path to reportd.toml config file.
        overrides: Dict of dotted-key overrides applied to raw TOML data
                   before constructing Config (e.g. CLI args).
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    _load_dotenv(p)
    with open(p, "rb") as f:
        data = tomllib.load(f)
    if overrides:
        for key_path, value in overrides.items():
            keys = key_path.split(".")
            d = data
            for k in keys[:-1]:
                d = d.setdefault(k, {})
            d[keys[-1]] = value
    return Config(data, config_dir=p.parent)
