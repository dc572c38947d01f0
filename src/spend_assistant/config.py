"""Settings read from environment variables."""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".cache" / "spend-assistant" / "spend.db"

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)?$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, None: 1}


def parse_duration(value: str | None, default: timedelta) -> timedelta:
    """Parse "90s", "30m", "24h" or bare seconds; anything else yields default."""
    if not value:
        return default
    match = _DURATION_RE.match(value.strip().lower())
    if not match:
        return default
    return timedelta(seconds=float(match.group(1)) * _UNIT_SECONDS[match.group(2)])


def _int(value: str | None, default: int) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    log_level: str = "INFO"
    user_id: str = "default"

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    google_cloud_project: str | None = None
    google_cloud_location: str | None = None

    ai_ttl: timedelta = timedelta(hours=24)
    ai_model_timeout: timedelta = timedelta(seconds=60)
    ai_history_limit: int = 8

    plaid_client_id: str | None = None
    plaid_secret: str | None = None
    plaid_environment: str = "sandbox"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment (or the given mapping)."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            db_path=Path(env["SPEND_ASSISTANT_DB_PATH"]) if env.get("SPEND_ASSISTANT_DB_PATH") else defaults.db_path,
            log_level=env.get("SPEND_ASSISTANT_LOG_LEVEL") or defaults.log_level,
            user_id=env.get("SPEND_ASSISTANT_USER_ID") or defaults.user_id,
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
            gemini_model=env.get("GEMINI_MODEL") or defaults.gemini_model,
            google_cloud_project=env.get("GOOGLE_CLOUD_PROJECT") or None,
            google_cloud_location=env.get("GOOGLE_CLOUD_LOCATION") or None,
            ai_ttl=parse_duration(env.get("AI_TTL"), defaults.ai_ttl),
            ai_model_timeout=parse_duration(env.get("AI_MODEL_TIMEOUT"), defaults.ai_model_timeout),
            ai_history_limit=_int(env.get("AI_HISTORY_LIMIT"), defaults.ai_history_limit),
            plaid_client_id=env.get("PLAID_CLIENT_ID") or None,
            plaid_secret=env.get("PLAID_SECRET") or None,
            plaid_environment=env.get("PLAID_ENVIRONMENT") or defaults.plaid_environment,
        )
