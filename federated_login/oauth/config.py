"""
Federated login configuration.

Loaded from environment variables. Provider endpoints and client
credential references live in the database; this module only holds the
service-wide settings (store, signing, registration policy, timeouts).
"""

import os
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache


logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: str) -> timedelta:
    """
    Parse an expiry such as ``3600``, ``15m``, ``1h`` or ``7d``.

    A bare number is seconds.

    Raises:
        ValueError: If the value is not a recognised duration
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit.lower()]: float(amount)})


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


def parse_roles(value: str | None) -> list[str]:
    """Split a comma-separated role list into lower-cased, trimmed slugs."""
    roles = [role.strip().lower() for role in (value or "").split(",")]
    return [role for role in roles if role]


@dataclass
class OAuthSettings:
    """
    Federated login settings.

    Loaded from environment variables. Call validate() at startup to fail
    fast on missing signing secrets.
    """

    jwt_secret: str
    jwt_refresh_secret: str
    database_url: str = "sqlite+aiosqlite:///./federated_login.db"
    table_prefix: str = ""
    create_schema: bool = True
    jwt_expires_in: timedelta = timedelta(hours=1)
    jwt_refresh_expires_in: timedelta = timedelta(days=7)
    jwt_algorithm: str = "HS256"
    allow_registrations: bool = False
    default_roles: list[str] = field(default_factory=list)
    http_timeout: float = 10.0
    state_check: bool = False

    @classmethod
    def from_env(cls) -> "OAuthSettings":
        """Load settings from environment variables."""
        return cls(
            jwt_secret=os.getenv("JWT_SECRET", ""),
            jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET", ""),
            database_url=os.getenv(
                "DATABASE_URL", "sqlite+aiosqlite:///./federated_login.db"
            ),
            table_prefix=os.getenv("TABLE_PREFIX", ""),
            create_schema=parse_bool(os.getenv("DB_CREATE_SCHEMA"), default=True),
            jwt_expires_in=parse_duration(os.getenv("JWT_EXPIRES_IN", "1h")),
            jwt_refresh_expires_in=parse_duration(
                os.getenv("JWT_REFRESH_EXPIRES_IN", "7d")
            ),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            allow_registrations=parse_bool(os.getenv("ALLOW_REGISTRATIONS")),
            default_roles=parse_roles(os.getenv("DEFAULT_ROLES")),
            http_timeout=float(os.getenv("OAUTH_HTTP_TIMEOUT", "10")),
            state_check=parse_bool(os.getenv("OAUTH_STATE_CHECK")),
        )

    def validate(self) -> None:
        """Validate required configuration. Call at startup to fail fast."""
        if not self.jwt_secret:
            raise ValueError("JWT_SECRET environment variable is required")
        if not self.jwt_refresh_secret:
            raise ValueError("JWT_REFRESH_SECRET environment variable is required")
        if self.jwt_refresh_expires_in > timedelta(days=7):
            logger.warning(
                "JWT_REFRESH_EXPIRES_IN exceeds the 7 day refresh record lifetime; "
                "stored refresh records will be swept before the tokens expire"
            )


@lru_cache()
def get_oauth_settings() -> OAuthSettings:
    """Get federated login settings (singleton)."""
    return OAuthSettings.from_env()
