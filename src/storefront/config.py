"""Runtime settings for storefront.

Every value can be overridden through a STOREFRONT_* environment variable.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

# Local data directory within the storefront project
_default_data_dir = Path(__file__).parent.parent.parent / "data"

DEFAULT_JWT_SECRET = "storefront-dev-secret-change-me"


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    """Service configuration."""

    data_dir: Path = _default_data_dir
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = 24 * 7
    anonymous_token_ttl_hours: int = 24
    payment_success_rate: float = 0.95
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            data_dir=Path(env.get("STOREFRONT_DATA_DIR", _default_data_dir)),
            jwt_secret=env.get("STOREFRONT_JWT_SECRET", DEFAULT_JWT_SECRET),
            token_ttl_hours=int(env.get("STOREFRONT_TOKEN_TTL_HOURS", 24 * 7)),
            anonymous_token_ttl_hours=int(env.get("STOREFRONT_ANON_TOKEN_TTL_HOURS", 24)),
            payment_success_rate=float(env.get("STOREFRONT_PAYMENT_SUCCESS_RATE", 0.95)),
            log_level=env.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
            cors_origins=_split_origins(env.get("STOREFRONT_CORS_ORIGINS", "*")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings loaded once per process."""
    return Settings.from_env()
