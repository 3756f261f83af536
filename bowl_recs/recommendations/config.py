from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

MIN_TTL_MS = 60_000


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class EngineConfig:
    """
    Bounds for the resolution engine. Validated on construction so a bad
    environment fails at startup rather than on the first request.
    """

    primary_timeout_ms: int = _env_int("BOWL_RECS_PRIMARY_TIMEOUT_MS", 3000)
    retry_attempts: int = _env_int("BOWL_RECS_RETRY_ATTEMPTS", 2)
    retry_base_delay_ms: int = _env_int("BOWL_RECS_RETRY_BASE_DELAY_MS", 100)
    tier_timeout_ms: int = _env_int("BOWL_RECS_TIER_TIMEOUT_MS", 1000)
    attempt_timeout_ms: int = _env_int("BOWL_RECS_ATTEMPT_TIMEOUT_MS", 400)
    result_ttl_ms: int = _env_int("BOWL_RECS_RESULT_TTL_MS", 30 * 60 * 1000)
    history_ttl_ms: int = _env_int("BOWL_RECS_HISTORY_TTL_MS", 24 * 60 * 60 * 1000)
    catalog_ttl_ms: int = _env_int("BOWL_RECS_CATALOG_TTL_MS", 15 * 60 * 1000)
    warm_cache_from_late_primary: bool = _env_bool("BOWL_RECS_WARM_FROM_LATE_PRIMARY", True)

    def __post_init__(self) -> None:
        if not 1000 <= self.primary_timeout_ms <= 10_000:
            raise ConfigurationError(
                f"primary_timeout_ms must be within [1000, 10000], got {self.primary_timeout_ms}"
            )
        if not 1 <= self.retry_attempts <= 5:
            raise ConfigurationError(
                f"retry_attempts must be within [1, 5], got {self.retry_attempts}"
            )
        if self.retry_base_delay_ms < 0:
            raise ConfigurationError("retry_base_delay_ms must not be negative")
        if self.tier_timeout_ms <= 0 or self.attempt_timeout_ms <= 0:
            raise ConfigurationError("tier and attempt timeouts must be positive")
        if self.attempt_timeout_ms > self.tier_timeout_ms:
            raise ConfigurationError("attempt_timeout_ms must not exceed tier_timeout_ms")
        if self.tier_timeout_ms >= self.primary_timeout_ms:
            raise ConfigurationError("tier_timeout_ms must be shorter than primary_timeout_ms")
        for name in ("result_ttl_ms", "history_ttl_ms", "catalog_ttl_ms"):
            if getattr(self, name) < MIN_TTL_MS:
                raise ConfigurationError(f"{name} must be at least {MIN_TTL_MS} ms")


DEFAULT_ENGINE_CONFIG = EngineConfig()
