from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class HostSettings:
    redis_url: str
    cache_prefix: str
    default_expires_in_ms: int
    log_level: str


def settings_from_env() -> HostSettings:
    return HostSettings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        cache_prefix=os.environ.get("REALM_SERVICES_CACHE_PREFIX", "realm-services:cache"),
        # Used when a cached service does not set expiresIn.
        default_expires_in_ms=int(os.environ.get("REALM_SERVICES_DEFAULT_EXPIRES_IN_MS", "60000")),
        log_level=os.environ.get("REALM_SERVICES_LOG_LEVEL", "INFO").upper(),
    )
