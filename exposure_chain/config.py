from __future__ import annotations

import re
from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()

# Provider ceiling for one batched write or one multicast send.
PROVIDER_BATCH_CEILING = 500
# Hard cap on traversal hops.
MAX_CHAIN_DEPTH = 10


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return default


def _get_int(*keys: str, default: int) -> int:
    raw = _get_config_value(*keys)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(*keys: str, default: float) -> float:
    raw = _get_config_value(*keys)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(*keys: str, default: bool = False) -> bool:
    raw = _get_config_value(*keys).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _pick_supabase_key() -> str:
    return (
        _get_config_value("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
        or _get_config_value("SUPABASE_KEY")
        or _get_config_value("SUPABASE_ANON_KEY")
    )


@dataclass(frozen=True)
class Settings:
    store_backend: str = "memory"
    supabase_url: str = ""
    supabase_key: str = ""
    push_backend: str = "memory"
    push_endpoint: str = ""
    push_api_key: str = ""
    push_timeout_seconds: float = 10.0
    max_chain_depth: int = MAX_CHAIN_DEPTH
    batch_limit: int = PROVIDER_BATCH_CEILING
    cache_max_entries: int = 1000
    retention_days: int = 180
    window_policy: str = "fixed"
    conditions_config_path: str = ""
    retry_max_attempts: int = 3
    retry_base_delay: float = 0.2
    retry_max_delay: float = 5.0
    log_level: str = "INFO"
    log_json: bool = False

    def supabase_url_valid(self) -> bool:
        # Must be project URL, not postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def effective_max_depth(self) -> int:
        return max(1, min(self.max_chain_depth, MAX_CHAIN_DEPTH))

    def effective_batch_limit(self) -> int:
        return max(1, min(self.batch_limit, PROVIDER_BATCH_CEILING))


def load_settings() -> Settings:
    return Settings(
        store_backend=_get_config_value("STORE_BACKEND", default="memory").lower(),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        supabase_key=_pick_supabase_key(),
        push_backend=_get_config_value("PUSH_BACKEND", default="memory").lower(),
        push_endpoint=_get_config_value("PUSH_ENDPOINT", "PUSH_RELAY_URL").rstrip("/"),
        push_api_key=_get_config_value("PUSH_API_KEY", "PUSH_RELAY_KEY"),
        push_timeout_seconds=_get_float("PUSH_TIMEOUT_SECONDS", default=10.0),
        max_chain_depth=_get_int("MAX_CHAIN_DEPTH", default=MAX_CHAIN_DEPTH),
        batch_limit=_get_int("BATCH_LIMIT", "BATCH_SIZE", default=PROVIDER_BATCH_CEILING),
        cache_max_entries=_get_int("CACHE_MAX_ENTRIES", default=1000),
        retention_days=_get_int("RETENTION_DAYS", default=180),
        window_policy=_get_config_value("WINDOW_POLICY", default="fixed").lower(),
        conditions_config_path=_get_config_value("CONDITIONS_CONFIG_PATH", "STI_CONFIG_PATH"),
        retry_max_attempts=_get_int("RETRY_MAX_ATTEMPTS", default=3),
        retry_base_delay=_get_float("RETRY_BASE_DELAY_SECONDS", default=0.2),
        retry_max_delay=_get_float("RETRY_MAX_DELAY_SECONDS", default=5.0),
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        log_json=_get_bool("LOG_JSON", default=False),
    )


settings = load_settings()
