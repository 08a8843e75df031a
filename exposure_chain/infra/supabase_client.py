from __future__ import annotations

from typing import Any, Callable

from exposure_chain.config import Settings, settings


def _load_create_client() -> tuple[Callable[..., Any] | None, str | None]:
    try:
        from supabase import create_client as fn
    except ImportError as exc:
        return None, str(exc)
    return fn, None


def get_supabase_client(config: Settings | None = None) -> tuple[Any | None, str | None]:
    config = config or settings
    if not config.supabase_url or not config.supabase_key:
        return None, "SUPABASE_URL or SUPABASE_KEY missing"

    if not config.supabase_url_valid():
        return None, "SUPABASE_URL invalid (must look like https://<project-ref>.supabase.co)"

    create_client, import_err = _load_create_client()
    if create_client is None:
        return None, f"Supabase client import failed: {import_err}"

    try:
        return create_client(config.supabase_url, config.supabase_key), None
    except Exception as exc:  # pragma: no cover
        return None, f"Supabase init failed: {exc}"
