"""
Row access to the hosted Supabase datastore.

Only plain table operations are used (select / insert / update / upsert);
there are no multi-statement transactions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from creative_evaluator.config import settings
from creative_evaluator.errors import ConfigurationError, CreativeEvaluatorError, UpstreamError

logger = logging.getLogger(__name__)

OTP_TABLE = "otp_codes"
USERS_TABLE = "users"
APPROVALS_TABLE = "creative_approvals"


@lru_cache(maxsize=1)
def get_client() -> Any:
    """Lazily construct a Supabase client from settings."""
    if not settings.supabase_url or not settings.supabase_key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
    from supabase import create_client  # type: ignore

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as exc:
        raise ConfigurationError(f"Supabase client could not be created: {exc}") from exc


def execute(query: Any) -> Any:
    """
    Run a built query. Client, HTTP and database failures all surface as
    UpstreamError so callers only deal with the app's own exceptions.
    """
    try:
        return query.execute()
    except CreativeEvaluatorError:
        raise
    except Exception as exc:
        logger.error("Datastore request failed: %s", exc)
        raise UpstreamError("Datastore request failed", provider="supabase") from exc


def rows(resp: Any) -> list[dict[str, Any]]:
    return list(getattr(resp, "data", None) or [])


def first_row(resp: Any) -> dict[str, Any] | None:
    data = rows(resp)
    return data[0] if data else None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()
