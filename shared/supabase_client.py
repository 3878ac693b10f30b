"""Supabase client for the report template tools.

Thin wrapper over the Supabase REST (PostgREST) and Storage HTTP APIs
using requests. Credentials are read from environment variables:
    SUPABASE_URL, SUPABASE_KEY

They are loaded from the parent project .env file when present. Every
HTTP failure (connection error, timeout, non-2xx status) is raised as
SupabaseError so callers only have one thing to catch.

SUPABASE_KEY is the service-role key: the tables these tools use keep RLS
on with no client policies, so callers filter rows themselves.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import requests

# Load .env from the parent project directory
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
if _ENV_PATH.exists():
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


class SupabaseError(RuntimeError):
    """A Supabase request could not be completed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# Cache the session so connections are reused across calls
_session: requests.Session | None = None


def get_session() -> requests.Session:
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


def reset_session() -> None:
    """Force a fresh HTTP session on next call."""
    global _session
    _session = None


def _base_url() -> str:
    url = os.environ.get("SUPABASE_URL", "").rstrip("/")
    if not url:
        raise SupabaseError("SUPABASE_URL is not set")
    return url


def _headers(extra: dict | None = None) -> dict:
    key = os.environ.get("SUPABASE_KEY", "")
    if not key:
        raise SupabaseError("SUPABASE_KEY is not set")
    headers = {"apikey": key, "Authorization": f"Bearer {key}"}
    if extra:
        headers.update(extra)
    return headers


def _request(
    method: str,
    path: str,
    *,
    params: dict | None = None,
    json: Any = None,
    data: bytes | None = None,
    headers: dict | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> requests.Response:
    url = f"{_base_url()}{path}"
    try:
        resp = get_session().request(
            method,
            url,
            params=params,
            json=json,
            data=data,
            headers=_headers(headers),
            timeout=timeout,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        status = e.response.status_code if e.response is not None else None
        logger.error("Supabase %s %s failed (%s): %s", method, path, status, e)
        raise SupabaseError(str(e), status_code=status) from e
    return resp


def _json_or_none(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    return resp.json()


# ---------------------------------------------------------------------------
# REST (PostgREST)
# ---------------------------------------------------------------------------

_RETURN_ROWS = {"Prefer": "return=representation"}


def select(table: str, params: dict | None = None) -> list[dict]:
    """GET rows from *table*. *params* are PostgREST filters, e.g. {"id": "eq.1"}."""
    query = {"select": "*"}
    query.update(params or {})
    resp = _request("GET", f"/rest/v1/{table}", params=query)
    return _json_or_none(resp) or []


def insert(table: str, row: dict) -> dict:
    """Insert one row and return it as stored."""
    resp = _request("POST", f"/rest/v1/{table}", json=row, headers=_RETURN_ROWS)
    rows = _json_or_none(resp) or []
    return rows[0] if rows else row


def update(table: str, params: dict, fields: dict) -> list[dict]:
    """PATCH every row matching *params*; returns the updated rows."""
    resp = _request("PATCH", f"/rest/v1/{table}", params=params, json=fields, headers=_RETURN_ROWS)
    return _json_or_none(resp) or []


def delete(table: str, params: dict) -> list[dict]:
    """DELETE every row matching *params*; returns the deleted rows."""
    resp = _request("DELETE", f"/rest/v1/{table}", params=params, headers=_RETURN_ROWS)
    return _json_or_none(resp) or []


def rpc(function: str, args: dict | None = None) -> Any:
    """Call a Postgres function exposed through PostgREST."""
    resp = _request("POST", f"/rest/v1/rpc/{function}", json=args or {})
    return _json_or_none(resp)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def upload_object(bucket: str, path: str, data: bytes, content_type: str) -> None:
    """Upload bytes to ``bucket/path``. Existing objects are never overwritten."""
    _request(
        "POST",
        f"/storage/v1/object/{bucket}/{path}",
        data=data,
        headers={
            "Content-Type": content_type,
            "Cache-Control": "3600",
            "x-upsert": "false",
        },
        timeout=60,
    )


def public_url(bucket: str, path: str) -> str:
    return f"{_base_url()}/storage/v1/object/public/{bucket}/{path}"
