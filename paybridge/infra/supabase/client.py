import logging
import os
from datetime import datetime, timezone
from typing import Any

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_TIMEOUT_SEC = 15


def _require_env(name: str, value: str):
    if not value:
        raise RuntimeError(f"Missing required env: {name}")


def supabase_url() -> str:
    return os.getenv("SUPABASE_URL", "").strip()


def ensure_supabase_env_for_db():
    _require_env("SUPABASE_URL", supabase_url())
    _require_env("SUPABASE_SERVICE_ROLE_KEY", os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip())


def supabase_admin_headers():
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    return {
        "apikey": supabase_key,
        "Authorization": f"Bearer {supabase_key}",
        "Content-Type": "application/json",
    }


def sb_rest_url(table: str) -> str:
    ensure_supabase_env_for_db()
    base = supabase_url().rstrip("/")
    return f"{base}/rest/v1/{table}"


def _truncated_body(r: requests.Response) -> str:
    body = (r.text or "")
    if len(body) > 800:
        body = body[:800] + "...(truncated)"
    return body


def _json_rows(r: requests.Response, verb: str) -> list:
    if r.status_code == 204 or not (r.content and r.content.strip()):
        return []

    ctype = (r.headers.get("content-type") or "").lower()
    if "application/json" not in ctype and not ctype.endswith("+json"):
        return []

    try:
        return r.json() or []
    except ValueError as e:
        raise RuntimeError(
            f"Supabase {verb} JSON decode failed: {e} "
            f"(status={r.status_code}, content-type={ctype}) body={_truncated_body(r)}"
        )


def sb_get_json(url: str, params: dict) -> list:
    r = requests.get(url, headers=supabase_admin_headers(), params=params, timeout=SUPABASE_TIMEOUT_SEC)

    if r.status_code >= 300:
        ctype = (r.headers.get("content-type") or "").lower()
        raise RuntimeError(
            f"Supabase GET failed: {r.status_code} {r.reason} "
            f"(content-type={ctype}) body={_truncated_body(r)}"
        )

    return _json_rows(r, "GET")


def sb_patch_json(url: str, payload: dict, params: dict | None = None, prefer: str | None = None) -> list:
    headers = supabase_admin_headers()
    if prefer:
        headers = {**headers, "Prefer": prefer}

    r = requests.patch(url, headers=headers, params=params, json=payload, timeout=SUPABASE_TIMEOUT_SEC)

    if r.status_code < 200 or r.status_code >= 300:
        logger.error("[sb][patch] FAILED url=%s status=%s body=%s", url, r.status_code, _truncated_body(r))
        raise RuntimeError(f"Supabase PATCH failed: {r.status_code} {r.text}")

    return _json_rows(r, "PATCH")


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


def to_iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def quote_filter_value(value: str) -> str:
    """Double-quote a value for use inside a PostgREST or=(...) filter."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
