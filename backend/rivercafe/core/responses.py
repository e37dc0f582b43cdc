"""Standardized API response helpers.

Every endpoint answers with an envelope carrying an ``ok`` flag:
    {"ok": true, ...payload}
    {"ok": false, "error": "<reason>", "message": "<human text>"}

Pydantic models inside the payload are serialized with their camelCase
aliases by FastAPI's encoder.
"""

from typing import Any, Optional

from fastapi import Request


def ok_response(**payload: Any) -> dict:
    """Wrap a successful payload in the envelope."""
    return {"ok": True, **payload}


def error_payload(reason: str, message: str, **extra: Any) -> dict:
    """Build the failure envelope."""
    return {"ok": False, "error": reason, "message": message, **extra}


def page_response(key: str, items: list, total: int, skip: int = 0, limit: Optional[int] = None) -> dict:
    """Wrap a page of results: {"ok": true, "total": n, key: [...]}."""
    payload: dict[str, Any] = {"total": total, key: items, "skip": skip}
    if limit is not None:
        payload["limit"] = limit
    return ok_response(**payload)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""
