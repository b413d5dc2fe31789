"""Helper utilities for provider adapters."""

from __future__ import annotations

from typing import Any

import httpx

MAX_ERROR_DETAIL_LENGTH = 300


def _detail_from_body(data: Any) -> str | None:
    if isinstance(data, dict):
        error_obj = data.get("error")
        if isinstance(error_obj, dict):
            parts = [
                part.strip()
                for part in (error_obj.get("status"), error_obj.get("message"))
                if isinstance(part, str) and part.strip()
            ]
            if parts:
                return " - ".join(parts)
            return str(error_obj) if error_obj else None
        if isinstance(data.get("message"), str):
            return data["message"]
    return str(data) if data else None


def extract_error_detail(
    response: httpx.Response, limit: int = MAX_ERROR_DETAIL_LENGTH
) -> str | None:
    """Return a whitespace-compacted, length-capped error detail, if any."""

    try:
        detail = _detail_from_body(response.json())
    except ValueError:
        detail = (response.text or "").strip() or None

    if not detail:
        return None
    compact = " ".join(detail.split())
    if len(compact) > limit:
        compact = f"{compact[: limit - 3]}..."
    return compact


__all__ = ["MAX_ERROR_DETAIL_LENGTH", "extract_error_detail"]
