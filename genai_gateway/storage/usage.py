"""Append-only usage log for generation calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, sessionmaker

from .database import session_scope
from .models import GenAIApiUsage

logger = logging.getLogger("genai.usage")


@dataclass(frozen=True)
class UsageRecord:
    service_name: str
    operation: str
    model_name: str
    success: bool
    duration_ms: int | None = None
    user_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def start_of_day(now: datetime | None = None, days_back: int = 0) -> datetime:
    now = now or datetime.now(timezone.utc)
    day = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    return day - timedelta(days=days_back)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _serialize(row: GenAIApiUsage) -> dict[str, Any]:
    created_at = _as_utc(row.created_at)
    return {
        "id": row.id,
        "service_name": row.service_name,
        "operation": row.operation,
        "model_name": row.model_name,
        "user_id": row.user_id,
        "input_tokens": row.input_tokens,
        "output_tokens": row.output_tokens,
        "total_tokens": row.total_tokens,
        "duration_ms": row.duration_ms,
        "success": row.success,
        "error_message": row.error_message,
        "metadata": row.meta or {},
        "created_at": created_at.isoformat() if created_at else None,
    }


class UsageLog:
    """Writes and aggregates ``genai_api_usage`` rows."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    async def record(self, record: UsageRecord) -> str:
        """Insert one record off the event loop and return its id."""
        return await asyncio.to_thread(self._insert, record)

    def _insert(self, record: UsageRecord) -> str:
        row = GenAIApiUsage(
            service_name=record.service_name,
            operation=record.operation,
            model_name=record.model_name,
            user_id=record.user_id,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
            total_tokens=record.total_tokens,
            duration_ms=record.duration_ms,
            success=record.success,
            error_message=record.error_message,
            meta=dict(record.metadata),
            created_at=record.created_at,
        )
        with session_scope(self._session_factory) as session:
            session.add(row)
            session.flush()
            return row.id

    def get(self, record_id: str) -> dict[str, Any] | None:
        with session_scope(self._session_factory) as session:
            row = session.get(GenAIApiUsage, record_id)
            return _serialize(row) if row else None

    def recent(self, limit: int = 50, *, success: bool | None = None) -> list[dict[str, Any]]:
        """Return the newest records first, optionally filtered by outcome."""
        stmt = select(GenAIApiUsage).order_by(GenAIApiUsage.created_at.desc()).limit(limit)
        if success is not None:
            stmt = stmt.where(GenAIApiUsage.success.is_(success))
        with session_scope(self._session_factory) as session:
            return [_serialize(row) for row in session.scalars(stmt).all()]

    def recent_errors(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.recent(limit, success=False)

    def stats_since(self, start: datetime) -> dict[str, Any]:
        """Aggregate request counts, tokens and latency for records since ``start``."""
        since = GenAIApiUsage.created_at >= start
        with session_scope(self._session_factory) as session:
            total, successful, tokens, duration = session.execute(
                select(
                    func.count(GenAIApiUsage.id),
                    func.coalesce(func.sum(case((GenAIApiUsage.success.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(GenAIApiUsage.total_tokens), 0),
                    func.coalesce(func.sum(GenAIApiUsage.duration_ms), 0),
                ).where(since)
            ).one()
            by_service = session.execute(
                select(GenAIApiUsage.service_name, func.count(GenAIApiUsage.id))
                .where(since)
                .group_by(GenAIApiUsage.service_name)
            ).all()
            by_model = session.execute(
                select(GenAIApiUsage.model_name, func.count(GenAIApiUsage.id))
                .where(since)
                .group_by(GenAIApiUsage.model_name)
            ).all()

        return {
            "since": start.isoformat(),
            "total_requests": total,
            "successful_requests": int(successful),
            "failed_requests": total - int(successful),
            "total_tokens": int(tokens),
            "average_duration_ms": round(int(duration) / total) if total else 0,
            "requests_by_service": {name: count for name, count in by_service},
            "requests_by_model": {name: count for name, count in by_model},
        }


__all__ = ["UsageLog", "UsageRecord", "start_of_day"]
