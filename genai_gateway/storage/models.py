"""ORM model for generation usage records."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, func

from .database import Base


class GenAIApiUsage(Base):
    __tablename__ = "genai_api_usage"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    service_name = Column(String(100), nullable=False)
    operation = Column(String(100), nullable=False)
    model_name = Column(String(100), nullable=False)
    user_id = Column(String(64))
    input_tokens = Column(Integer)
    output_tokens = Column(Integer)
    total_tokens = Column(Integer)
    duration_ms = Column(Integer)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_genai_api_usage_service_created", "service_name", "created_at"),
        Index("ix_genai_api_usage_user_created", "user_id", "created_at"),
        Index("ix_genai_api_usage_success_created", "success", "created_at"),
        Index("ix_genai_api_usage_model_created", "model_name", "created_at"),
        Index("ix_genai_api_usage_created_at", "created_at"),
    )
