from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ProjectScore(Base):
    """Latest score for a project; rescoring replaces the row."""

    __tablename__ = "project_scores"

    project_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    project_json: Mapped[str] = mapped_column(Text, default="{}")
    score_json: Mapped[str] = mapped_column(Text, nullable=False)
    research_json: Mapped[str] = mapped_column(Text, default="{}")
    model: Mapped[str] = mapped_column(String(100), default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(),
    )


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
