"""
RuleSet model: a versioned earnings split configuration.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, false, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class RuleSet(Base, TimestampMixin):
    """
    Versioned, ordered list of fee split rules.

    Rules are stored as JSON documents tagged by "kind" (see
    src.services.rules for the shapes). A row's rules are never edited
    after insert; a revision is a new row with the next version.

    At most one row may have is_active = true. The partial unique index
    enforces this at the database level.
    """

    __tablename__ = "rule_sets"
    __table_args__ = (
        Index(
            "uq_rule_sets_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )
    # Server defaults are read back on insert; responses serialize them right away
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    version: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
        default="Earnings rules",
    )
    rules: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        comment="Ordered rule documents; first match wins",
    )
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    derived_from_version: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Version this one was revised from",
    )

    # Audit
    created_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    updated_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<RuleSet(id={self.id}, version={self.version}, active={self.is_active})>"
