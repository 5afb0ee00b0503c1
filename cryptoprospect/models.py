from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PipelineStatus(str, Enum):
    """Outreach stages, in pipeline order."""
    UNCONTACTED = "Uncontacted"
    HOOK_BUILDING = "HookBuilding"
    HOOK_SENT = "HookSent"
    REPLIED = "Replied"
    DEMO_BUILT = "DemoBuilt"
    CONVERTED = "Converted"

    @classmethod
    def coerce(cls, value: object) -> PipelineStatus:
        """Parse a status value, falling back to Uncontacted for anything unknown."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNCONTACTED


PIPELINE_STATUSES = [s.value for s in PipelineStatus]


class Prospect(Base):
    __tablename__ = "prospects"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)  # "dl-<slug>"
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="Uncategorized")
    chains_json: Mapped[str] = mapped_column(Text, default="[]")
    tvl: Mapped[float] = mapped_column(Float, default=0.0)
    tvl_change_1m: Mapped[float | None] = mapped_column(Float, nullable=True)
    mcap: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_mcap_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    ath_change_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_change_7d: Mapped[float | None] = mapped_column(Float, nullable=True)
    github_activity_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    pain_score: Mapped[float] = mapped_column(Float, default=0.0)
    pain_score_raw: Mapped[float] = mapped_column(Float, default=0.0)
    pain_signals_json: Mapped[str] = mapped_column(Text, default="[]")
    treasury_gated: Mapped[bool] = mapped_column(Boolean, default=False)
    score_jumped: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    deliverables_json: Mapped[str] = mapped_column(Text, default="[]")
    sources_json: Mapped[str] = mapped_column(Text, default="[]")
    last_updated: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    url_defillama: Mapped[str | None] = mapped_column(String(500), nullable=True)
    url_coingecko: Mapped[str | None] = mapped_column(String(500), nullable=True)
    url_twitter: Mapped[str | None] = mapped_column(String(500), nullable=True)
    url_discord: Mapped[str | None] = mapped_column(String(500), nullable=True)


class PipelineEntry(Base):
    __tablename__ = "pipeline"

    prospect_id: Mapped[str] = mapped_column(String(200), ForeignKey("prospects.id"), primary_key=True)
    status: Mapped[str] = mapped_column(String(30), default=PipelineStatus.UNCONTACTED.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    contacted_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    follow_up_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    estimated_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    revenue: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
