"""Pydantic request/response schemas for the CryptoProspect API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator


class PainSignalOut(BaseModel):
    key: str
    points: float
    explanation: str


class DeliverableOut(BaseModel):
    deliverable_id: str
    title: str
    relevance: int
    estimated_value_min: int
    estimated_value_max: int
    build_hours: int


class ProspectOut(BaseModel):
    id: str
    name: str
    slug: str
    category: str
    chains: list[str] = []
    tvl: float
    tvl_change_1m: float | None = None
    mcap: float | None = None
    volume: float | None = None
    volume_mcap_ratio: float | None = None
    ath_change_pct: float | None = None
    price_change_7d: float | None = None
    github_activity: dict[str, Any] | None = None
    pain_score: float
    pain_score_raw: float
    pain_signals: list[PainSignalOut] = []
    treasury_gated: bool
    score_jumped: bool | None = None
    deliverable_recommendations: list[DeliverableOut] = []
    sources: list[str] = []
    last_updated: str | None = None
    url_defillama: str | None = None
    url_coingecko: str | None = None
    url_twitter: str | None = None
    url_discord: str | None = None


class PipelineEntryOut(BaseModel):
    prospect_id: str
    status: str
    notes: str | None = None
    contacted_at: str | None = None
    follow_up_at: str | None = None
    estimated_value: float | None = None
    revenue: float | None = None
    updated_at: str | None = None


class ProspectDetail(BaseModel):
    prospect: ProspectOut
    pipeline_entry: PipelineEntryOut | None = None


class PipelineUpdate(BaseModel):
    """Partial pipeline update. Malformed status and amounts fall back instead of failing."""
    prospect_id: str | None = None
    status: str | None = None
    notes: str | None = None
    contacted_at: str | None = None
    follow_up_at: str | None = None
    estimated_value: float | None = None
    revenue: float | None = None

    @field_validator("prospect_id")
    @classmethod
    def blank_id_is_missing(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("status", mode="before")
    @classmethod
    def status_as_text(cls, v: Any) -> str | None:
        # Unknown stages are coerced to Uncontacted by the store.
        return None if v is None else str(v)

    @field_validator("estimated_value", "revenue", mode="before")
    @classmethod
    def numbers_only(cls, v: Any) -> float | None:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v


class DraftRequest(BaseModel):
    prospect_id: str | None = None
    deliverable_id: str | None = None
    deliverable_title: str | None = None


class EmailDraft(BaseModel):
    email_body: str
    subject: str | None = None


class DeliverableSpec(BaseModel):
    tech_stack: str
    hours: str
    price_range: str
    proof_of_work_paragraph: str


class StatsOut(BaseModel):
    total: int
    treasury_gated: int
    average_score: float
    score_jumps: int
    by_category: dict[str, int]
    by_status: dict[str, int]
    score_buckets: dict[str, int]
