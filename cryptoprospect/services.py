"""Shared read-side logic for the API and CLI: serialization, filters, export, stats."""
from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from typing import Any

from sqlalchemy.orm import Session

from cryptoprospect.models import PIPELINE_STATUSES, PipelineEntry, Prospect
from cryptoprospect.store import read_pipeline, read_prospects
from cryptoprospect.utils import json_parse

log = logging.getLogger(__name__)

CSV_HEADER = (
    "id", "name", "slug", "category", "tvl", "mcap",
    "painScore", "treasuryGated", "signals", "lastUpdated",
)

SCORE_BUCKETS = (("0-2", 0, 2), ("2-4", 2, 4), ("4-6", 4, 6), ("6-8", 6, 8), ("8-10", 8, 10.01))

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def prospect_summary(p: Prospect) -> dict:
    return {
        "id": p.id, "name": p.name, "slug": p.slug, "category": p.category,
        "chains": json_parse(p.chains_json, []),
        "tvl": p.tvl, "tvl_change_1m": p.tvl_change_1m,
        "mcap": p.mcap, "volume": p.volume, "volume_mcap_ratio": p.volume_mcap_ratio,
        "ath_change_pct": p.ath_change_pct, "price_change_7d": p.price_change_7d,
        "github_activity": json_parse(p.github_activity_json, None),
        "pain_score": p.pain_score, "pain_score_raw": p.pain_score_raw,
        "pain_signals": json_parse(p.pain_signals_json, []),
        "treasury_gated": bool(p.treasury_gated),
        "score_jumped": p.score_jumped,
        "deliverable_recommendations": json_parse(p.deliverables_json, []),
        "sources": json_parse(p.sources_json, []),
        "last_updated": _iso(p.last_updated),
        "url_defillama": p.url_defillama, "url_coingecko": p.url_coingecko,
        "url_twitter": p.url_twitter, "url_discord": p.url_discord,
    }


def pipeline_summary(entry: PipelineEntry) -> dict:
    return {
        "prospect_id": entry.prospect_id, "status": entry.status, "notes": entry.notes,
        "contacted_at": entry.contacted_at, "follow_up_at": entry.follow_up_at,
        "estimated_value": entry.estimated_value, "revenue": entry.revenue,
        "updated_at": _iso(entry.updated_at),
    }


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def filter_prospects(
    items: list[dict], *, min_score: float | None = None, category: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    """Filter serialized prospects; category must equal ignoring case, limit applies when positive."""
    if min_score is not None:
        items = [i for i in items if i["pain_score"] >= min_score]
    if category:
        q = category.strip().lower()
        items = [i for i in items if (i.get("category") or "").lower() == q]
    if limit is not None and limit > 0:
        items = items[:limit]
    return items


def find_recommendation_title(prospect: Prospect, deliverable_id: str) -> str | None:
    for rec in json_parse(prospect.deliverables_json, []):
        if rec.get("deliverable_id") == deliverable_id:
            return rec.get("title")
    return None


def resolve_deliverable_title(
    prospect: Prospect, deliverable_id: str | None, deliverable_title: str | None,
) -> str:
    """Explicit title, else the matching recommendation's title, else the id itself."""
    if deliverable_title:
        return deliverable_title
    if deliverable_id:
        return find_recommendation_title(prospect, deliverable_id) or deliverable_id
    return "Custom dashboard"


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _signals_cell(p: Prospect) -> str:
    signals = json_parse(p.pain_signals_json, [])
    return "; ".join(f"{s.get('key')}:{_fmt_number(s.get('points'))}" for s in signals)


def _fmt_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def prospects_to_csv(prospects: list[Prospect]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for p in prospects:
        writer.writerow([
            p.id, p.name, p.slug, p.category,
            _fmt_number(p.tvl), "" if p.mcap is None else _fmt_number(p.mcap),
            _fmt_number(p.pain_score), "1" if p.treasury_gated else "0",
            _signals_cell(p), _iso(p.last_updated) or "",
        ])
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def _bucket(score: float) -> str:
    for label, low, high in SCORE_BUCKETS:
        if low <= score < high:
            return label
    return SCORE_BUCKETS[0][0]


def compute_stats(session: Session) -> dict:
    prospects = read_prospects(session)
    by_category: Counter[str] = Counter()
    buckets: Counter[str] = Counter({label: 0 for label, _, _ in SCORE_BUCKETS})
    gated = jumps = 0
    total_score = 0.0
    for p in prospects:
        by_category[p.category or "Uncategorized"] += 1
        buckets[_bucket(p.pain_score)] += 1
        total_score += p.pain_score
        if p.treasury_gated:
            gated += 1
        if p.score_jumped:
            jumps += 1

    by_status: Counter[str] = Counter({s: 0 for s in PIPELINE_STATUSES})
    for entry in read_pipeline(session):
        by_status[entry.status] += 1

    return {
        "total": len(prospects),
        "treasury_gated": gated,
        "average_score": round(total_score / len(prospects), 2) if prospects else 0.0,
        "score_jumps": jumps,
        "by_category": dict(by_category),
        "by_status": dict(by_status),
        "score_buckets": dict(buckets),
    }
