"""Ingestion run: fetch, merge, score, enrich the top slice with GitHub, re-score, persist.

Two passes keep GitHub lookups (the only rate-ceilinged, slow source) for the
most promising leads:

1. DeFiLlama and the market source are fetched concurrently and merged without
   GitHub data. Every record gets a preliminary score ("Dead Repo" cannot fire).
2. The top ``min(max_github_requests, ceil(10% of records))`` ids (at least 1)
   by preliminary score are enriched in place, then every record is scored again
   and gets its deliverable recommendations.

Rows are compared with the previous run for score jumps and written in a single
batch at the end, so a failed run persists nothing. Runs are not safe to overlap
against the same database; the scheduler must run one at a time.
"""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from sqlalchemy.orm import Session

from cryptoprospect.config import Settings
from cryptoprospect.defillama import DefiLlamaClient
from cryptoprospect.deliverables import get_deliverable_recommendations
from cryptoprospect.github import GitHubClient
from cryptoprospect.markets import make_market_client
from cryptoprospect.merge import attach_github_for_top_ids, merge
from cryptoprospect.models import Prospect
from cryptoprospect.records import RawProspect
from cryptoprospect.scoring import score_prospect
from cryptoprospect.store import read_prospects, upsert_prospects
from cryptoprospect.utils import to_json, utc_now

log = logging.getLogger(__name__)

SCORE_JUMP_THRESHOLD = 2
GITHUB_TOP_PERCENT = 0.10
DEFAULT_MAX_GITHUB_REQUESTS = 30


@asynccontextmanager
async def open_http_client(settings: Settings) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
    ) as client:
        yield client


def select_top_ids(records: Sequence[RawProspect], max_github_requests: int) -> set[str]:
    """Ids of the highest preliminary scores, capped by ``max_github_requests``."""
    if not records:
        return set()
    scored = [(r.id, score_prospect(r).score) for r in records]
    scored.sort(key=lambda item: item[1], reverse=True)
    top_count = max(1, min(max_github_requests, math.ceil(len(scored) * GITHUB_TOP_PERCENT)))
    return {pid for pid, _ in scored[:top_count]}


def build_prospect(raw: RawProspect, previous: Prospect | None = None) -> Prospect:
    """Final scored row for one merged record, flagged if its score jumped."""
    result = score_prospect(raw)
    recommendations = get_deliverable_recommendations(result.signals)
    ratio = None
    if raw.mcap is not None and raw.mcap > 0 and raw.volume is not None:
        ratio = raw.volume / raw.mcap * 100
    jumped = previous is not None and result.score - previous.pain_score > SCORE_JUMP_THRESHOLD

    return Prospect(
        id=raw.id,
        name=raw.name,
        slug=raw.slug,
        category=raw.category,
        chains_json=to_json(raw.chains),
        tvl=raw.tvl,
        tvl_change_1m=raw.tvl_change_1m,
        mcap=raw.mcap,
        volume=raw.volume,
        volume_mcap_ratio=ratio,
        ath_change_pct=raw.ath_change_pct,
        price_change_7d=raw.price_change_7d,
        github_activity_json=to_json(raw.github_activity.to_dict()) if raw.github_activity else None,
        pain_score=result.score,
        pain_score_raw=result.raw_score,
        pain_signals_json=to_json([s.to_dict() for s in result.signals]),
        treasury_gated=result.treasury_gated,
        score_jumped=True if jumped else None,
        deliverables_json=to_json([r.to_dict() for r in recommendations]),
        sources_json=to_json(raw.sources),
        last_updated=utc_now(),
        url_defillama=raw.url_defillama,
        url_coingecko=raw.url_coingecko,
        url_twitter=raw.url_twitter,
        url_discord=raw.url_discord,
    )


async def run_ingestion(
    settings: Settings,
    session: Session,
    *,
    coingecko_max_pages: int | None = None,
    max_github_requests: int = DEFAULT_MAX_GITHUB_REQUESTS,
    http: httpx.AsyncClient | None = None,
) -> list[Prospect]:
    """Run the full pipeline and return the new rows without writing them."""
    settings.validate_coin_source()

    if http is None:
        async with open_http_client(settings) as client:
            return await run_ingestion(
                settings, session,
                coingecko_max_pages=coingecko_max_pages,
                max_github_requests=max_github_requests,
                http=client,
            )

    defillama = DefiLlamaClient(http)
    market_client = make_market_client(settings, http)
    github = GitHubClient(http, token=settings.github_token)

    log.info("Fetching DeFiLlama protocols and %s markets", market_client.label)
    protocols, markets = await asyncio.gather(
        defillama.fetch_protocols(),
        market_client.fetch_markets(coingecko_max_pages),
    )

    raw_list = await merge(protocols, markets, attach_github=False, market_label=market_client.label)

    top_ids = select_top_ids(raw_list, max_github_requests)
    await attach_github_for_top_ids(raw_list, top_ids, max_github_requests, github)

    previous = {p.id: p for p in read_prospects(session)}
    prospects = [build_prospect(raw, previous.get(raw.id)) for raw in raw_list]

    jumped = sum(1 for p in prospects if p.score_jumped)
    log.info("Scored %d prospects (%d score jumps)", len(prospects), jumped)
    return prospects


async def run_ingestion_and_save(
    settings: Settings,
    session: Session,
    *,
    coingecko_max_pages: int | None = None,
    max_github_requests: int = DEFAULT_MAX_GITHUB_REQUESTS,
    http: httpx.AsyncClient | None = None,
) -> int:
    """Run the pipeline and upsert every row by id. Returns the number written."""
    prospects = await run_ingestion(
        settings, session,
        coingecko_max_pages=coingecko_max_pages,
        max_github_requests=max_github_requests,
        http=http,
    )
    return upsert_prospects(session, prospects)
