"""Merge DeFiLlama protocols with market data and, optionally, GitHub activity.

DeFiLlama is authoritative: every protocol yields exactly one RawProspect and
market-only assets are never surfaced. Market rows are matched by the
protocol's ``gecko_id`` when it has one, otherwise by a slug derived from the
protocol name compared against the asset's ticker slug.
"""
from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence

from cryptoprospect.github import GitHubClient
from cryptoprospect.records import MarketRecord, ProtocolRecord, RawProspect

log = logging.getLogger(__name__)

PRIMARY_SOURCE = "defillama"
GITHUB_SOURCE = "github"
ID_PREFIX = "dl-"

_GITHUB_DELAY = 0.8


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def prospect_id(slug: str) -> str:
    return f"{ID_PREFIX}{slug}"


def _to_raw(protocol: ProtocolRecord, market: MarketRecord | None, market_label: str) -> RawProspect:
    raw = RawProspect(
        id=prospect_id(protocol.slug),
        name=protocol.name,
        slug=protocol.slug,
        category=protocol.category,
        chains=list(protocol.chains),
        tvl=protocol.tvl,
        tvl_change_1m=protocol.tvl_change_1m,
        sources=[PRIMARY_SOURCE],
        github_slug=protocol.github[0] if protocol.github else None,
        url_defillama=protocol.url_defillama,
        url_coingecko=protocol.url_coingecko,
        url_twitter=protocol.url_twitter,
        url_discord=protocol.url_discord,
    )
    if market is not None:
        raw.mcap = market.mcap
        raw.volume = market.volume
        raw.ath_change_pct = market.ath_change_pct
        raw.price_change_7d = market.price_change_7d
        raw.sources.append(market_label)
    return raw


async def merge(
    protocols: Sequence[ProtocolRecord],
    markets: Iterable[MarketRecord],
    *,
    attach_github: bool = False,
    max_github_requests: int = 20,
    market_label: str = "coingecko",
    github: GitHubClient | None = None,
) -> list[RawProspect]:
    """Build one RawProspect per protocol.

    With ``attach_github`` and a client, GitHub activity is fetched for
    protocols that list a repo, spending at most ``max_github_requests`` lookups.
    """
    by_id: dict[str, MarketRecord] = {}
    by_slug: dict[str, MarketRecord] = {}
    for m in markets:
        by_id[m.id] = m
        by_slug[m.slug] = m

    fetch_github = attach_github and github is not None
    spent = 0
    results: list[RawProspect] = []
    for protocol in protocols:
        if protocol.gecko_id:
            market = by_id.get(protocol.gecko_id)
        else:
            market = by_slug.get(slugify(protocol.name))
        raw = _to_raw(protocol, market, market_label)

        if fetch_github and raw.github_slug and spent < max_github_requests:
            spent += 1
            activity = await github.activity_for_reference(raw.github_slug)  # type: ignore[union-attr]
            if activity is not None:
                raw.github_activity = activity
                raw.sources.append(GITHUB_SOURCE)
            await _pause(_GITHUB_DELAY)

        results.append(raw)

    matched = sum(1 for r in results if len(r.sources) > 1)
    log.info("Merged %d protocols (%d with market or GitHub data)", len(results), matched)
    return results


async def attach_github_for_top_ids(
    records: Sequence[RawProspect],
    top_ids: set[str],
    max_requests: int,
    github: GitHubClient,
) -> int:
    """Fetch GitHub activity for records whose id is in ``top_ids``. Mutates in place.

    Returns the number of lookups spent.
    """
    spent = 0
    for raw in records:
        if spent >= max_requests:
            break
        if raw.id not in top_ids or not raw.github_slug:
            continue
        spent += 1
        activity = await github.activity_for_reference(raw.github_slug)
        if activity is not None:
            raw.github_activity = activity
            if GITHUB_SOURCE not in raw.sources:
                raw.sources.append(GITHUB_SOURCE)
        await _pause(_GITHUB_DELAY)

    log.info("GitHub enrichment: %d lookups for %d selected prospects", spent, len(top_ids))
    return spent
