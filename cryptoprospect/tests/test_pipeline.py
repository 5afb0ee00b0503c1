"""Tests for the two-pass ingestion run against an in-memory database."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cryptoprospect.config import Settings
from cryptoprospect.errors import ConfigError
from cryptoprospect.models import Base, Prospect
from cryptoprospect.pipeline import build_prospect, run_ingestion, run_ingestion_and_save, select_top_ids
from cryptoprospect.records import MarketRecord, ProtocolRecord, RawProspect, RepoActivity
from cryptoprospect.store import get_prospect, read_prospects

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = factory()
    try:
        yield sess
    finally:
        sess.close()


PROTOCOLS = [
    ProtocolRecord(
        id="1", name="Realty", slug="realty", category="RWA", chains=("Ethereum", "Base", "Polygon"),
        tvl=40_000_000, tvl_change_1m=-25.0, gecko_id="realty", github=("realty-labs/core",),
    ),
    ProtocolRecord(
        id="2", name="Swapper", slug="swapper", category="Dexes", chains=("Ethereum",),
        tvl=15_000_000, tvl_change_1m=2.0, github=("swapper",),
    ),
    ProtocolRecord(
        id="3", name="Quiet", slug="quiet", category="Yield", chains=("Ethereum",),
        tvl=12_000_000, tvl_change_1m=None,
    ),
]

MARKETS = [
    MarketRecord(
        id="realty", name="Realty", slug="rlt", mcap=20_000_000, volume=4_000_000,
        ath_change_pct=-85.0, price_change_7d=-10.0,
    ),
]

ACTIVITY = RepoActivity("2024-06-01T00:00:00Z", 20, 9, "https://github.com/realty-labs/core")


@pytest.fixture()
def sources():
    """Patch the upstream fetches so the run never touches the network."""
    with patch("cryptoprospect.pipeline.DefiLlamaClient.fetch_protocols",
               new=AsyncMock(return_value=PROTOCOLS)) as protocols, \
         patch("cryptoprospect.markets.CoinGeckoClient.fetch_markets",
               new=AsyncMock(return_value=MARKETS)) as markets, \
         patch("cryptoprospect.pipeline.GitHubClient.activity_for_reference",
               new=AsyncMock(return_value=ACTIVITY)) as github, \
         patch("cryptoprospect.merge._pause", new=AsyncMock()):
        yield protocols, markets, github


def _raw(pid: str, chains: int, tvl: float = 50_000_000) -> RawProspect:
    return RawProspect(
        id=pid, name=pid, slug=pid, category="Yield",
        chains=[f"c{i}" for i in range(chains)], tvl=tvl, tvl_change_1m=None,
    )


# ---------------------------------------------------------------------------
# Top-N selection
# ---------------------------------------------------------------------------


class TestSelectTopIds:
    def test_ten_percent_rounded_up(self):
        records = [_raw(f"p{i}", 1) for i in range(25)]
        assert len(select_top_ids(records, 30)) == 3

    def test_capped_by_max_requests(self):
        records = [_raw(f"p{i}", 1) for i in range(100)]
        assert len(select_top_ids(records, 4)) == 4

    def test_at_least_one(self):
        assert len(select_top_ids([_raw("only", 1)], 30)) == 1
        assert select_top_ids([], 30) == set()

    def test_prefers_highest_preliminary_score(self):
        records = [_raw(f"low{i}", 1) for i in range(9)] + [_raw("multi", 3)]
        assert select_top_ids(records, 30) == {"multi"}


# ---------------------------------------------------------------------------
# Row building
# ---------------------------------------------------------------------------


class TestBuildProspect:
    def test_score_jump_flagged(self):
        raw = _raw("dl-x", 3)
        previous = Prospect(id="dl-x", name="x", slug="x", pain_score=1.0)
        row = build_prospect(raw, previous)
        assert row.pain_score == 4
        assert row.score_jumped is True

    def test_jump_of_exactly_two_is_not_flagged(self):
        row = build_prospect(_raw("dl-x", 3), Prospect(id="dl-x", name="x", slug="x", pain_score=2.0))
        assert row.score_jumped is None

    def test_no_previous_row_means_no_flag(self):
        assert build_prospect(_raw("dl-x", 3)).score_jumped is None

    def test_volume_mcap_ratio_and_json_fields(self):
        raw = _raw("dl-x", 3)
        raw.mcap = 1_000_000
        raw.volume = 200_000
        row = build_prospect(raw)
        assert row.volume_mcap_ratio == pytest.approx(20.0)
        keys = [s["key"] for s in json.loads(row.pain_signals_json)]
        assert keys == ["Multi-chain", "Volume/MCap"]
        recs = json.loads(row.deliverables_json)
        assert [r["deliverable_id"] for r in recs] == ["Multi-chain", "Volume/MCap"]
        assert json.loads(row.sources_json) == ["defillama"]
        assert row.github_activity_json is None


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


class TestRunIngestion:
    @pytest.mark.asyncio
    async def test_coin_source_misconfiguration_fails_before_fetching(self, session, sources):
        protocols, markets, _ = sources
        settings = Settings(coin_source="coinranking")
        with pytest.raises(ConfigError):
            await run_ingestion(settings, session)
        protocols.assert_not_awaited()
        markets.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_run_scores_and_enriches_top_slice(self, session, sources):
        _, markets, github = sources
        async with httpx.AsyncClient() as http:
            rows = await run_ingestion(Settings(), session, coingecko_max_pages=3, http=http)

        markets.assert_awaited_once_with(3)
        by_id = {r.id: r for r in rows}
        assert set(by_id) == {"dl-realty", "dl-swapper", "dl-quiet"}

        # ceil(3 * 10%) = 1: only the top preliminary score gets a lookup.
        github.assert_awaited_once_with("realty-labs/core")
        realty = by_id["dl-realty"]
        assert json.loads(realty.sources_json) == ["defillama", "coingecko", "github"]
        assert json.loads(realty.github_activity_json)["contributor_count"] == 9
        assert realty.pain_score == 10
        assert realty.treasury_gated is False
        assert realty.mcap == 20_000_000

        swapper = by_id["dl-swapper"]
        assert swapper.mcap is None
        assert swapper.github_activity_json is None
        assert [s["key"] for s in json.loads(swapper.pain_signals_json)] == ["DEX/AMM"]

        assert read_prospects(session) == []

    @pytest.mark.asyncio
    async def test_save_upserts_and_flags_jumps(self, session, sources):
        session.add(Prospect(id="dl-realty", name="Realty", slug="realty", pain_score=3.0))
        session.add(Prospect(id="dl-quiet", name="Quiet", slug="quiet", pain_score=0.0))
        session.commit()

        async with httpx.AsyncClient() as http:
            written = await run_ingestion_and_save(Settings(), session, http=http)

        assert written == 3
        assert len(read_prospects(session)) == 3
        assert get_prospect(session, "dl-realty").score_jumped is True
        assert get_prospect(session, "dl-quiet").score_jumped is None
        assert get_prospect(session, "dl-swapper").pain_score == 2
