"""Tests for merging protocols with market data and attaching GitHub activity."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cryptoprospect.merge import attach_github_for_top_ids, merge, prospect_id, slugify
from cryptoprospect.records import MarketRecord, ProtocolRecord, RepoActivity


def _protocol(name: str, slug: str, gecko_id: str | None = None, github: tuple[str, ...] = ()) -> ProtocolRecord:
    return ProtocolRecord(
        id=slug, name=name, slug=slug, category="Dexes", chains=("Ethereum",),
        tvl=20_000_000, tvl_change_1m=-5.0, gecko_id=gecko_id, github=github,
    )


def _market(coin_id: str, symbol: str, mcap: float = 50_000_000) -> MarketRecord:
    return MarketRecord(
        id=coin_id, name=coin_id.title(), slug=symbol.lower(), mcap=mcap,
        volume=1_000_000, ath_change_pct=-80.0, price_change_7d=3.0,
    )


ACTIVITY = RepoActivity("2024-05-01T00:00:00Z", 12, 7, "https://github.com/acme/acme")


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("cryptoprospect.merge._pause", new=AsyncMock()) as pause:
        yield pause


def test_slugify():
    assert slugify("Foo Finance V2!") == "foo-finance-v2"
    assert prospect_id("foo") == "dl-foo"


class TestMerge:
    @pytest.mark.asyncio
    async def test_one_record_per_protocol_with_unique_ids(self):
        protocols = [_protocol("Alpha", "alpha"), _protocol("Beta", "beta"), _protocol("Gamma", "gamma")]
        result = await merge(protocols, [_market("zeta", "ZETA")])
        assert [r.id for r in result] == ["dl-alpha", "dl-beta", "dl-gamma"]
        assert len({r.id for r in result}) == len(protocols)

    @pytest.mark.asyncio
    async def test_match_by_gecko_id(self):
        result = await merge([_protocol("Alpha Protocol", "alpha", gecko_id="alpha-token")],
                             [_market("alpha-token", "ALP", mcap=12_345)])
        raw = result[0]
        assert raw.mcap == 12_345
        assert raw.ath_change_pct == -80.0
        assert raw.sources == ["defillama", "coingecko"]

    @pytest.mark.asyncio
    async def test_match_by_name_slug_without_gecko_id(self):
        result = await merge([_protocol("Foo", "foo-protocol")], [_market("foo-coin", "FOO")],
                             market_label="coinranking")
        assert result[0].mcap == 50_000_000
        assert result[0].sources == ["defillama", "coinranking"]

    @pytest.mark.asyncio
    async def test_gecko_id_does_not_fall_back_to_name(self):
        result = await merge([_protocol("Foo", "foo", gecko_id="missing")], [_market("foo-coin", "FOO")])
        assert result[0].mcap is None

    @pytest.mark.asyncio
    async def test_unmatched_protocol_has_no_market_fields(self):
        result = await merge([_protocol("Lonely", "lonely")], [])
        raw = result[0]
        assert raw.mcap is None
        assert raw.volume is None
        assert raw.ath_change_pct is None
        assert raw.price_change_7d is None
        assert raw.sources == ["defillama"]

    @pytest.mark.asyncio
    async def test_market_only_assets_not_surfaced(self):
        result = await merge([_protocol("Alpha", "alpha")], [_market("other", "OTH"), _market("x", "X")])
        assert [r.id for r in result] == ["dl-alpha"]

    @pytest.mark.asyncio
    async def test_github_slug_kept_without_lookups(self):
        github = MagicMock()
        github.activity_for_reference = AsyncMock(return_value=ACTIVITY)
        result = await merge([_protocol("Acme", "acme", github=("org/repo",))], [], github=github)
        assert result[0].github_slug == "org/repo"
        assert result[0].github_activity is None
        github.activity_for_reference.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inline_github_respects_max_requests(self):
        github = MagicMock()
        github.activity_for_reference = AsyncMock(return_value=ACTIVITY)
        protocols = [_protocol(f"P{i}", f"p{i}", github=(f"org{i}",)) for i in range(4)]
        result = await merge(protocols, [], attach_github=True, max_github_requests=2, github=github)
        assert github.activity_for_reference.await_count == 2
        assert [r.github_activity is not None for r in result] == [True, True, False, False]
        assert result[0].sources == ["defillama", "github"]


class TestAttachGithubForTopIds:
    @pytest.mark.asyncio
    async def test_only_selected_ids_are_enriched(self):
        github = MagicMock()
        github.activity_for_reference = AsyncMock(return_value=ACTIVITY)
        records = await merge(
            [_protocol("A", "a", github=("a/a",)), _protocol("B", "b", github=("b/b",))], [],
        )
        spent = await attach_github_for_top_ids(records, {"dl-b"}, 10, github)
        assert spent == 1
        github.activity_for_reference.assert_awaited_once_with("b/b")
        assert records[0].github_activity is None
        assert records[1].github_activity == ACTIVITY
        assert records[1].sources == ["defillama", "github"]

    @pytest.mark.asyncio
    async def test_failed_lookup_leaves_record_untouched(self):
        github = MagicMock()
        github.activity_for_reference = AsyncMock(return_value=None)
        records = await merge([_protocol("A", "a", github=("a/a",))], [])
        spent = await attach_github_for_top_ids(records, {"dl-a"}, 10, github)
        assert spent == 1
        assert records[0].github_activity is None
        assert records[0].sources == ["defillama"]

    @pytest.mark.asyncio
    async def test_records_without_repo_cost_nothing(self):
        github = MagicMock()
        github.activity_for_reference = AsyncMock(return_value=ACTIVITY)
        records = await merge([_protocol("A", "a"), _protocol("B", "b", github=("b",))], [])
        spent = await attach_github_for_top_ids(records, {"dl-a", "dl-b"}, 1, github)
        assert spent == 1
        github.activity_for_reference.assert_awaited_once_with("b")
