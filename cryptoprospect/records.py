"""In-memory records passed between the source clients, merge, and scoring."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProtocolRecord:
    """One DeFiLlama protocol inside the TVL band."""
    id: str
    name: str
    slug: str
    category: str
    chains: tuple[str, ...]
    tvl: float
    tvl_change_1m: float | None
    gecko_id: str | None = None
    github: tuple[str, ...] = ()
    url_defillama: str | None = None
    url_coingecko: str | None = None
    url_twitter: str | None = None
    url_discord: str | None = None


@dataclass(frozen=True)
class MarketRecord:
    """One tradable asset from the market-data source.

    ``id`` is a CoinGecko coin id or a Coinranking UUID depending on the source.
    """
    id: str
    name: str
    slug: str
    mcap: float
    volume: float
    ath_change_pct: float | None
    price_change_7d: float | None


@dataclass(frozen=True)
class RepoActivity:
    last_commit_date: str | None
    commit_count_30d: int
    contributor_count: int
    repo_url: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RawProspect:
    id: str
    name: str
    slug: str
    category: str
    chains: list[str]
    tvl: float
    tvl_change_1m: float | None
    mcap: float | None = None
    volume: float | None = None
    ath_change_pct: float | None = None
    price_change_7d: float | None = None
    github_activity: RepoActivity | None = None
    sources: list[str] = field(default_factory=lambda: ["defillama"])
    vc_backed: bool | None = None
    github_slug: str | None = None
    url_defillama: str | None = None
    url_coingecko: str | None = None
    url_twitter: str | None = None
    url_discord: str | None = None


@dataclass(frozen=True)
class PainSignal:
    key: str
    points: float
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DeliverableRecommendation:
    deliverable_id: str
    title: str
    relevance: int
    estimated_value_min: int
    estimated_value_max: int
    build_hours: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
