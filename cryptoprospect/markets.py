"""Market-data clients: coins ranked 200-2000 by market cap.

Two interchangeable sources return the same :class:`MarketRecord` shape:

- **CoinGecko** (rank-paginated, ``/coins/markets``). Works without a key on the
  free tier; a demo key uses ``api.coingecko.com`` with ``x-cg-demo-api-key``,
  a pro key (``COINGECKO_PRO=1``) uses ``pro-api.coingecko.com`` with
  ``x-cg-pro-api-key``.
- **Coinranking** (offset-paginated, ``/coins``). Requires ``COINRANKING_API_KEY``.

Exactly one is selected per run via ``COIN_SOURCE``. Page fetches are serialized
with fixed pauses; those pauses keep us under the providers' rate limits.
"""
from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any

import httpx

from cryptoprospect.config import Settings
from cryptoprospect.errors import ConfigError, SourceError
from cryptoprospect.records import MarketRecord
from cryptoprospect.utils import to_float

log = logging.getLogger(__name__)

RANK_MIN = 200
RANK_MAX = 2000
PAGE_SIZE = 100


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


class MarketDataClient(ABC):
    """Fetches top-ranked assets by market cap, normalized."""

    label: str

    @abstractmethod
    async def fetch_markets(self, max_pages: int | None = None) -> list[MarketRecord]:
        """Return assets ranked 200-2000."""


# ---------------------------------------------------------------------------
# CoinGecko
# ---------------------------------------------------------------------------

COINGECKO_FREE = "https://api.coingecko.com/api/v3"
COINGECKO_PRO = "https://pro-api.coingecko.com/api/v3"

# Demo key on the pro URL or pro key on the free URL.
_BASE_MISMATCH_CODES = {10010, 10011}

_WARMUP_DELAY = 2.0
_PAGE_DELAY_WITH_KEY = 1.2
_PAGE_DELAY_NO_KEY = 2.5
_DEFAULT_RETRY_AFTER = 60


def page_range_for_ranks(rank_min: int, rank_max: int, page_size: int = PAGE_SIZE) -> tuple[int, int]:
    """First and last (inclusive) 1-based page covering ranks [rank_min, rank_max]."""
    return (rank_min - 1) // page_size + 1, (rank_max - 1) // page_size + 1


def _retry_after_seconds(resp: httpx.Response) -> int:
    try:
        value = int(resp.headers.get("Retry-After", ""))
    except ValueError:
        return _DEFAULT_RETRY_AFTER
    return value or _DEFAULT_RETRY_AFTER


def _provider_error_code(resp: httpx.Response) -> int | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    status = body.get("status") if isinstance(body.get("status"), dict) else {}
    code = body.get("error_code", status.get("error_code"))
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def normalize_coingecko(item: dict[str, Any]) -> MarketRecord:
    price_7d = item.get("price_change_percentage_7d_in_currency")
    if price_7d is None:
        price_7d = item.get("price_change_percentage_24h")
    return MarketRecord(
        id=str(item.get("id") or ""),
        name=str(item.get("name") or ""),
        slug=str(item.get("symbol") or "").lower(),
        mcap=float(item.get("market_cap") or 0),
        volume=float(item.get("total_volume") or 0),
        ath_change_pct=to_float(item.get("ath_change_percentage")),
        price_change_7d=to_float(price_7d),
    )


class CoinGeckoClient(MarketDataClient):
    label = "coingecko"

    def __init__(self, http: httpx.AsyncClient, api_key: str | None = None, pro: bool = False):
        self._http = http
        self._api_key = api_key
        self._base = COINGECKO_PRO if pro else COINGECKO_FREE

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> CoinGeckoClient:
        return cls(http, api_key=settings.coingecko_api_key, pro=settings.coingecko_pro)

    def _headers(self, base: str) -> dict[str, str]:
        if not self._api_key:
            return {}
        if base == COINGECKO_PRO:
            return {"x-cg-pro-api-key": self._api_key}
        return {"x-cg-demo-api-key": self._api_key}

    async def _get(self, base: str, page: int) -> httpx.Response:
        return await self._http.get(
            f"{base}/coins/markets",
            params={
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": PAGE_SIZE,
                "page": page,
            },
            headers=self._headers(base),
        )

    async def fetch_page(self, page: int) -> list[dict[str, Any]]:
        """Fetch one markets page. Page 1 = ranks 1-100, page 2 = 101-200, ...

        Retries once after ``Retry-After`` on 429, and once against the other
        base URL when the provider reports a key/base mismatch.
        """
        base = self._base
        resp = await self._get(base, page)

        if resp.status_code == 429:
            wait = _retry_after_seconds(resp)
            log.warning("CoinGecko rate limited on page %d, retrying in %ds", page, wait)
            await _pause(wait)
            resp = await self._get(base, page)

        if resp.status_code == 400 and self._api_key:
            code = _provider_error_code(resp)
            if code not in _BASE_MISMATCH_CODES:
                raise SourceError(f"CoinGecko markets 400: {resp.text[:500]}", 400)
            alt_base = COINGECKO_FREE if base == COINGECKO_PRO else COINGECKO_PRO
            log.warning("CoinGecko key/base mismatch (error %s), retrying against %s", code, alt_base)
            resp = await self._get(alt_base, page)

        if resp.status_code >= 400:
            raise SourceError(f"CoinGecko markets {resp.status_code}: {resp.text[:500]}", resp.status_code)
        data = resp.json()
        return data if isinstance(data, list) else []

    async def fetch_rank_range(
        self, rank_min: int, rank_max: int, max_pages: int | None = None,
    ) -> list[MarketRecord]:
        """Fetch pages covering [rank_min, rank_max] and drop out-of-band ranks."""
        first_page, last_page = page_range_for_ranks(rank_min, rank_max)
        if max_pages is not None:
            last_page = min(last_page, first_page + max_pages - 1)
        page_delay = _PAGE_DELAY_WITH_KEY if self._api_key else _PAGE_DELAY_NO_KEY

        await _pause(_WARMUP_DELAY)

        records: list[MarketRecord] = []
        for page in range(first_page, last_page + 1):
            items = await self.fetch_page(page)
            if not items:
                break
            for item in items:
                rank = item.get("market_cap_rank") or 0
                if rank < rank_min or rank > rank_max:
                    continue
                records.append(normalize_coingecko(item))
            log.debug("CoinGecko page %d: %d items", page, len(items))
            if page < last_page:
                await _pause(page_delay)

        log.info("CoinGecko: %d coins in ranks %d-%d", len(records), rank_min, rank_max)
        return records

    async def fetch_markets(self, max_pages: int | None = None) -> list[MarketRecord]:
        return await self.fetch_rank_range(RANK_MIN, RANK_MAX, max_pages)


# ---------------------------------------------------------------------------
# Coinranking
# ---------------------------------------------------------------------------

COINRANKING_API = "https://api.coinranking.com/v2"

_CR_WARMUP_DELAY = 0.5
_CR_PAGE_DELAY = 0.8


def normalize_coinranking(coin: dict[str, Any]) -> MarketRecord:
    price = to_float(coin.get("price"))
    ath = coin.get("allTimeHigh") or {}
    ath_price = to_float(ath.get("price")) if isinstance(ath, dict) else None
    ath_change = None
    if price is not None and ath_price is not None and ath_price > 0:
        ath_change = (price - ath_price) / ath_price * 100
    return MarketRecord(
        id=str(coin.get("uuid") or ""),
        name=str(coin.get("name") or ""),
        slug=str(coin.get("symbol") or "").lower(),
        mcap=to_float(coin.get("marketCap")) or 0.0,
        volume=to_float(coin.get("24hVolume")) or 0.0,
        ath_change_pct=ath_change,
        price_change_7d=to_float(coin.get("change")),
    )


class CoinrankingClient(MarketDataClient):
    label = "coinranking"

    def __init__(self, http: httpx.AsyncClient, api_key: str | None):
        self._http = http
        self._api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> CoinrankingClient:
        return cls(http, api_key=settings.coinranking_api_key)

    def _require_key(self) -> str:
        if not self._api_key:
            raise ConfigError("COINRANKING_API_KEY is required when using Coinranking as coin source.")
        return self._api_key

    async def fetch_page(self, offset: int, limit: int = PAGE_SIZE) -> list[dict[str, Any]]:
        resp = await self._http.get(
            f"{COINRANKING_API}/coins",
            params={
                "orderBy": "marketCap",
                "orderDirection": "desc",
                "limit": limit,
                "offset": offset,
                "timePeriod": "7d",
            },
            headers={"x-access-token": self._require_key()},
        )
        if resp.status_code >= 400:
            raise SourceError(f"Coinranking coins {resp.status_code}: {resp.text[:500]}", resp.status_code)
        body = resp.json()
        if not isinstance(body, dict):
            raise SourceError("Coinranking invalid response")
        coins = (body.get("data") or {}).get("coins")
        if body.get("status") != "success" or not isinstance(coins, list):
            raise SourceError("Coinranking invalid response")
        return coins

    async def fetch_markets(self, max_pages: int | None = None) -> list[MarketRecord]:
        """Fetch ranks 200-2000. ``max_pages`` is ignored; the rank ceiling bounds the loop."""
        self._require_key()
        num_pages = math.ceil((RANK_MAX - RANK_MIN + 1) / PAGE_SIZE)

        await _pause(_CR_WARMUP_DELAY)

        records: list[MarketRecord] = []
        for i in range(num_pages):
            offset = RANK_MIN - 1 + i * PAGE_SIZE
            coins = await self.fetch_page(offset)
            if not coins:
                break
            for j, coin in enumerate(coins):
                if offset + j + 1 > RANK_MAX:
                    break
                records.append(normalize_coinranking(coin))
            if len(coins) < PAGE_SIZE or offset + PAGE_SIZE >= RANK_MAX:
                break
            await _pause(_CR_PAGE_DELAY)

        log.info("Coinranking: %d coins in ranks %d-%d", len(records), RANK_MIN, RANK_MAX)
        return records


def make_market_client(settings: Settings, http: httpx.AsyncClient) -> MarketDataClient:
    """Build the configured market-data client, failing fast on a missing key."""
    settings.validate_coin_source()
    if settings.coin_source == "coinranking":
        return CoinrankingClient.from_settings(settings, http)
    return CoinGeckoClient.from_settings(settings, http)
