"""DeFiLlama client: protocols with TVL between $10M and $100M. No auth."""
from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from cryptoprospect.errors import SourceError
from cryptoprospect.records import ProtocolRecord

log = logging.getLogger(__name__)

DEFILLAMA_API = "https://api.llama.fi"

TVL_MIN = 10_000_000
TVL_MAX = 100_000_000


def _slug_from_name(name: str) -> str:
    return re.sub(r"\s+", "-", name.lower())


def normalize_protocol(raw: dict[str, Any]) -> ProtocolRecord | None:
    """Normalize one /protocols entry, or None when it falls outside the TVL band."""
    tvl = raw.get("tvl") or 0
    if tvl < TVL_MIN or tvl > TVL_MAX:
        return None

    name = str(raw.get("name") or "")
    slug = raw.get("slug") or _slug_from_name(name)
    chains = raw.get("chains")
    gecko_id = raw.get("gecko_id") or None
    twitter = raw.get("twitter")
    discord = raw.get("discord")
    github = raw.get("github")

    return ProtocolRecord(
        id=str(raw.get("id") or slug),
        name=name,
        slug=slug,
        category=raw.get("category") or "Uncategorized",
        chains=tuple(chains) if isinstance(chains, list) else (),
        tvl=float(tvl),
        # DeFiLlama only exposes change_7d; it stands in for the 30d change.
        tvl_change_1m=raw.get("change_7d"),
        gecko_id=gecko_id,
        github=tuple(github) if isinstance(github, list) else (),
        url_defillama=f"https://defillama.com/protocol/{slug}" if raw.get("url") else None,
        url_coingecko=f"https://www.coingecko.com/en/coins/{gecko_id}" if gecko_id else None,
        url_twitter=f"https://twitter.com/{twitter}" if twitter else None,
        url_discord=discord if isinstance(discord, str) and discord else None,
    )


class DefiLlamaClient:
    """Primary source. Fetches the whole catalog in one call and never retries."""

    def __init__(self, http: httpx.AsyncClient, base_url: str = DEFILLAMA_API):
        self._http = http
        self._base_url = base_url

    async def fetch_protocols(self) -> list[ProtocolRecord]:
        resp = await self._http.get(f"{self._base_url}/protocols")
        if resp.status_code >= 400:
            raise SourceError(f"DeFiLlama protocols {resp.status_code}: {resp.text[:500]}", resp.status_code)
        payload = resp.json()
        if not isinstance(payload, list):
            raise SourceError("DeFiLlama protocols returned a non-list payload")

        records = [r for r in (normalize_protocol(p) for p in payload if isinstance(p, dict)) if r]
        log.info("DeFiLlama: %d of %d protocols inside the TVL band", len(records), len(payload))
        return records
