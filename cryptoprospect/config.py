from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from cryptoprospect.errors import ConfigError

CoinSource = Literal["coingecko", "coinranking"]


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_flag(name: str) -> bool:
    return (os.environ.get(name, "") or "").strip().lower() in ("1", "true", "yes")


def _resolve_data_dir() -> Path:
    override = _env("CRYPTOPROSPECT_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent / "data"


def parse_coin_source(value: str | None) -> CoinSource:
    """Case-insensitive coin source; anything but ``coinranking`` means CoinGecko."""
    if (value or "").strip().lower() == "coinranking":
        return "coinranking"
    return "coingecko"


class Settings(BaseModel):
    coin_source: CoinSource = "coingecko"
    coingecko_api_key: str | None = None
    coingecko_pro: bool = False
    coinranking_api_key: str | None = None
    github_token: str | None = None

    database_url: str | None = None
    data_dir: Path = Field(default_factory=_resolve_data_dir)

    llm_provider: str = "anthropic"
    llm_model: str = ""
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None

    user_agent: str = "CryptoProspect/1.0 (+https://cryptoprospect.local)"
    request_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> Settings:
        timeout = _env("HTTP_TIMEOUT_SECONDS")
        return cls(
            coin_source=parse_coin_source(os.environ.get("COIN_SOURCE")),
            coingecko_api_key=_env("COINGECKO_API_KEY"),
            coingecko_pro=_env_flag("COINGECKO_PRO"),
            coinranking_api_key=_env("COINRANKING_API_KEY"),
            github_token=_env("GITHUB_TOKEN"),
            database_url=_env("DATABASE_URL"),
            llm_provider=(_env("LLM_PROVIDER") or "anthropic").lower(),
            llm_model=_env("LLM_MODEL") or "",
            anthropic_api_key=_env("ANTHROPIC_API_KEY"),
            openai_api_key=_env("OPENAI_API_KEY"),
            openai_base_url=_env("OPENAI_BASE_URL"),
            request_timeout_seconds=float(timeout) if timeout else 30.0,
        )

    @property
    def default_database_url(self) -> str:
        return f"sqlite:///{self.data_dir / 'cryptoprospect.db'}"

    def validate_coin_source(self) -> None:
        """Raise ConfigError if the selected coin source is missing its API key."""
        if self.coin_source == "coinranking" and not self.coinranking_api_key:
            raise ConfigError(
                "COIN_SOURCE=coinranking requires COINRANKING_API_KEY to be set. "
                "Set the env var or use COIN_SOURCE=coingecko."
            )

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigError("Missing DATABASE_URL (store credentials) for the ingestion job")
        return self.database_url

    def llm_configured(self) -> bool:
        if self.llm_provider == "anthropic":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key or self.openai_base_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
