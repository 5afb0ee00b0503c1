"""Exception types shared by the source clients, pipeline, and API."""
from __future__ import annotations


class ConfigError(Exception):
    """Required configuration is missing or inconsistent."""


class SourceError(Exception):
    """An upstream data source returned an unusable response."""
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
