"""Abstract source interface for ingestion."""

from __future__ import annotations

from abc import abstractmethod
from datetime import date

from roverfeed.ingestion.extract import RawBatch, RecordExtractor
from roverfeed.ingestion.http_client import ResilientFetchClient


class BaseSource(RecordExtractor):
    """One upstream feed (one rover): how to fetch a window and how to read it."""

    name: str
    landing_date: date

    @property
    def source_id(self) -> str:
        return self.name

    @abstractmethod
    async def fetch_window(self, client: ResilientFetchClient, window: int) -> RawBatch:
        """Fetch the raw batch for one sol."""

    @abstractmethod
    async def current_max_window(self, client: ResilientFetchClient) -> int:
        """Ask upstream for the latest sol it has published."""
