"""Paginated fetcher - walks one entity type's ``<resource>.list`` pages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from ..api.client import ApiError, TeamleaderClient
from ..config import settings
from ..models.batch_progress import StopReason
from .entities import EntityType, get_spec

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class Page:
    number: int
    records: list[dict] = field(default_factory=list)
    is_last_page: bool = False
    total_estimated: int | None = None


def _extract_items(resp: dict) -> list[dict]:
    """Extract the record list, handling wrapped payloads."""
    raw = resp.get("data", [])
    if isinstance(raw, dict):
        raw = raw.get("data", [])
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _extract_total(resp: dict) -> int | None:
    """Extract the total record count from common metadata shapes."""
    meta = resp.get("meta")
    if not isinstance(meta, dict):
        return None
    for value in (
        meta.get("matches"),
        meta.get("total"),
        (meta.get("pagination") or {}).get("total") if isinstance(meta.get("pagination"), dict) else None,
    ):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def clamp_page_size(page_size: int, maximum: int | None = None) -> int:
    maximum = maximum or settings.max_page_size
    return max(1, min(int(page_size), maximum))


class PaginatedFetcher:
    """Fetch pages of one entity type, in order, up to a page ceiling.

    After iteration ``stop_reason`` tells why the loop ended:
    ``exhausted`` on true end of data, ``page_limit`` when the ceiling was hit
    on a full page, ``error`` when a request failed.
    """

    def __init__(
        self,
        client: TeamleaderClient,
        entity_type: EntityType,
        page_size: int,
        max_pages: int,
        start_page: int = 1,
        delay_seconds: float | None = None,
        sleep: Sleep = asyncio.sleep,
        filters: dict[str, Any] | None = None,
    ):
        self.client = client
        self.entity_type = EntityType(entity_type)
        self.resource = get_spec(self.entity_type).resource
        self.page_size = clamp_page_size(page_size)
        self.max_pages = max(1, int(max_pages))
        self.start_page = max(1, int(start_page))
        self.delay_seconds = settings.sync_page_delay_seconds if delay_seconds is None else delay_seconds
        self._sleep = sleep
        self.filters = filters

        self.stop_reason: StopReason | None = None
        self.pages_fetched = 0

    async def fetch_page(self, page_number: int) -> Page:
        """Fetch a single page.

        Raises:
            ApiError: On non-2xx responses or transport failures
        """
        if self.filters:
            resp = await self.client.list(self.resource, self.page_size, page_number, filters=self.filters)
        else:
            resp = await self.client.list(self.resource, self.page_size, page_number)
        records = _extract_items(resp)
        return Page(
            number=page_number,
            records=records,
            is_last_page=len(records) < self.page_size,
            total_estimated=_extract_total(resp),
        )

    async def pages(self) -> AsyncIterator[Page]:
        page_number = self.start_page
        while True:
            try:
                page = await self.fetch_page(page_number)
            except ApiError:
                self.stop_reason = StopReason.ERROR
                raise
            self.pages_fetched += 1
            logger.info(
                "Fetched %s page %d (%d records)", self.entity_type.value, page_number, len(page.records)
            )
            yield page

            if page.is_last_page:
                self.stop_reason = StopReason.EXHAUSTED
                return
            if self.pages_fetched >= self.max_pages:
                self.stop_reason = StopReason.PAGE_LIMIT
                logger.info(
                    "Page ceiling (%d) reached for %s at page %d",
                    self.max_pages, self.entity_type.value, page_number,
                )
                return

            if self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
            page_number += 1
