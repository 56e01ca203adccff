from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
from pydantic import ValidationError

from utils.logging_config import LoggerMixin
from utils.pydantic_models import EconomicEvent, FinnhubConfig

MAJOR_ECONOMIES = ("US", "EU", "GB", "JP", "CN", "DE")


class EventCalendar(LoggerMixin):
    """
    High-impact economic events for the next 24h from the Finnhub calendar.
    The events only enrich the prompt, so every failure degrades to an empty list.
    """

    def __init__(self, config: FinnhubConfig, http_client: Optional[httpx.AsyncClient] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        super().__init__()
        self.config = config
        self._http_client = http_client
        self._clock = clock

    async def _get(self, client: httpx.AsyncClient, params: dict) -> httpx.Response:
        return await client.get(
            f"{self.config.base_url.rstrip('/')}/calendar/economic",
            params=params,
            headers={"X-Finnhub-Token": self.config.api_key or ""},
            timeout=self.config.timeout_sec,
        )

    async def upcoming_events(self) -> List[EconomicEvent]:
        if not self.config.enabled:
            return []

        today = self._clock().date()
        params = {"from": today.isoformat(), "to": (today + timedelta(days=1)).isoformat()}

        try:
            if self._http_client is not None:
                response = await self._get(self._http_client, params)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, params)
            response.raise_for_status()
            entries = response.json().get("economicCalendar") or []
            if not isinstance(entries, list):
                raise ValueError("economicCalendar is not a list")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            self.logger.warning("Economic calendar unavailable; continuing without events",
                                error_type=type(e).__name__, error=str(e))
            return []

        events = []
        skipped = 0
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("impact") != "high":
                continue
            if entry.get("country") not in MAJOR_ECONOMIES:
                continue
            try:
                events.append(EconomicEvent(event=str(entry.get("event", "")),
                                            country=entry["country"], time=entry.get("time")))
            except ValidationError as e:
                skipped += 1
                self.logger.warning("Skipping malformed economic event", error_count=e.error_count())

        self.logger.info("Economic events loaded", total=len(entries), high_impact=len(events), skipped=skipped)
        return events
