from __future__ import annotations

import logging
from typing import Any

import requests

from daily_insights.api.http import build_retrying, get_json, status_of

logger = logging.getLogger(__name__)

BASE_URL = "https://gamma-api.polymarket.com"


class GammaClient:
    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout_s: int = 20,
        retry_max: int = 2,
        max_markets: int = 500,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = (5, timeout_s)
        self.retrying = build_retrying(retry_max)
        self.max_markets = max_markets
        self.request_count = 0

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        self.request_count += 1
        return self.retrying(get_json, self.session, url, params, self.timeout)

    def list_markets(self) -> list[dict[str, Any]]:
        markets: list[dict[str, Any]] = []
        offset = 0
        limit = min(100, self.max_markets)
        while len(markets) < self.max_markets:
            try:
                payload = self._get_json("/markets", params={"limit": limit, "offset": offset})
            except requests.RequestException as exc:
                logger.warning("Market catalog fetch failed (%s) at offset %d", status_of(exc), offset)
                break
            except ValueError as exc:
                logger.warning("Market catalog response was not valid JSON: %s", exc)
                break
            batch = self._extract_markets(payload)
            if not batch:
                break
            markets.extend(batch)
            if len(batch) < limit:
                break
            offset += limit
        logger.info("Fetched metadata for %d markets", len(markets))
        return markets[: self.max_markets]

    @staticmethod
    def _extract_markets(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        if isinstance(payload, dict):
            for key in ("markets", "data", "results"):
                value = payload.get(key)
                if isinstance(value, list):
                    return [item for item in value if isinstance(item, dict)]
        return []
