from __future__ import annotations

import logging
from typing import Any

import requests

from daily_insights.api.http import build_retrying, get_json, status_of

logger = logging.getLogger(__name__)

BASE_URL = "https://data-api.polymarket.com"


class DataApiClient:
    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout_s: int = 15,
        retry_max: int = 2,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = (timeout_s, timeout_s)
        self.retrying = build_retrying(retry_max)
        self.request_count = 0
        self.failed_count = 0

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        self.request_count += 1
        return self.retrying(get_json, self.session, url, params, self.timeout)

    def _fetch(self, label: str, path: str, address: str) -> Any | None:
        try:
            return self._get_json(path, params={"address": address})
        except requests.RequestException as exc:
            self.failed_count += 1
            logger.warning("%s fetch failed (%s) for wallet %s", label, status_of(exc), address)
        except ValueError as exc:
            self.failed_count += 1
            logger.warning("%s response for wallet %s was not valid JSON: %s", label, address, exc)
        return None

    def get_positions(self, address: str) -> dict[str, Any] | None:
        payload = self._fetch("Positions", "/positions", address)
        if payload is None:
            return None
        positions = self._extract_positions(payload)
        if positions is None:
            self.failed_count += 1
            logger.warning("Positions payload for wallet %s had unexpected shape", address)
            return None
        user_address = payload.get("user_address", address) if isinstance(payload, dict) else address
        logger.info("Fetched %d positions for %s", len(positions), address)
        return {"user_address": user_address, "positions": positions}

    def get_value(self, address: str) -> dict[str, Any] | None:
        payload = self._fetch("Value", "/value", address)
        if payload is None:
            return None
        if isinstance(payload, list):
            payload = next((item for item in payload if isinstance(item, dict)), None)
        if not isinstance(payload, dict):
            self.failed_count += 1
            logger.warning("Value payload for wallet %s had unexpected shape", address)
            return None
        value = payload.get("value")
        return {
            "user_address": payload.get("user_address", address),
            "value": value if isinstance(value, dict) else {},
        }

    @staticmethod
    def _extract_positions(payload: Any) -> list[dict[str, Any]] | None:
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        if isinstance(payload, dict):
            positions = payload.get("positions")
            if positions is None:
                return []
            if isinstance(positions, list):
                return [item for item in positions if isinstance(item, dict)]
        return None
