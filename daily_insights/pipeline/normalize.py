from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 1.0
DEFAULT_AVG_PRICE = 0.5


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_tags(tags: Any) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = [tags]
    cleaned: set[str] = set()
    for tag in tags:
        if isinstance(tag, dict):
            tag = tag.get("label") or tag.get("slug") or tag.get("name")
        if isinstance(tag, str) and tag.strip():
            cleaned.add(tag.strip())
    return sorted(cleaned)


def extract_market_id(market: dict[str, Any]) -> str | None:
    market_id = (
        market.get("id")
        or market.get("marketId")
        or market.get("market_id")
        or market.get("conditionId")
    )
    return str(market_id) if market_id is not None else None


def normalize_position(
    position: dict[str, Any],
    value_data: dict[str, Any] | None,
    as_of: datetime,
) -> dict[str, Any] | None:
    market = position.get("market")
    if not isinstance(market, dict):
        return None
    market_id = extract_market_id(market)
    if market_id is None:
        return None

    contracts = position.get("contracts")
    if not isinstance(contracts, list):
        contracts = []
    first_contract = contracts[0] if contracts and isinstance(contracts[0], dict) else {}
    outcome = first_contract.get("outcome") or None

    value = (value_data or {}).get("value") or {}
    return {
        "market_id": market_id,
        "title": market.get("question") or market.get("title"),
        "category": market.get("category"),
        "tags": normalize_tags(market.get("tags")),
        "outcome": str(outcome) if outcome is not None else None,
        "size": safe_float(position.get("size"), DEFAULT_SIZE),
        "avg_price": safe_float(position.get("avgPrice"), DEFAULT_AVG_PRICE),
        "current_value": safe_float(value.get("out")),
        "pnl": safe_float(value.get("unrealized")),
        "resolved": bool(market.get("resolved")),
        "as_of": as_of,
    }


def build_market_lookup(markets: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    lookup: dict[str, dict[str, Any]] = {}
    for market in markets:
        market_id = extract_market_id(market)
        if market_id is not None:
            lookup[market_id] = market
    logger.info("Built lookup for %d markets", len(lookup))
    return lookup


def enrich_position(
    normalized: dict[str, Any],
    lookup: dict[str, dict[str, Any]],
) -> dict[str, Any]:
    metadata = lookup.get(normalized["market_id"])
    if metadata is None:
        return normalized
    return {
        **normalized,
        "title": metadata.get("question") or metadata.get("title"),
        "category": metadata.get("category"),
        "tags": normalize_tags(metadata.get("tags")),
        "resolved": bool(metadata.get("resolved")),
    }


def normalize_wallet_positions(
    positions_payload: dict[str, Any],
    value_data: dict[str, Any] | None,
    lookup: dict[str, dict[str, Any]],
    as_of: datetime,
) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for position in positions_payload.get("positions") or []:
        record = normalize_position(position, value_data, as_of)
        if record is not None:
            normalized.append(enrich_position(record, lookup))
    return normalized


def dedupe_positions(positions: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    by_market: dict[str, dict[str, Any]] = {}
    for position in positions:
        by_market[position["market_id"]] = position
    return list(by_market.values())
