from __future__ import annotations

import logging
import sqlite3
import time
from datetime import date, datetime
from typing import Any, Callable, Protocol

from daily_insights.api.data_api import DataApiClient
from daily_insights.api.gamma import GammaClient
from daily_insights.config import AppConfig
from daily_insights.db import store
from daily_insights.pipeline.normalize import (
    build_market_lookup,
    dedupe_positions,
    normalize_wallet_positions,
)
from daily_insights.pipeline.runner import log_summary, new_diagnostics, run_job
from daily_insights.utils.time import day_window, to_iso, utc_now, utc_today

logger = logging.getLogger(__name__)

JOB_NAME = "ingest"
DEFAULT_SOURCE = "polymarket"


class PositionsSource(Protocol):
    def get_positions(self, address: str) -> dict[str, Any] | None: ...

    def get_value(self, address: str) -> dict[str, Any] | None: ...


class CatalogSource(Protocol):
    def list_markets(self) -> list[dict[str, Any]]: ...


class MarketCatalog:
    """Market metadata fetched at most once per ingestion run, on first use."""

    def __init__(self, source: CatalogSource) -> None:
        self.source = source
        self._lookup: dict[str, dict[str, Any]] | None = None

    @property
    def fetched(self) -> bool:
        return self._lookup is not None

    def lookup(self) -> dict[str, dict[str, Any]]:
        if self._lookup is None:
            self._lookup = build_market_lookup(self.source.list_markets())
        return self._lookup


def has_synced(conn: sqlite3.Connection, user_id: str, source: str, day: date) -> bool:
    start, end = day_window(day)
    return store.has_raw_snapshot(conn, user_id, source, start, end)


def ingest_user(
    conn: sqlite3.Connection,
    user_id: str,
    wallets: list[str],
    day: date,
    data_api: PositionsSource,
    catalog: MarketCatalog,
    as_of: datetime,
    source: str = DEFAULT_SOURCE,
) -> dict[str, Any]:
    result = {
        "user_id": user_id,
        "skipped": False,
        "wallets_with_data": 0,
        "markets": 0,
        "positions_dropped": 0,
    }
    if has_synced(conn, user_id, source, day):
        logger.warning("User %s already synced for %s on %s, skipping", user_id, source, day.isoformat())
        result["skipped"] = True
        return result

    fetched: list[tuple[str, dict[str, Any], dict[str, Any] | None]] = []
    for wallet in wallets:
        logger.info("Syncing wallet %s for user %s", wallet, user_id)
        positions = data_api.get_positions(wallet)
        value = data_api.get_value(wallet)
        if positions is None:
            continue
        fetched.append((wallet, positions, value))

    if not fetched:
        logger.warning("No wallet data returned for user %s, nothing to write", user_id)
        return result

    lookup = catalog.lookup()
    normalized: list[dict[str, Any]] = []
    for wallet, positions, value in fetched:
        records = normalize_wallet_positions(positions, value, lookup, as_of)
        received = len(positions.get("positions") or [])
        dropped = received - len(records)
        if dropped:
            logger.warning(
                "Wallet %s for user %s: dropped %d of %d position(s) without a market record",
                wallet,
                user_id,
                dropped,
                received,
            )
            result["positions_dropped"] += dropped
        normalized.extend(records)
    normalized = dedupe_positions(normalized)
    raw_payloads = [positions for _, positions, _ in fetched]

    with store.transaction(conn):
        store.insert_raw_snapshot(conn, user_id, source, raw_payloads, as_of, commit=False)
        store.upsert_market_positions(conn, user_id, source, normalized, commit=False)

    result["wallets_with_data"] = len(fetched)
    result["markets"] = len(normalized)
    return result


def run_ingestion(
    conn: sqlite3.Connection,
    data_api: PositionsSource,
    gamma: CatalogSource,
    today: date,
    source: str = DEFAULT_SOURCE,
    clock: Callable[[], datetime] = utc_now,
) -> dict[str, Any]:
    started = time.monotonic()
    # One snapshot instant for every user in this run.
    as_of = clock()
    wallets_by_user = store.fetch_wallets_by_user(conn)
    diagnostics = new_diagnostics(today.isoformat(), len(wallets_by_user))
    diagnostics["as_of"] = to_iso(as_of)
    diagnostics["markets_processed"] = 0
    diagnostics["positions_dropped"] = 0
    wallet_count = sum(len(wallets) for wallets in wallets_by_user.values())
    logger.info("Found %d wallet link(s) for %d user(s)", wallet_count, len(wallets_by_user))

    if not wallets_by_user:
        logger.warning("No wallet links found, nothing to ingest")

    catalog = MarketCatalog(gamma)
    for user_id, wallets in wallets_by_user.items():
        user_started = time.monotonic()
        try:
            result = ingest_user(conn, user_id, wallets, today, data_api, catalog, as_of, source=source)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to ingest user %s", user_id)
            diagnostics["users_failed"] += 1
            continue
        if result["skipped"]:
            diagnostics["users_skipped"] += 1
            continue
        diagnostics["users_succeeded"] += 1
        diagnostics["markets_processed"] += result["markets"]
        diagnostics["positions_dropped"] += result["positions_dropped"]
        logger.info(
            "User %s synced wallets=%d with_data=%d markets=%d duration_s=%.2f",
            user_id,
            len(wallets),
            result["wallets_with_data"],
            result["markets"],
            time.monotonic() - user_started,
        )

    diagnostics["catalog_fetched"] = catalog.fetched
    diagnostics["duration_s"] = round(time.monotonic() - started, 3)
    log_summary(JOB_NAME, diagnostics)
    logger.info(
        "Markets processed=%d positions_dropped=%d",
        diagnostics["markets_processed"],
        diagnostics["positions_dropped"],
    )
    return diagnostics


def main() -> int:
    today = utc_today()

    def work(config: AppConfig, conn: sqlite3.Connection) -> dict[str, Any]:
        settings = config.market_data
        data_api = DataApiClient(
            base_url=settings.data_api_url,
            timeout_s=settings.request_timeout_s,
            retry_max=settings.retry_max,
        )
        gamma = GammaClient(
            base_url=settings.gamma_api_url,
            timeout_s=settings.request_timeout_s,
            retry_max=settings.retry_max,
            max_markets=settings.max_markets,
        )
        return run_ingestion(conn, data_api, gamma, today, source=settings.source)

    return run_job(JOB_NAME, today.isoformat(), work)


if __name__ == "__main__":
    raise SystemExit(main())
