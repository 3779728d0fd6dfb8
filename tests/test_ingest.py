from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone

import pytest

from daily_insights.db import store
from daily_insights.pipeline import ingest

TODAY = date(2026, 1, 7)
NOW = datetime(2026, 1, 7, 12, 0, tzinfo=timezone.utc)
SOURCE = "polymarket"


def _setup_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    store.init_db(conn)
    return conn


def _position(market_id: str, question: str, outcome: str = "Yes") -> dict:
    return {
        "market": {
            "id": market_id,
            "question": question,
            "category": "Position category",
            "tags": ["position-tag"],
            "outcomes": ["Yes", "No"],
            "resolved": False,
        },
        "contracts": [{"id": f"c-{market_id}", "outcome": outcome, "isResolved": False}],
    }


class FakeDataApi:
    def __init__(self, positions: dict[str, dict | None], values: dict[str, dict | None]) -> None:
        self.positions = positions
        self.values = values
        self.calls: list[tuple[str, str]] = []

    def get_positions(self, address: str):
        self.calls.append(("positions", address))
        return self.positions.get(address)

    def get_value(self, address: str):
        self.calls.append(("value", address))
        return self.values.get(address)


class FakeGamma:
    def __init__(self, markets: list[dict]) -> None:
        self.markets = markets
        self.calls = 0

    def list_markets(self) -> list[dict]:
        self.calls += 1
        return self.markets


def _link(conn: sqlite3.Connection, user_id: str, address: str, chain: str = "polygon") -> None:
    conn.execute("INSERT INTO wallet_links (user_id, chain, address) VALUES (?, ?, ?)", (user_id, chain, address))
    conn.commit()


def _default_clients() -> tuple[FakeDataApi, FakeGamma]:
    data_api = FakeDataApi(
        positions={
            "0xa1": {"user_address": "0xa1", "positions": [_position("m1", "Old title"), _position("m2", "Two")]},
            "0xa2": {"user_address": "0xa2", "positions": [_position("m3", "Three", outcome="No")]},
            "0xb1": {"user_address": "0xb1", "positions": [_position("m1", "Old title")]},
        },
        values={
            "0xa1": {"user_address": "0xa1", "value": {"in": 10, "out": 25, "unrealized": 5}},
            "0xa2": {"user_address": "0xa2", "value": {"in": 3, "out": 4, "unrealized": -1}},
            "0xb1": None,
        },
    )
    gamma = FakeGamma(
        [{"id": "m1", "question": "Catalog title", "category": "Politics", "tags": ["us", "elections"], "resolved": True}]
    )
    return data_api, gamma


def _raw_count(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM external_positions_raw").fetchone()[0]


def _market_count(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM external_markets").fetchone()[0]


def test_ingestion_writes_raw_and_enriched_snapshots():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    _link(conn, "u1", "0xa2", chain="solana")
    _link(conn, "u2", "0xb1")
    data_api, gamma = _default_clients()

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_succeeded"] == 2
    assert diagnostics["users_failed"] == 0
    assert diagnostics["markets_processed"] == 4
    assert gamma.calls == 1

    raw = store.fetch_raw_snapshots(conn, "u1", SOURCE)
    assert len(raw) == 1
    assert [payload["user_address"] for payload in raw[0]["payload"]] == ["0xa1", "0xa2"]
    assert raw[0]["fetched_at"] == NOW

    positions = {row["market_id"]: row for row in store.fetch_market_positions(conn, "u1", SOURCE)}
    assert set(positions) == {"m1", "m2", "m3"}
    assert positions["m1"]["title"] == "Catalog title"
    assert positions["m1"]["category"] == "Politics"
    assert positions["m1"]["tags"] == ["elections", "us"]
    assert positions["m1"]["resolved"] is True
    assert positions["m2"]["title"] == "Two"
    assert positions["m2"]["tags"] == ["position-tag"]
    assert positions["m3"]["outcome"] == "No"
    assert positions["m3"]["current_value"] == 4.0
    assert {row["as_of"] for row in positions.values()} == {NOW}

    u2_positions = store.fetch_market_positions(conn, "u2", SOURCE)
    assert len(u2_positions) == 1
    assert u2_positions[0]["current_value"] == 0.0


def test_already_synced_user_is_skipped_without_fetches():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    store.insert_raw_snapshot(
        conn, "u1", SOURCE, [{"positions": []}], datetime(2026, 1, 7, 3, 0, tzinfo=timezone.utc)
    )
    data_api, gamma = _default_clients()

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_skipped"] == 1
    assert diagnostics["users_succeeded"] == 0
    assert data_api.calls == []
    assert gamma.calls == 0
    assert _raw_count(conn) == 1
    assert _market_count(conn) == 0


def test_snapshot_from_previous_day_does_not_block():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    store.insert_raw_snapshot(
        conn, "u1", SOURCE, [{"positions": []}], datetime(2026, 1, 6, 23, 59, tzinfo=timezone.utc)
    )
    data_api, gamma = _default_clients()

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_succeeded"] == 1
    assert _raw_count(conn) == 2


def test_second_run_same_day_is_a_no_op():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    data_api, gamma = _default_clients()
    ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)
    calls_after_first = len(data_api.calls)

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_skipped"] == 1
    assert len(data_api.calls) == calls_after_first
    assert _raw_count(conn) == 1
    assert _market_count(conn) == 2


def test_failed_normalized_write_rolls_back_user(monkeypatch):
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    _link(conn, "u2", "0xb1")
    data_api, gamma = _default_clients()
    real_upsert = store.upsert_market_positions

    def failing_upsert(conn, user_id, source, positions, commit=True):
        if user_id == "u1":
            real_upsert(conn, user_id, source, list(positions)[:1], commit=False)
            raise sqlite3.IntegrityError("constraint failed")
        return real_upsert(conn, user_id, source, positions, commit=commit)

    monkeypatch.setattr(store, "upsert_market_positions", failing_upsert)

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_failed"] == 1
    assert diagnostics["users_succeeded"] == 1
    assert store.fetch_raw_snapshots(conn, "u1", SOURCE) == []
    assert store.fetch_market_positions(conn, "u1", SOURCE) == []
    assert len(store.fetch_raw_snapshots(conn, "u2", SOURCE)) == 1
    assert not conn.in_transaction


def test_failed_wallet_does_not_block_siblings():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    _link(conn, "u1", "0xdead", chain="solana")
    data_api, gamma = _default_clients()

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_succeeded"] == 1
    raw = store.fetch_raw_snapshots(conn, "u1", SOURCE)
    assert [payload["user_address"] for payload in raw[0]["payload"]] == ["0xa1"]
    assert ("positions", "0xdead") in data_api.calls


def test_user_without_any_wallet_data_writes_nothing():
    conn = _setup_conn()
    _link(conn, "u1", "0xdead")
    data_api, gamma = _default_clients()

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["users_succeeded"] == 1
    assert gamma.calls == 0
    assert _raw_count(conn) == 0


def test_no_wallet_links():
    conn = _setup_conn()
    data_api, gamma = _default_clients()
    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)
    assert diagnostics["users_total"] == 0
    assert data_api.calls == []


def test_same_day_raw_snapshot_is_unique():
    conn = _setup_conn()
    store.insert_raw_snapshot(conn, "u1", SOURCE, [], NOW)
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_raw_snapshot(conn, "u1", SOURCE, [], NOW.replace(hour=18))


def test_run_shares_one_snapshot_instant_across_users():
    conn = _setup_conn()
    _link(conn, "u1", "0xa1")
    _link(conn, "u2", "0xb1")
    data_api, gamma = _default_clients()
    ticks = iter([NOW, NOW.replace(hour=13), NOW.replace(hour=14)])

    diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: next(ticks))

    assert diagnostics["as_of"] == "2026-01-07T12:00:00.000000+00:00"
    as_of_values = {row["as_of"] for row in store.fetch_market_positions(conn, "u1", SOURCE)}
    as_of_values |= {row["as_of"] for row in store.fetch_market_positions(conn, "u2", SOURCE)}
    assert as_of_values == {NOW}
    assert store.fetch_raw_snapshots(conn, "u2", SOURCE)[0]["fetched_at"] == NOW


def test_flat_position_records_are_reported_as_dropped(caplog):
    conn = _setup_conn()
    _link(conn, "u1", "0xflat")
    flat = {"user_address": "0xflat", "positions": [{"conditionId": "m9", "size": 3}, {"conditionId": "m8"}]}
    data_api = FakeDataApi(positions={"0xflat": flat}, values={})
    gamma = FakeGamma([])

    with caplog.at_level("WARNING", logger="daily_insights.pipeline.ingest"):
        diagnostics = ingest.run_ingestion(conn, data_api, gamma, TODAY, source=SOURCE, clock=lambda: NOW)

    assert diagnostics["positions_dropped"] == 2
    assert diagnostics["markets_processed"] == 0
    assert "Wallet 0xflat for user u1: dropped 2 of 2 position(s)" in caplog.text
