from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone

import pytest

from daily_insights.db import store
from daily_insights.pipeline import aggregate
from daily_insights.utils.time import to_iso

DAY = date(2026, 1, 6)


def _setup_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    store.init_db(conn)
    return conn


def _at(day: int, hour: int = 9, minute: int = 0, second: int = 0) -> str:
    return to_iso(datetime(2026, 1, day, hour, minute, second, tzinfo=timezone.utc))


def _seed(conn: sqlite3.Connection) -> None:
    conn.executemany("INSERT INTO users (id) VALUES (?)", [("u1",), ("u2",)])
    conn.executemany(
        "INSERT INTO entries (id, user_id, kind, text, created_at) VALUES (?, ?, ?, ?, ?)",
        [
            ("e1", "u1", "journal", "Inflation feels sticky. Sticky prices everywhere.", _at(6, 8)),
            ("e2", "u1", "belief", "Rates will stay high while inflation is sticky.", _at(6, 21)),
            ("e3", "u1", "note", "Yesterday's excluded inflation note", _at(5, 23, 59, 59)),
            ("e4", "u1", "note", "Tomorrow's excluded inflation note", _at(7, 0)),
            ("e5", "u2", "journal", "Quiet day.", _at(6, 12)),
        ],
    )
    conn.executemany(
        "INSERT INTO bets (id, user_id, statement, probability, status, outcome) VALUES (?, ?, ?, ?, ?, ?)",
        [
            ("b1", "u1", "Fed cuts", 0.8, "resolved", 1),
            ("b2", "u1", "Recession", 0.4, "resolved", 0),
            ("b3", "u1", "Election", 0.6, "open", None),
            ("b4", "u2", "Rain", 0.3, "open", None),
        ],
    )
    conn.commit()


def _agg_rows(conn: sqlite3.Connection) -> list[tuple]:
    rows = conn.execute("SELECT * FROM daily_agg ORDER BY user_id, day").fetchall()
    return [tuple(row) for row in rows]


def test_aggregation_computes_user_day_stats():
    conn = _setup_conn()
    _seed(conn)

    diagnostics = aggregate.run_aggregation(conn, DAY, top_n=20)
    assert diagnostics["users_total"] == 2
    assert diagnostics["users_succeeded"] == 2
    assert diagnostics["users_failed"] == 0

    u1 = store.fetch_daily_agg(conn, "u1", DAY)
    assert u1["word_freq"][:2] == [("sticky", 3), ("inflation", 2)]
    assert u1["bet_counts"] == {"open": 1, "resolved": 2}
    assert u1["brier"] == pytest.approx((0.04 + 0.16) / 2)

    u2 = store.fetch_daily_agg(conn, "u2", DAY)
    assert u2["word_freq"] == [("quiet", 1), ("day", 1)]
    assert u2["bet_counts"] == {"open": 1, "resolved": 0}
    assert u2["brier"] == 0.0


def test_rerun_replaces_rows_without_duplicates():
    conn = _setup_conn()
    _seed(conn)

    aggregate.run_aggregation(conn, DAY)
    first = _agg_rows(conn)
    aggregate.run_aggregation(conn, DAY)
    second = _agg_rows(conn)

    assert first == second
    assert len(second) == 2


def test_rerun_picks_up_changed_entries():
    conn = _setup_conn()
    _seed(conn)
    aggregate.run_aggregation(conn, DAY)

    conn.execute(
        "INSERT INTO entries (id, user_id, kind, text, created_at) VALUES (?, ?, ?, ?, ?)",
        ("e6", "u2", "note", "Quiet quiet evening", _at(6, 22)),
    )
    conn.commit()
    aggregate.run_aggregation(conn, DAY)

    assert store.fetch_daily_agg(conn, "u2", DAY)["word_freq"][0] == ("quiet", 3)
    assert conn.execute("SELECT COUNT(*) FROM daily_agg WHERE user_id = 'u2'").fetchone()[0] == 1


def test_user_failure_does_not_abort_batch(monkeypatch):
    conn = _setup_conn()
    _seed(conn)
    real_fetch_bets = store.fetch_bets

    def flaky_fetch_bets(conn, user_id):
        if user_id == "u1":
            raise sqlite3.OperationalError("database is locked")
        return real_fetch_bets(conn, user_id)

    monkeypatch.setattr(store, "fetch_bets", flaky_fetch_bets)

    diagnostics = aggregate.run_aggregation(conn, DAY)
    assert diagnostics["users_failed"] == 1
    assert diagnostics["users_succeeded"] == 1
    assert store.fetch_daily_agg(conn, "u1", DAY) is None
    assert store.fetch_daily_agg(conn, "u2", DAY) is not None
