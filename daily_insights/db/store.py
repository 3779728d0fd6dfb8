from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

from daily_insights.db.schema import SCHEMA_SQL
from daily_insights.utils.time import parse_datetime, to_iso, utc_now


def get_connection(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def ensure_run(
    conn: sqlite3.Connection,
    job: str,
    run_key: str,
    status: str | None = None,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO job_runs (job, run_key, created_at, status)
        VALUES (?, ?, ?, ?)
        """,
        (job, run_key, to_iso(utc_now()), status),
    )
    if commit:
        conn.commit()


def update_run_status(
    conn: sqlite3.Connection,
    job: str,
    run_key: str,
    status: str,
    error_message: str | None = None,
    diagnostics: dict[str, Any] | None = None,
) -> None:
    conn.execute(
        """
        UPDATE job_runs
        SET status = ?, finished_at = ?, error_message = ?, diagnostics_json = ?
        WHERE job = ? AND run_key = ?
        """,
        (
            status,
            to_iso(utc_now()),
            error_message,
            json.dumps(diagnostics or {}, ensure_ascii=True, sort_keys=True),
            job,
            run_key,
        ),
    )
    conn.commit()


def fetch_job_runs(conn: sqlite3.Connection, run_key: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT job, run_key, status, created_at, finished_at, error_message, diagnostics_json
        FROM job_runs WHERE run_key = ? ORDER BY job
        """,
        (run_key,),
    ).fetchall()
    results = []
    for row in rows:
        results.append(
            {
                "job": row["job"],
                "run_key": row["run_key"],
                "status": row["status"],
                "created_at": row["created_at"],
                "finished_at": row["finished_at"],
                "error_message": row["error_message"],
                "diagnostics": json.loads(row["diagnostics_json"]) if row["diagnostics_json"] else {},
            }
        )
    return results


def fetch_user_ids(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT id FROM users ORDER BY id").fetchall()
    return [row["id"] for row in rows]


def fetch_entry_texts(
    conn: sqlite3.Connection,
    user_id: str,
    start: datetime,
    end: datetime,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[str]:
    order = "DESC" if newest_first else "ASC"
    sql = f"""
        SELECT text FROM entries
        WHERE user_id = ? AND created_at >= ? AND created_at < ?
        ORDER BY created_at {order}, id {order}
    """
    params: list[Any] = [user_id, to_iso(start), to_iso(end)]
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    return [row["text"] for row in rows]


def fetch_bets(conn: sqlite3.Connection, user_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT id, status, probability, outcome FROM bets WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()
    results = []
    for row in rows:
        outcome = row["outcome"]
        results.append(
            {
                "id": row["id"],
                "status": row["status"],
                "probability": row["probability"],
                "outcome": None if outcome is None else bool(outcome),
            }
        )
    return results


def upsert_daily_agg(
    conn: sqlite3.Connection,
    user_id: str,
    day: date,
    word_freq: Iterable[tuple[str, int]],
    bet_counts: dict[str, int],
    brier: float,
    commit: bool = True,
) -> None:
    word_rows = [{"word": word, "count": count} for word, count in word_freq]
    conn.execute(
        """
        INSERT OR REPLACE INTO daily_agg (user_id, day, word_freq_json, bet_counts_json, brier)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            user_id,
            day.isoformat(),
            json.dumps(word_rows, ensure_ascii=True),
            json.dumps({"open": bet_counts.get("open", 0), "resolved": bet_counts.get("resolved", 0)}),
            brier,
        ),
    )
    if commit:
        conn.commit()


def fetch_daily_agg(conn: sqlite3.Connection, user_id: str, day: date) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT user_id, day, word_freq_json, bet_counts_json, brier
        FROM daily_agg WHERE user_id = ? AND day = ?
        """,
        (user_id, day.isoformat()),
    ).fetchone()
    if row is None:
        return None
    return _daily_agg_from_row(row)


def fetch_daily_aggs_for_day(conn: sqlite3.Connection, day: date) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT user_id, day, word_freq_json, bet_counts_json, brier
        FROM daily_agg WHERE day = ? ORDER BY user_id
        """,
        (day.isoformat(),),
    ).fetchall()
    return [_daily_agg_from_row(row) for row in rows]


def _daily_agg_from_row(row: sqlite3.Row) -> dict[str, Any]:
    word_rows = json.loads(row["word_freq_json"]) if row["word_freq_json"] else []
    bet_counts = json.loads(row["bet_counts_json"]) if row["bet_counts_json"] else {}
    return {
        "user_id": row["user_id"],
        "day": date.fromisoformat(row["day"]),
        "word_freq": [(item["word"], int(item["count"])) for item in word_rows],
        "bet_counts": {
            "open": int(bet_counts.get("open", 0)),
            "resolved": int(bet_counts.get("resolved", 0)),
        },
        "brier": float(row["brier"]),
    }


def fetch_wallets_by_user(conn: sqlite3.Connection) -> dict[str, list[str]]:
    rows = conn.execute(
        "SELECT user_id, chain, address FROM wallet_links ORDER BY user_id, chain, address"
    ).fetchall()
    by_user: dict[str, list[str]] = {}
    for row in rows:
        by_user.setdefault(row["user_id"], []).append(row["address"])
    return by_user


def has_raw_snapshot(
    conn: sqlite3.Connection,
    user_id: str,
    source: str,
    start: datetime,
    end: datetime,
) -> bool:
    row = conn.execute(
        """
        SELECT id FROM external_positions_raw
        WHERE user_id = ? AND source = ? AND fetched_at >= ? AND fetched_at < ?
        LIMIT 1
        """,
        (user_id, source, to_iso(start), to_iso(end)),
    ).fetchone()
    return row is not None


def insert_raw_snapshot(
    conn: sqlite3.Connection,
    user_id: str,
    source: str,
    payload: Any,
    fetched_at: datetime,
    commit: bool = True,
) -> None:
    fetched_iso = to_iso(fetched_at)
    conn.execute(
        """
        INSERT INTO external_positions_raw (user_id, source, payload_json, fetched_at, fetched_day)
        VALUES (?, ?, ?, ?, ?)
        """,
        (user_id, source, json.dumps(payload, ensure_ascii=True), fetched_iso, fetched_iso[:10]),
    )
    if commit:
        conn.commit()


def fetch_raw_snapshots(conn: sqlite3.Connection, user_id: str, source: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, user_id, source, payload_json, fetched_at
        FROM external_positions_raw WHERE user_id = ? AND source = ? ORDER BY fetched_at
        """,
        (user_id, source),
    ).fetchall()
    results = []
    for row in rows:
        results.append(
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "source": row["source"],
                "payload": json.loads(row["payload_json"]),
                "fetched_at": parse_datetime(row["fetched_at"]),
            }
        )
    return results


def upsert_market_positions(
    conn: sqlite3.Connection,
    user_id: str,
    source: str,
    positions: Iterable[dict[str, Any]],
    commit: bool = True,
) -> int:
    rows = []
    for position in positions:
        rows.append(
            (
                user_id,
                source,
                position.get("market_id"),
                position.get("title"),
                position.get("category"),
                json.dumps(sorted(position.get("tags") or []), ensure_ascii=True),
                position.get("outcome"),
                position.get("size"),
                position.get("avg_price"),
                position.get("current_value"),
                position.get("pnl"),
                1 if position.get("resolved") else 0,
                to_iso(position["as_of"]),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO external_markets
        (user_id, source, market_id, title, category, tags_json, outcome, size, avg_price,
         current_value, pnl, resolved, as_of)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()
    return len(rows)


def fetch_market_positions(conn: sqlite3.Connection, user_id: str, source: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT market_id, title, category, tags_json, outcome, size, avg_price,
               current_value, pnl, resolved, as_of
        FROM external_markets WHERE user_id = ? AND source = ?
        ORDER BY as_of, market_id
        """,
        (user_id, source),
    ).fetchall()
    results = []
    for row in rows:
        results.append(
            {
                "market_id": row["market_id"],
                "title": row["title"],
                "category": row["category"],
                "tags": json.loads(row["tags_json"]) if row["tags_json"] else [],
                "outcome": row["outcome"],
                "size": row["size"],
                "avg_price": row["avg_price"],
                "current_value": row["current_value"],
                "pnl": row["pnl"],
                "resolved": bool(row["resolved"]),
                "as_of": parse_datetime(row["as_of"]),
            }
        )
    return results


def upsert_insight(
    conn: sqlite3.Connection,
    user_id: str,
    day: date,
    payload: dict[str, Any],
    commit: bool = True,
) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO insights_llm (user_id, day, payload_json) VALUES (?, ?, ?)",
        (user_id, day.isoformat(), json.dumps(payload, ensure_ascii=True)),
    )
    if commit:
        conn.commit()


def fetch_insight(conn: sqlite3.Connection, user_id: str, day: date) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT payload_json FROM insights_llm WHERE user_id = ? AND day = ?",
        (user_id, day.isoformat()),
    ).fetchone()
    if row and row["payload_json"]:
        return json.loads(row["payload_json"])
    return None
