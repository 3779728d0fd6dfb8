from __future__ import annotations

import logging
import sqlite3
import time
from datetime import date
from typing import Any

from daily_insights.analytics.calibration import brier_score, count_bets
from daily_insights.analytics.text import top_words
from daily_insights.config import AppConfig
from daily_insights.db import store
from daily_insights.pipeline.runner import log_summary, new_diagnostics, run_job
from daily_insights.utils.time import day_window, utc_yesterday

logger = logging.getLogger(__name__)

JOB_NAME = "aggregate"


def aggregate_user(conn: sqlite3.Connection, user_id: str, day: date, top_n: int = 20) -> dict[str, Any]:
    start, end = day_window(day)
    texts = store.fetch_entry_texts(conn, user_id, start, end)
    word_freq = top_words(texts, limit=top_n)

    # Calibration uses the full bet history, not only the target day.
    bets = store.fetch_bets(conn, user_id)
    bet_counts = count_bets(bets)
    brier = brier_score(bets)

    store.upsert_daily_agg(conn, user_id, day, word_freq, bet_counts, brier)
    return {
        "user_id": user_id,
        "day": day,
        "entries": len(texts),
        "word_freq": word_freq,
        "bet_counts": bet_counts,
        "brier": brier,
    }


def run_aggregation(conn: sqlite3.Connection, day: date, top_n: int = 20) -> dict[str, Any]:
    started = time.monotonic()
    user_ids = store.fetch_user_ids(conn)
    diagnostics = new_diagnostics(day.isoformat(), len(user_ids))
    logger.info("Aggregating %s for %d user(s)", day.isoformat(), len(user_ids))

    for user_id in user_ids:
        try:
            stats = aggregate_user(conn, user_id, day, top_n=top_n)
        except Exception:  # noqa: BLE001
            if conn.in_transaction:
                conn.rollback()
            logger.exception("Failed to aggregate user %s", user_id)
            diagnostics["users_failed"] += 1
            continue
        diagnostics["users_succeeded"] += 1
        preview = ", ".join(f"{word}({count})" for word, count in stats["word_freq"][:3])
        logger.info(
            "User %s entries=%d words=%d top=[%s] bets_open=%d bets_resolved=%d brier=%.4f",
            user_id,
            stats["entries"],
            len(stats["word_freq"]),
            preview,
            stats["bet_counts"]["open"],
            stats["bet_counts"]["resolved"],
            stats["brier"],
        )

    diagnostics["duration_s"] = round(time.monotonic() - started, 3)
    log_summary(JOB_NAME, diagnostics)
    return diagnostics


def main() -> int:
    # Fixed once so every user in the run shares the same day boundary.
    day = utc_yesterday()

    def work(config: AppConfig, conn: sqlite3.Connection) -> dict[str, Any]:
        return run_aggregation(conn, day, top_n=config.aggregation.top_words)

    return run_job(JOB_NAME, day.isoformat(), work)


if __name__ == "__main__":
    raise SystemExit(main())
