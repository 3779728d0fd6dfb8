from __future__ import annotations

import sys

from daily_insights.config import load_config, resolve_db_path
from daily_insights.db import store
from daily_insights.pipeline.runner import project_root
from daily_insights.utils.time import utc_today, utc_yesterday


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    user_filter = args[0] if args else None
    root = project_root()
    config = load_config(root / "config.yaml")
    conn = store.get_connection(resolve_db_path(config, root))
    store.init_db(conn)

    day = utc_yesterday()
    print(f"day: {day.isoformat()}")
    print("job_runs:")
    runs = store.fetch_job_runs(conn, day.isoformat()) + store.fetch_job_runs(conn, utc_today().isoformat())
    if not runs:
        print("- none")
    for run in runs:
        diagnostics = run["diagnostics"]
        print(
            f"- {run['job']} {run['run_key']} status={run['status']} "
            f"succeeded={diagnostics.get('users_succeeded', 'n/a')} "
            f"failed={diagnostics.get('users_failed', 'n/a')} "
            f"skipped={diagnostics.get('users_skipped', 'n/a')}"
        )

    aggregates = store.fetch_daily_aggs_for_day(conn, day)
    if user_filter:
        aggregates = [row for row in aggregates if row["user_id"] == user_filter]
    print("aggregates:")
    if not aggregates:
        print("- none")
    for row in aggregates:
        words = ", ".join(f"{word}({count})" for word, count in row["word_freq"][:5])
        counts = row["bet_counts"]
        brier = _fmt_brier(row["brier"], counts["resolved"])
        print(
            f"- {row['user_id']} open={counts['open']} resolved={counts['resolved']} "
            f"brier={brier} words=[{words}]"
        )
        insight = store.fetch_insight(conn, row["user_id"], day)
        if insight:
            print(f"  mood: {insight.get('mood')}")
            print(f"  summary: {insight.get('summary')}")
    conn.close()
    return 0


def _fmt_brier(value: float, resolved: int) -> str:
    # A zero score with no resolved bets means "no data", not perfect calibration.
    if resolved == 0:
        return "n/a"
    return f"{value:.4f}"


if __name__ == "__main__":
    raise SystemExit(main())
