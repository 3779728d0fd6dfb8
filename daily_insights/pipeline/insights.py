from __future__ import annotations

import logging
import sqlite3
import time
from datetime import date
from typing import Any, Callable, List

from pydantic import BaseModel, ValidationError

from daily_insights.api.llm import InsightValidationError, OpenAIInsightGenerator
from daily_insights.config import OPENAI_KEY_ENV, AppConfig, InsightsConfig, require_env
from daily_insights.db import store
from daily_insights.pipeline.prompts import compose_prompts
from daily_insights.pipeline.runner import log_summary, new_diagnostics, run_job
from daily_insights.utils.time import day_window, utc_yesterday

logger = logging.getLogger(__name__)

JOB_NAME = "insights"

InsightGenerator = Callable[[str, str], dict[str, Any]]


class InsightPayload(BaseModel):
    themes: List[str]
    assumptions: List[str]
    mood: str
    biases: List[str]
    summary: str


def validate_insight(payload: Any) -> dict[str, Any]:
    try:
        return InsightPayload.model_validate(payload).model_dump()
    except ValidationError as exc:
        raise InsightValidationError(f"Invalid insight structure: {exc}") from exc


def fetch_user_data(
    conn: sqlite3.Connection,
    user_id: str,
    day: date,
    recent_entries: int = 5,
) -> dict[str, Any] | None:
    aggregate = store.fetch_daily_agg(conn, user_id, day)
    if aggregate is None:
        return None
    start, end = day_window(day)
    entries = store.fetch_entry_texts(conn, user_id, start, end, limit=recent_entries, newest_first=True)
    return {
        "user_id": user_id,
        "day": day,
        "top_words": aggregate["word_freq"],
        "bet_counts": aggregate["bet_counts"],
        "brier_score": aggregate["brier"],
        "recent_entries": entries,
    }


def generate_user_insight(
    conn: sqlite3.Connection,
    generator: InsightGenerator,
    user_id: str,
    day: date,
    config: InsightsConfig,
) -> dict[str, Any] | None:
    data = fetch_user_data(conn, user_id, day, recent_entries=config.recent_entries)
    if data is None:
        return None
    logger.info(
        "User %s words=%d entries=%d brier=%.3f",
        user_id,
        len(data["top_words"]),
        len(data["recent_entries"]),
        data["brier_score"],
    )
    system_prompt, user_prompt = compose_prompts(
        data,
        top_words_limit=config.top_words_in_prompt,
        max_entries=config.recent_entries,
        excerpt_chars=config.entry_excerpt_chars,
    )
    insight = validate_insight(generator(system_prompt, user_prompt))
    store.upsert_insight(conn, user_id, day, insight)
    return insight


def run_insights(
    conn: sqlite3.Connection,
    generator: InsightGenerator,
    day: date,
    config: InsightsConfig | None = None,
) -> dict[str, Any]:
    config = config or InsightsConfig()
    started = time.monotonic()
    user_ids = store.fetch_user_ids(conn)
    diagnostics = new_diagnostics(day.isoformat(), len(user_ids))
    logger.info("Generating insights for %s across %d user(s)", day.isoformat(), len(user_ids))

    for user_id in user_ids:
        try:
            insight = generate_user_insight(conn, generator, user_id, day, config)
        except Exception:  # noqa: BLE001
            if conn.in_transaction:
                conn.rollback()
            logger.exception("Failed to generate insights for user %s", user_id)
            diagnostics["users_failed"] += 1
            continue
        if insight is None:
            logger.warning("No daily aggregate for user %s on %s, skipping", user_id, day.isoformat())
            diagnostics["users_skipped"] += 1
            continue
        diagnostics["users_succeeded"] += 1
        logger.info(
            "User %s themes=%s mood=%s biases=%s",
            user_id,
            ", ".join(insight["themes"]),
            insight["mood"],
            ", ".join(insight["biases"]),
        )

    diagnostics["duration_s"] = round(time.monotonic() - started, 3)
    log_summary(JOB_NAME, diagnostics)
    return diagnostics


def main() -> int:
    day = utc_yesterday()

    def work(config: AppConfig, conn: sqlite3.Connection) -> dict[str, Any]:
        settings = config.insights
        generator = OpenAIInsightGenerator(
            api_key=require_env(OPENAI_KEY_ENV),
            base_url=settings.api_url,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout_s=settings.request_timeout_s,
            retry_max=settings.retry_max,
        )
        return run_insights(conn, generator, day, settings)

    return run_job(JOB_NAME, day.isoformat(), work)


if __name__ == "__main__":
    raise SystemExit(main())
