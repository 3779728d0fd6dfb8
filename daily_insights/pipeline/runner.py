from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from daily_insights.config import AppConfig, ConfigError, load_config, resolve_db_path
from daily_insights.db import store

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1

JobWork = Callable[[AppConfig, sqlite3.Connection], dict[str, Any]]


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def new_diagnostics(run_key: str, users_total: int = 0) -> dict[str, Any]:
    return {
        "run_key": run_key,
        "users_total": users_total,
        "users_succeeded": 0,
        "users_failed": 0,
        "users_skipped": 0,
        "duration_s": 0.0,
    }


def log_summary(job: str, diagnostics: dict[str, Any]) -> None:
    logger.info(
        "Run summary job=%s run_key=%s users=%s succeeded=%s failed=%s skipped=%s duration_s=%.2f",
        job,
        diagnostics.get("run_key"),
        diagnostics.get("users_total", 0),
        diagnostics.get("users_succeeded", 0),
        diagnostics.get("users_failed", 0),
        diagnostics.get("users_skipped", 0),
        diagnostics.get("duration_s", 0.0),
    )
    if diagnostics.get("users_failed"):
        logger.warning("%s completed with %d user failure(s)", job, diagnostics["users_failed"])


def run_job(job: str, run_key: str, work: JobWork, root: Path | None = None) -> int:
    configure_logging()
    root = root or project_root()
    conn: sqlite3.Connection | None = None
    try:
        config = load_config(root / "config.yaml")
        conn = store.get_connection(resolve_db_path(config, root))
        store.init_db(conn)
    except (ConfigError, ValidationError, yaml.YAMLError, OSError, sqlite3.Error) as exc:
        logger.error("Setup failed for %s: %s", job, exc)
        if conn is not None:
            conn.close()
        return EXIT_FATAL

    try:
        store.ensure_run(conn, job, run_key, status="running")
        diagnostics = work(config, conn)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Fatal error in %s job", job)
        _mark_failed(conn, job, run_key, str(exc))
        return EXIT_FATAL
    else:
        store.update_run_status(conn, job, run_key, "success", diagnostics=diagnostics)
        return EXIT_OK
    finally:
        conn.close()


def _mark_failed(conn: sqlite3.Connection, job: str, run_key: str, message: str) -> None:
    try:
        if conn.in_transaction:
            conn.rollback()
        store.update_run_status(conn, job, run_key, "failed", message)
    except sqlite3.Error as exc:
        logger.error("Could not record failed %s run: %s", job, exc)
