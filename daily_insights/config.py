from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel

DB_PATH_ENV = "DAILY_INSIGHTS_DB"
OPENAI_KEY_ENV = "OPENAI_API_KEY"


class ConfigError(ValueError):
    pass


class RunConfig(BaseModel):
    db_path: str = "data/daily_insights.sqlite"


class AggregationConfig(BaseModel):
    top_words: int = 20


class MarketDataConfig(BaseModel):
    source: str = "polymarket"
    data_api_url: str = "https://data-api.polymarket.com"
    gamma_api_url: str = "https://gamma-api.polymarket.com"
    request_timeout_s: int = 15
    retry_max: int = 2
    max_markets: int = 500


class InsightsConfig(BaseModel):
    api_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4-turbo-preview"
    temperature: float = 0.7
    max_tokens: int = 1000
    recent_entries: int = 5
    top_words_in_prompt: int = 15
    entry_excerpt_chars: int = 200
    request_timeout_s: int = 60
    retry_max: int = 2


class AppConfig(BaseModel):
    run: RunConfig = RunConfig()
    aggregation: AggregationConfig = AggregationConfig()
    market_data: MarketDataConfig = MarketDataConfig()
    insights: InsightsConfig = InsightsConfig()


def load_config(path: str | Path) -> AppConfig:
    data: Dict[str, Any] = {}
    config_path = Path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
            if isinstance(loaded, dict):
                data = loaded
    config = AppConfig(**data)
    db_override = os.environ.get(DB_PATH_ENV)
    if db_override:
        config.run.db_path = db_override
    return config


def resolve_db_path(config: AppConfig, root: Path) -> Path:
    db_path = Path(config.run.db_path)
    if not db_path.is_absolute():
        db_path = root / db_path
    return db_path


def require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} environment variable is not set")
    return value
