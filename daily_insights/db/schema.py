SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entries_user_created ON entries (user_id, created_at);

CREATE TABLE IF NOT EXISTS bets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    statement TEXT,
    probability REAL NOT NULL,
    status TEXT NOT NULL,
    outcome INTEGER,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_bets_user ON bets (user_id);

CREATE TABLE IF NOT EXISTS wallet_links (
    user_id TEXT NOT NULL,
    chain TEXT NOT NULL,
    address TEXT NOT NULL,
    PRIMARY KEY (user_id, chain, address)
);

CREATE TABLE IF NOT EXISTS daily_agg (
    user_id TEXT NOT NULL,
    day TEXT NOT NULL,
    word_freq_json TEXT NOT NULL,
    bet_counts_json TEXT NOT NULL,
    brier REAL NOT NULL,
    PRIMARY KEY (user_id, day)
);

CREATE TABLE IF NOT EXISTS external_positions_raw (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    source TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    fetched_day TEXT NOT NULL,
    UNIQUE (user_id, source, fetched_day)
);

CREATE TABLE IF NOT EXISTS external_markets (
    user_id TEXT NOT NULL,
    source TEXT NOT NULL,
    market_id TEXT NOT NULL,
    title TEXT,
    category TEXT,
    tags_json TEXT,
    outcome TEXT,
    size REAL,
    avg_price REAL,
    current_value REAL,
    pnl REAL,
    resolved INTEGER,
    as_of TEXT NOT NULL,
    PRIMARY KEY (user_id, source, market_id, as_of)
);

CREATE TABLE IF NOT EXISTS insights_llm (
    user_id TEXT NOT NULL,
    day TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    PRIMARY KEY (user_id, day)
);

CREATE TABLE IF NOT EXISTS job_runs (
    job TEXT NOT NULL,
    run_key TEXT NOT NULL,
    status TEXT,
    created_at TEXT NOT NULL,
    finished_at TEXT,
    error_message TEXT,
    diagnostics_json TEXT,
    PRIMARY KEY (job, run_key)
);
"""
