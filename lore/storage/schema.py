"""Database schema for lore SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Column migrations for older databases (migrate_schema)
- Database initialization (init_db)
"""

import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "schema_version",
        "memory_knowledge",
        "memory_reflections",
        "interaction_outcomes",  # written by the engagement loop, read here
        "agent_profiles",  # written by the engagement loop, read here
        "usage_log",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Args:
        table: Table name to validate

    Returns:
        The validated table name

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Knowledge with confidence lifecycle
CREATE TABLE IF NOT EXISTS memory_knowledge (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    knowledge_type TEXT NOT NULL,
    knowledge_key TEXT NOT NULL,
    content TEXT NOT NULL,
    structured_data TEXT,
    confidence REAL NOT NULL DEFAULT 0.3,
    evidence_count INTEGER NOT NULL DEFAULT 1,
    first_created_at TEXT NOT NULL,
    last_updated_at TEXT NOT NULL,
    last_evidence_at TEXT NOT NULL,
    decay_applied_at TEXT,
    UNIQUE(knowledge_type, knowledge_key)
);
CREATE INDEX IF NOT EXISTS idx_knowledge_type_confidence
    ON memory_knowledge(knowledge_type, confidence DESC);
CREATE INDEX IF NOT EXISTS idx_knowledge_last_evidence
    ON memory_knowledge(last_evidence_at ASC);

-- Per-cycle reflection journal (append-only)
CREATE TABLE IF NOT EXISTS memory_reflections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_timestamp TEXT NOT NULL,
    cycle_hour INTEGER NOT NULL,
    posts_discovered INTEGER DEFAULT 0,
    posts_engaged INTEGER DEFAULT 0,
    attacks_cataloged INTEGER DEFAULT 0,
    posts_failed INTEGER DEFAULT 0,
    replies_sent INTEGER DEFAULT 0,
    learning_summary TEXT,
    knowledge_updates TEXT,
    reflection_cost REAL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reflections_cycle ON memory_reflections(cycle_timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_reflections_hour ON memory_reflections(cycle_hour);

-- Interaction outcomes recorded by the engagement loop
CREATE TABLE IF NOT EXISTS interaction_outcomes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hobbot_action TEXT NOT NULL,
    submolt TEXT,
    topic_signals TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_outcomes_created ON interaction_outcomes(created_at DESC);

-- Agent profiles maintained by the engagement loop
CREATE TABLE IF NOT EXISTS agent_profiles (
    agent_hash TEXT PRIMARY KEY,
    username TEXT,
    quality_score REAL DEFAULT 0,
    interaction_count INTEGER DEFAULT 0,
    last_active_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_agents_last_active ON agent_profiles(last_active_at DESC);

-- Model usage and cost accounting
CREATE TABLE IF NOT EXISTS usage_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    layer TEXT NOT NULL,
    provider TEXT,
    model TEXT,
    input_tokens INTEGER DEFAULT 0,
    output_tokens INTEGER DEFAULT 0,
    estimated_cost REAL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_usage_date ON usage_log(date);
"""


def get_columns(conn: sqlite3.Connection, table: str) -> set:
    """Return the column names of ``table``."""
    validate_table_name(table)
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


# Columns added after version 1, as (table, column, definition)
ADDED_COLUMNS = (("memory_reflections", "posts_failed", "INTEGER DEFAULT 0"),)


def migrate_schema(conn: sqlite3.Connection) -> list:
    """Add columns that older databases are missing.

    Returns:
        The ALTER statements that were applied.
    """
    applied = []
    for table, column, definition in ADDED_COLUMNS:
        if column not in get_columns(conn, table):
            statement = f"ALTER TABLE {table} ADD COLUMN {column} {definition}"
            conn.execute(statement)
            applied.append(statement)
    for statement in applied:
        logger.info("Migration: %s", statement)
    return applied


def init_db(conn: sqlite3.Connection, db_path) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    # CREATE TABLE IF NOT EXISTS is safe to re-run
    conn.executescript(SCHEMA)
    migrate_schema(conn)

    cur = conn.execute("SELECT version FROM schema_version LIMIT 1")
    row = cur.fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row["version"] != SCHEMA_VERSION:
        logger.info("Updating schema version %s -> %s", row["version"], SCHEMA_VERSION)
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    conn.commit()

    # Set secure file permissions (owner read/write only)
    try:
        os.chmod(db_path, 0o600)
    except OSError as e:
        logger.warning("Could not set secure permissions: %s", e)
