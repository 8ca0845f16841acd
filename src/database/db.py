import psycopg2
import psycopg2.extras
import logging
from datetime import datetime
from typing import Dict, Any, List

from src.backup_sla.models import SLASummary
from src.common.config import load_config

# Configure logging
logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS backup_sla;
CREATE TABLE IF NOT EXISTS backup_sla.sla_history (
    id SERIAL PRIMARY KEY,
    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
    server VARCHAR(255) NOT NULL,
    run_time TIMESTAMP NOT NULL,
    window_start TIMESTAMP NOT NULL,
    window_end TIMESTAMP NOT NULL,
    total_restore_points INTEGER NOT NULL,
    in_window_count INTEGER NOT NULL,
    compliance_percent NUMERIC(5,2) NOT NULL
);
"""


def load_db_config(config_path: str = None) -> Dict[str, Any]:
    """
    Database section of config.yaml with .env overrides applied.
    The 'enabled' switch is not a connection parameter and is dropped.
    """
    db_config = dict(load_config(config_path).get('database', {}))
    db_config.pop('enabled', None)
    return db_config


def get_db_connection(config_path: str = None):
    """Establish and return a database connection using config.yaml credentials."""
    db_config = load_db_config(config_path)

    # Ensure all required keys are present
    required_keys = ['host', 'port', 'database', 'user', 'password']
    missing = [k for k in required_keys if db_config.get(k) is None]
    if missing:
        raise ValueError(f"Missing database config keys: {missing}")

    try:
        conn = psycopg2.connect(**db_config)
        return conn
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        raise RuntimeError(f"Could not connect to database: {e}")


def store_sla_summary(server: str, summary: SLASummary, run_time: datetime, conn=None):
    """Append one run summary to backup_sla.sla_history"""
    own_conn = conn is None
    conn = conn or get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(SCHEMA_SQL)
        cursor.execute("""
            INSERT INTO backup_sla.sla_history (
                server, run_time, window_start, window_end,
                total_restore_points, in_window_count, compliance_percent
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
        """, (
            server, run_time, summary.window_start, summary.window_end,
            summary.total_restore_points, summary.in_window_count, float(summary.compliance_percent)
        ))
        conn.commit()
        logger.info(f"Stored SLA summary for {server} in database")
    except Exception as e:
        conn.rollback()
        logger.error(f"Database write failed: {e}")
        raise
    finally:
        if own_conn:
            conn.close()


def fetch_sla_history(limit: int = 30, server: str = None, conn=None) -> List[Dict[str, Any]]:
    """Latest history rows, newest first"""
    own_conn = conn is None
    conn = conn or get_db_connection()
    try:
        cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        if server:
            cursor.execute(
                "SELECT * FROM backup_sla.sla_history WHERE server = %s ORDER BY run_time DESC LIMIT %s",
                (server, limit)
            )
        else:
            cursor.execute("SELECT * FROM backup_sla.sla_history ORDER BY run_time DESC LIMIT %s", (limit,))
        return [dict(row) for row in cursor.fetchall()]
    finally:
        if own_conn:
            conn.close()
