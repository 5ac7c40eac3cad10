"""Database operations for the hand-off queue, service gate and operators.

Every operation that reads and then conditionally writes is a single SQL
statement, so concurrent callers (message handling, operator commands and the
timeout sweeper) never act on the same row twice.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Dict, Any

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from handoff import settings
from handoff.logging_conf import logger

GATE_ID = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_items (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    chat_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    assigned_operator TEXT,
    timeout_started_at TIMESTAMPTZ,
    timeout_warning_sent BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT timer_requires_assignment
        CHECK (timeout_started_at IS NULL OR assigned_operator IS NOT NULL),
    CONSTRAINT warning_requires_timer
        CHECK (NOT timeout_warning_sent OR timeout_started_at IS NOT NULL)
);
CREATE INDEX IF NOT EXISTS queue_items_order_idx ON queue_items (created_at, id);

CREATE TABLE IF NOT EXISTS service_gate (
    id INTEGER PRIMARY KEY,
    is_online BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE TABLE IF NOT EXISTS operators (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

QUEUE_COLUMNS = """
    id, user_id, chat_id, created_at, assigned_operator,
    timeout_started_at, timeout_warning_sent, updated_at
"""


class Database:
    """Connection pool and SQL operations for the hand-off service."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self._pool = None

    @property
    def pool(self) -> ThreadedConnectionPool:
        """Get or create the connection pool."""
        if self._pool is None or self._pool.closed:
            self._pool = ThreadedConnectionPool(settings.DB_POOL_MIN, settings.DB_POOL_MAX, self.dsn)
            logger.info("Database pool opened")
        return self._pool

    def close(self):
        """Close every pooled connection."""
        if self._pool and not self._pool.closed:
            self._pool.closeall()
            self._pool = None
            logger.info("Database pool closed")

    @contextmanager
    def cursor(self):
        """Borrow a connection for one transaction with auto-commit/rollback."""
        pool = self.pool
        conn = pool.getconn()
        broken = False
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception as e:
            broken = isinstance(e, (psycopg2.OperationalError, psycopg2.InterfaceError))
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(conn, close=broken or bool(conn.closed))

    def ensure_schema(self) -> None:
        """Create tables and indexes if they are missing."""
        with self.cursor() as cur:
            cur.execute(SCHEMA)
        logger.info("Database schema ready")

    # Queue items

    def insert_queue_item(self, user_id: str, chat_id: str, now: datetime) -> bool:
        """Insert a waiting item; False if the user is already queued."""
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO queue_items (user_id, chat_id, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (user_id) DO NOTHING
                RETURNING id
            """, (user_id, chat_id, now, now))
            return cur.fetchone() is not None

    def get_queue_item(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {QUEUE_COLUMNS} FROM queue_items WHERE user_id = %s", (user_id,))
            return cur.fetchone()

    def list_queue_items(self) -> List[Dict[str, Any]]:
        """All items in FIFO order."""
        with self.cursor() as cur:
            cur.execute(f"SELECT {QUEUE_COLUMNS} FROM queue_items ORDER BY created_at ASC, id ASC")
            return cur.fetchall()

    def count_queue_items(self) -> int:
        with self.cursor() as cur:
            cur.execute("SELECT COUNT(*) AS total FROM queue_items")
            return cur.fetchone()["total"]

    def queue_position(self, user_id: str) -> Optional[int]:
        """1-based FIFO rank of a user, or None if not queued."""
        with self.cursor() as cur:
            cur.execute("""
                SELECT position FROM (
                    SELECT user_id, ROW_NUMBER() OVER (ORDER BY created_at ASC, id ASC) AS position
                    FROM queue_items
                ) ranked
                WHERE user_id = %s
            """, (user_id,))
            row = cur.fetchone()
            return row["position"] if row else None

    def pop_oldest_queue_item(self) -> Optional[Dict[str, Any]]:
        """Delete and return the oldest item (atomic claim)."""
        with self.cursor() as cur:
            cur.execute(f"""
                DELETE FROM queue_items
                WHERE id = (
                    SELECT id FROM queue_items
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {QUEUE_COLUMNS}
            """)
            return cur.fetchone()

    def assign_oldest_unassigned(self, operator: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Assign the oldest waiting item to an operator (atomic claim)."""
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE queue_items
                SET assigned_operator = %s, updated_at = %s
                WHERE id = (
                    SELECT id FROM queue_items
                    WHERE assigned_operator IS NULL
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                AND assigned_operator IS NULL
                RETURNING {QUEUE_COLUMNS}
            """, (operator, now))
            return cur.fetchone()

    def delete_queue_item(self, user_id: str) -> bool:
        with self.cursor() as cur:
            cur.execute("DELETE FROM queue_items WHERE user_id = %s RETURNING id", (user_id,))
            return cur.fetchone() is not None

    def delete_expired_queue_item(self, user_id: str, started_at: datetime) -> Optional[Dict[str, Any]]:
        """Delete an item only if its timer still runs from `started_at`."""
        with self.cursor() as cur:
            cur.execute(f"""
                DELETE FROM queue_items
                WHERE user_id = %s AND timeout_started_at = %s
                RETURNING {QUEUE_COLUMNS}
            """, (user_id, started_at))
            return cur.fetchone()

    def list_running_timers(self) -> List[Dict[str, Any]]:
        """Assigned items whose response timer is running."""
        with self.cursor() as cur:
            cur.execute(f"""
                SELECT {QUEUE_COLUMNS} FROM queue_items
                WHERE assigned_operator IS NOT NULL
                  AND timeout_started_at IS NOT NULL
                ORDER BY timeout_started_at ASC
            """)
            return cur.fetchall()

    def start_timer(self, user_id: str, now: datetime) -> bool:
        """Start or restart the response timer of an assigned item."""
        with self.cursor() as cur:
            cur.execute("""
                UPDATE queue_items
                SET timeout_started_at = %s, timeout_warning_sent = FALSE, updated_at = %s
                WHERE user_id = %s AND assigned_operator IS NOT NULL
                RETURNING id
            """, (now, now, user_id))
            return cur.fetchone() is not None

    def clear_timer(self, user_id: str, now: datetime) -> bool:
        """Stop a running response timer."""
        with self.cursor() as cur:
            cur.execute("""
                UPDATE queue_items
                SET timeout_started_at = NULL, timeout_warning_sent = FALSE, updated_at = %s
                WHERE user_id = %s AND timeout_started_at IS NOT NULL
                RETURNING id
            """, (now, user_id))
            return cur.fetchone() is not None

    def mark_timeout_warned(self, user_id: str, now: datetime,
                            started_at: Optional[datetime] = None) -> bool:
        """Flag the warning as sent for the current (or given) timer window."""
        with self.cursor() as cur:
            cur.execute("""
                UPDATE queue_items
                SET timeout_warning_sent = TRUE, updated_at = %s
                WHERE user_id = %s
                  AND timeout_started_at IS NOT NULL
                  AND NOT timeout_warning_sent
                  AND (%s::timestamptz IS NULL OR timeout_started_at = %s)
                RETURNING id
            """, (now, user_id, started_at, started_at))
            return cur.fetchone() is not None

    # Service gate

    def ensure_gate(self, default_online: bool = False) -> None:
        """Create the singleton gate row if it is absent."""
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO service_gate (id, is_online)
                VALUES (%s, %s)
                ON CONFLICT (id) DO NOTHING
            """, (GATE_ID, default_online))

    def get_gate(self) -> Optional[bool]:
        """Current gate flag, or None if the row is missing."""
        with self.cursor() as cur:
            cur.execute("SELECT is_online FROM service_gate WHERE id = %s", (GATE_ID,))
            row = cur.fetchone()
            return row["is_online"] if row else None

    def set_gate(self, is_online: bool) -> bool:
        with self.cursor() as cur:
            cur.execute("""
                UPDATE service_gate SET is_online = %s WHERE id = %s
                RETURNING id
            """, (is_online, GATE_ID))
            return cur.fetchone() is not None

    # Operators

    def insert_operator(self, name: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Insert an operator; None if the name is taken."""
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO operators (name, created_at)
                VALUES (%s, %s)
                ON CONFLICT (name) DO NOTHING
                RETURNING name, created_at
            """, (name, now))
            return cur.fetchone()

    def get_operator(self, name: str) -> Optional[Dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute("SELECT name, created_at FROM operators WHERE name = %s", (name,))
            return cur.fetchone()

    def list_operators(self) -> List[Dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute("SELECT name, created_at FROM operators ORDER BY created_at ASC, id ASC")
            return cur.fetchall()

    def count_assignments(self, name: str) -> int:
        with self.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM queue_items WHERE assigned_operator = %s",
                (name,),
            )
            return cur.fetchone()["total"]

    def delete_operator_if_idle(self, name: str) -> bool:
        """Delete an operator unless a queue item is assigned to them."""
        with self.cursor() as cur:
            cur.execute("""
                DELETE FROM operators
                WHERE name = %s
                  AND NOT EXISTS (
                      SELECT 1 FROM queue_items WHERE assigned_operator = %s
                  )
                RETURNING id
            """, (name, name))
            return cur.fetchone() is not None
