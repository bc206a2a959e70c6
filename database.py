"""
Database Layer - Handles all database operations for Task Management System
"""

import logging
import sqlite3
import os
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import List, Dict, Any, Tuple, Optional

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

TASK_DATE_FIELDS = ('start_date', 'due_date', 'created_at', 'updated_at')

SORTABLE_TASK_FIELDS = {
    'name', 'priority', 'status', 'start_date', 'due_date', 'estimated_time', 'created_at'
}


def utc_now() -> datetime:
    """Current time as a naive UTC datetime; the default clock everywhere."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_db_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive datetime into the fixed-width format stored in SQLite."""
    if value is None:
        return None
    return value.strftime(DATE_FORMAT)


def from_db_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class Database:
    """
    Database management class for SQLite3 operations.
    Handles connection management, schema creation, and the task store
    queries used by the task service and the weekly aggregator.
    """

    def __init__(self, db_name: str = "tasks.db"):
        """Initialize database connection and create tables if needed."""
        self.db_name = db_name
        self.db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), db_name)
        self._create_connection()
        self._create_tables()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_connection(self):
        """Create initial database connection and check connectivity."""
        try:
            with self.get_connection() as conn:
                conn.execute("SELECT 1")
            logger.info("[OK] Database connected: %s", self.db_path)
        except sqlite3.Error as e:
            logger.error("Database connection error: %s", e)
            raise

    def _create_tables(self):
        """Create all required tables if they don't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    google_id TEXT UNIQUE,
                    refresh_jti TEXT,
                    email_verified BOOLEAN DEFAULT 0,
                    is_active BOOLEAN DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    priority TEXT NOT NULL DEFAULT 'Medium' CHECK(priority IN ('High', 'Medium', 'Low')),
                    status TEXT NOT NULL DEFAULT 'Todo' CHECK(status IN ('Todo', 'In Progress', 'Completed', 'Expired')),
                    estimated_time REAL NOT NULL DEFAULT 0,
                    start_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    UNIQUE(user_id, name)
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_dates ON tasks(user_id, start_date, due_date)")

            conn.commit()
            logger.debug("[OK] Database tables created/verified")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute SELECT query and return results."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def execute_single(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        """Execute SELECT query and return single result."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchone()

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute INSERT/UPDATE/DELETE query, return last inserted row ID."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.lastrowid

    # ==================== TASK OPERATIONS ====================

    @staticmethod
    def _row_to_task(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        task = dict(row)
        for field in TASK_DATE_FIELDS:
            task[field] = from_db_datetime(task.get(field))
        return task

    def create_task(self, user_id: int, name: str, start_date: datetime, due_date: datetime,
                    description: str = None, priority: str = "Medium", status: str = "Todo",
                    estimated_time: float = 0) -> int:
        """Create a new task and return its ID."""
        now = to_db_datetime(utc_now().replace(microsecond=0))
        query = """
            INSERT INTO tasks
            (user_id, name, description, priority, status, estimated_time, start_date, due_date, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        return self.execute_update(query, (
            user_id, name, description, priority, status, estimated_time,
            to_db_datetime(start_date), to_db_datetime(due_date), now, now
        ))

    def get_task(self, task_id: int) -> Optional[Dict[str, Any]]:
        """Get task by ID."""
        query = "SELECT * FROM tasks WHERE id = ?"
        return self._row_to_task(self.execute_single(query, (task_id,)))

    def find_task_by_name(self, user_id: int, name: str) -> Optional[Dict[str, Any]]:
        """Get the task a user owns under the given name, if any."""
        query = "SELECT * FROM tasks WHERE user_id = ? AND name = ?"
        return self._row_to_task(self.execute_single(query, (user_id, name)))

    def list_tasks(self, user_id: int, search: str = None, priority: str = None,
                   status: str = None, sort_by: str = None) -> List[Dict[str, Any]]:
        """Get a user's tasks with optional name search, filters and sort field."""
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]

        if search:
            escaped = search.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
            clauses.append("name LIKE ? ESCAPE '\\'")
            params.append(f"%{escaped}%")
        if priority:
            clauses.append("priority = ?")
            params.append(priority)
        if status:
            clauses.append("status = ?")
            params.append(status)

        if sort_by in SORTABLE_TASK_FIELDS:
            order = f"{sort_by} ASC, id ASC"
        else:
            order = "created_at DESC, id DESC"

        query = f"SELECT * FROM tasks WHERE {' AND '.join(clauses)} ORDER BY {order}"
        return [self._row_to_task(row) for row in self.execute_query(query, tuple(params))]

    def find_tasks_for_user(self, user_id: int, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Get tasks that start on/after ``start`` and are due on/before ``end``."""
        query = """
            SELECT * FROM tasks
            WHERE user_id = ? AND start_date >= ? AND due_date <= ?
            ORDER BY start_date
        """
        rows = self.execute_query(query, (user_id, to_db_datetime(start), to_db_datetime(end)))
        return [self._row_to_task(row) for row in rows]

    def update_task(self, task_id: int, **kwargs) -> bool:
        """Update task fields. Only updates fields provided in kwargs."""
        allowed_fields = {'name', 'description', 'priority', 'status', 'estimated_time', 'start_date', 'due_date'}
        update_fields = {k: v for k, v in kwargs.items() if k in allowed_fields}

        if not update_fields:
            return False

        for field in ('start_date', 'due_date'):
            if isinstance(update_fields.get(field), datetime):
                update_fields[field] = to_db_datetime(update_fields[field])

        update_fields['updated_at'] = to_db_datetime(utc_now().replace(microsecond=0))
        set_clause = ", ".join([f"{k} = ?" for k in update_fields.keys()])
        query = f"UPDATE tasks SET {set_clause} WHERE id = ?"

        self.execute_update(query, tuple(update_fields.values()) + (task_id,))
        return True

    def delete_task(self, task_id: int) -> bool:
        """Delete task by ID."""
        query = "DELETE FROM tasks WHERE id = ?"
        self.execute_update(query, (task_id,))
        return True

    # ==================== UTILITY OPERATIONS ====================

    def get_database_stats(self) -> Dict[str, int]:
        """Get statistics about database content."""
        stats = {}
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for table in ['users', 'tasks']:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
        return stats
