from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..core.models import TaskDefinition, TaskResult
from ..utils.exceptions import DatabaseError
from .models import INDEX_STATEMENTS, SCHEMA_STATEMENTS

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    """Fixed-width UTC form so timestamps sort correctly as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class DatabaseRepository:
    """Async SQLite repository for task definitions, implemented with sqlite3."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def initialize_database(self) -> None:
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._create_schema)
        logger.debug(f"Database initialized at {self.db_path}")

    def _create_schema(self) -> None:
        try:
            with self._connect() as conn:
                for stmt in SCHEMA_STATEMENTS:
                    conn.execute(stmt)
                for stmt in INDEX_STATEMENTS:
                    conn.execute(stmt)
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create schema in {self.db_path}: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> Iterable[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a SELECT query and return all results as a list of dictionaries."""
        def _fetch():
            conn = self._connect()
            try:
                return [dict(row) for row in conn.execute(query, params or ()).fetchall()]
            finally:
                conn.close()

        try:
            return await asyncio.to_thread(_fetch)
        except sqlite3.Error as e:
            raise DatabaseError(str(e)) from e

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Execute a SELECT query and return the first result as a dictionary."""
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    async def count_rows(self, table_name: str, where_clause: Optional[str] = None,
                         params: Optional[tuple] = None) -> int:
        """Count rows in a table with optional WHERE clause."""
        query = f"SELECT COUNT(*) AS n FROM {table_name}"
        if where_clause:
            query += f" WHERE {where_clause}"
        row = await self.fetch_one(query, params)
        return row["n"] if row else 0

    # ------------------------------------------------------------------
    # Task definitions
    # ------------------------------------------------------------------

    async def save_task(self, task: TaskDefinition) -> None:
        """Insert or replace a task definition."""
        query = (
            "INSERT INTO tasks (id, name, kind, definition, created_at) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name, kind = excluded.kind, "
            "definition = excluded.definition, updated_at = CURRENT_TIMESTAMP"
        )
        async with self.transaction() as conn:
            conn.execute(query, (
                task.id,
                task.name,
                task.kind.value,
                json.dumps(task.to_dict()),
                _timestamp(task.created_at),
            ))
        logger.debug(f"Saved task {task.id} ({task.name})")

    async def get_task(self, task_id: str) -> Optional[TaskDefinition]:
        row = await self.fetch_one("SELECT definition FROM tasks WHERE id = ?", (task_id,))
        if row is None:
            return None
        return TaskDefinition.from_dict(json.loads(row["definition"]))

    async def list_tasks(self) -> List[TaskDefinition]:
        rows = await self.fetch_all("SELECT definition FROM tasks ORDER BY created_at, id")
        return [TaskDefinition.from_dict(json.loads(row["definition"])) for row in rows]

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and every stored result of it. Returns False if no such task."""
        async with self.transaction() as conn:
            conn.execute("DELETE FROM task_results WHERE task_id = ?", (task_id,))
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted task {task_id} and its results")
        return deleted


class ResultStore:
    """Append-only store of task results backed by the task_results table."""

    def __init__(self, repository: DatabaseRepository) -> None:
        self.repository = repository

    async def save(self, result: TaskResult) -> int:
        """Persist ``result`` and return its store sequence number.

        Raises:
            DatabaseError: If the owning task does not exist or a result for
                the same task and run timestamp is already stored.
        """
        query = (
            "INSERT INTO task_results (id, task_id, kind, executed_at, completed_at, "
            "total_sites, successful_sites, failed_sites, payload) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
        )
        async with self.repository.transaction() as conn:
            cursor = conn.execute(query, (
                result.id,
                result.task_id,
                result.kind.value,
                _timestamp(result.executed_at),
                _timestamp(result.completed_at) if result.completed_at else None,
                result.total_sites,
                result.successful_sites,
                result.failed_sites,
                json.dumps(result.to_dict()),
            ))
            seq = cursor.lastrowid
        logger.debug(f"Saved result {result.id} for task {result.task_id} (seq {seq})")
        return seq

    async def get_all(self, task_id: str) -> List[TaskResult]:
        """All results of a task, newest first."""
        rows = await self.repository.fetch_all(
            "SELECT payload FROM task_results WHERE task_id = ? "
            "ORDER BY executed_at DESC, seq DESC",
            (task_id,),
        )
        return [TaskResult.from_dict(json.loads(row["payload"])) for row in rows]

    async def get_latest(self, task_id: str) -> Optional[TaskResult]:
        row = await self.repository.fetch_one(
            "SELECT payload FROM task_results WHERE task_id = ? "
            "ORDER BY executed_at DESC, seq DESC LIMIT 1",
            (task_id,),
        )
        if row is None:
            return None
        return TaskResult.from_dict(json.loads(row["payload"]))

    async def get(self, result_id: str) -> Optional[TaskResult]:
        row = await self.repository.fetch_one(
            "SELECT payload FROM task_results WHERE id = ?", (result_id,)
        )
        if row is None:
            return None
        return TaskResult.from_dict(json.loads(row["payload"]))

    async def count(self, task_id: str) -> int:
        return await self.repository.count_rows("task_results", "task_id = ?", (task_id,))
