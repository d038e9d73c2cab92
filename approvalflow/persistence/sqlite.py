"""SQLite implementation of the state repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import EngineState, ProcessDefinition, ProcessInstance, Task
from .repository import StateRepository


class SQLiteStateRepository(StateRepository):
    """Persist engine state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS definitions (
                position INTEGER NOT NULL,
                id TEXT PRIMARY KEY,
                definition_key TEXT,
                version INTEGER,
                status TEXT NOT NULL,
                payload TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                position INTEGER NOT NULL,
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                assignee_role TEXT NOT NULL,
                status TEXT NOT NULL,
                payload TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                position INTEGER NOT NULL,
                instance_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                payload TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _replace_all(self, state: EngineState) -> None:
        with self._conn:
            cur = self._conn.cursor()
            cur.execute("DELETE FROM definitions")
            cur.execute("DELETE FROM tasks")
            cur.execute("DELETE FROM instances")
            cur.executemany(
                "INSERT INTO definitions (position, id, definition_key, version, status, payload) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        index,
                        d.id,
                        d.definition_key,
                        d.version,
                        d.status.value,
                        json.dumps(d.to_wire()),
                    )
                    for index, d in enumerate(state.definitions)
                ],
            )
            cur.executemany(
                "INSERT INTO tasks (position, id, instance_id, node_id, assignee_role, status, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        index,
                        t.id,
                        t.instance_id,
                        t.node_id,
                        t.assignee_role,
                        t.status.value,
                        json.dumps(t.to_wire()),
                    )
                    for index, t in enumerate(state.tasks)
                ],
            )
            cur.executemany(
                "INSERT INTO instances (position, instance_id, status, payload) VALUES (?, ?, ?, ?)",
                [
                    (index, i.instance_id, i.status.value, json.dumps(i.to_wire()))
                    for index, i in enumerate(state.instances.values())
                ],
            )

    def _read_all(self) -> EngineState:
        definitions = [
            ProcessDefinition.model_validate(json.loads(row["payload"]))
            for row in self._fetchall("SELECT payload FROM definitions ORDER BY position")
        ]
        tasks = [
            Task.model_validate(json.loads(row["payload"]))
            for row in self._fetchall("SELECT payload FROM tasks ORDER BY position")
        ]
        instances: dict[str, ProcessInstance] = {}
        for row in self._fetchall("SELECT payload FROM instances ORDER BY position"):
            instance = ProcessInstance.model_validate(json.loads(row["payload"]))
            instances[instance.instance_id] = instance
        return EngineState(definitions=definitions, tasks=tasks, instances=instances)

    # ------------------------------------------------------------------
    # Repository API
    async def load_state(self) -> EngineState:
        return await asyncio.to_thread(self._read_all)

    async def save_state(self, state: EngineState) -> None:
        await asyncio.to_thread(self._replace_all, state)

    def close(self) -> None:
        self._conn.close()
