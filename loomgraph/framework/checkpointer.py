# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Durable checkpoint backends.

Implementations:
    - SQLiteCheckpointer: one row per checkpoint in a SQLite table
    - JSONFileCheckpointer: one JSON document per checkpoint on disk

Both run blocking I/O in the default executor and convert storage
failures into CheckpointBackendError. A failed write never touches
previously stored checkpoints: SQLite writes are single transactions and
JSON documents are written to a temp file, then renamed into place.

Example:
    from loomgraph.framework.checkpointer import SQLiteCheckpointer

    checkpointer = SQLiteCheckpointer("~/.loomgraph/checkpoints.db")
    meta = await checkpointer.save("thread-1", state)
    latest = await checkpointer.load("thread-1")
"""

from __future__ import annotations

import asyncio
import builtins
import json
import logging
import os
import sqlite3
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar
from urllib.parse import quote

from loomgraph.config.settings import CheckpointBackend, Settings
from loomgraph.core.errors import CheckpointBackendError
from loomgraph.framework.checkpoint import (
    BaseCheckpointer,
    Checkpoint,
    CheckpointMetadata,
    MemoryCheckpointer,
    SerializedAgentState,
    decode_metadata_blob,
    encode_metadata_blob,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteCheckpointer(BaseCheckpointer):
    """SQLite-based checkpointer.

    Table layout (one row per checkpoint):
        id TEXT PRIMARY KEY, thread_id TEXT, created_at INTEGER (epoch ms),
        step_count INTEGER, metadata TEXT (JSON), state TEXT (JSON)

    status and pending approval live in the metadata JSON under reserved
    keys, see encode_metadata_blob().

    Attributes:
        db_path: Path to SQLite database file
        table_name: Name of the checkpoints table
        max_items: Optional cap on stored rows; oldest rows are evicted
    """

    backend_name = "sqlite"

    def __init__(
        self,
        db_path: str = "~/.loomgraph/checkpoints.db",
        table_name: str = "loomgraph_checkpoints",
        max_items: Optional[int] = None,
    ):
        super().__init__()
        if not table_name.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table_name!r}")
        self.db_path = db_path if db_path == ":memory:" else str(Path(os.path.expanduser(db_path)))
        self.table_name = table_name
        self.max_items = max_items
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema(self._conn)
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id TEXT PRIMARY KEY,
                    thread_id TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    step_count INTEGER NOT NULL,
                    metadata TEXT,
                    state TEXT NOT NULL
                )
            """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_thread_id
                ON {self.table_name}(thread_id)
            """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_created_at
                ON {self.table_name}(created_at DESC)
            """)
        logger.debug(f"Initialized checkpoint schema: {self.db_path}")

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CheckpointBackendError(
                f"SQLite checkpoint operation failed: {e}",
                backend=self.backend_name,
                cause=e,
            ) from e

    def _row_to_metadata(self, row: sqlite3.Row) -> CheckpointMetadata:
        blob = json.loads(row["metadata"]) if row["metadata"] else None
        status, pending, custom = decode_metadata_blob(blob)
        return CheckpointMetadata(
            id=row["id"],
            thread_id=row["thread_id"],
            created_at=int(row["created_at"]),
            step_count=int(row["step_count"]),
            status=status,
            pending_approval=pending,
            custom=custom,
        )

    async def _put(self, checkpoint: Checkpoint) -> None:
        await self._run(self._put_sync, checkpoint)

    def _put_sync(self, checkpoint: Checkpoint) -> None:
        meta = checkpoint.metadata
        metadata_json = json.dumps(encode_metadata_blob(meta))
        state_json = json.dumps(checkpoint.state.to_dict())
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    f"""
                    INSERT INTO {self.table_name}
                    (id, thread_id, created_at, step_count, metadata, state)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (meta.id, meta.thread_id, meta.created_at, meta.step_count, metadata_json, state_json),
                )
                if self.max_items is not None:
                    cursor = conn.execute(
                        f"""
                        DELETE FROM {self.table_name} WHERE id NOT IN (
                            SELECT id FROM {self.table_name}
                            ORDER BY created_at DESC LIMIT ?
                        )
                    """,
                        (self.max_items,),
                    )
                    if cursor.rowcount > 0:
                        logger.debug(f"Evicted {cursor.rowcount} checkpoints (max_items={self.max_items})")

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        """Load the latest checkpoint for a thread."""
        return await self._run(self._load_sync, thread_id)

    def _load_sync(self, thread_id: str) -> Optional[Checkpoint]:
        with self._lock:
            row = self._get_connection().execute(
                f"""
                SELECT * FROM {self.table_name}
                WHERE thread_id = ?
                ORDER BY created_at DESC
                LIMIT 1
            """,
                (thread_id,),
            ).fetchone()

        if row is None:
            return None
        return Checkpoint(
            metadata=self._row_to_metadata(row),
            state=SerializedAgentState.from_dict(json.loads(row["state"])),
        )

    async def list(self, thread_id: str) -> builtins.list[CheckpointMetadata]:
        """List checkpoint metadata for a thread, newest first."""
        return await self._run(self._list_sync, thread_id)

    def _list_sync(self, thread_id: str) -> List[CheckpointMetadata]:
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT id, thread_id, created_at, step_count, metadata
                FROM {self.table_name}
                WHERE thread_id = ?
                ORDER BY created_at DESC
            """,
                (thread_id,),
            ).fetchall()
        return [self._row_to_metadata(row) for row in rows]

    async def delete(self, checkpoint_id: str) -> bool:
        """Delete a specific checkpoint."""
        return await self._run(self._delete_sync, checkpoint_id)

    def _delete_sync(self, checkpoint_id: str) -> bool:
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute(f"DELETE FROM {self.table_name} WHERE id = ?", (checkpoint_id,))
        return cursor.rowcount > 0

    async def clear(self, thread_id: str) -> int:
        """Delete all checkpoints for a thread."""
        return await self._run(self._clear_sync, thread_id)

    def _clear_sync(self, thread_id: str) -> int:
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute(f"DELETE FROM {self.table_name} WHERE thread_id = ?", (thread_id,))
        return cursor.rowcount

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


class JSONFileCheckpointer(BaseCheckpointer):
    """JSON file-based checkpointer.

    Layout: <base_dir>/<thread>/<checkpoint id>.json, names percent-encoded.
    Latest is resolved by the stored created_at, not file mtime.

    Attributes:
        base_dir: Directory to store checkpoint files
    """

    backend_name = "json"

    def __init__(self, base_dir: str = "~/.loomgraph/checkpoints"):
        super().__init__()
        self.base_dir = Path(os.path.expanduser(base_dir))

    @staticmethod
    def _safe_name(value: str) -> str:
        return quote(value, safe="")

    def _thread_dir(self, thread_id: str) -> Path:
        return self.base_dir / self._safe_name(thread_id)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except (OSError, TypeError, ValueError, KeyError) as e:
            raise CheckpointBackendError(
                f"JSON checkpoint operation failed: {e}",
                backend=self.backend_name,
                cause=e,
            ) from e

    async def _put(self, checkpoint: Checkpoint) -> None:
        await self._run(self._put_sync, checkpoint)

    def _put_sync(self, checkpoint: Checkpoint) -> None:
        payload = json.dumps(checkpoint.to_dict(), indent=2)
        thread_dir = self._thread_dir(checkpoint.metadata.thread_id)
        thread_dir.mkdir(parents=True, exist_ok=True)
        target = thread_dir / f"{self._safe_name(checkpoint.metadata.id)}.json"

        fd, tmp_path = tempfile.mkstemp(dir=thread_dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Saved checkpoint to: {target}")

    def _read(self, path: Path) -> Checkpoint:
        with open(path, encoding="utf-8") as f:
            return Checkpoint.from_dict(json.load(f))

    def _thread_files(self, thread_id: str) -> List[Path]:
        thread_dir = self._thread_dir(thread_id)
        if not thread_dir.is_dir():
            return []
        return [p for p in thread_dir.glob("*.json") if not p.name.startswith(".tmp-")]

    def _thread_checkpoints(self, thread_id: str) -> List[Checkpoint]:
        checkpoints = []
        for path in self._thread_files(thread_id):
            try:
                checkpoints.append(self._read(path))
            except FileNotFoundError:
                # Removed by a concurrent delete or clear
                continue
        return sorted(checkpoints, key=lambda c: c.metadata.created_at, reverse=True)

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        """Load latest checkpoint for thread."""
        checkpoints = await self._run(self._thread_checkpoints, thread_id)
        return checkpoints[0] if checkpoints else None

    async def list(self, thread_id: str) -> builtins.list[CheckpointMetadata]:
        """List checkpoint metadata for thread, newest first."""
        checkpoints = await self._run(self._thread_checkpoints, thread_id)
        return [c.metadata for c in checkpoints]

    async def delete(self, checkpoint_id: str) -> bool:
        return await self._run(self._delete_sync, checkpoint_id)

    def _delete_sync(self, checkpoint_id: str) -> bool:
        if not self.base_dir.is_dir():
            return False
        filename = f"{self._safe_name(checkpoint_id)}.json"
        for path in self.base_dir.glob(f"*/{filename}"):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True
        return False

    async def clear(self, thread_id: str) -> int:
        return await self._run(self._clear_sync, thread_id)

    def _clear_sync(self, thread_id: str) -> int:
        removed = 0
        for path in self._thread_files(thread_id):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed += 1
        return removed


def create_checkpointer(settings: Optional[Settings] = None) -> BaseCheckpointer:
    """Build the checkpoint backend selected by settings.checkpoint_backend."""
    settings = settings or Settings()
    backend = settings.checkpoint_backend

    if backend == CheckpointBackend.SQLITE:
        return SQLiteCheckpointer(
            db_path=settings.checkpoint_db_path,
            table_name=settings.checkpoint_table_name,
        )
    if backend == CheckpointBackend.JSON:
        return JSONFileCheckpointer(base_dir=settings.checkpoint_dir)
    return MemoryCheckpointer(max_items=settings.checkpoint_max_items)


__all__ = [
    "SQLiteCheckpointer",
    "JSONFileCheckpointer",
    "create_checkpointer",
]
