"""Database utilities for tracking Gyazo synchronization state."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

_LAST_FETCHED_ID = "last_fetched_id"
_LAST_FETCH_TIME = "last_fetch_time"
_FORCE_REFETCH = "force_refetch"


@dataclass
class SyncCheckpoint:
    """Incremental sync progress carried between runs.

    Attributes:
        last_fetched_id: Newest image id processed by the previous run ("" if none)
        last_fetch_time: Epoch milliseconds of the previous successful run (0 if never)
        force_refetch: Discard managed notes and the checkpoint on the next run
    """

    last_fetched_id: str = ""
    last_fetch_time: float = 0
    force_refetch: bool = False


class SyncStateDB:
    """
    Manages the SQLite database holding sync state.

    Stores:
    - the checkpoint (last fetched id, last fetch time, force-refetch flag)
    - an index from Gyazo image id to note path, so that a note is found by
      id even when its derived file name would change
    - a log of sync runs for the ``status`` command
    """

    def __init__(self, db_path: Path):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS note_index (
                    gyazo_id TEXT PRIMARY KEY,
                    note_path TEXT NOT NULL,
                    last_synced REAL NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    started_at REAL NOT NULL,
                    finished_at REAL NOT NULL,
                    status TEXT NOT NULL,
                    fetched INTEGER NOT NULL DEFAULT 0,
                    created INTEGER NOT NULL DEFAULT 0,
                    updated INTEGER NOT NULL DEFAULT 0,
                    skipped INTEGER NOT NULL DEFAULT 0,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT
                )
                """
            )
            await db.commit()
            logger.debug(f"Database initialized at {self.db_path}")

    # Checkpoint

    async def get_checkpoint(self) -> SyncCheckpoint:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT key, value FROM sync_state") as cursor:
                rows = dict(await cursor.fetchall())

        return SyncCheckpoint(
            last_fetched_id=rows.get(_LAST_FETCHED_ID, ""),
            last_fetch_time=float(rows.get(_LAST_FETCH_TIME, 0) or 0),
            force_refetch=rows.get(_FORCE_REFETCH, "0") == "1",
        )

    async def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        values = [
            (_LAST_FETCHED_ID, checkpoint.last_fetched_id or ""),
            (_LAST_FETCH_TIME, repr(float(checkpoint.last_fetch_time))),
            (_FORCE_REFETCH, "1" if checkpoint.force_refetch else "0"),
        ]
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                values,
            )
            await db.commit()
        logger.debug(f"Saved checkpoint: {checkpoint}")

    async def set_force_refetch(self, enabled: bool) -> None:
        checkpoint = await self.get_checkpoint()
        checkpoint.force_refetch = enabled
        await self.save_checkpoint(checkpoint)

    # Note index

    async def get_note_path(self, gyazo_id: str) -> str | None:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT note_path FROM note_index WHERE gyazo_id = ?",
                (gyazo_id,),
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def upsert_note(self, gyazo_id: str, note_path: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO note_index (gyazo_id, note_path, last_synced)
                VALUES (?, ?, ?)
                ON CONFLICT(gyazo_id) DO UPDATE SET
                    note_path = excluded.note_path,
                    last_synced = excluded.last_synced
                """,
                (gyazo_id, note_path, datetime.now().timestamp()),
            )
            await db.commit()
            logger.debug(f"Upserted note index: {gyazo_id} -> {note_path}")

    async def delete_note(self, gyazo_id: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM note_index WHERE gyazo_id = ?", (gyazo_id,))
            await db.commit()

    async def replace_note_index(self, index: dict[str, str]) -> None:
        """Replace the whole index with a fresh vault scan."""
        now = datetime.now().timestamp()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM note_index")
            await db.executemany(
                "INSERT INTO note_index (gyazo_id, note_path, last_synced) VALUES (?, ?, ?)",
                [(gyazo_id, path, now) for gyazo_id, path in index.items()],
            )
            await db.commit()
        logger.debug(f"Note index rebuilt with {len(index)} entries")

    async def count_notes(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM note_index") as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    # Run log

    async def record_run(
        self,
        *,
        started_at: float,
        status: str,
        fetched: int = 0,
        created: int = 0,
        updated: int = 0,
        skipped: int = 0,
        deleted: int = 0,
        error_message: str | None = None,
    ) -> int:
        """Append a sync run to the log and return its id."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO sync_runs
                (started_at, finished_at, status, fetched, created, updated, skipped, deleted, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    started_at,
                    datetime.now().timestamp(),
                    status,
                    fetched,
                    created,
                    updated,
                    skipped,
                    deleted,
                    error_message,
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def get_recent_runs(self, limit: int = 10) -> list[dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def clear_all(self) -> None:
        """
        Clear the checkpoint and the note index.

        This does NOT delete any notes - the next sync simply starts over.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM sync_state")
            await db.execute("DELETE FROM note_index")
            await db.commit()
            logger.info("Sync state cleared from database")
