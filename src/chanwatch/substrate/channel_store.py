"""Channel persistence: the list of gateways to probe and their working models."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from chanwatch.errors import StoreConnectionError, StoreQueryError
from chanwatch.models.channel import Channel, join_models

log = logging.getLogger(__name__)


class ChannelStore:
    """Reads channels from SQLite and writes back each channel's working models.

    Every call opens its own short-lived connection; the prober never holds
    the database open across HTTP requests.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Create the channels table if it doesn't exist yet."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS channels (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    base_url TEXT NOT NULL,
                    key TEXT NOT NULL DEFAULT '',
                    status INTEGER NOT NULL DEFAULT 1,
                    models TEXT NOT NULL DEFAULT ''
                )
            """)
            await db.commit()
        log.info("channel_store.initialized path=%s", self._db_path)

    async def ping(self) -> None:
        """Verify the database exists and holds a channels table.

        Opens the file read-only so a mistyped path is reported instead of
        silently creating an empty database.
        """
        uri = f"{Path(self._db_path).resolve().as_uri()}?mode=ro"
        try:
            async with aiosqlite.connect(uri, uri=True) as db:
                await db.execute("SELECT COUNT(*) FROM channels")
        except Exception as exc:
            raise StoreConnectionError(
                f"cannot open channel store at {self._db_path}: {exc}",
                context={"db_path": self._db_path},
            ) from exc

    async def fetch_channels(self) -> list[Channel]:
        """Return every channel in id order."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT id, name, base_url, key, status, models"
                    " FROM channels ORDER BY id"
                )
                rows = await cursor.fetchall()
        except Exception as exc:
            raise StoreQueryError(
                f"failed to fetch channels: {exc}",
                context={"db_path": self._db_path},
            ) from exc

        return [_row_to_channel(row) for row in rows]

    async def get_channel(self, channel_id: int) -> Channel | None:
        """Load one channel by id."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT id, name, base_url, key, status, models"
                    " FROM channels WHERE id = ?",
                    (channel_id,),
                )
                row = await cursor.fetchone()
        except Exception as exc:
            raise StoreQueryError(
                f"failed to load channel {channel_id}: {exc}",
                context={"channel_id": channel_id},
            ) from exc

        if row is None:
            return None
        return _row_to_channel(row)

    async def update_models(self, channel_id: int, models: list[str]) -> None:
        """Replace a channel's available models with ``models``, comma-joined."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    "UPDATE channels SET models = ? WHERE id = ?",
                    (join_models(models), channel_id),
                )
                await db.commit()
        except Exception as exc:
            raise StoreQueryError(
                f"failed to update models for channel {channel_id}: {exc}",
                context={"channel_id": channel_id},
            ) from exc

    async def add_channel(
        self,
        name: str,
        base_url: str,
        key: str,
        *,
        status: int = 1,
        channel_id: int | None = None,
    ) -> int:
        """Insert a channel and return its id."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "INSERT INTO channels (id, name, base_url, key, status)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (channel_id, name, base_url, key, status),
                )
                await db.commit()
                new_id = cursor.lastrowid
        except Exception as exc:
            raise StoreQueryError(
                f"failed to add channel {name}: {exc}",
                context={"channel_id": channel_id, "name": name},
            ) from exc
        log.info("channel_store.added id=%s name=%s", new_id, name)
        return int(new_id)


def _row_to_channel(row: tuple) -> Channel:
    return Channel(
        id=row[0],
        name=row[1] or "",
        base_url=row[2],
        key=row[3] or "",
        status=row[4] if row[4] is not None else 0,
        models=row[5] or "",
    )
