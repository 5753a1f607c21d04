# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SQLite-backed persistent store for the cache tier.

Uses ``aiosqlite`` with a single long-lived connection.  WAL journal mode
lets a second reader (another session's CLI run) see committed entries.
Schema versioned via ``PRAGMA user_version``.

One row per key; values are JSON text.
"""

from __future__ import annotations

import json
from contextlib import suppress
from pathlib import Path
from typing import Any

import aiosqlite

from .errors import StoreError

_SCHEMA_VERSION = 1

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL
)
"""

_UPSERT = "INSERT INTO kv_store (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value"


class SqliteStore:
    """SQLite implementation of ``PersistentStore``.

    Use the ``create()`` async classmethod factory — never instantiate directly.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteStore:
        """Open (or create) the database and initialise the schema.

        Resolves ``~`` and creates parent directories automatically.

        Raises:
            ValueError: If the existing database has a newer schema version.
        """
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path))
        try:
            await db.execute("PRAGMA journal_mode = WAL")

            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise ValueError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )

            if current_version < _SCHEMA_VERSION:
                await db.execute(_CREATE_KV)
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                await db.commit()
        except BaseException:
            with suppress(Exception):
                await db.close()
            raise

        return cls(db)

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            cursor = await self._db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"read failed for {key!r}: {e}") from e
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            # Corrupt row behaves like a miss; the next successful fetch overwrites it.
            return default

    async def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise StoreError(f"value for {key!r} is not JSON-serializable") from e
        try:
            await self._db.execute(_UPSERT, (key, encoded))
            await self._db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"write failed for {key!r}: {e}") from e

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM kv_store")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def close(self) -> None:
        await self._db.close()
