"""
DOMEX Exchange State Store

Persistence backends for exported exchange state (pool reserves and share
ledgers, limiter windows, breaker flags).

Schema (SQLite):
    exchange_state: key/value rows, one per pool (``pool:<id>``) plus
    ``breaker`` and ``stats``; values are JSON documents.

Usage:
    store = await SQLiteStateStore.create("data/exchange.db")
    await manager.async_save(store)
    ...
    await manager.async_load(store)
    await store.close()
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Protocol

import aiosqlite

logger = logging.getLogger(__name__)

_POOL_PREFIX = "pool:"

_CREATE_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS exchange_state (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

_INSERT_ROW = "INSERT INTO exchange_state (key, value) VALUES (?, ?)"
_SELECT_ROWS = "SELECT key, value FROM exchange_state ORDER BY key"


class StateStore(Protocol):
    """Synchronous persistence backend for exported exchange state."""

    def save_state(self, state: Dict[str, Any]) -> bool:
        """Persist state atomically."""
        ...

    def load_state(self) -> Optional[Dict[str, Any]]:
        """Load previously saved state, or None if nothing was saved."""
        ...


class InMemoryStateStore:
    """
    In-memory store for tests and simulations. NOT durable.
    """

    def __init__(self) -> None:
        self._state: Optional[str] = None

    def save_state(self, state: Dict[str, Any]) -> bool:
        # Serialised so later mutation of the live state cannot leak in
        self._state = json.dumps(state, sort_keys=True)
        return True

    def load_state(self) -> Optional[Dict[str, Any]]:
        return json.loads(self._state) if self._state is not None else None


def _to_rows(state: Dict[str, Any]) -> Dict[str, str]:
    rows = {
        _POOL_PREFIX + pool_id: json.dumps(pool, sort_keys=True)
        for pool_id, pool in state.get("pools", {}).items()
    }
    for key in ("breaker", "stats"):
        if key in state:
            rows[key] = json.dumps(state[key], sort_keys=True)
    return rows


def _from_rows(rows) -> Optional[Dict[str, Any]]:
    if not rows:
        return None
    state: Dict[str, Any] = {"pools": {}}
    for key, value in rows:
        if key.startswith(_POOL_PREFIX):
            state["pools"][key[len(_POOL_PREFIX):]] = json.loads(value)
        else:
            state[key] = json.loads(value)
    return state


class SQLiteStateStore:
    """
    SQLite-backed store built on ``aiosqlite``.

    Only the async API is offered; a connection belongs to the event loop
    it was opened on.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    @staticmethod
    async def create(db_path: str) -> SQLiteStateStore:
        """Open the database, enable WAL and create the schema."""
        self = SQLiteStateStore(db_path)

        directory = os.path.dirname(db_path)
        if directory and db_path != ":memory:":
            os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.execute("PRAGMA synchronous=NORMAL")
        await self.connection.execute(_CREATE_STATE_TABLE)
        await self.connection.commit()

        logger.info("Exchange state store opened: %s", db_path)
        return self

    async def async_save(self, state: Dict[str, Any]) -> bool:
        """Replace the stored state with ``state`` in one transaction."""
        if self.connection is None:
            raise RuntimeError("Store is closed")
        rows = _to_rows(state)
        try:
            await self.connection.execute("DELETE FROM exchange_state")
            await self.connection.executemany(_INSERT_ROW, list(rows.items()))
            await self.connection.commit()
        except aiosqlite.Error as exc:
            await self.connection.rollback()
            logger.error("async_save failed: %s", exc, exc_info=True)
            return False
        logger.debug("Saved %d exchange state rows", len(rows))
        return True

    async def async_load(self) -> Optional[Dict[str, Any]]:
        if self.connection is None:
            raise RuntimeError("Store is closed")
        try:
            async with self.connection.execute(_SELECT_ROWS) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            logger.error("async_load failed: %s", exc, exc_info=True)
            return None
        return _from_rows([(row[0], row[1]) for row in rows])

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None
            logger.info("Exchange state store closed: %s", self.db_path)
