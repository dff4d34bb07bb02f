"""Session store contract and its two implementations.

The runtime never touches persistence directly: it loads transcripts,
appends turns and reads/writes the subroutine config block through the
``SessionStore`` interface.

Implementations
---------------
SQLiteSessionStore   — single aiosqlite connection, JSON columns, no ORM.
InMemorySessionStore — dict-backed, for tests and throwaway daemons.

Schema (SQLite)
---------------
``sessions``
    session_id  TEXT PRIMARY KEY
    name        TEXT
    metadata    TEXT   (JSON object; the config lives under "sillyagents")
    created_at  REAL
    updated_at  REAL

``turns``
    id          INTEGER PRIMARY KEY AUTOINCREMENT  (append order)
    session_id  TEXT
    turn        TEXT   (JSON serialisation of Turn)

Turn order is the autoincrement id, so transcript order survives reopen.
"""

from __future__ import annotations

import copy
import json
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiosqlite

from sillyagents.exceptions import SessionNotFoundError, SessionStoreError
from sillyagents.logging import get_logger
from sillyagents.subroutines.models import (
    CONFIG_METADATA_KEY,
    SessionInfo,
    SubroutineConfig,
    Transcript,
    Turn,
    config_from_metadata,
)

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    session_id  TEXT PRIMARY KEY,
    name        TEXT NOT NULL DEFAULT '',
    metadata    TEXT NOT NULL DEFAULT '{}',
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS turns (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id  TEXT NOT NULL,
    turn        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_turns_session ON turns(session_id);
"""


def new_session_id() -> str:
    return uuid.uuid4().hex[:16]


def _apply_config(metadata: dict[str, Any], config: SubroutineConfig | None) -> dict[str, Any]:
    updated = dict(metadata)
    if config is None:
        updated.pop(CONFIG_METADATA_KEY, None)
    else:
        updated[CONFIG_METADATA_KEY] = config.to_dict()
    return updated


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class SessionStore(ABC):
    """Persistence contract used by the runtime.

    Unknown sessions raise ``SessionNotFoundError`` except where noted;
    I/O failures surface as ``SessionStoreError``.
    """

    async def init(self) -> None:
        """Open underlying resources.  No-op by default."""

    async def close(self) -> None:
        """Release underlying resources.  No-op by default."""

    @abstractmethod
    async def load_transcript(self, session_id: str) -> Transcript:
        """Return the session's turns in append order."""

    @abstractmethod
    async def append_and_save(self, session_id: str, turn: Turn) -> None:
        """Append *turn* and persist it before returning."""

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionInfo | None:
        """Return the session, or None if it does not exist."""

    @abstractmethod
    async def set_metadata(self, session_id: str, metadata: dict[str, Any]) -> None:
        """Replace the session's metadata block."""

    @abstractmethod
    async def list_sessions(self) -> list[SessionInfo]:
        """Every known session, subroutine or not."""

    @abstractmethod
    async def create_session(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> SessionInfo:
        """Create an empty session."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete the session and its transcript.  Returns True if it existed."""

    # ---------------------------------------------------------------------------
    # Config helpers (built on the primitives above)
    # ---------------------------------------------------------------------------

    async def get_config(self, session_id: str) -> SubroutineConfig | None:
        """Config of *session_id*; None when absent or the session is unknown."""
        session = await self.get_session(session_id)
        if session is None:
            return None
        return config_from_metadata(session.metadata)

    async def set_config(self, session_id: str, config: SubroutineConfig | None) -> None:
        """Write the config block; ``None`` removes it."""
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        await self.set_metadata(session_id, _apply_config(session.metadata, config))


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemorySessionStore(SessionStore):
    """Dict-backed store.  Returned objects are copies."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionInfo] = {}
        self._turns: dict[str, list[Turn]] = {}

    def _require(self, session_id: str) -> SessionInfo:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def load_transcript(self, session_id: str) -> Transcript:
        self._require(session_id)
        return Transcript(session_id=session_id, turns=list(self._turns[session_id]))

    async def append_and_save(self, session_id: str, turn: Turn) -> None:
        session = self._require(session_id)
        self._turns[session_id].append(turn)
        session.updated_at = time.time()

    async def get_session(self, session_id: str) -> SessionInfo | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    async def set_metadata(self, session_id: str, metadata: dict[str, Any]) -> None:
        session = self._require(session_id)
        session.metadata = copy.deepcopy(metadata)
        session.updated_at = time.time()

    async def list_sessions(self) -> list[SessionInfo]:
        return [copy.deepcopy(s) for s in self._sessions.values()]

    async def create_session(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> SessionInfo:
        session = SessionInfo(
            session_id=new_session_id(),
            name=name,
            metadata=copy.deepcopy(metadata or {}),
        )
        self._sessions[session.session_id] = session
        self._turns[session.session_id] = []
        return copy.deepcopy(session)

    async def delete_session(self, session_id: str) -> bool:
        self._turns.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


class SQLiteSessionStore(SessionStore):
    """Async SQLite session store.

    Usage::

        store = SQLiteSessionStore(Path("~/.sillyagents/sessions.db"))
        await store.init()

        session = await store.create_session("Inbox watcher")
        await store.set_config(session.session_id, default_config(running=True))
        await store.append_and_save(session.session_id, turn)
        transcript = await store.load_transcript(session.session_id)

        await store.close()
    """

    def __init__(self, db_path: Path) -> None:
        self._path = db_path.expanduser()
        self._conn: aiosqlite.Connection | None = None

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and create tables if needed."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self._path))
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        log.info("session_store_initialized", path=str(self._path))

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ---------------------------------------------------------------------------
    # Sessions
    # ---------------------------------------------------------------------------

    async def get_session(self, session_id: str) -> SessionInfo | None:
        assert self._conn is not None
        try:
            async with self._conn.execute(
                "SELECT session_id, name, metadata, created_at, updated_at "
                "FROM sessions WHERE session_id = ?",
                (session_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise SessionStoreError(
                f"Failed to load session '{session_id}': {exc}",
                context={"session_id": session_id},
            ) from exc
        return _row_to_session(row) if row is not None else None

    async def list_sessions(self) -> list[SessionInfo]:
        assert self._conn is not None
        try:
            async with self._conn.execute(
                "SELECT session_id, name, metadata, created_at, updated_at "
                "FROM sessions ORDER BY created_at"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise SessionStoreError(f"Failed to list sessions: {exc}") from exc
        return [_row_to_session(r) for r in rows]

    async def create_session(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> SessionInfo:
        session = SessionInfo(session_id=new_session_id(), name=name, metadata=dict(metadata or {}))
        assert self._conn is not None
        await self._write(
            "INSERT INTO sessions (session_id, name, metadata, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                session.session_id,
                session.name,
                json.dumps(session.metadata, default=str),
                session.created_at,
                session.updated_at,
            ),
            session_id=session.session_id,
        )
        return session

    async def set_metadata(self, session_id: str, metadata: dict[str, Any]) -> None:
        rowcount = await self._write(
            "UPDATE sessions SET metadata = ?, updated_at = ? WHERE session_id = ?",
            (json.dumps(metadata, default=str), time.time(), session_id),
            session_id=session_id,
        )
        if rowcount == 0:
            raise SessionNotFoundError(session_id)

    async def delete_session(self, session_id: str) -> bool:
        await self._write("DELETE FROM turns WHERE session_id = ?", (session_id,), session_id=session_id)
        rowcount = await self._write(
            "DELETE FROM sessions WHERE session_id = ?", (session_id,), session_id=session_id
        )
        return rowcount > 0

    # ---------------------------------------------------------------------------
    # Transcript
    # ---------------------------------------------------------------------------

    async def load_transcript(self, session_id: str) -> Transcript:
        if await self.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        assert self._conn is not None
        try:
            async with self._conn.execute(
                "SELECT turn FROM turns WHERE session_id = ? ORDER BY id", (session_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise SessionStoreError(
                f"Failed to load transcript of '{session_id}': {exc}",
                context={"session_id": session_id},
            ) from exc
        return Transcript(
            session_id=session_id,
            turns=[Turn.from_dict(json.loads(r[0])) for r in rows],
        )

    async def append_and_save(self, session_id: str, turn: Turn) -> None:
        if await self.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        await self._write(
            "INSERT INTO turns (session_id, turn) VALUES (?, ?)",
            (session_id, json.dumps(turn.to_dict(), default=str)),
            session_id=session_id,
        )
        await self._write(
            "UPDATE sessions SET updated_at = ? WHERE session_id = ?",
            (time.time(), session_id),
            session_id=session_id,
        )

    # ---------------------------------------------------------------------------
    # Internal
    # ---------------------------------------------------------------------------

    async def _write(self, sql: str, params: tuple[Any, ...], session_id: str) -> int:
        """Execute one statement and commit.  Returns the affected row count."""
        assert self._conn is not None
        try:
            cursor = await self._conn.execute(sql, params)
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise SessionStoreError(
                f"Failed to persist session '{session_id}': {exc}",
                context={"session_id": session_id},
            ) from exc
        return cursor.rowcount


def _decode_metadata(session_id: str, raw: str | None) -> dict[str, Any]:
    """Parse a metadata column; unreadable or non-object values read as empty."""
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as exc:
        log.warning("session_metadata_unreadable", session_id=session_id, error=str(exc))
        return {}
    if not isinstance(metadata, dict):
        log.warning(
            "session_metadata_not_an_object",
            session_id=session_id,
            type=type(metadata).__name__,
        )
        return {}
    return metadata


def _row_to_session(row: Any) -> SessionInfo:
    return SessionInfo(
        session_id=row[0],
        name=row[1],
        metadata=_decode_metadata(row[0], row[2]),
        created_at=row[3],
        updated_at=row[4],
    )
