"""SQLite storage for dares, quotes, permission rules and the audit log.

All blocking sqlite3 calls run in a worker thread via asyncio.to_thread
and are serialized through one asyncio.Lock, so the event loop never
blocks on disk I/O. sqlite3 errors are re-raised as DatabaseError.

Key classes:
    Database: Owns the connection and schema.
    DareRepository, QuoteRepository, PermissionRepository,
    AuditRepository: Table-level async accessors returning models.
"""

import asyncio
import json
import math
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import structlog

from .exceptions import DatabaseError
from .models import AuditEntry, CommandRule, Dare, DarePage, Pagination, Quote

logger = structlog.get_logger("verabot.storage")

T = TypeVar("T")

SCHEMA_VERSION = 2

# Per-command restriction lists: scope -> (table, column)
_SCOPE_TABLES = {
    "user": ("command_users", "user_id"),
    "channel": ("command_channels", "channel_id"),
    "role": ("command_roles", "role_id"),
}

_DARE_UPDATE_COLUMNS = frozenset({
    "content", "status", "theme", "assigned_to",
    "completion_notes", "completed_at",
})


class Database:
    """Manages the SQLite connection and schema.

    Args:
        db_path: Database file path, or ":memory:" for an in-memory DB.
    """

    def __init__(self, db_path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        await asyncio.to_thread(self._initialize_sync)

    def _initialize_sync(self) -> None:
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._create_schema()
        logger.info("database_initialized", path=str(self.db_path))

    def _create_schema(self) -> None:
        cursor = self._conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dares (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content TEXT NOT NULL,
                theme TEXT NOT NULL DEFAULT 'general',
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'completed', 'archived')),
                source TEXT NOT NULL DEFAULT 'user',
                created_by TEXT,
                assigned_to TEXT,
                completion_notes TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP,
                completed_at TIMESTAMP
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_dares_theme ON dares(theme, status)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS quotes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL,
                author TEXT NOT NULL DEFAULT 'Anonymous',
                added_by TEXT,
                added_at TIMESTAMP NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_quotes_author ON quotes(author)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS command_rules (
                command TEXT PRIMARY KEY,
                allowed INTEGER NOT NULL,
                added_by TEXT,
                added_at TIMESTAMP NOT NULL
            )
        """)

        for table, column in _SCOPE_TABLES.values():
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    command TEXT NOT NULL,
                    {column} TEXT NOT NULL,
                    PRIMARY KEY (command, {column})
                )
            """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                command TEXT NOT NULL,
                user_id TEXT,
                channel_id TEXT,
                timestamp TIMESTAMP NOT NULL,
                metadata TEXT,
                success INTEGER NOT NULL,
                error_kind TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        cursor.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        self._conn.commit()

    async def run(self, fn: Callable[[sqlite3.Connection], T], *, operation: str = "query",
                  table: Optional[str] = None) -> T:
        """Run ``fn(connection)`` in a worker thread.

        Raises:
            DatabaseError: If the database is not initialized or sqlite fails.
        """
        if self._conn is None:
            raise DatabaseError(
                "Database not initialized", operation=operation, table=table
            )
        async with self._lock:
            try:
                return await asyncio.to_thread(fn, self._conn)
            except sqlite3.Error as e:
                logger.error(
                    "database_error", operation=operation, table=table, error=str(e)
                )
                raise DatabaseError(
                    f"Database {operation} failed: {e}", operation=operation, table=table
                ) from e

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
            logger.info("database_closed")


def _now() -> str:
    return datetime.now().isoformat()


def _where(clauses: Dict[str, Any]) -> tuple:
    """Build a WHERE fragment from column=value pairs, skipping None values."""
    parts, params = [], []
    for column, value in clauses.items():
        if value is not None:
            parts.append(f"{column} = ?")
            params.append(value)
    sql = (" WHERE " + " AND ".join(parts)) if parts else ""
    return sql, params


class DareRepository:
    """Async accessor for the dares table."""

    def __init__(self, db: Database):
        self.db = db

    async def add(
        self,
        content: str,
        *,
        theme: str = "general",
        source: str = "user",
        created_by: Optional[str] = None,
    ) -> Dare:
        created_at = _now()

        def _insert(conn):
            cursor = conn.execute(
                "INSERT INTO dares (content, theme, status, source, created_by, created_at)"
                " VALUES (?, ?, 'active', ?, ?, ?)",
                (content, theme, source, created_by, created_at),
            )
            conn.commit()
            return cursor.lastrowid

        dare_id = await self.db.run(_insert, operation="insert", table="dares")
        return Dare(
            id=dare_id, content=content, theme=theme, source=source,
            created_by=created_by, created_at=created_at,
        )

    async def get(self, dare_id: int) -> Optional[Dare]:
        row = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM dares WHERE id = ?", (dare_id,)
            ).fetchone(),
            table="dares",
        )
        return Dare(**dict(row)) if row else None

    async def list(
        self,
        *,
        page: int = 1,
        per_page: int = 20,
        status: Optional[str] = None,
        theme: Optional[str] = None,
    ) -> DarePage:
        where, params = _where({"status": status, "theme": theme})
        offset = (page - 1) * per_page

        def _select(conn):
            total = conn.execute(f"SELECT COUNT(*) FROM dares{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM dares{where} ORDER BY id LIMIT ? OFFSET ?",
                [*params, per_page, offset],
            ).fetchall()
            return total, rows

        total, rows = await self.db.run(_select, table="dares")
        return DarePage(
            dares=[Dare(**dict(r)) for r in rows],
            pagination=Pagination(
                page=page,
                per_page=per_page,
                total=total,
                total_pages=max(1, math.ceil(total / per_page)),
            ),
        )

    async def random(
        self, *, theme: Optional[str] = None, status: Optional[str] = "active"
    ) -> Optional[Dare]:
        where, params = _where({"status": status, "theme": theme})
        row = await self.db.run(
            lambda conn: conn.execute(
                f"SELECT * FROM dares{where} ORDER BY RANDOM() LIMIT 1", params
            ).fetchone(),
            table="dares",
        )
        return Dare(**dict(row)) if row else None

    async def oldest(
        self, *, theme: Optional[str] = None, status: Optional[str] = "active"
    ) -> Optional[Dare]:
        """Lowest-id dare matching the filters. Deterministic for a given table state."""
        where, params = _where({"status": status, "theme": theme})
        row = await self.db.run(
            lambda conn: conn.execute(
                f"SELECT * FROM dares{where} ORDER BY id LIMIT 1", params
            ).fetchone(),
            table="dares",
        )
        return Dare(**dict(row)) if row else None

    async def find_by_content(
        self, content: str, *, theme: Optional[str] = None, status: Optional[str] = "active"
    ) -> Optional[Dare]:
        """Lowest-id dare whose content matches exactly."""
        where, params = _where({"content": content, "status": status, "theme": theme})
        row = await self.db.run(
            lambda conn: conn.execute(
                f"SELECT * FROM dares{where} ORDER BY id LIMIT 1", params
            ).fetchone(),
            table="dares",
        )
        return Dare(**dict(row)) if row else None

    async def update(self, dare_id: int, fields: Dict[str, Any]) -> bool:
        """Update whitelisted columns. Returns False if no row matched."""
        unknown = set(fields) - _DARE_UPDATE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update dare columns: {sorted(unknown)}")
        if not fields:
            return False
        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = [fields[c] for c in columns] + [_now(), dare_id]

        def _update(conn):
            cursor = conn.execute(
                f"UPDATE dares SET {assignments}, updated_at = ? WHERE id = ?", params
            )
            conn.commit()
            return cursor.rowcount > 0

        return await self.db.run(_update, operation="update", table="dares")

    async def delete(self, dare_id: int) -> bool:
        def _delete(conn):
            cursor = conn.execute("DELETE FROM dares WHERE id = ?", (dare_id,))
            conn.commit()
            return cursor.rowcount > 0

        return await self.db.run(_delete, operation="delete", table="dares")

    async def count(self, *, status: Optional[str] = None) -> int:
        where, params = _where({"status": status})
        return await self.db.run(
            lambda conn: conn.execute(
                f"SELECT COUNT(*) FROM dares{where}", params
            ).fetchone()[0],
            table="dares",
        )


class QuoteRepository:
    """Async accessor for the quotes table."""

    def __init__(self, db: Database):
        self.db = db

    async def add(self, text: str, author: str, added_by: Optional[str]) -> Quote:
        added_at = _now()

        def _insert(conn):
            cursor = conn.execute(
                "INSERT INTO quotes (text, author, added_by, added_at) VALUES (?, ?, ?, ?)",
                (text, author, added_by, added_at),
            )
            conn.commit()
            return cursor.lastrowid

        quote_id = await self.db.run(_insert, operation="insert", table="quotes")
        return Quote(id=quote_id, text=text, author=author, added_by=added_by,
                     added_at=added_at)

    async def get(self, quote_id: int) -> Optional[Quote]:
        row = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM quotes WHERE id = ?", (quote_id,)
            ).fetchone(),
            table="quotes",
        )
        return Quote(**dict(row)) if row else None

    async def random(self) -> Optional[Quote]:
        row = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM quotes ORDER BY RANDOM() LIMIT 1"
            ).fetchone(),
            table="quotes",
        )
        return Quote(**dict(row)) if row else None

    async def all(self) -> List[Quote]:
        rows = await self.db.run(
            lambda conn: conn.execute("SELECT * FROM quotes ORDER BY id").fetchall(),
            table="quotes",
        )
        return [Quote(**dict(r)) for r in rows]

    async def search(self, query: str) -> List[Quote]:
        pattern = f"%{query.lower()}%"
        rows = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM quotes WHERE LOWER(text) LIKE ? OR LOWER(author) LIKE ?"
                " ORDER BY id",
                (pattern, pattern),
            ).fetchall(),
            table="quotes",
        )
        return [Quote(**dict(r)) for r in rows]

    async def count(self) -> int:
        return await self.db.run(
            lambda conn: conn.execute("SELECT COUNT(*) FROM quotes").fetchone()[0],
            table="quotes",
        )


class PermissionRepository:
    """Async accessor for command allow/deny rules and the per-command
    user, channel and role restriction lists."""

    def __init__(self, db: Database):
        self.db = db

    async def get_rule(self, command: str) -> Optional[CommandRule]:
        row = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM command_rules WHERE command = ?", (command,)
            ).fetchone(),
            table="command_rules",
        )
        return CommandRule(**dict(row)) if row else None

    async def set_rule(self, command: str, allowed: bool, added_by: Optional[str]) -> None:
        """Upsert the rule. A deny also clears every restriction list."""
        def _upsert(conn):
            conn.execute(
                "INSERT INTO command_rules (command, allowed, added_by, added_at)"
                " VALUES (?, ?, ?, ?)"
                " ON CONFLICT(command) DO UPDATE SET allowed = excluded.allowed,"
                " added_by = excluded.added_by, added_at = excluded.added_at",
                (command, int(allowed), added_by, _now()),
            )
            if not allowed:
                for table, _ in _SCOPE_TABLES.values():
                    conn.execute(f"DELETE FROM {table} WHERE command = ?", (command,))
            conn.commit()

        await self.db.run(_upsert, operation="upsert", table="command_rules")

    async def list_rules(self) -> List[CommandRule]:
        rows = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM command_rules ORDER BY command"
            ).fetchall(),
            table="command_rules",
        )
        return [CommandRule(**dict(r)) for r in rows]

    async def _members(self, scope: str, command: str) -> List[str]:
        table, column = _SCOPE_TABLES[scope]
        rows = await self.db.run(
            lambda conn: conn.execute(
                f"SELECT {column} FROM {table} WHERE command = ? ORDER BY {column}",
                (command,),
            ).fetchall(),
            table=table,
        )
        return [r[column] for r in rows]

    async def _add_member(self, scope: str, command: str, value: str) -> None:
        table, column = _SCOPE_TABLES[scope]

        def _insert(conn):
            conn.execute(
                f"INSERT OR IGNORE INTO {table} (command, {column}) VALUES (?, ?)",
                (command, value),
            )
            conn.commit()

        await self.db.run(_insert, operation="insert", table=table)

    async def get_users(self, command: str) -> List[str]:
        return await self._members("user", command)

    async def add_user(self, command: str, user_id: str) -> None:
        await self._add_member("user", command, user_id)

    async def get_channels(self, command: str) -> List[str]:
        return await self._members("channel", command)

    async def add_channel(self, command: str, channel_id: str) -> None:
        await self._add_member("channel", command, channel_id)

    async def get_roles(self, command: str) -> List[str]:
        return await self._members("role", command)

    async def add_role(self, command: str, role_id: str) -> None:
        await self._add_member("role", command, role_id)


class AuditRepository:
    """Audit trail of dispatched commands.

    ``record`` matches the Dispatcher's audit hook signature.
    """

    def __init__(self, db: Database):
        self.db = db

    async def record(self, command, result) -> None:
        metadata = json.dumps(dict(command.metadata), default=str)
        error_kind = None if result.success else result.error.kind.value

        def _insert(conn):
            conn.execute(
                "INSERT INTO audit_log (source, command, user_id, channel_id, timestamp,"
                " metadata, success, error_kind) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (command.source, command.name, command.user_id, command.channel_id,
                 _now(), metadata, int(result.success), error_kind),
            )
            conn.commit()

        await self.db.run(_insert, operation="insert", table="audit_log")

    async def latest(self, limit: int = 20) -> List[AuditEntry]:
        rows = await self.db.run(
            lambda conn: conn.execute(
                "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall(),
            table="audit_log",
        )
        return [AuditEntry(**dict(r)) for r in rows]

