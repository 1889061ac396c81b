from __future__ import annotations

import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiomysql
import aiosqlite
from loguru import logger

from .config import PROJECT_ROOT, get_settings

MIGRATIONS_DIR = PROJECT_ROOT / "migrations"

_SQL_TOKEN = re.compile(
    r"--[^\n]*"  # line comment
    r"|/\*.*?\*/"  # block comment
    r"|'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|;"
    r"|[^;'\"/-]+"
    r"|.",
    re.DOTALL,
)

# MySQL-only DDL clauses and their SQLite replacements, applied in order
_SQLITE_DDL_REWRITES: tuple[tuple[str, str], ...] = (
    (r"\s*ENGINE\s*=\s*\w+", ""),
    (r"\s*DEFAULT\s+CHARSET\s*=\s*\w+", ""),
    (r"\s*COLLATE\s*=\s*\w+", ""),
    (r"\s*COMMENT\s+'[^']*'", ""),
    (r"\s*ON\s+UPDATE\s+CURRENT_TIMESTAMP", ""),
    (r"\bAUTO_INCREMENT\b", "AUTOINCREMENT"),
    # AUTOINCREMENT is only legal on an INTEGER PRIMARY KEY column
    (r"\bINT\b(\s+PRIMARY\s+KEY)", r"INTEGER\1"),
    (r"\bDATETIME\b(\(\d+\))?", "TEXT"),
)


class Database:
    """Async access to the tracking store.

    MySQL is used when host, user and database name are configured; any of
    them missing selects a single-connection SQLite file instead.
    Repositories always write ``%s`` placeholders.
    """

    def __init__(self) -> None:
        self._pool: aiomysql.Pool | None = None
        self._sqlite_conn: aiosqlite.Connection | None = None
        self._settings = get_settings()
        self._use_sqlite = self._should_use_sqlite()

    def _should_use_sqlite(self) -> bool:
        settings = self._settings
        return not (settings.database_host and settings.database_user and settings.database_name)

    def _get_sqlite_path(self) -> Path:
        return Path(self._settings.sqlite_path).expanduser()

    def is_sqlite(self) -> bool:
        return self._use_sqlite

    def is_connected(self) -> bool:
        return self._pool is not None or self._sqlite_conn is not None

    def _adapt_placeholders(self, sql: str) -> str:
        return sql.replace("%s", "?") if self._use_sqlite else sql

    def _split_sql_statements(self, sql: str) -> list[str]:
        """Split a migration script on ``;`` outside quotes, dropping comments."""
        statements: list[str] = []
        current: list[str] = []
        for match in _SQL_TOKEN.finditer(sql):
            token = match.group(0)
            if token.startswith("--") or token.startswith("/*"):
                continue
            if token == ";":
                statements.append("".join(current).strip())
                current = []
                continue
            current.append(token)
        statements.append("".join(current).strip())
        return [statement for statement in statements if statement]

    def _adapt_sql_for_sqlite(self, sql: str) -> str:
        """Rewrite the MySQL DDL used by the bundled migrations for SQLite."""
        for pattern, replacement in _SQLITE_DDL_REWRITES:
            sql = re.sub(pattern, replacement, sql, flags=re.IGNORECASE)
        return sql

    async def connect(self) -> None:
        if self.is_connected():
            return
        if self._use_sqlite:
            db_path = self._get_sqlite_path()
            logger.info("Connecting to SQLite database at {path}", path=str(db_path))
            self._sqlite_conn = await aiosqlite.connect(str(db_path))
            self._sqlite_conn.row_factory = aiosqlite.Row
            # open_events rows are removed with their message through ON DELETE CASCADE
            await self._sqlite_conn.execute("PRAGMA foreign_keys = ON")
            await self._sqlite_conn.commit()
            return

        logger.info("Connecting to MySQL at {host}", host=self._settings.database_host)
        self._pool = await aiomysql.create_pool(
            db=self._settings.database_name,
            autocommit=True,
            minsize=1,
            maxsize=10,
            pool_recycle=600,
            **self._mysql_connect_args(),
        )

    async def disconnect(self) -> None:
        if self._sqlite_conn:
            await self._sqlite_conn.close()
            self._sqlite_conn = None
            logger.info("Disconnected from SQLite database")
        elif self._pool:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None
            logger.info("Disconnected from MySQL database")

    def _mysql_connect_args(self) -> dict[str, Any]:
        return {
            "host": self._settings.database_host,
            "port": self._settings.database_port,
            "user": self._settings.database_user,
            "password": self._settings.database_password or "",
            "init_command": "SET time_zone = '+00:00'",
        }

    def _require_sqlite(self) -> aiosqlite.Connection:
        if not self._sqlite_conn:
            raise RuntimeError("SQLite database not initialised")
        return self._sqlite_conn

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        """Yield the SQLite connection or a pooled MySQL connection."""
        if self._use_sqlite:
            yield self._require_sqlite()
            return
        if not self._pool:
            raise RuntimeError("Database pool not initialised")
        conn = await self._pool.acquire()
        try:
            yield conn
        finally:
            self._pool.release(conn)

    async def _sqlite_execute(self, sql: str, params: tuple | None, *, commit: bool):
        conn = self._require_sqlite()
        cursor = await conn.execute(self._adapt_placeholders(sql), params or ())
        if commit:
            await conn.commit()
        return cursor

    @asynccontextmanager
    async def _mysql_cursor(self, *, dict_rows: bool = False) -> AsyncIterator[Any]:
        async with self.acquire() as conn:
            cursor_class = aiomysql.DictCursor if dict_rows else aiomysql.Cursor
            async with conn.cursor(cursor_class) as cursor:
                yield cursor

    async def execute(self, sql: str, params: tuple | None = None) -> None:
        await self.execute_returning_rowcount(sql, params)

    async def execute_returning_rowcount(self, sql: str, params: tuple | None = None) -> int:
        if self._use_sqlite:
            cursor = await self._sqlite_execute(sql, params, commit=True)
            return max(cursor.rowcount, 0)
        async with self._mysql_cursor() as cursor:
            affected = await cursor.execute(sql, params)
        return int(affected or 0)

    async def execute_returning_lastrowid(self, sql: str, params: tuple | None = None) -> int:
        if self._use_sqlite:
            cursor = await self._sqlite_execute(sql, params, commit=True)
            return int(cursor.lastrowid or 0)
        async with self._mysql_cursor() as cursor:
            await cursor.execute(sql, params)
            last_row_id = cursor.lastrowid
        return int(last_row_id or 0)

    async def fetch_one(self, sql: str, params: tuple | None = None) -> dict[str, Any] | None:
        if self._use_sqlite:
            cursor = await self._sqlite_execute(sql, params, commit=False)
            row = await cursor.fetchone()
            return dict(row) if row else None
        async with self._mysql_cursor(dict_rows=True) as cursor:
            await cursor.execute(sql, params)
            return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: tuple | None = None) -> list[dict[str, Any]]:
        if self._use_sqlite:
            cursor = await self._sqlite_execute(sql, params, commit=False)
            return [dict(row) for row in await cursor.fetchall()]
        async with self._mysql_cursor(dict_rows=True) as cursor:
            await cursor.execute(sql, params)
            return list(await cursor.fetchall())

    async def _ensure_mysql_database(self) -> None:
        conn = await aiomysql.connect(autocommit=True, **self._mysql_connect_args())
        try:
            async with conn.cursor() as cursor:
                await cursor.execute("SET sql_notes = 0")
                try:
                    await cursor.execute(
                        f"CREATE DATABASE IF NOT EXISTS `{self._settings.database_name}`"
                    )
                finally:
                    await cursor.execute("SET sql_notes = 1")
        finally:
            conn.close()

    async def _applied_migrations(self) -> set[str]:
        await self.execute("CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)")
        rows = await self.fetch_all("SELECT name FROM migrations")
        return {row["name"] for row in rows}

    async def _apply_migration_file(self, path: Path) -> None:
        sql = path.read_text(encoding="utf-8")
        if self._use_sqlite:
            sql = self._adapt_sql_for_sqlite(sql)
        for statement in self._split_sql_statements(sql):
            await self.execute(statement)
        await self.execute("INSERT INTO migrations (name) VALUES (%s)", (path.name,))
        logger.info("Applied migration {name}", name=path.name)

    async def _apply_pending_migrations(self) -> None:
        applied = await self._applied_migrations()
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if path.name not in applied:
                await self._apply_migration_file(path)

    async def run_migrations(self) -> None:
        """Apply every migration not yet recorded in the ``migrations`` table.

        On MySQL concurrent workers are serialised with a named lock.
        """
        if not MIGRATIONS_DIR.exists():
            logger.warning("No migrations directory found at {path}", path=str(MIGRATIONS_DIR))
            return
        if self._use_sqlite:
            await self.connect()
            await self._apply_pending_migrations()
            return

        await self._ensure_mysql_database()
        await self.connect()
        lock_name = f"{self._settings.database_name}_migration_lock"
        lock_timeout = self._settings.migration_lock_timeout
        # Named locks belong to a session, so one connection holds it throughout
        async with self.acquire() as lock_conn:
            async with lock_conn.cursor() as cursor:
                await cursor.execute("SELECT GET_LOCK(%s, %s)", (lock_name, lock_timeout))
                result = await cursor.fetchone()
            if not result or result[0] != 1:
                logger.error(
                    "Unable to obtain database migration lock {lock} within {timeout}s",
                    lock=lock_name,
                    timeout=lock_timeout,
                )
                raise RuntimeError("Could not obtain database migration lock")
            try:
                await self._apply_pending_migrations()
            finally:
                async with lock_conn.cursor() as cursor:
                    await cursor.execute("SELECT RELEASE_LOCK(%s)", (lock_name,))


db = Database()
