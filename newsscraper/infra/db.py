"""
Database infrastructure with SQLite and async support.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        domain TEXT NOT NULL,
        rss_url TEXT NOT NULL,
        respect_robots_txt INTEGER NOT NULL DEFAULT 1,
        delay_between_requests INTEGER NOT NULL DEFAULT 1000,
        user_agent TEXT NOT NULL,
        timeout_ms INTEGER NOT NULL DEFAULT 30000,
        enabled INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraping_jobs (
        id TEXT PRIMARY KEY,
        sources_requested TEXT NOT NULL,
        articles_per_source INTEGER NOT NULL,
        status TEXT NOT NULL,
        triggered_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        total_articles_scraped INTEGER NOT NULL DEFAULT 0,
        total_errors INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraping_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL REFERENCES scraping_jobs(id) ON DELETE CASCADE,
        source_name TEXT,
        timestamp TEXT NOT NULL,
        level TEXT NOT NULL,
        message TEXT NOT NULL,
        event_type TEXT,
        event_name TEXT,
        additional_data TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraped_content (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL REFERENCES sources(id),
        job_id TEXT,
        source_url TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        content_html TEXT,
        author TEXT,
        publication_date TEXT,
        language TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        processing_status TEXT NOT NULL,
        extraction_method TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_scraping_jobs_status ON scraping_jobs(status)",
    "CREATE INDEX IF NOT EXISTS idx_scraping_logs_job ON scraping_logs(job_id, timestamp, id)",
    "CREATE INDEX IF NOT EXISTS idx_scraped_content_job ON scraped_content(job_id, source_id)",
    "CREATE INDEX IF NOT EXISTS idx_scraped_content_hash ON scraped_content(content_hash)",
]


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: str = "scraper.db"):
        # Handle SQLite URL format if provided
        if db_path.startswith("sqlite"):
            # Handle sqlite+aiosqlite:///path format
            if "///" in db_path:
                actual_path = db_path.split("///")[-1]
            else:
                actual_path = db_path.split("//")[-1]
            self.db_path = actual_path
        else:
            self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._connect_lock = asyncio.Lock()
        # aiosqlite runs one connection on one thread; writes and their commit
        # must not interleave with another coroutine's transaction.
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the database and create the schema."""
        async with self._connect_lock:
            if self._connection:
                return

            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self.db_path, timeout=30)
            self._connection.row_factory = aiosqlite.Row
            # Improve concurrency: use WAL journal mode and set busy timeout (ms)
            await self._connection.execute("PRAGMA journal_mode=WAL;")
            await self._connection.execute("PRAGMA busy_timeout=30000;")
            await self._connection.execute("PRAGMA foreign_keys=ON;")
            await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            await self.connect()
        return self._connection

    @asynccontextmanager
    async def transaction(self):
        """Serialized write transaction; commits on success, rolls back on error."""
        conn = await self._conn()
        async with self._write_lock:
            try:
                await conn.execute("BEGIN")
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> int:
        """Execute a write statement in its own transaction; returns rowcount."""
        async with self.transaction() as conn:
            cursor = await conn.execute(sql, params)
            rowcount = cursor.rowcount
            await cursor.close()
            return rowcount

    async def insert(self, table: str, data: Dict[str, Any]) -> int:
        """Insert a row; returns rowcount (0 when a unique key already exists)."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            ON CONFLICT DO NOTHING
        """
        return await self.execute(sql, tuple(data.values()))

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        conn = await self._conn()
        async with conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        conn = await self._conn()
        async with conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def fetch_value(self, sql: str, params: Tuple[Any, ...] = ()) -> Any:
        row = await self.fetch_one(sql, params)
        return row[0] if row is not None else None

    async def _run_migrations(self) -> None:
        """Create the schema if this database has not seen it yet."""
        conn = self._connection
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        async with conn.execute("SELECT MAX(version) FROM migrations") as cursor:
            row = await cursor.fetchone()
        current = row[0] or 0

        if current < SCHEMA_VERSION:
            for statement in _SCHEMA:
                await conn.execute(statement)
            await conn.execute("INSERT INTO migrations (version) VALUES (?)", (SCHEMA_VERSION,))
            logger.info(f"Applied schema version {SCHEMA_VERSION} to {self.db_path}")
        await conn.commit()
