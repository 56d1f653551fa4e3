import logging
import queue
import re
import secrets
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from library_api.config import settings

logger = logging.getLogger(__name__)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS books (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        genre TEXT NOT NULL,
        isbn TEXT NOT NULL UNIQUE,
        description TEXT NOT NULL DEFAULT '',
        copies INTEGER NOT NULL CHECK(copies >= 0),
        available INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # Borrow -> Book is checked at COMMIT so a book row and its borrow rows
    # can be removed in either order inside one transaction.
    """
    CREATE TABLE IF NOT EXISTS borrows (
        id TEXT PRIMARY KEY,
        book_id TEXT NOT NULL REFERENCES books(id) DEFERRABLE INITIALLY DEFERRED,
        quantity INTEGER NOT NULL CHECK(quantity >= 1),
        due_date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_borrows_book_id ON borrows(book_id)",
    "CREATE INDEX IF NOT EXISTS idx_books_genre ON books(genre)",
    "CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)",
)


def new_object_id() -> str:
    """24 hex chars: 4 bytes of epoch seconds followed by 8 random bytes."""
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{secrets.token_hex(8)}"


def is_object_id(value: object) -> bool:
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value))


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def database_path(url: str) -> str:
    """Resolve a connection string (``sqlite:///path`` or a bare path) to a file path."""
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
    elif "://" in url:
        raise ValueError(f"Unsupported database URL: {url}")
    else:
        path = url
    if not path or path == ":memory:":
        raise ValueError("A file-backed database is required; connections are pooled.")
    return path


class Database:
    """Pooled SQLite client. ``open()`` once at startup, ``close()`` at shutdown."""

    def __init__(self, url: Optional[str] = None, pool_size: Optional[int] = None,
                 timeout: Optional[float] = None) -> None:
        self.url = url or settings.database_url
        self.path = database_path(self.url)
        self.pool_size = pool_size or settings.database_pool_size
        self.timeout = timeout if timeout is not None else settings.database_timeout
        self._pool: Optional[queue.Queue] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly in transaction()
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None,
                               check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def open(self) -> "Database":
        if self._pool is not None:
            return self
        pool: queue.Queue = queue.Queue(maxsize=self.pool_size)
        for _ in range(self.pool_size):
            pool.put(self._connect())
        self._pool = pool
        self.create_tables()
        logger.info(f"Database opened: {self.path} (pool={self.pool_size})")
        return self

    def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        while True:
            try:
                pool.get_nowait().close()
            except queue.Empty:
                break
        logger.info(f"Database closed: {self.path}")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a pooled connection; an overflow connection is opened when the pool is empty."""
        if self._pool is None:
            raise RuntimeError("Database is not open")
        try:
            conn = self._pool.get_nowait()
        except queue.Empty:
            conn = self._connect()
        try:
            yield conn
        finally:
            pool = self._pool
            if pool is None:
                conn.close()
            else:
                try:
                    pool.put_nowait(conn)
                except queue.Full:
                    conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one write transaction; any exception rolls everything back.

        BEGIN IMMEDIATE takes the write lock up front, so reads made inside
        the block cannot go stale before the writes that depend on them.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                # a failed COMMIT (e.g. deferred foreign key) leaves the transaction open
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def create_tables(self) -> None:
        with self.connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def ping(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except (sqlite3.Error, RuntimeError):
            return False
