"""SQLite storage for users and their connections."""

import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Optional

from loguru import logger

from .connections import ServiceConnection, User, UserConnection
from .errors import DuplicateConnection, StoreUnavailable


class ConnectionPool:
    """Bounded pool of sqlite connections.

    Every logical operation checks out one connection and hands it back on
    every exit path, committing on success and rolling back on error.
    """

    def __init__(self, db_path: str, max_size: int = 16,
                 busy_timeout: float = 30.0, checkout_timeout: float = 30.0):
        self._db_path = db_path
        self._max_size = max_size
        self._busy_timeout = busy_timeout
        self._checkout_timeout = checkout_timeout
        self._idle: queue.LifoQueue = queue.LifoQueue(maxsize=max_size)
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False,
                               timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout * 1000)}")
        return conn

    def _checkout(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreUnavailable("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._created < self._max_size:
                self._created += 1
                try:
                    return self._connect()
                except sqlite3.Error as e:
                    self._created -= 1
                    raise StoreUnavailable(f"cannot open database: {e}") from e

        try:
            return self._idle.get(timeout=self._checkout_timeout)
        except queue.Empty:
            raise StoreUnavailable("timed out waiting for a database connection")

    def _checkin(self, conn: sqlite3.Connection):
        if self._closed:
            conn.close()
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self):
        conn = self._checkout()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._checkin(conn)

    @property
    def idle(self) -> int:
        """number of opened connections waiting in the pool"""
        return self._idle.qsize()

    @property
    def size(self) -> int:
        """number of connections opened so far"""
        return self._created

    def close(self):
        self._closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                break


class ConnectionStore:
    """Thread-safe record store for users, service and user connections.

    Lookups return None or [] when nothing matches; any database failure
    surfaces as StoreUnavailable.
    """

    def __init__(self, db_path: str, pool_size: int = 16,
                 busy_timeout: float = 30.0):
        self._db_path = db_path
        dir_path = os.path.dirname(db_path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        self._pool = ConnectionPool(db_path, max_size=pool_size,
                                    busy_timeout=busy_timeout)
        self._init_schema()

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @contextmanager
    def _conn(self):
        try:
            with self._pool.connection() as conn:
                yield conn
        except sqlite3.IntegrityError as e:
            raise DuplicateConnection(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"nwc store error: {e}")
            raise StoreUnavailable(str(e)) from e

    def _init_schema(self):
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    pubkey TEXT PRIMARY KEY NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS service_connections (
                    request_identity TEXT PRIMARY KEY NOT NULL,
                    response_secret TEXT NOT NULL,
                    relay_url TEXT NOT NULL,
                    service_name TEXT NOT NULL,
                    owner TEXT NOT NULL REFERENCES users(pubkey),
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_service_owner
                ON service_connections(owner)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_connections (
                    response_identity TEXT PRIMARY KEY NOT NULL,
                    request_identity TEXT NOT NULL,
                    response_secret TEXT NOT NULL,
                    relay_url TEXT NOT NULL,
                    owner TEXT NOT NULL REFERENCES users(pubkey),
                    lud16 TEXT,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_conn_owner
                ON user_connections(owner, created_at DESC)
            """)

    # ── Users ─────────────────────────────────────────────────────

    def create_user(self, user: User) -> User:
        """Insert user if absent and return the stored row."""
        with self._conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (pubkey, created_at) VALUES (?, ?)",
                (user.pubkey, user.created_at))
            row = conn.execute(
                "SELECT pubkey, created_at FROM users WHERE pubkey = ?",
                (user.pubkey,)).fetchone()
        return User(**dict(row))

    def find_user_by_pubkey(self, pubkey: str) -> Optional[User]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT pubkey, created_at FROM users WHERE pubkey = ?",
                (pubkey,)).fetchone()
        return User(**dict(row)) if row else None

    # ── Service connections ───────────────────────────────────────

    def insert_service_connection(self, record: ServiceConnection) -> ServiceConnection:
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO service_connections
                    (request_identity, response_secret, relay_url,
                     service_name, owner, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                record.request_identity,
                record.response_secret,
                record.relay_url,
                record.service_name,
                record.owner,
                record.created_at,
            ))
        return record

    def find_service_connection_by_request_identity(
            self, request_identity: str) -> Optional[ServiceConnection]:
        with self._conn() as conn:
            row = conn.execute("""
                SELECT request_identity, response_secret, relay_url,
                       service_name, owner, created_at
                FROM service_connections WHERE request_identity = ?
            """, (request_identity,)).fetchone()
        return ServiceConnection(**dict(row)) if row else None

    def find_service_connections_by_owner(self, owner: str) -> list[ServiceConnection]:
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT request_identity, response_secret, relay_url,
                       service_name, owner, created_at
                FROM service_connections WHERE owner = ?
                ORDER BY created_at, rowid
            """, (owner,)).fetchall()
        return [ServiceConnection(**dict(r)) for r in rows]

    def list_all_service_request_identities(self) -> list[str]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT request_identity FROM service_connections").fetchall()
        return [r['request_identity'] for r in rows]

    # ── User connections ──────────────────────────────────────────

    def insert_user_connection(self, record: UserConnection) -> UserConnection:
        """Insert record. Raises DuplicateConnection on a duplicate secret."""
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO user_connections
                    (response_identity, request_identity, response_secret,
                     relay_url, owner, lud16, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.response_identity,
                record.request_identity,
                record.response_secret,
                record.relay_url,
                record.owner,
                record.lud16,
                record.created_at,
            ))
        return record

    def find_user_connection_by_response_identity(
            self, response_identity: str) -> Optional[UserConnection]:
        with self._conn() as conn:
            row = conn.execute("""
                SELECT request_identity, response_secret, relay_url,
                       owner, created_at, lud16
                FROM user_connections WHERE response_identity = ?
            """, (response_identity,)).fetchone()
        return UserConnection(**dict(row)) if row else None

    def find_user_connections_by_owner(self, owner: str) -> list[UserConnection]:
        """Newest first."""
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT request_identity, response_secret, relay_url,
                       owner, created_at, lud16
                FROM user_connections WHERE owner = ?
                ORDER BY created_at DESC, rowid DESC
            """, (owner,)).fetchall()
        return [UserConnection(**dict(r)) for r in rows]

    def list_all_user_request_identities(self) -> list[str]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT DISTINCT request_identity FROM user_connections"
            ).fetchall()
        return [r['request_identity'] for r in rows]

    def list_all_user_relay_urls(self) -> list[str]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT DISTINCT relay_url FROM user_connections ORDER BY relay_url"
            ).fetchall()
        return [r['relay_url'] for r in rows]

    def close(self):
        self._pool.close()
