"""
Knowledge Store with PostgreSQL + pgvector

Read-only query executor over the curated knowledge base (legal sections,
case law, playbooks, templates). Queries run on a bounded psycopg2
connection pool inside worker threads so the event loop is never blocked.
When every connection is busy, new queries wait for a free slot instead of
failing.
"""

import os
import asyncio
import threading
import logging
from typing import Optional
from dataclasses import dataclass

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

from .errors import DatastoreError
from .sources import SourceSpec, DETAIL

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeStoreConfig:
    """Configuration for the knowledge store."""
    connection_string: Optional[str] = None
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    # HNSW recall/speed trade-off applied before nearest-neighbour queries; None leaves the server default
    hnsw_ef_search: Optional[int] = None


class _InFlight:
    """Handle on a running query so it can be cancelled from the event loop."""

    def __init__(self):
        self.conn = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        conn = self.conn
        if conn is not None and not conn.closed:
            try:
                conn.cancel()
            except psycopg2.Error as e:
                logger.debug(f"Failed to cancel in-flight query: {e}")


class KnowledgeStore:
    """
    PostgreSQL knowledge store with pgvector.

    Features:
    - Exact (structured key) lookups
    - Cosine-similarity nearest-neighbour search with scalar pre-filters
    - Bounded connection pool with queueing on exhaustion
    - Per-query timeout with server-side cancellation

    Usage:
        async with KnowledgeStore(config) as store:
            rows = await store.fetch_all("SELECT 1 AS ok", [], label="ping")
    """

    def __init__(self, config: Optional[KnowledgeStoreConfig] = None):
        """
        Initialize knowledge store.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or KnowledgeStoreConfig()
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
        self._slots = asyncio.Semaphore(max(1, self.config.pool_max_connections))
        self._connect_lock = threading.Lock()
        self._connection_string = (
            self.config.connection_string or
            os.getenv("DATABASE_URL") or
            os.getenv("POSTGRES_URL") or
            "postgresql://localhost:5432/posh_knowledge"
        )

    def connect(self) -> None:
        """Create the connection pool."""
        with self._connect_lock:
            if self._pool is not None:
                return
            try:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=psycopg2.extras.RealDictCursor,
                )
            except psycopg2.Error as e:
                logger.error(f"Database connection failed: {e}")
                raise DatastoreError(f"Database connection failed: {e}") from e

        logger.info(
            f"Connection pool initialized (min={self.config.pool_min_connections}, "
            f"max={self.config.pool_max_connections})"
        )

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def __aenter__(self) -> "KnowledgeStore":
        await asyncio.to_thread(self.connect)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Query execution
    # =========================================================================

    def _run(self, sql: str, params: list, handle: _InFlight, setup: Optional[list] = None) -> list[dict]:
        """Run one query on a pooled connection (called in a worker thread)."""
        if self._pool is None:
            self.connect()

        pool = self._pool
        conn = pool.getconn()
        handle.conn = conn
        discard = False
        try:
            if handle.cancelled:
                raise psycopg2.extensions.QueryCanceledError("query cancelled before start")
            if not conn.autocommit:
                conn.set_session(readonly=True, autocommit=True)
            with conn.cursor() as cur:
                for statement in setup or []:
                    cur.execute(statement)
                cur.execute(sql, params)
                rows = cur.fetchall()
            return [dict(row) for row in rows]
        except psycopg2.Error:
            discard = handle.cancelled or bool(conn.closed)
            raise
        finally:
            handle.conn = None
            pool.putconn(conn, close=discard or handle.cancelled)

    def _release_slot(self, worker: asyncio.Future) -> None:
        self._slots.release()
        # Nobody awaits a worker whose caller timed out
        if not worker.cancelled():
            worker.exception()

    async def _fetch_all(self, sql: str, params: list, label: str, setup: Optional[list]) -> list[dict]:
        handle = _InFlight()
        await self._slots.acquire()
        # The slot stays taken until the worker thread has returned its
        # connection, so a timed-out query still counts against the pool
        worker = asyncio.ensure_future(asyncio.to_thread(self._run, sql, params, handle, setup))
        worker.add_done_callback(self._release_slot)
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            handle.cancel()
            raise
        except DatastoreError:
            raise
        except psycopg2.Error as e:
            logger.error(f"{label} failed: {e}")
            raise DatastoreError(f"{label} failed: {e}") from e

    async def fetch_all(
        self,
        sql: str,
        params: list,
        label: str = "query",
        timeout: Optional[float] = None,
        setup: Optional[list] = None,
    ) -> list[dict]:
        """
        Execute a read-only query and return its rows as dicts.

        Args:
            sql: Parameterized SQL (psycopg2 %s placeholders)
            params: Query parameters
            label: Human-readable name for logs and errors
            timeout: Seconds to wait (including time queued for a connection),
                     or None for no limit
            setup: Optional session statements run before the query

        Returns:
            List of row dicts

        Raises:
            DatastoreError: on connection failure, SQL error or timeout
        """
        try:
            return await asyncio.wait_for(self._fetch_all(sql, params, label, setup), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{label} timed out after {timeout:.1f}s")
            raise DatastoreError(f"{label} timed out after {timeout:.1f}s") from e

    async def exact_lookup(
        self,
        spec: SourceSpec,
        key: str,
        filters: Optional[dict] = None,
        limit: int = 5,
        view: str = DETAIL,
        timeout: Optional[float] = None,
    ) -> list[dict]:
        """Equality lookup on a source's structured key."""
        sql, params = spec.exact_sql(key, filters, limit, view)
        return await self.fetch_all(sql, params, label=f"{spec.name}_exact", timeout=timeout)

    async def nearest(
        self,
        spec: SourceSpec,
        embedding: list[float],
        filters: Optional[dict] = None,
        limit: int = 5,
        view: str = DETAIL,
        timeout: Optional[float] = None,
    ) -> list[dict]:
        """Nearest-neighbour search on a source, most similar first."""
        sql, params = spec.nearest_sql(embedding, filters, limit, view)
        setup = None
        if self.config.hnsw_ef_search:
            setup = [f"SET hnsw.ef_search = {int(self.config.hnsw_ef_search)}"]
        return await self.fetch_all(
            sql, params, label=f"{spec.name}_semantic", timeout=timeout, setup=setup
        )

    async def ping(self, timeout: Optional[float] = 5.0) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            rows = await self.fetch_all("SELECT 1 AS ok", [], label="ping", timeout=timeout)
        except DatastoreError:
            return False
        return bool(rows) and rows[0].get("ok") == 1
