"""
Connection handling: libpq DSN building, the shared async pool, and the
startup readiness check.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager

import psycopg
from psycopg_pool import AsyncConnectionPool

# (libpq keyword, environment variable, fallback)
CONNECTION_SETTINGS = (
    ("host", "PGHOST", "postgres"),
    ("port", "PGPORT", "5432"),
    ("user", "PGUSER", "youruser"),
    ("dbname", "PGDATABASE", "yourdb"),
    ("password", "PGPASSWORD", "yourpassword"),
    ("sslmode", "PGSSLMODE", None),
    ("options", "PGOPTIONS", None),
)

PSQL_FLAGS = {"host": "-h", "port": "-p", "user": "-U", "dbname": "-d"}


class DatabaseNotReady(RuntimeError):
    pass


# -----------------------------
# Connection (psql-compatible)
# -----------------------------
def connection_settings(args, environ=None) -> dict[str, str]:
    """
    Resolve libpq settings: command line first, then PG* environment
    variables, then the built-in defaults. Unset settings are left out.
    """
    if environ is None:
        environ = os.environ

    settings: dict[str, str] = {}
    for key, env_var, fallback in CONNECTION_SETTINGS:
        value = getattr(args, key, None)
        if value is None or value == "":
            value = environ.get(env_var) or fallback
        if value is not None:
            settings[key] = str(value)
    return settings


def build_libpq_dsn(args, environ=None) -> str:
    if environ is None:
        environ = os.environ
    dsn = args.dsn or environ.get("PG_DSN")
    if dsn:
        return dsn
    settings = connection_settings(args, environ)
    return " ".join(f"{key}={value}" for key, value in settings.items())


def psql_equivalent_cmd(args, environ=None) -> str:
    settings = connection_settings(args, environ)

    cmd = ["psql"]
    for key, flag in PSQL_FLAGS.items():
        if key in settings:
            cmd += [flag, settings[key]]

    prefix = ""
    if "password" in settings:
        prefix += "PGPASSWORD='***' "
    if "sslmode" in settings:
        prefix += f"PGSSLMODE='{settings['sslmode']}' "
    if "options" in settings:
        prefix += f"PGOPTIONS='{settings['options']}' "
    return prefix + " ".join(cmd)


# -----------------------------
# Pool
# -----------------------------
class ConnectionProvider:
    """
    Owns the connection pool shared by all batch tasks.

    The pool is created by open(), once the database is reachable, from
    inside the running event loop; close() is safe to call either way. Each
    batch holds one connection for its whole duration via connection().

    Waiting for a free connection is unbounded unless acquire_timeout is
    given; batches queue behind the pool for as long as the run takes.
    """

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        async_commit: bool = False,
        connect_timeout: int = 5,
        acquire_timeout: float | None = None,
    ):
        self.dsn = dsn
        self.pool_size = pool_size
        self.async_commit = async_commit
        self.connect_timeout = connect_timeout
        self.acquire_timeout = acquire_timeout
        self._pool: AsyncConnectionPool | None = None

    @property
    def pool_timeout(self) -> float:
        if self.acquire_timeout is None:
            return float("inf")
        return self.acquire_timeout

    async def _configure(self, conn) -> None:
        await conn.execute("SET client_min_messages=warning")
        if self.async_commit:
            await conn.execute("SET synchronous_commit=off")
        await conn.commit()

    async def open(self, timeout: float = 30.0) -> None:
        if self._pool is not None:
            return
        pool = AsyncConnectionPool(
            conninfo=self.dsn,
            min_size=1,
            max_size=self.pool_size,
            open=False,
            configure=self._configure,
            timeout=self.pool_timeout,
        )
        try:
            await pool.open(wait=True, timeout=timeout)
        except BaseException:
            await pool.close()
            raise
        self._pool = pool

    @asynccontextmanager
    async def connection(self):
        if self._pool is None:
            raise RuntimeError("connection pool is not open")
        # the pool rolls back uncommitted work and reclaims the connection
        # on every exit path
        async with self._pool.connection() as conn:
            yield conn

    async def ping(self) -> None:
        conn = await psycopg.AsyncConnection.connect(
            self.dsn, connect_timeout=self.connect_timeout
        )
        try:
            await conn.execute("SELECT 1")
        finally:
            await conn.close()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


# -----------------------------
# Readiness gate
# -----------------------------
async def wait_for_database(
    provider,
    max_attempts: int = 30,
    delay: float = 2.0,
    sleep=asyncio.sleep,
) -> int:
    """
    Block until the database answers SELECT 1.

    Returns the attempt number that succeeded; raises DatabaseNotReady once
    max_attempts have failed.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            await provider.ping()
        except Exception as e:
            print(f"[setup] waiting for database... ({attempt}/{max_attempts}) {e}")
            if attempt < max_attempts:
                await sleep(delay)
            continue
        print("[setup] database connection established")
        return attempt

    raise DatabaseNotReady(
        f"could not connect to database after {max_attempts} attempts"
    )
