"""Pytest configuration and fixtures.

FakeProvider stands in for the psycopg pool: it parses the text-format COPY
payloads into in-memory tables, enforces the posts -> users foreign key and
applies rows only on commit, like a real connection would.
"""

import asyncio
import re
from contextlib import asynccontextmanager

import pytest

_COPY_RE = re.compile(r"COPY (\w+) \(([^)]*)\) FROM STDIN")


class FakeDatabase:
    def __init__(self, poison_posts_of=()):
        self.users = {}
        self.posts = []
        # user names whose posts make the posts COPY fail
        self.poison_posts_of = set(poison_posts_of)
        self.other = {}
        self.copies = []

    def apply(self, table, rows):
        if table == "users":
            for row in rows:
                if row[0] in self.users:
                    raise RuntimeError(f"duplicate key value: {row[0]}")
                self.users[row[0]] = row
        elif table == "posts":
            self.posts.extend(rows)
        else:
            self.other.setdefault(table, []).extend(rows)

    def check(self, table, columns, rows):
        for row in rows:
            if len(row) != len(columns):
                raise RuntimeError(f"malformed row for {table}: {row!r}")
        if table == "posts":
            for row in rows:
                owner = self.users.get(row[0])
                if owner is None:
                    raise RuntimeError(f"posts.user_id {row[0]} not in users")
                if owner[1] in self.poison_posts_of:
                    raise RuntimeError(f"malformed row for posts of {owner[1]}")


class FakeCopy:
    def __init__(self, conn, sql):
        m = _COPY_RE.fullmatch(sql)
        assert m, sql
        self.conn = conn
        self.table = m.group(1)
        self.columns = [c.strip() for c in m.group(2).split(",")]
        self.writes = []

    async def write(self, data):
        self.writes.append(data)
        await asyncio.sleep(0)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            return False
        payload = "".join(self.writes)
        assert payload.endswith("\n")
        rows = [line.split("\t") for line in payload.splitlines()]
        db = self.conn.db
        db.copies.append((self.table, len(rows), len(self.writes)))
        db.check(self.table, self.columns, rows)
        self.conn.pending.append((self.table, rows))
        return False


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def copy(self, sql):
        return FakeCopy(self.conn, sql)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeConnection:
    def __init__(self, db):
        self.db = db
        self.pending = []

    def cursor(self):
        return FakeCursor(self)

    async def commit(self):
        for table, rows in self.pending:
            self.db.apply(table, rows)
        self.pending.clear()

    async def rollback(self):
        self.pending.clear()


class FakeProvider:
    def __init__(self, db=None, ping_failures=0):
        self.db = db or FakeDatabase()
        self.ping_failures = ping_failures
        self.pings = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.acquired = 0
        self.released = 0
        self.opened = False
        self.closed = False

    async def ping(self):
        self.pings += 1
        if self.pings <= self.ping_failures:
            raise ConnectionRefusedError("connection refused")

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    @asynccontextmanager
    async def connection(self):
        self.acquired += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        conn = FakeConnection(self.db)
        try:
            await asyncio.sleep(0)
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        finally:
            self.in_flight -= 1
            self.released += 1


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def provider(fake_db):
    return FakeProvider(fake_db)
