"""Tests for the batch loader and COPY serialization."""

import numpy as np
import pytest

from conftest import FakeDatabase, FakeProvider
from pgbulkseed.loader import (
    Batch,
    copy_text,
    escape_copy_text,
    insert_batch,
    posts_copy_lines,
    users_copy_lines,
)


def test_escape_copy_text():
    assert escape_copy_text("plain") == "plain"
    assert escape_copy_text("a\tb\nc\\d\re") == "a\\tb\\nc\\\\d\\re"
    assert escape_copy_text(42) == "42"


def test_users_copy_lines_column_order():
    users = {
        "id": ["u1"],
        "name": ["User_1"],
        "email": ["user_1@example.com"],
        "password": ["abcd1234"],
        "phoneNumber": ["0000000042"],
        "state": ["pending"],
    }
    assert list(users_copy_lines(users)) == [
        "u1\tUser_1\tuser_1@example.com\tabcd1234\t0000000042\tpending\n"
    ]


def test_posts_copy_lines_column_order():
    posts = {
        "user_id": ["u1"],
        "name": ["Post_1"],
        "description": ["Description for post 1"],
        "date": ["2024-01-01T00:00:00.000Z"],
        "numberoflike": np.array([7]),
    }
    assert list(posts_copy_lines(posts)) == [
        "u1\tPost_1\tDescription for post 1\t2024-01-01T00:00:00.000Z\t7\n"
    ]


@pytest.mark.asyncio
async def test_copy_text_flushes_by_size(provider):
    lines = [f"row{i:03d}\n" for i in range(10)]  # 7 bytes each
    async with provider.connection() as conn:
        async with conn.cursor() as cur:
            n = await copy_text(
                cur, "COPY t (a) FROM STDIN", lines, buffer_bytes=20
            )
        await conn.commit()

    assert n == 10
    table, rows, writes = provider.db.copies[0]
    assert (table, rows) == ("t", 10)
    # 3 lines per flush, plus the remainder
    assert writes == 4


@pytest.mark.asyncio
async def test_insert_batch_writes_users_then_posts(provider):
    batch = Batch(number=2, start=11, end=20)
    result = await insert_batch(provider, batch, rng=np.random.default_rng(1))

    assert result.ok
    assert (result.users, result.posts) == (10, 20)
    db = provider.db
    assert [c[0] for c in db.copies] == ["users", "posts"]
    assert sorted(row[1] for row in db.users.values()) == sorted(
        f"User_{i}" for i in range(11, 21)
    )
    assert len(db.posts) == 20
    assert {row[0] for row in db.posts} == set(db.users)
    assert provider.acquired == provider.released == 1


@pytest.mark.asyncio
async def test_insert_batch_posts_failure_keeps_users():
    db = FakeDatabase(poison_posts_of={"User_3"})
    provider = FakeProvider(db)

    result = await insert_batch(
        provider, Batch(number=1, start=1, end=5), rng=np.random.default_rng(1)
    )

    assert not result.ok
    assert "malformed row" in result.error
    assert (result.users, result.posts) == (0, 0)
    assert len(db.users) == 5
    assert db.posts == []
    assert provider.in_flight == 0
    assert provider.released == 1


@pytest.mark.asyncio
async def test_insert_batch_reports_connection_error(capsys):
    class Unreachable(FakeProvider):
        def connection(self):
            raise OSError("pool exhausted")

    result = await insert_batch(
        Unreachable(), Batch(number=9, start=81, end=90), rng=np.random.default_rng()
    )

    assert result.error == "pool exhausted"
    assert "[batch 9] ERROR: pool exhausted" in capsys.readouterr().err
