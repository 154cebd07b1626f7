"""
Batch loader: generate one batch of users + posts and push both through
COPY ... FROM STDIN (text format) on a single pooled connection.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass

from pgbulkseed.generate import generate_posts, generate_users

USERS_COPY_SQL = (
    "COPY users (id, name, email, password, phoneNumber, state) FROM STDIN"
)
POSTS_COPY_SQL = (
    "COPY posts (user_id, name, description, date, numberoflike) FROM STDIN"
)

USER_COLUMNS = ("id", "name", "email", "password", "phoneNumber", "state")
POST_COLUMNS = ("user_id", "name", "description", "date", "numberoflike")

_COPY_ESCAPES = str.maketrans(
    {"\\": "\\\\", "\t": "\\t", "\n": "\\n", "\r": "\\r"}
)


@dataclass(frozen=True)
class Batch:
    number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class BatchResult:
    batch: Batch
    users: int = 0
    posts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# -----------------------------
# COPY text format
# -----------------------------
def escape_copy_text(value) -> str:
    return str(value).translate(_COPY_ESCAPES)


def _copy_lines(columns: dict, names: tuple[str, ...]):
    cols = [columns[name] for name in names]
    for row in zip(*cols):
        yield "\t".join(escape_copy_text(v) for v in row) + "\n"


def users_copy_lines(users: dict):
    return _copy_lines(users, USER_COLUMNS)


def posts_copy_lines(posts: dict):
    return _copy_lines(posts, POST_COLUMNS)


async def copy_text(cur, sql: str, lines, buffer_bytes: int = 1024 * 1024) -> int:
    """
    Stream text-format COPY rows, flushing whenever roughly buffer_bytes
    have accumulated. Returns the number of rows written.
    """
    rows = 0
    chunk: list[str] = []
    pending = 0

    async with cur.copy(sql) as cp:
        for line in lines:
            chunk.append(line)
            pending += len(line)
            rows += 1
            if pending >= buffer_bytes:
                await cp.write("".join(chunk))
                chunk.clear()
                pending = 0

        if chunk:
            await cp.write("".join(chunk))

    return rows


# -----------------------------
# Batch
# -----------------------------
async def insert_batch(
    provider,
    batch: Batch,
    *,
    rng,
    buffer_bytes: int = 1024 * 1024,
) -> BatchResult:
    """
    Load users batch.start..batch.end and their posts.

    Users are committed before any post is sent, so a failure in the posts
    COPY leaves the batch's users in place. Errors are reported in the
    returned BatchResult, never raised.
    """
    try:
        async with provider.connection() as conn:
            users = generate_users(rng, batch.start, batch.end)
            async with conn.cursor() as cur:
                n_users = await copy_text(
                    cur, USERS_COPY_SQL, users_copy_lines(users), buffer_bytes
                )
            await conn.commit()

            posts = generate_posts(rng, users["id"])
            async with conn.cursor() as cur:
                n_posts = await copy_text(
                    cur, POSTS_COPY_SQL, posts_copy_lines(posts), buffer_bytes
                )
            await conn.commit()

    except Exception as e:
        print(f"[batch {batch.number}] ERROR: {e}", file=sys.stderr)
        return BatchResult(batch=batch, error=str(e) or type(e).__name__)

    print(
        f"[batch {batch.number}] done: users={n_users:,} "
        f"({batch.start}-{batch.end}) posts={n_posts:,}"
    )
    return BatchResult(batch=batch, users=n_users, posts=n_posts)
