"""
Synthetic user/post generation.

Values are drawn in bulk from a numpy Generator so one batch costs a handful
of vectorized calls; the scalar helpers exist for single values and tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import numpy as np

STATES = ("active", "inactive", "pending")
POSTS_PER_USER = 2

PHONE_MAX = 10**10
LIKES_MAX = 1000
DATE_SPAN_MS = 365 * 24 * 60 * 60 * 1000

# >= 9 base-36 digits, so the trailing 8 are always full width
PASSWORD_MIN = 36**8
PASSWORD_MAX = 2**62
PASSWORD_LEN = 8


def make_rng(seed: int | None, batch_number: int) -> np.random.Generator:
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([seed, batch_number])


# -----------------------------
# Vectorized value generators
# -----------------------------
def random_states(rng: np.random.Generator, n: int) -> list[str]:
    idx = rng.integers(0, len(STATES), size=n)
    return [STATES[i] for i in idx]


def random_phones(rng: np.random.Generator, n: int) -> list[str]:
    nums = rng.integers(0, PHONE_MAX, size=n, dtype=np.int64)
    return [f"{int(v):010d}" for v in nums]


def random_passwords(rng: np.random.Generator, n: int) -> list[str]:
    nums = rng.integers(PASSWORD_MIN, PASSWORD_MAX, size=n, dtype=np.int64)
    return [np.base_repr(int(v), 36).lower()[-PASSWORD_LEN:] for v in nums]


def random_dates(
    rng: np.random.Generator, n: int, now: datetime | None = None
) -> list[str]:
    """
    ISO-8601 UTC timestamps (ms precision, 'Z' suffix) within the 365 days
    before `now`.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now_ms = np.datetime64(int(now.timestamp() * 1000), "ms")
    offsets = rng.integers(0, DATE_SPAN_MS, size=n, dtype=np.int64)
    stamps = now_ms - offsets.astype("timedelta64[ms]")
    return np.datetime_as_string(stamps, unit="ms", timezone="UTC").tolist()


def random_likes(rng: np.random.Generator, n: int) -> np.ndarray:
    return rng.integers(0, LIKES_MAX, size=n, dtype=np.int64)


# -----------------------------
# Scalar helpers
# -----------------------------
def random_state(rng: np.random.Generator) -> str:
    return random_states(rng, 1)[0]


def random_phone(rng: np.random.Generator) -> str:
    return random_phones(rng, 1)[0]


def random_password(rng: np.random.Generator) -> str:
    """Placeholder credential; not suitable for anything real."""
    return random_passwords(rng, 1)[0]


def random_date(rng: np.random.Generator, now: datetime | None = None) -> str:
    return random_dates(rng, 1, now)[0]


def random_like_count(rng: np.random.Generator) -> int:
    return int(random_likes(rng, 1)[0])


# -----------------------------
# Batch builders
# -----------------------------
def generate_users(rng: np.random.Generator, start: int, end: int) -> dict:
    """
    Users for sequential indices start..end (inclusive).

    Returns a dict of equally sized columns keyed by table column name.
    """
    if start < 1 or end < start:
        raise ValueError(f"invalid user range {start}-{end}")

    n = end - start + 1
    seq = range(start, end + 1)
    return {
        "id": [str(uuid.uuid4()) for _ in seq],
        "name": [f"User_{i}" for i in seq],
        "email": [f"user_{i}@example.com" for i in seq],
        "password": random_passwords(rng, n),
        "phoneNumber": random_phones(rng, n),
        "state": random_states(rng, n),
    }


def generate_posts(
    rng: np.random.Generator, user_ids: list[str], now: datetime | None = None
) -> dict:
    """POSTS_PER_USER posts for every user id, grouped by owner."""
    n = len(user_ids) * POSTS_PER_USER
    post_no = np.tile(np.arange(1, POSTS_PER_USER + 1), len(user_ids))
    return {
        "user_id": np.repeat(np.asarray(user_ids, dtype=object), POSTS_PER_USER).tolist(),
        "name": [f"Post_{p}" for p in post_no],
        "description": [f"Description for post {p}" for p in post_no],
        "date": random_dates(rng, n, now),
        "numberoflike": random_likes(rng, n),
    }
