#!/usr/bin/env python3
"""
pgbulkseed

Existing users/posts tables -> N fake users + 2N posts, loaded with COPY in
fixed-size batches by concurrent asyncio tasks sharing one connection pool.

- each batch holds one pooled connection: COPY users, commit, COPY posts, commit
- a failed batch is reported and skipped; the run carries on
- in-flight batches are capped at --concurrency
  - barrier (default): start a group, wait for all of it, start the next
  - window: start a new batch as soon as any running one finishes

psql-compatible flags:
- -h host, -p port, -U user, -d dbname
(argparse help is remapped to --help / -?)
Unset connection flags fall back to PG_DSN, then PGHOST, PGPORT, PGDATABASE,
PGUSER, PGPASSWORD, PGSSLMODE and PGOPTIONS.

Usage:
  pgbulkseed -h localhost -p 5432 -U postgres -d seeddb --total-users 1000000

"""

from __future__ import annotations

import argparse
import asyncio
import math
import sys
import time
from dataclasses import dataclass

from pgbulkseed.db import (
    ConnectionProvider,
    build_libpq_dsn,
    psql_equivalent_cmd,
    wait_for_database,
)
from pgbulkseed.generate import POSTS_PER_USER, make_rng
from pgbulkseed.loader import Batch, BatchResult, insert_batch

THROTTLES = ("barrier", "window")


@dataclass(frozen=True)
class LoadConfig:
    total_users: int = 100_000_000
    batch_size: int = 10_000
    concurrency: int = 100
    throttle: str = "barrier"
    seed: int | None = None
    copy_buf_kb: int = 1024

    def validate(self) -> None:
        if self.total_users <= 0:
            raise ValueError("total-users must be positive")
        if self.batch_size <= 0:
            raise ValueError("batch-size must be positive")
        if self.concurrency <= 0:
            raise ValueError("concurrency must be positive")
        if self.copy_buf_kb <= 0:
            raise ValueError("copy-buf-kb must be positive")
        if self.throttle not in THROTTLES:
            raise ValueError(f"throttle must be one of {', '.join(THROTTLES)}")


@dataclass
class RunReport:
    batches: int
    completed: int = 0
    failed: int = 0
    users: int = 0
    posts: int = 0
    elapsed: float = 0.0


# -----------------------------
# Partitioning
# -----------------------------
def partition(total: int, batch_size: int):
    """Yield contiguous Batch ranges covering 1..total."""
    if total <= 0 or batch_size <= 0:
        raise ValueError("total and batch_size must be positive")

    number = 1
    start = 1
    while start <= total:
        end = min(start + batch_size - 1, total)
        yield Batch(number=number, start=start, end=end)
        number += 1
        start = end + 1


# -----------------------------
# Orchestration
# -----------------------------
async def run(provider, cfg: LoadConfig, clock=time.monotonic) -> RunReport:
    report = RunReport(batches=math.ceil(cfg.total_users / cfg.batch_size))
    started = clock()
    buffer_bytes = cfg.copy_buf_kb * 1024

    async def tracked(batch: Batch) -> BatchResult:
        result = await insert_batch(
            provider,
            batch,
            rng=make_rng(cfg.seed, batch.number),
            buffer_bytes=buffer_bytes,
        )
        report.completed += 1
        if result.ok:
            report.users += result.users
            report.posts += result.posts
        else:
            report.failed += 1
        pct = report.completed / report.batches * 100
        minutes = (clock() - started) / 60
        print(
            f"[progress] {report.completed}/{report.batches} batches "
            f"({pct:.1f}%) - {minutes:.1f}min elapsed"
        )
        return result

    if cfg.throttle == "window":
        sem = asyncio.Semaphore(cfg.concurrency)
        tasks: list[asyncio.Task] = []
        for batch in partition(cfg.total_users, cfg.batch_size):
            await sem.acquire()
            task = asyncio.create_task(tracked(batch))
            task.add_done_callback(lambda _t: sem.release())
            tasks.append(task)
        await asyncio.gather(*tasks)
    else:
        group: list[asyncio.Task] = []
        for batch in partition(cfg.total_users, cfg.batch_size):
            group.append(asyncio.create_task(tracked(batch)))
            if len(group) >= cfg.concurrency:
                await asyncio.gather(*group)
                group.clear()
        if group:
            await asyncio.gather(*group)

    report.elapsed = clock() - started
    return report


async def seed(provider, cfg: LoadConfig, max_attempts: int, retry_delay: float) -> RunReport:
    try:
        await wait_for_database(provider, max_attempts=max_attempts, delay=retry_delay)
        await provider.open()
        report = await run(provider, cfg)
    finally:
        await provider.close()

    print()
    print("[done] bulk insert completed")
    print(f"[done] total time: {report.elapsed / 60:.1f} minutes")
    print(f"[done] final count: {report.users:,} users, {report.posts:,} posts")
    if report.failed:
        print(
            f"[warn] {report.failed:,} of {report.batches:,} batches failed",
            file=sys.stderr,
        )
    return report


# -----------------------------
# Main
# -----------------------------
def build_parser() -> argparse.ArgumentParser:
    # argparse default -h conflicts with psql's -h(host).
    ap = argparse.ArgumentParser(
        description="Bulk-load fake users and posts into existing tables with COPY.",
        add_help=False,
    )
    ap.add_argument(
        "--help", "-?", action="help", help="show this help message and exit"
    )

    # Connection (psql-compatible)
    ap.add_argument(
        "--dsn",
        default=None,
        help="libpq DSN (or PG_DSN env). Overrides -h/-p/-U/-d.",
    )
    ap.add_argument(
        "-h",
        "--host",
        default=None,
        help="database server host or socket directory (psql compatible).",
    )
    ap.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="database server port (psql compatible).",
    )
    ap.add_argument(
        "-U",
        "--user",
        default=None,
        help="database user name (psql compatible).",
    )
    ap.add_argument(
        "-d",
        "--dbname",
        default=None,
        help="database name (psql compatible).",
    )
    ap.add_argument(
        "--password",
        default=None,
        help="database password (or use PGPASSWORD env).",
    )
    ap.add_argument(
        "--sslmode", default=None, help="sslmode (require, verify-full, etc.)."
    )
    ap.add_argument(
        "--options",
        default=None,
        help='libpq options string (e.g., "-c statement_timeout=0").',
    )
    ap.add_argument(
        "--print-psql",
        action="store_true",
        help="Print equivalent psql command and exit.",
    )

    # Load shape
    ap.add_argument(
        "--total-users",
        type=int,
        default=LoadConfig.total_users,
        help="Number of users to generate (posts = 2x).",
    )
    ap.add_argument(
        "--batch-size",
        type=int,
        default=LoadConfig.batch_size,
        help="Users per batch.",
    )
    ap.add_argument(
        "--concurrency",
        type=int,
        default=LoadConfig.concurrency,
        help="Max batches in flight.",
    )
    ap.add_argument(
        "--throttle",
        choices=THROTTLES,
        default=LoadConfig.throttle,
        help="barrier: wait for each full group; window: refill as batches finish.",
    )
    ap.add_argument("--seed", type=int, default=None, help="Base RNG seed.")
    ap.add_argument(
        "--copy-buf-kb",
        type=int,
        default=LoadConfig.copy_buf_kb,
        help="COPY write chunk size (KB).",
    )

    # Pool / session
    ap.add_argument(
        "--pool-size", type=int, default=10, help="Max pooled connections."
    )
    ap.add_argument(
        "--async-commit",
        action="store_true",
        help="SET synchronous_commit=off on pooled connections.",
    )
    ap.add_argument(
        "--pool-timeout",
        type=float,
        default=None,
        help="Seconds a batch may wait for a pooled connection (default: no limit).",
    )

    # Startup
    ap.add_argument(
        "--max-attempts",
        type=int,
        default=30,
        help="Connection attempts before giving up at startup.",
    )
    ap.add_argument(
        "--retry-delay",
        type=float,
        default=2.0,
        help="Seconds between startup connection attempts.",
    )

    ap.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 if any batch failed.",
    )
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.print_psql:
        print(psql_equivalent_cmd(args))
        return 0

    cfg = LoadConfig(
        total_users=args.total_users,
        batch_size=args.batch_size,
        concurrency=args.concurrency,
        throttle=args.throttle,
        seed=args.seed,
        copy_buf_kb=args.copy_buf_kb,
    )
    try:
        cfg.validate()
        if args.pool_size <= 0:
            raise ValueError("pool-size must be positive")
        if args.pool_timeout is not None and args.pool_timeout <= 0:
            raise ValueError("pool-timeout must be positive")
        if args.max_attempts <= 0:
            raise ValueError("max-attempts must be positive")
    except ValueError as e:
        print(e, file=sys.stderr)
        return 2

    print("[setup] starting bulk insert...")
    print(
        f"[setup] target: {cfg.total_users:,} users, "
        f"{cfg.total_users * POSTS_PER_USER:,} posts"
    )
    print(
        f"[setup] config: {cfg.batch_size:,} users per batch, "
        f"{cfg.concurrency} concurrent batches ({cfg.throttle}), "
        f"pool={args.pool_size}"
    )

    provider = ConnectionProvider(
        build_libpq_dsn(args),
        pool_size=args.pool_size,
        async_commit=args.async_commit,
        acquire_timeout=args.pool_timeout,
    )
    report = asyncio.run(seed(provider, cfg, args.max_attempts, args.retry_delay))

    if args.strict and report.failed:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
