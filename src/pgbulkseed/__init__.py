"""pgbulkseed - bulk-load fake users and posts into PostgreSQL with COPY."""

__version__ = "0.1.0"
