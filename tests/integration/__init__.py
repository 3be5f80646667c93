"""Integration tests for the tally store.

These tests run the asyncpg store against a real PostgreSQL database and check
the tally and import guarantees at the SQL level:

- Atomic increments under concurrency
- Decrement floored at zero
- Reset scope (all vs. one position)
- Merge/replace import reconciliation

Tests are skipped when no database is reachable (see POSTGRES_* settings).
"""
