"""PostgreSQL counter store for positions, candidates and tallies."""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import asyncpg
from asyncpg.exceptions import DataError, ForeignKeyViolationError, UniqueViolationError

from .config import settings
from .csv_import import CandidateRow, ImportMode, ImportResult, plan_import
from .overview import build_overview

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class TallyError(Exception):
    """Base exception for store errors."""
    pass


class CandidateNotFoundError(TallyError):
    """Raised when a tally operation targets an unknown candidate."""

    def __init__(self, candidate_id: int):
        self.candidate_id = candidate_id
        super().__init__(f"Candidate {candidate_id} not found")


class UnknownPositionError(TallyError):
    """Raised when a position key does not exist."""

    def __init__(self, keys):
        if isinstance(keys, str):
            keys = [keys]
        self.keys = sorted(set(keys))
        super().__init__(f"Unknown position(s): {', '.join(self.keys)}")


class DuplicateCandidateError(TallyError):
    """Raised when the (position, name, class) triple already exists."""
    pass


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 3'."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


class Database:
    """Async PostgreSQL database manager."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.postgres_dsn
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Create the connection pool, apply the schema and seed positions."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=settings.POSTGRES_POOL_MIN_SIZE,
                max_size=settings.POSTGRES_POOL_MAX_SIZE,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                logger.info("PostgreSQL connection verified")

            await self.apply_schema()
            await self.seed_positions(settings.SEED_POSITIONS)

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            await self.close()
            raise

    async def apply_schema(self):
        """Run schema.sql; every statement is idempotent."""
        schema = SCHEMA_PATH.read_text(encoding="utf-8")
        async with self.pool.acquire() as conn:
            await conn.execute(schema)
        logger.info("Database schema applied")

    async def seed_positions(self, positions: List[Dict]) -> bool:
        """
        Insert the configured positions once.

        A 'seeded' flag in the meta table guards the insert, so positions
        removed or renamed later are not recreated on restart.

        Returns:
            bool: True if positions were inserted by this call
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                seeded = await conn.fetchval(
                    "SELECT v FROM meta WHERE k = 'seeded' FOR UPDATE"
                )
                if seeded:
                    return False

                await conn.executemany(
                    """
                    INSERT INTO positions (key, title) VALUES ($1, $2)
                    ON CONFLICT (key) DO NOTHING
                    """,
                    [(p["key"], p["title"]) for p in positions]
                )
                await conn.execute(
                    "INSERT INTO meta (k, v) VALUES ('seeded', '1') ON CONFLICT (k) DO NOTHING"
                )

        logger.info(f"Seeded {len(positions)} positions")
        return True

    async def get_positions(self) -> list:
        """Get all positions in insertion order."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT id, key, title FROM positions ORDER BY id")
            return [dict(row) for row in rows]

    async def get_overview(self) -> Dict:
        """
        Get positions with their candidates and current counts.

        The three reads share one repeatable-read snapshot so a concurrent
        import cannot produce a half-applied view.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction(isolation="repeatable_read", readonly=True):
                    positions = await conn.fetch(
                        "SELECT id, key, title FROM positions ORDER BY id"
                    )
                    candidates = await conn.fetch(
                        "SELECT id, position_key, name, class FROM candidates ORDER BY id"
                    )
                    counts = await conn.fetch("SELECT candidate_id, count FROM tallies")

            return build_overview(
                positions,
                candidates,
                {row["candidate_id"]: row["count"] for row in counts}
            )

        except Exception as e:
            logger.error(f"Error getting overview: {e}")
            raise

    async def add_candidate(self, position_key: str, name: str, class_name: str) -> Dict:
        """
        Add a single candidate with a zero tally.

        Raises:
            UnknownPositionError: position_key does not exist
            DuplicateCandidateError: the triple is already stored
        """
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        INSERT INTO candidates (position_key, name, class)
                        VALUES ($1, $2, $3)
                        RETURNING id, position_key, name, class
                        """,
                        position_key, name, class_name
                    )
                    await conn.execute(
                        """
                        INSERT INTO tallies (candidate_id, count) VALUES ($1, 0)
                        ON CONFLICT (candidate_id) DO NOTHING
                        """,
                        row["id"]
                    )
            except ForeignKeyViolationError:
                raise UnknownPositionError(position_key)
            except UniqueViolationError:
                raise DuplicateCandidateError(
                    f"Candidate {name} ({class_name}) already exists for {position_key}"
                )

        logger.info(f"Candidate added: id={row['id']}, position={position_key}, name={name}")
        return dict(row)

    async def increment(self, candidate_id: int) -> int:
        """Atomically add one vote; returns the new count."""
        return await self._adjust(
            candidate_id,
            """
            INSERT INTO tallies (candidate_id, count, updated_at) VALUES ($1, 1, NOW())
            ON CONFLICT (candidate_id) DO UPDATE SET
                count = tallies.count + 1,
                updated_at = NOW()
            RETURNING count
            """
        )

    async def decrement(self, candidate_id: int) -> int:
        """Atomically remove one vote, floored at zero; returns the new count."""
        return await self._adjust(
            candidate_id,
            """
            INSERT INTO tallies (candidate_id, count, updated_at) VALUES ($1, 0, NOW())
            ON CONFLICT (candidate_id) DO UPDATE SET
                count = GREATEST(tallies.count - 1, 0),
                updated_at = NOW()
            RETURNING count
            """
        )

    async def _adjust(self, candidate_id: int, query: str) -> int:
        async with self.pool.acquire() as conn:
            try:
                return await conn.fetchval(query, candidate_id)
            except (ForeignKeyViolationError, DataError):
                raise CandidateNotFoundError(candidate_id)

    async def reset_all(self) -> int:
        """Zero every tally; returns the number of tallies touched."""
        async with self.pool.acquire() as conn:
            status = await conn.execute("UPDATE tallies SET count = 0, updated_at = NOW()")
        reset = _affected(status)
        logger.info(f"All tallies reset ({reset} rows)")
        return reset

    async def reset_position(self, position_key: str) -> int:
        """
        Zero the tallies of one position's candidates only.

        Raises:
            UnknownPositionError: position_key does not exist
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT 1 FROM positions WHERE key = $1", position_key
                )
                if not exists:
                    raise UnknownPositionError(position_key)

                status = await conn.execute(
                    """
                    UPDATE tallies t SET count = 0, updated_at = NOW()
                    FROM candidates c
                    WHERE c.id = t.candidate_id AND c.position_key = $1
                    """,
                    position_key
                )
        reset = _affected(status)
        logger.info(f"Tallies reset for position {position_key} ({reset} rows)")
        return reset

    async def import_candidates(self, rows: List[CandidateRow], mode: ImportMode) -> ImportResult:
        """
        Reconcile the candidate table against parsed CSV rows.

        Runs in one transaction holding a table lock, so concurrent imports
        apply one after the other and a failure leaves the store untouched.

        Raises:
            UnknownPositionError: a row references a position that does not exist
        """
        mode = ImportMode(mode)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("LOCK TABLE candidates IN SHARE ROW EXCLUSIVE MODE")

                known = {row["key"] for row in await conn.fetch("SELECT key FROM positions")}
                unknown = {row.position_key for row in rows} - known
                if unknown:
                    raise UnknownPositionError(unknown)

                existing = await conn.fetch(
                    "SELECT id, position_key, name, class FROM candidates"
                )
                plan = plan_import(existing, rows, mode)

                if plan.to_insert:
                    await conn.executemany(
                        """
                        INSERT INTO candidates (position_key, name, class)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (position_key, name, class) DO NOTHING
                        """,
                        [(r.position_key, r.name, r.class_name) for r in plan.to_insert]
                    )
                    await conn.execute(
                        """
                        INSERT INTO tallies (candidate_id, count)
                        SELECT id, 0 FROM candidates
                        ON CONFLICT (candidate_id) DO NOTHING
                        """
                    )

                if plan.to_delete:
                    await conn.execute(
                        "DELETE FROM candidates WHERE id = ANY($1::int[])",
                        plan.to_delete
                    )

        result = ImportResult(
            mode=mode,
            inserted=len(plan.to_insert),
            deleted=len(plan.to_delete),
            total_csv_rows=len(rows)
        )
        logger.info(
            f"Candidate import ({mode.value}): inserted={result.inserted}, "
            f"deleted={result.deleted}, rows={result.total_csv_rows}"
        )
        return result

    async def check_health(self) -> bool:
        """
        Check PostgreSQL connection health.

        Returns:
            bool: True if healthy, False otherwise
        """
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                self.pool = None
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")


# Global database instance
database = Database()
