"""Pytest fixtures for API tests.

The FastAPI app is exercised in-process through httpx's ASGI transport. The
PostgreSQL store is swapped for an in-memory double via dependency overrides,
so these tests need no running database. The double applies the same CSV
reconciliation plan and overview projection as the real store.
"""

from typing import AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from tally_api.config import settings
from tally_api.csv_import import CandidateRow, ImportMode, ImportResult, plan_import
from tally_api.database import (
    CandidateNotFoundError,
    DuplicateCandidateError,
    UnknownPositionError,
)
from tally_api.main import app, get_database, limiter
from tally_api.overview import build_overview


TEST_POSITIONS = [
    {"key": "president", "title": "President"},
    {"key": "min_tech", "title": "Tech Minister"},
    {"key": "min_art", "title": "Art Minister"},
]


class InMemoryDatabase:
    """Dict-backed store with the same interface as tally_api.database.Database."""

    def __init__(self, positions: Optional[List[Dict]] = None):
        self.positions: List[Dict] = []
        self.candidates: List[Dict] = []
        self.tallies: Dict[int, int] = {}
        self.healthy = True
        self._next_id = 1

        for index, position in enumerate(positions or TEST_POSITIONS, start=1):
            self.positions.append({"id": index, **position})

    def _position_keys(self) -> set:
        return {p["key"] for p in self.positions}

    def _insert(self, position_key: str, name: str, class_name: str) -> Dict:
        row = {
            "id": self._next_id,
            "position_key": position_key,
            "name": name,
            "class": class_name,
        }
        self._next_id += 1
        self.candidates.append(row)
        self.tallies[row["id"]] = 0
        return row

    def _require_candidate(self, candidate_id: int):
        if not any(c["id"] == candidate_id for c in self.candidates):
            raise CandidateNotFoundError(candidate_id)

    async def get_positions(self) -> list:
        return [dict(p) for p in self.positions]

    async def get_overview(self) -> Dict:
        return build_overview(self.positions, self.candidates, self.tallies)

    async def add_candidate(self, position_key: str, name: str, class_name: str) -> Dict:
        if position_key not in self._position_keys():
            raise UnknownPositionError(position_key)
        if CandidateRow(name, class_name, position_key) in {
            CandidateRow.from_record(c) for c in self.candidates
        }:
            raise DuplicateCandidateError(f"Candidate {name} ({class_name}) already exists")
        return dict(self._insert(position_key, name, class_name))

    async def increment(self, candidate_id: int) -> int:
        self._require_candidate(candidate_id)
        self.tallies[candidate_id] = self.tallies.get(candidate_id, 0) + 1
        return self.tallies[candidate_id]

    async def decrement(self, candidate_id: int) -> int:
        self._require_candidate(candidate_id)
        self.tallies[candidate_id] = max(self.tallies.get(candidate_id, 0) - 1, 0)
        return self.tallies[candidate_id]

    async def reset_all(self) -> int:
        for candidate_id in self.tallies:
            self.tallies[candidate_id] = 0
        return len(self.tallies)

    async def reset_position(self, position_key: str) -> int:
        if position_key not in self._position_keys():
            raise UnknownPositionError(position_key)
        ids = [c["id"] for c in self.candidates if c["position_key"] == position_key]
        for candidate_id in ids:
            self.tallies[candidate_id] = 0
        return len(ids)

    async def import_candidates(self, rows: List[CandidateRow], mode: ImportMode) -> ImportResult:
        unknown = {row.position_key for row in rows} - self._position_keys()
        if unknown:
            raise UnknownPositionError(unknown)

        plan = plan_import(self.candidates, rows, mode)
        for row in plan.to_insert:
            self._insert(row.position_key, row.name, row.class_name)
        doomed = set(plan.to_delete)
        self.candidates = [c for c in self.candidates if c["id"] not in doomed]
        for candidate_id in doomed:
            self.tallies.pop(candidate_id, None)

        return ImportResult(
            mode=ImportMode(mode),
            inserted=len(plan.to_insert),
            deleted=len(plan.to_delete),
            total_csv_rows=len(rows),
        )

    async def check_health(self) -> bool:
        return self.healthy


@pytest.fixture
def store() -> InMemoryDatabase:
    """Fresh in-memory store with three positions and no candidates."""
    return InMemoryDatabase()


@pytest.fixture
def seeded_store(store: InMemoryDatabase) -> InMemoryDatabase:
    """Store with two candidates per position."""
    store._insert("president", "Anna Liepa", "12A")
    store._insert("president", "Jānis Ozols", "12B")
    store._insert("min_tech", "Roberts Bērziņš", "10C")
    store._insert("min_tech", "Elīza Priede", "11B")
    store._insert("min_art", "Kārlis Vītols", "10A")
    store._insert("min_art", "Laura Zariņa", "12C")
    return store


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    """Headers carrying the shared admin password."""
    return {"X-Admin-Pass": settings.ADMIN_PASS}


@pytest_asyncio.fixture
async def api_client(store: InMemoryDatabase) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app with the in-memory store injected."""
    app.dependency_overrides[get_database] = lambda: store
    limiter.reset()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()
