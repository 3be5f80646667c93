"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, validator

from .csv_import import ImportMode

# candidates.id is a PostgreSQL SERIAL (int4)
MAX_ID = 2147483647


def _not_blank(v: str) -> str:
    if v is None or not v.strip():
        raise ValueError("must not be empty")
    return v.strip()


class CandidateCreateRequest(BaseModel):
    """Single candidate creation request."""

    position_key: str = Field(..., description="Key of the position the candidate runs for")
    name: str = Field(..., description="Candidate display name")
    class_name: str = Field(..., alias="class", description="Class/category label")

    @validator("position_key", "name", "class_name")
    def validate_not_blank(cls, v):
        """Strip whitespace and reject empty fields."""
        return _not_blank(v)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "position_key": "president",
                "name": "Anna Liepa",
                "class": "12A"
            }
        }


class CandidateResponse(BaseModel):
    """Stored candidate."""

    id: int
    position_key: str
    name: str
    class_name: str = Field(..., alias="class")

    class Config:
        populate_by_name = True


class TallyRequest(BaseModel):
    """Increment/decrement request."""

    candidate_id: int = Field(..., alias="candidateId", gt=0, le=MAX_ID, description="Candidate ID")

    class Config:
        populate_by_name = True
        json_schema_extra = {"example": {"candidateId": 5}}


class TallyResponse(BaseModel):
    """Current count after an adjustment."""

    candidate_id: int = Field(..., alias="candidateId")
    count: int = Field(..., ge=0)

    class Config:
        populate_by_name = True


class ResetRequest(BaseModel):
    """Reset request; no position_key resets every tally."""

    position_key: Optional[str] = Field(default=None, description="Position to reset")


class ResetResponse(BaseModel):
    ok: bool = True
    reset: int = Field(..., description="Number of tallies set to zero")


class ImportRequest(BaseModel):
    """CSV text import request."""

    csv: str = Field(..., description="CSV content, one name,class,position_key per line")
    mode: ImportMode = Field(default=ImportMode.MERGE, description="merge or replace")

    @validator("csv")
    def validate_csv(cls, v):
        """Reject an empty payload."""
        if not v:
            raise ValueError("csv required")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "csv": "Anna Liepa,12A,president\nJānis Ozols,11B,min_tech",
                "mode": "merge"
            }
        }


class SyncFileRequest(BaseModel):
    """Import from a CSV file on the server."""

    path: Optional[str] = Field(default=None, description="CSV path; defaults to CANDIDATES_CSV_PATH")
    mode: ImportMode = Field(default=ImportMode.MERGE)


class ImportResponse(BaseModel):
    """Import summary."""

    ok: bool = True
    mode: ImportMode
    inserted: int
    deleted: int
    total_csv_rows: int = Field(..., alias="totalCsvRows")
    source: Optional[str] = None

    class Config:
        populate_by_name = True


class OverviewCandidate(BaseModel):
    id: int
    name: str
    class_name: str = Field(..., alias="class")
    count: int

    class Config:
        populate_by_name = True


class OverviewPosition(BaseModel):
    key: str
    title: str
    total: int
    candidates: list[OverviewCandidate]


class OverviewResponse(BaseModel):
    """Positions with candidates and counts, in insertion order."""

    positions: list[OverviewPosition]


class PositionResponse(BaseModel):
    id: int
    key: str
    title: str


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "services": {"postgresql": "connected"},
                "timestamp": "2024-01-15T10:30:00"
            }
        }


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str = Field(..., description="Error message")
