"""
FastAPI application for the live tally service.

Serves the public results dashboard, the admin tally board and the JSON API
both of them poll.
"""
import logging
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import settings
from .csv_import import CsvFormatError, parse_candidates_csv
from .database import (
    Database,
    CandidateNotFoundError,
    DuplicateCandidateError,
    UnknownPositionError,
    database,
)
from .models import (
    CandidateCreateRequest,
    CandidateResponse,
    ErrorResponse,
    HealthResponse,
    ImportRequest,
    ImportResponse,
    OverviewResponse,
    PositionResponse,
    ResetRequest,
    ResetResponse,
    SyncFileRequest,
    TallyRequest,
    TallyResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

# Prometheus metrics
tally_adjustments = Counter(
    "tally_adjustments_total",
    "Total number of tally adjustments",
    ["operation"]
)
candidate_imports = Counter(
    "candidate_imports_total",
    "Total number of candidate CSV imports",
    ["mode", "source"]
)
tally_errors = Counter(
    "tally_errors_total",
    "Total number of failed tally API requests",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    try:
        await database.initialize()
        logger.info(f"{settings.SERVICE_NAME} started successfully")
    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
    await database.close()


# Create FastAPI app
app = FastAPI(
    title="Live Tally API",
    description="Election tallies: public overview, admin adjustments and candidate import",
    version=settings.API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    started = time.perf_counter()
    response = await call_next(request)

    endpoint = request.url.path if request.url.path.startswith("/api") else "static"
    request_duration.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).observe(time.perf_counter() - started)

    return response


def get_database() -> Database:
    """Store dependency; overridden in tests."""
    return database


async def require_admin(
    x_admin_pass: Optional[str] = Header(default=None),
    admin: Optional[str] = Query(default=None)
):
    """Check the shared admin password from the header or ?admin= query."""
    token = x_admin_pass or admin
    if not token or not secrets.compare_digest(
        token.encode("utf-8"), settings.ADMIN_PASS.encode("utf-8")
    ):
        tally_errors.labels(error_type="unauthorized").inc()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )


def _internal_error(action: str, e: Exception) -> HTTPException:
    tally_errors.labels(error_type="internal_error").inc()
    logger.error(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )


# ═══════════════════════════════════════════════════════════════════
# PUBLIC ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get(
    "/api/overview",
    response_model=OverviewResponse,
    responses={500: {"model": ErrorResponse, "description": "Internal server error"}}
)
async def get_overview(db: Database = Depends(get_database)):
    """
    Get every position with its candidates and current counts.

    Positions and candidates are in insertion order; candidates without a
    tally row report zero. Both the dashboard and the admin board poll this.
    """
    try:
        return await db.get_overview()
    except Exception as e:
        raise _internal_error("getting overview", e)


@app.get("/api/positions", response_model=list[PositionResponse])
async def get_positions(db: Database = Depends(get_database)):
    """Get all positions."""
    try:
        return await db.get_positions()
    except Exception as e:
        raise _internal_error("getting positions", e)


@app.get(
    "/api/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
)
async def health_check(db: Database = Depends(get_database)):
    """Check health of the service and its PostgreSQL connection."""
    healthy = await db.check_health()

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        services={"postgresql": "connected" if healthy else "disconnected"},
        timestamp=datetime.utcnow()
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/api")
async def api_info():
    """API information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "status": "running",
        "endpoints": {
            "overview": "/api/overview",
            "positions": "/api/positions",
            "add_candidate": "/api/candidates",
            "increment": "/api/tally/increment",
            "decrement": "/api/tally/decrement",
            "reset": "/api/tally/reset",
            "import": "/api/candidates/import",
            "sync_file": "/api/candidates/sync-file",
            "health": "/api/health",
            "metrics": "/metrics"
        }
    }


# ═══════════════════════════════════════════════════════════════════
# ADMIN ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.post(
    "/api/candidates",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
    responses={
        400: {"model": ErrorResponse, "description": "Unknown position"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        409: {"model": ErrorResponse, "description": "Candidate already exists"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def add_candidate(
    request: Request,
    candidate: CandidateCreateRequest,
    db: Database = Depends(get_database)
):
    """
    Add a single candidate with a zero tally.

    - **position_key**: existing position key
    - **name**: candidate name
    - **class**: class/category label
    """
    try:
        return await db.add_candidate(
            candidate.position_key, candidate.name, candidate.class_name
        )
    except UnknownPositionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateCandidateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        raise _internal_error("adding candidate", e)


async def _adjust(db: Database, candidate_id: int, operation: str) -> TallyResponse:
    try:
        if operation == "increment":
            count = await db.increment(candidate_id)
        else:
            count = await db.decrement(candidate_id)
    except CandidateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise _internal_error(f"on {operation} for candidate {candidate_id}", e)

    tally_adjustments.labels(operation=operation).inc()
    logger.info(f"Tally {operation}: candidate={candidate_id}, count={count}")
    return TallyResponse(candidate_id=candidate_id, count=count)


@app.post(
    "/api/tally/increment",
    response_model=TallyResponse,
    dependencies=[Depends(require_admin)],
    responses={404: {"model": ErrorResponse, "description": "Candidate not found"}}
)
@limiter.limit(settings.RATE_LIMIT)
async def increment(request: Request, body: TallyRequest, db: Database = Depends(get_database)):
    """Add one vote to a candidate and return the new count."""
    return await _adjust(db, body.candidate_id, "increment")


@app.post(
    "/api/tally/decrement",
    response_model=TallyResponse,
    dependencies=[Depends(require_admin)],
    responses={404: {"model": ErrorResponse, "description": "Candidate not found"}}
)
@limiter.limit(settings.RATE_LIMIT)
async def decrement(request: Request, body: TallyRequest, db: Database = Depends(get_database)):
    """Remove one vote from a candidate; the count never drops below zero."""
    return await _adjust(db, body.candidate_id, "decrement")


@app.post(
    "/api/tally/reset",
    response_model=ResetResponse,
    dependencies=[Depends(require_admin)],
    responses={404: {"model": ErrorResponse, "description": "Position not found"}}
)
@limiter.limit(settings.RATE_LIMIT)
async def reset(
    request: Request,
    body: Optional[ResetRequest] = None,
    db: Database = Depends(get_database)
):
    """
    Reset tallies to zero.

    - **position_key**: only reset this position's candidates; omit to reset all
    """
    position_key = body.position_key if body else None
    try:
        if position_key:
            count = await db.reset_position(position_key)
        else:
            count = await db.reset_all()
    except UnknownPositionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise _internal_error("resetting tallies", e)

    tally_adjustments.labels(operation="reset").inc()
    return ResetResponse(reset=count)


async def _import(db: Database, text: str, mode, source: str) -> dict:
    try:
        rows = parse_candidates_csv(text)
        result = await db.import_candidates(rows, mode)
    except CsvFormatError as e:
        tally_errors.labels(error_type="invalid_csv").inc()
        logger.warning(f"Rejected candidate CSV from {source}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UnknownPositionError as e:
        tally_errors.labels(error_type="unknown_position").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _internal_error("importing candidates", e)

    candidate_imports.labels(mode=result.mode.value, source=source).inc()
    return {"ok": True, **result.to_dict()}


@app.post(
    "/api/candidates/import",
    response_model=ImportResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_admin)],
    responses={400: {"model": ErrorResponse, "description": "Unknown position in CSV"}}
)
@limiter.limit(settings.RATE_LIMIT)
async def import_candidates(
    request: Request,
    body: ImportRequest,
    db: Database = Depends(get_database)
):
    """
    Import candidates from pasted/uploaded CSV text.

    - **csv**: one `name,class,position_key` per line
    - **mode**: `merge` adds missing candidates; `replace` also deletes
      candidates absent from the CSV
    """
    return await _import(db, body.csv, body.mode, source="upload")


@app.post(
    "/api/candidates/sync-file",
    response_model=ImportResponse,
    dependencies=[Depends(require_admin)],
    responses={400: {"model": ErrorResponse, "description": "File not found or unknown position"}}
)
@limiter.limit(settings.RATE_LIMIT)
async def sync_file(
    request: Request,
    body: Optional[SyncFileRequest] = None,
    db: Database = Depends(get_database)
):
    """Import candidates from a CSV file on the server (default CANDIDATES_CSV_PATH)."""
    body = body or SyncFileRequest()
    csv_path = Path(body.path or settings.CANDIDATES_CSV_PATH)

    if not csv_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"file not found: {csv_path}"
        )

    try:
        text = csv_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"cannot read {csv_path}: {e}"
        )

    result = await _import(db, text, body.mode, source="file")
    return {**result, "source": str(csv_path)}


# Dashboard (index.html) and admin board (tally.html); mounted last so /api wins
app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")


def run():
    """Run the service with uvicorn."""
    import uvicorn

    uvicorn.run(
        "tally_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
