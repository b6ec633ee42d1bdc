# FastAPI adapter over the ingestion / finalization / query core

from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signal_store import errors, filters, sessions
from signal_store.config import CORS_ORIGINS, DEFAULT_MAX_POINTS, DEFAULT_SAMPLE_RATE, USER_HEADER
from signal_store.db import get_db, init_db
from signal_store.finalize import SessionFinalizer
from signal_store.ingest import BatchIngestor
from signal_store.logging_config import configure_logging, get_logger
from signal_store.models import SessionStatus
from signal_store.query import QueryEngine
from signal_store.schemas import (
    DeleteResult,
    OperationResult,
    Pagination,
    SessionCreate,
    SessionList,
    SessionOut,
    UploadBatch,
)

logger = get_logger(__name__)

ERROR_STATUS = {
    cls.code: cls.status_code
    for cls in (
        errors.SessionNotFound,
        errors.SessionExists,
        errors.SessionNotActive,
        errors.SessionAlreadyCompleted,
        errors.BatchIntegrityError,
        errors.ChunkIntegrityError,
        errors.DuplicateKey,
        errors.DataUnavailable,
        errors.InvalidQuery,
        errors.StorageError,
    )
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and make sure tables exist before serving"""
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Signal Store API", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions_router = APIRouter(prefix="/api/sessions", tags=["Sessions"])
semg_router = APIRouter(prefix="/api/semg", tags=["sEMG"])
filters_router = APIRouter(prefix="/api/filters", tags=["Filters"])


def get_user_id(x_user_id: str | None = Header(default=None, alias=USER_HEADER)) -> str:
    """Principal resolved upstream by the auth layer"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    return x_user_id


def respond(result: OperationResult, success_status: int = 200) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        status_code = ERROR_STATUS.get(result.error, 500)
    content = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(errors.SignalStoreError)
async def signal_store_error_handler(request: Request, exc: errors.SignalStoreError):
    content = {"success": False, "message": exc.message, "error": exc.code}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Unhandled storage error on %s", request.url.path)
    content = {"success": False, "message": "Internal storage error", "error": errors.StorageError.code}
    return JSONResponse(status_code=500, content=content)


class ErrorMark(BaseModel):
    message: str = ""


@sessions_router.post("", status_code=201)
def create_session(payload: SessionCreate, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Open a new recording session"""
    session = sessions.create_session(db, user_id, payload)
    body = {"success": True, "session": SessionOut.model_validate(session).model_dump(mode="json", by_alias=True)}
    return JSONResponse(status_code=201, content=body)


@sessions_router.get("")
def list_sessions(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: SessionStatus | None = None,
    device_id: str | None = Query(default=None, alias="deviceId", min_length=1, max_length=100),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """List the caller's sessions, newest first"""
    total, rows = sessions.list_sessions(db, user_id, limit, offset, status, device_id)
    listing = SessionList(
        sessions=[SessionOut.model_validate(row) for row in rows],
        pagination=Pagination(total=total, limit=limit, offset=offset, has_more=total > offset + limit),
    )
    return JSONResponse(content=listing.model_dump(mode="json", by_alias=True))


@sessions_router.get("/{session_id}")
def get_session(session_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Session details with chunk summary and data integrity"""
    session = sessions.get_owned_session(db, session_id, user_id)
    detail = sessions.session_details(db, session)
    return JSONResponse(content={"success": True, "session": detail.model_dump(mode="json", by_alias=True)})


@sessions_router.post("/{session_id}/finalize")
def finalize_session(session_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Consolidate provisional chunks and complete the session"""
    return respond(SessionFinalizer(db).finalize(session_id, user_id))


@sessions_router.put("/{session_id}/error")
def mark_session_error(
    session_id: str,
    payload: ErrorMark,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Move a session to the terminal error state"""
    session = sessions.get_owned_session(db, session_id, user_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise errors.SessionNotActive()
    sessions.mark_error(db, session, payload.message)
    return respond(OperationResult(success=True, message="Session marked as error"))


@sessions_router.delete("/{session_id}")
def delete_session(session_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Delete a session and all of its chunks"""
    deleted = sessions.delete_session(db, session_id, user_id)
    return respond(
        DeleteResult(
            success=True,
            message="Session and all associated data deleted successfully",
            deleted_chunks=deleted,
        )
    )


@semg_router.post("/batch")
def ingest_batch(batch: UploadBatch, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Endpoint to ingest one batch of sEMG samples"""
    return respond(BatchIngestor(db).process_batch(batch, user_id))


@semg_router.get("/sessions/{session_id}/data")
def get_session_data(
    session_id: str,
    start_time: float | None = Query(default=None, alias="startTime"),
    end_time: float | None = Query(default=None, alias="endTime"),
    channels: str | None = None,
    max_points: int = Query(default=DEFAULT_MAX_POINTS, alias="maxPoints", ge=1),
    normalize: str | None = None,
    apply_filter: bool = Query(default=False, alias="filter"),
    zero_phase: bool = Query(default=False, alias="zeroPhase"),
    feature_min: float = Query(default=0.0, alias="featureMin"),
    feature_max: float = Query(default=1.0, alias="featureMax"),
    lower_percentile: float = Query(default=5, alias="lowerPercentile", ge=0, le=100),
    upper_percentile: float = Query(default=95, alias="upperPercentile", ge=0, le=100),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Endpoint to get channel data for a session within an optional time range"""
    options = {
        "feature_range": (feature_min, feature_max),
        "lower_percentile": lower_percentile,
        "upper_percentile": upper_percentile,
    }
    result = QueryEngine(db).query(
        session_id,
        user_id,
        start_time=start_time,
        end_time=end_time,
        channels=channels,
        max_points=max_points,
        normalize=normalize,
        normalize_options=options,
        apply_filter=apply_filter,
        zero_phase=zero_phase,
    )
    return respond(result)


@semg_router.get("/sessions/{session_id}/stats")
def get_session_stats(session_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    """Endpoint to get processing statistics for a session"""
    session = sessions.get_owned_session(db, session_id, user_id)
    return {"success": True, "stats": sessions.processing_stats(db, session)}


@filters_router.get("/{device_type}")
def get_filter_specs(device_type: str, sample_rate: float = Query(default=DEFAULT_SAMPLE_RATE, alias="sampleRate", gt=0)):
    """Bandpass cutoffs and approximate frequency response for a device type"""
    response = filters.frequency_response(device_type, sample_rate)
    if response is None:
        raise HTTPException(status_code=404, detail=f"Unknown device type: {device_type}")
    return {"success": True, "deviceType": device_type, **response}


@app.get("/health", response_model=OperationResult)
def health_check():
    """Health check endpoint to verify API is running"""
    return OperationResult(success=True, message="API is up and running")


app.include_router(sessions_router)
app.include_router(semg_router)
app.include_router(filters_router)
