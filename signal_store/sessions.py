"""Recording session lifecycle: creation, lookup, listing and deletion."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from signal_store.errors import SessionExists, SessionNotFound
from signal_store.logging_config import get_logger
from signal_store.models import RecordingSession, SessionStatus
from signal_store.schemas import SessionCreate, SessionDetail, SessionOut
from signal_store.store import ChunkStore

logger = get_logger(__name__)


def get_owned_session(db: Session, session_id: str, user_id: str, for_update: bool = False) -> RecordingSession:
    """Return the session if it exists and belongs to ``user_id``.

    Missing and foreign sessions both raise SessionNotFound so callers cannot
    discover other users' session IDs.
    """
    query = db.query(RecordingSession).filter_by(session_id=session_id, user_id=user_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    session = query.first()
    if session is None:
        raise SessionNotFound()
    return session


def create_session(db: Session, user_id: str, payload: SessionCreate) -> RecordingSession:
    if db.query(RecordingSession).filter_by(session_id=payload.session_id).first():
        raise SessionExists()

    metadata = dict(payload.metadata)
    session = RecordingSession(
        session_id=payload.session_id,
        user_id=user_id,
        device_id=payload.device_id,
        device_name=payload.device_name,
        device_type=payload.device_type.value if payload.device_type else None,
        start_time=payload.start_time,
        sample_rate=payload.sample_rate,
        channel_count=payload.channel_count,
        app_version=str(metadata.pop("appVersion", "")),
        notes=str(metadata.pop("notes", "")),
        device_info=metadata.pop("deviceInfo", {}) or {},
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SessionExists() from exc
    db.refresh(session)
    logger.info("Created session %s for user %s", session.session_id, user_id)
    return session


def list_sessions(
    db: Session,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
    status: SessionStatus | None = None,
    device_id: str | None = None,
) -> tuple[int, list[RecordingSession]]:
    query = db.query(RecordingSession).filter_by(user_id=user_id)
    if status is not None:
        query = query.filter_by(status=SessionStatus(status).value)
    if device_id is not None:
        query = query.filter_by(device_id=device_id)
    total = query.count()
    sessions = (
        query.order_by(RecordingSession.start_time.desc()).offset(offset).limit(limit).all()
    )
    return total, sessions


def session_details(db: Session, session: RecordingSession) -> SessionDetail:
    summary = ChunkStore(db).chunk_summary(session.session_id)

    data_integrity = 100.0
    if session.total_samples > 0:
        data_integrity = min(summary["total_samples"] / session.total_samples * 100, 100.0)

    time_range = None
    if summary["start_time"] is not None and summary["end_time"] is not None:
        time_range = {"start": summary["start_time"], "end": summary["end_time"]}

    base = SessionOut.model_validate(session).model_dump()
    return SessionDetail(
        **base,
        chunks=summary["total_chunks"],
        actual_samples=summary["total_samples"],
        data_integrity=round(data_integrity, 2),
        data_time_range=time_range,
    )


def processing_stats(db: Session, session: RecordingSession) -> dict:
    summary = ChunkStore(db).chunk_summary(session.session_id)
    return {
        "session": {
            "sessionId": session.session_id,
            "status": session.status,
            "duration": session.duration,
            "totalSamples": session.total_samples,
            "sampleRate": session.sample_rate,
            "channelCount": session.channel_count,
        },
        "processing": {
            "chunksProcessed": summary["total_chunks"],
            "samplesProcessed": summary["total_samples"],
            "startTime": summary["start_time"],
            "endTime": summary["end_time"],
        },
    }


def mark_error(db: Session, session: RecordingSession, message: str) -> None:
    session.status = SessionStatus.ERROR.value
    session.error_message = message
    db.commit()
    logger.warning("Session %s marked as error: %s", session.session_id, message)


def delete_session(db: Session, session_id: str, user_id: str) -> int:
    """Remove a session and every chunk it owns; returns chunks deleted."""
    session = get_owned_session(db, session_id, user_id)
    deleted = ChunkStore(db).delete_all(session_id, commit=False)
    db.delete(session)
    db.commit()
    logger.info("Deleted session %s with %d chunks", session_id, deleted)
    return deleted
