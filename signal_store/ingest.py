"""Batch ingestion: one upload batch becomes one provisional chunk.

Provisional chunks accumulate while a session is active and are merged into
a single consolidated chunk by :mod:`signal_store.finalize`. Ingestion is
considered successful once the chunk is persisted; the follow-up update of
the session's running totals is best effort.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signal_store.config import INGEST_MAX_RETRIES
from signal_store.errors import (
    DuplicateKey,
    SessionAlreadyCompleted,
    SessionNotActive,
    SignalStoreError,
    StorageError,
)
from signal_store.layout import to_channel_major
from signal_store.logging_config import get_logger
from signal_store.models import ChunkKind, DataChunk, FinalizeState, RecordingSession, SessionStatus
from signal_store.schemas import DeviceInfo, IngestResult, UploadBatch
from signal_store.sessions import get_owned_session
from signal_store.statistics import all_channel_stats
from signal_store.store import ChunkStore
from signal_store.validation import validate_batch

logger = get_logger(__name__)


class BatchIngestor:
    def __init__(self, db: Session, max_retries: int = INGEST_MAX_RETRIES):
        self.db = db
        self.store = ChunkStore(db)
        self.max_retries = max_retries

    def process_batch(self, batch: UploadBatch, user_id: str) -> IngestResult:
        """Ingest one batch and report the outcome; never raises taxonomy errors."""
        try:
            return self.ingest(batch, user_id)
        except SessionAlreadyCompleted as exc:
            logger.info("Received data for completed session %s, ignoring", batch.session_id)
            return IngestResult(
                success=False,
                message=exc.message,
                error=exc.code,
                samples_processed=0,
                session_status=SessionStatus.COMPLETED.value,
            )
        except SignalStoreError as exc:
            logger.warning("Batch for session %s rejected: %s", batch.session_id, exc.message)
            return IngestResult(
                success=False,
                message=exc.message,
                error=exc.code,
                errors=getattr(exc, "errors", []),
            )
        except SQLAlchemyError:
            logger.exception("Storage error ingesting batch for session %s", batch.session_id)
            self.db.rollback()
            return IngestResult(
                success=False,
                message="Internal server error processing batch data",
                error=StorageError.code,
            )

    def ingest(self, batch: UploadBatch, user_id: str) -> IngestResult:
        validate_batch(batch)

        timestamps, channels = to_channel_major(batch.samples)
        stats = [s.to_dict() for s in all_channel_stats(channels)]

        session, chunk = self._insert_with_retry(batch.session_id, user_id, timestamps, channels, stats)
        logger.info(
            "Stored provisional chunk %d for session %s with %d samples",
            chunk.chunk_index,
            batch.session_id,
            chunk.sample_count,
        )

        self._update_session_metadata(session, chunk.sample_count, batch.device_info)

        return IngestResult(
            success=True,
            message="Batch processed",
            samples_processed=chunk.sample_count,
            chunk_id=chunk.id,
            chunk_index=chunk.chunk_index,
            session_status=session.status,
            is_provisional=True,
        )

    def _lock_active_session(self, session_id: str, user_id: str) -> RecordingSession:
        """Row-lock the session until the chunk insert commits and check it accepts data."""
        session = get_owned_session(self.db, session_id, user_id, for_update=True)
        if session.status == SessionStatus.COMPLETED.value:
            raise SessionAlreadyCompleted()
        if session.status != SessionStatus.ACTIVE.value:
            raise SessionNotActive()
        if session.finalize_state != FinalizeState.PENDING.value:
            raise SessionNotActive("Session is being finalized")
        return session

    def _insert_with_retry(
        self, session_id, user_id, timestamps, channels, stats
    ) -> tuple[RecordingSession, DataChunk]:
        attempt = 0
        while True:
            # a collision rolls back and releases the row lock, so re-check each attempt
            session = self._lock_active_session(session_id, user_id)
            index = self.store.count_provisional(session_id)
            chunk = DataChunk(
                session_id=session_id,
                chunk_index=index,
                kind=ChunkKind.PROVISIONAL.value,
                arrival_order=index,
                start_time=min(timestamps),
                end_time=max(timestamps),
                sample_count=len(timestamps),
                timestamps=timestamps,
                channels=channels,
                stats=stats,
            )
            try:
                return session, self.store.insert(chunk)
            except DuplicateKey:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                logger.warning(
                    "Chunk index %d collided for session %s, retrying (%d/%d)",
                    index,
                    session_id,
                    attempt,
                    self.max_retries,
                )

    def _update_session_metadata(
        self, session: RecordingSession, sample_count: int, device_info: DeviceInfo | None
    ) -> None:
        try:
            # re-read: a DuplicateKey retry rolls back and expires loaded rows
            self.db.refresh(session)
            session.total_samples += sample_count
            if device_info is not None:
                info = device_info.model_dump()
                session.device_name = info.get("name") or session.device_name
                session.device_info = {**(session.device_info or {}), **info}
            self.db.commit()
        except SQLAlchemyError:
            logger.exception("Error updating session metadata for %s", session.session_id)
            self.db.rollback()
