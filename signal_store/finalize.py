"""Session finalization: merge provisional chunks into one consolidated chunk.

Finalization walks a persisted state machine on the session row::

    pending -> samples_merged -> consolidated_written -> provisional_purged

``samples_merged`` is committed before the provisional chunks are read, which
closes the session to ingestion for the rest of the run. The consolidated
chunk is committed next (state ``consolidated_written``) and the provisional
chunks it supersedes are purged afterwards together with the ``completed``
transition. If the process dies in between, the next call finds the
consolidated chunk and resumes at the purge step, so no sample is ever held
only in memory.
"""

import threading
import weakref
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signal_store.errors import (
    BatchIntegrityError,
    DataUnavailable,
    SessionNotActive,
    SignalStoreError,
    StorageError,
)
from signal_store.layout import to_channel_major, to_sample_major
from signal_store.logging_config import get_logger
from signal_store.models import ChunkKind, DataChunk, FinalizeState, RecordingSession, SessionStatus
from signal_store.schemas import FinalizeResult
from signal_store.sessions import get_owned_session
from signal_store.statistics import all_channel_stats
from signal_store.store import ChunkStore
from signal_store.validation import ms_to_datetime

logger = get_logger(__name__)

# entries disappear once no finalization holds the lock
_session_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def _lock_for(session_id: str) -> threading.Lock:
    with _registry_lock:
        lock = _session_locks.get(session_id)
        if lock is None:
            lock = threading.Lock()
            _session_locks[session_id] = lock
        return lock


class SessionFinalizer:
    def __init__(self, db: Session):
        self.db = db
        self.store = ChunkStore(db)

    def finalize(self, session_id: str, user_id: str) -> FinalizeResult:
        """Consolidate a session and report the outcome; never raises taxonomy errors."""
        with _lock_for(session_id):
            try:
                return self._finalize(session_id, user_id)
            except DataUnavailable as exc:
                return FinalizeResult(success=True, message=exc.message, samples_processed=0)
            except SignalStoreError as exc:
                logger.warning("Finalization of session %s failed: %s", session_id, exc.message)
                return FinalizeResult(
                    success=False,
                    message=exc.message,
                    error=exc.code,
                    errors=getattr(exc, "errors", []),
                )
            except SQLAlchemyError:
                logger.exception("Storage error finalizing session %s", session_id)
                self.db.rollback()
                return FinalizeResult(
                    success=False,
                    message="Error finalizing session",
                    error=StorageError.code,
                )

    def _finalize(self, session_id: str, user_id: str) -> FinalizeResult:
        logger.info("Starting finalization for session %s", session_id)
        session = get_owned_session(self.db, session_id, user_id, for_update=True)
        if session.status == SessionStatus.COMPLETED.value:
            raise DataUnavailable()
        if session.status != SessionStatus.ACTIVE.value:
            raise SessionNotActive()

        consolidated = self.store.get_consolidated(session_id)
        if consolidated is not None:
            logger.warning(
                "Resuming interrupted finalization of session %s (%d provisional chunks left)",
                session_id,
                self.store.count_provisional(session_id),
            )
            return self._purge_and_complete(session, consolidated)

        self._advance(session, FinalizeState.SAMPLES_MERGED)
        provisional = self.store.scan_provisional(session_id)
        logger.info("Found %d provisional chunks for session %s", len(provisional), session_id)
        if not provisional:
            self._advance(session, FinalizeState.PENDING)
            raise DataUnavailable()

        try:
            chunk = self._merge(session, provisional)
        except BatchIntegrityError:
            self._advance(session, FinalizeState.PENDING)
            raise

        self.store.insert(chunk, commit=False)
        self._advance(session, FinalizeState.CONSOLIDATED_WRITTEN)

        return self._purge_and_complete(session, chunk)

    def _merge(self, session: RecordingSession, provisional: list[DataChunk]) -> DataChunk:
        end_time = max(chunk.end_time for chunk in provisional)
        try:
            ms_to_datetime(end_time)
        except ValueError as exc:
            raise BatchIntegrityError(
                [f"Sample timestamp {end_time} is out of range for epoch milliseconds"],
                "Sample timestamps out of range",
            ) from exc

        samples = []
        for chunk in provisional:
            samples.extend(to_sample_major(chunk.timestamps, chunk.channels))

        # stable: equal timestamps keep arrival order
        samples.sort(key=lambda sample: sample.timestamp)
        timestamps, channels = to_channel_major(samples)

        logger.info(
            "Consolidating %d provisional chunks into one chunk with %d samples",
            len(provisional),
            len(samples),
        )
        return DataChunk(
            session_id=session.session_id,
            chunk_index=0,
            kind=ChunkKind.CONSOLIDATED.value,
            start_time=min(chunk.start_time for chunk in provisional),
            end_time=end_time,
            sample_count=len(samples),
            timestamps=timestamps,
            channels=channels,
            stats=[s.to_dict() for s in all_channel_stats(channels)],
            consolidation={
                "original_chunks": len(provisional),
                "merged_through": max(chunk.arrival_order for chunk in provisional),
            },
        )

    def _purge_and_complete(self, session: RecordingSession, chunk: DataChunk) -> FinalizeResult:
        merged_through = (chunk.consolidation or {}).get("merged_through")
        self.store.delete_provisional(session.session_id, up_to_order=merged_through, commit=False)

        try:
            end_time = ms_to_datetime(chunk.end_time)
        except ValueError:
            logger.warning("Session %s end time %s out of range, using now", session.session_id, chunk.end_time)
            end_time = datetime.now(timezone.utc)

        session.status = SessionStatus.COMPLETED.value
        session.end_time = end_time
        session.total_samples = chunk.sample_count
        session.finalize_state = FinalizeState.PROVISIONAL_PURGED.value
        self.db.commit()

        original_chunks = (chunk.consolidation or {}).get("original_chunks", 0)
        logger.info(
            "Session %s finalized with %d samples (consolidated from %d chunks)",
            session.session_id,
            chunk.sample_count,
            original_chunks,
        )
        return FinalizeResult(
            success=True,
            message="Session finalized",
            chunk_id=chunk.id,
            samples_processed=chunk.sample_count,
            session_status=session.status,
            consolidated_chunks=original_chunks,
        )

    def _advance(self, session: RecordingSession, state: FinalizeState) -> None:
        session.finalize_state = state.value
        self.db.commit()
