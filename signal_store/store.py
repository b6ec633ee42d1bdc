"""Persistence of time-indexed data chunks, partitioned by session."""

from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from signal_store.config import CHANNEL_COUNT
from signal_store.errors import DuplicateKey, StorageError
from signal_store.logging_config import get_logger
from signal_store.models import ChunkKind, DataChunk
from signal_store.statistics import ChannelStats

logger = get_logger(__name__)

# SQLSTATE unique_violation
PG_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True for unique-constraint failures on PostgreSQL and SQLite only."""
    if getattr(exc.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    return "UNIQUE constraint failed" in str(exc.orig)


@dataclass
class ChunkSlice:
    """Read-only view of a chunk projected to a subset of channels."""

    id: int
    session_id: str
    chunk_index: int
    kind: str
    start_time: float
    end_time: float
    sample_count: int
    timestamps: list[float]
    channels: dict[int, list[float]] = field(default_factory=dict)
    stats: dict[int, ChannelStats] = field(default_factory=dict)


def _project(chunk: DataChunk, channels: Sequence[int] | None) -> ChunkSlice:
    wanted = range(CHANNEL_COUNT) if channels is None else channels
    return ChunkSlice(
        id=chunk.id,
        session_id=chunk.session_id,
        chunk_index=chunk.chunk_index,
        kind=chunk.kind,
        start_time=chunk.start_time,
        end_time=chunk.end_time,
        sample_count=chunk.sample_count,
        timestamps=list(chunk.timestamps),
        channels={ch: list(chunk.channels[ch]) for ch in wanted},
        stats={ch: ChannelStats.from_dict(chunk.stats[ch]) for ch in wanted},
    )


class ChunkStore:
    def __init__(self, db: Session):
        self.db = db

    def insert(self, chunk: DataChunk, commit: bool = True) -> DataChunk:
        """Append one chunk; a (session, index, kind) collision raises DuplicateKey."""
        chunk.check_invariants()
        self.db.add(chunk)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            if not _is_unique_violation(exc):
                logger.error("Integrity error storing chunk for session %s: %s", chunk.session_id, exc.orig)
                raise StorageError(f"Chunk for session {chunk.session_id} violates a storage constraint") from exc
            raise DuplicateKey(
                f"Chunk {chunk.chunk_index} ({chunk.kind}) already exists for session {chunk.session_id}"
            ) from exc
        if commit:
            self.db.commit()
        return chunk

    def scan_by_time_range(
        self,
        session_id: str,
        start: float | None = None,
        end: float | None = None,
        channels: Sequence[int] | None = None,
        kind: ChunkKind | None = None,
    ) -> list[ChunkSlice]:
        """Chunks whose [start_time, end_time] intersects [start, end], by index."""
        query = self.db.query(DataChunk).filter(DataChunk.session_id == session_id)
        if kind is not None:
            query = query.filter(DataChunk.kind == ChunkKind(kind).value)
        if start is not None:
            query = query.filter(DataChunk.end_time >= start)
        if end is not None:
            query = query.filter(DataChunk.start_time <= end)
        chunks = query.order_by(DataChunk.chunk_index, DataChunk.id).all()
        return [_project(chunk, channels) for chunk in chunks]

    def scan_provisional(self, session_id: str) -> list[DataChunk]:
        return (
            self.db.query(DataChunk)
            .filter_by(session_id=session_id, kind=ChunkKind.PROVISIONAL.value)
            .order_by(DataChunk.arrival_order, DataChunk.id)
            .all()
        )

    def count_provisional(self, session_id: str) -> int:
        return (
            self.db.query(DataChunk)
            .filter_by(session_id=session_id, kind=ChunkKind.PROVISIONAL.value)
            .count()
        )

    def get_consolidated(self, session_id: str) -> DataChunk | None:
        return (
            self.db.query(DataChunk)
            .filter_by(session_id=session_id, kind=ChunkKind.CONSOLIDATED.value)
            .first()
        )

    def has_consolidated(self, session_id: str) -> bool:
        query = self.db.query(DataChunk.id).filter_by(
            session_id=session_id, kind=ChunkKind.CONSOLIDATED.value
        )
        return self.db.query(query.exists()).scalar()

    def delete_provisional(self, session_id: str, up_to_order: int | None = None, commit: bool = True) -> int:
        """Bulk delete provisional chunks, optionally only those merged so far."""
        query = self.db.query(DataChunk).filter_by(
            session_id=session_id, kind=ChunkKind.PROVISIONAL.value
        )
        if up_to_order is not None:
            query = query.filter(DataChunk.arrival_order <= up_to_order)
        deleted = query.delete(synchronize_session=False)
        if commit:
            self.db.commit()
        logger.info("Deleted %d provisional chunks for session %s", deleted, session_id)
        return deleted

    def delete_all(self, session_id: str, commit: bool = True) -> int:
        deleted = (
            self.db.query(DataChunk)
            .filter_by(session_id=session_id)
            .delete(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        return deleted

    def chunk_summary(self, session_id: str) -> dict:
        total_chunks, total_samples, first_start, last_end = (
            self.db.query(
                func.count(DataChunk.id),
                func.sum(DataChunk.sample_count),
                func.min(DataChunk.start_time),
                func.max(DataChunk.end_time),
            )
            .filter(DataChunk.session_id == session_id)
            .one()
        )
        return {
            "total_chunks": total_chunks or 0,
            "total_samples": int(total_samples or 0),
            "start_time": first_start,
            "end_time": last_end,
        }
