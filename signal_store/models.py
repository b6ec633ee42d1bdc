import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Double,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from signal_store.config import CHANNEL_COUNT, DEFAULT_SAMPLE_RATE, MAX_CHUNK_SAMPLES
from signal_store.db import Base
from signal_store.errors import ChunkIntegrityError

# BigInteger for PostgreSQL, Integer for SQLite (SQLite only auto-increments INTEGER)
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class DeviceType(str, enum.Enum):
    SEMG = "sEMG"
    IMU = "IMU"


class SessionType(str, enum.Enum):
    RAW = "raw"
    NORMALIZED = "normalized"


class ChunkKind(str, enum.Enum):
    PROVISIONAL = "provisional"
    CONSOLIDATED = "consolidated"


class FinalizeState(str, enum.Enum):
    PENDING = "pending"
    SAMPLES_MERGED = "samples_merged"
    CONSOLIDATED_WRITTEN = "consolidated_written"
    PROVISIONAL_PURGED = "provisional_purged"


class RecordingSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    device_id: Mapped[str] = mapped_column(Text, nullable=False)
    device_name: Mapped[str] = mapped_column(Text, nullable=False)
    device_type: Mapped[str | None] = mapped_column(String(16))
    session_type: Mapped[str] = mapped_column(String(16), default=SessionType.RAW.value)
    sample_rate: Mapped[int] = mapped_column(Integer, default=DEFAULT_SAMPLE_RATE)
    channel_count: Mapped[int] = mapped_column(Integer, default=CHANNEL_COUNT)
    total_samples: Mapped[int] = mapped_column(BigInteger, default=0)
    status: Mapped[str] = mapped_column(String(16), default=SessionStatus.ACTIVE.value)
    finalize_state: Mapped[str] = mapped_column(String(32), default=FinalizeState.PENDING.value)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    app_version: Mapped[str] = mapped_column(Text, default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    device_info: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_sessions_user_start", "user_id", "start_time"),
        Index("idx_sessions_status_start", "status", "start_time"),
    )

    @property
    def duration(self) -> int | None:
        """Session length in whole seconds, once ended."""
        if self.end_time is None or self.start_time is None:
            return None
        end, start = self.end_time, self.start_time
        # SQLite hands back naive datetimes
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return int((end - start).total_seconds())


class DataChunk(Base):
    __tablename__ = "data_chunks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("sessions.session_id"), nullable=False
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    arrival_order: Mapped[int | None] = mapped_column(Integer)
    start_time: Mapped[float] = mapped_column(Double, nullable=False)
    end_time: Mapped[float] = mapped_column(Double, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamps: Mapped[list[float]] = mapped_column(JSON, nullable=False)
    # channel-major: one list per channel, CHANNEL_COUNT lists
    channels: Mapped[list[list[float]]] = mapped_column(JSON, nullable=False)
    stats: Mapped[list[dict[str, float]]] = mapped_column(JSON, nullable=False)
    consolidation: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "chunk_index", "kind", name="uq_chunk_session_index_kind"),
        Index("idx_chunk_session_time", "session_id", "start_time", "end_time"),
        Index("idx_chunk_session_kind_order", "session_id", "kind", "arrival_order"),
    )

    @property
    def is_provisional(self) -> bool:
        return self.kind == ChunkKind.PROVISIONAL.value

    def check_invariants(self) -> None:
        """Raise ChunkIntegrityError unless the payload arrays line up."""
        if self.sample_count < 1:
            raise ChunkIntegrityError("Sample count must be at least 1")
        if self.is_provisional and self.sample_count > MAX_CHUNK_SAMPLES:
            raise ChunkIntegrityError(f"Sample count cannot exceed {MAX_CHUNK_SAMPLES}")
        if len(self.timestamps) != self.sample_count:
            raise ChunkIntegrityError("Timestamps length must match sample count")
        if len(self.channels) != CHANNEL_COUNT or len(self.stats) != CHANNEL_COUNT:
            raise ChunkIntegrityError(f"Chunk must carry exactly {CHANNEL_COUNT} channels")
        if any(len(values) != self.sample_count for values in self.channels):
            raise ChunkIntegrityError("All channels must have the same length as sample count")
