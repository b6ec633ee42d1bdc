"""Time-range retrieval with count-weighted statistics and decimation."""

import math
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signal_store import filters, normalization
from signal_store.config import CHANNEL_COUNT, DEFAULT_MAX_POINTS
from signal_store.errors import InvalidQuery, SignalStoreError, StorageError
from signal_store.layout import channel_key
from signal_store.logging_config import get_logger
from signal_store.models import ChunkKind
from signal_store.schemas import QueryResult
from signal_store.sessions import get_owned_session
from signal_store.statistics import EMPTY_AGGREGATE, AggregateStats, channel_stats, combine
from signal_store.store import ChunkStore

logger = get_logger(__name__)


def parse_channels(raw: str | Sequence[int] | None) -> list[int] | None:
    """Parse ``"0,3,7"`` (or a list of ints) into validated channel indices."""
    if raw is None:
        return None
    if isinstance(raw, str):
        parts = [part.strip() for part in raw.split(",") if part.strip()]
        if not parts:
            return None
        try:
            indices = [int(part) for part in parts]
        except ValueError as exc:
            raise InvalidQuery(f"Channels must be integers between 0 and {CHANNEL_COUNT - 1}") from exc
    else:
        indices = [int(ch) for ch in raw]

    for ch in indices:
        if not 0 <= ch < CHANNEL_COUNT:
            raise InvalidQuery(f"Channel {ch} out of range 0-{CHANNEL_COUNT - 1}")
    return list(dict.fromkeys(indices))


def decimation_stride(longest: int, max_points: int) -> int:
    if longest <= max_points:
        return 1
    return math.ceil(longest / max_points)


def decimate(points: list, stride: int) -> list:
    """Keep every ``stride``-th element, starting with the first."""
    return points if stride <= 1 else points[::stride]


class QueryEngine:
    def __init__(self, db: Session):
        self.db = db
        self.store = ChunkStore(db)

    def query(
        self,
        session_id: str,
        user_id: str,
        start_time: float | None = None,
        end_time: float | None = None,
        channels: str | Sequence[int] | None = None,
        max_points: int = DEFAULT_MAX_POINTS,
        normalize: str | None = None,
        normalize_options: dict | None = None,
        apply_filter: bool = False,
        zero_phase: bool = False,
    ) -> QueryResult:
        """Run a query and report the outcome; never raises taxonomy errors."""
        try:
            return self._query(
                session_id,
                user_id,
                start_time,
                end_time,
                channels,
                max_points,
                normalize,
                normalize_options,
                apply_filter,
                zero_phase,
            )
        except SignalStoreError as exc:
            return QueryResult(success=False, message=exc.message, error=exc.code, session_id=session_id)
        except SQLAlchemyError:
            logger.exception("Storage error querying session %s", session_id)
            self.db.rollback()
            return QueryResult(
                success=False,
                message="Error retrieving session data",
                error=StorageError.code,
                session_id=session_id,
            )

    def _query(
        self,
        session_id,
        user_id,
        start_time,
        end_time,
        channels,
        max_points,
        normalize,
        normalize_options,
        apply_filter,
        zero_phase,
    ) -> QueryResult:
        if max_points < 1:
            raise InvalidQuery("maxPoints must be at least 1")
        if start_time is not None and end_time is not None and start_time > end_time:
            raise InvalidQuery("startTime must not be after endTime")
        if normalize is not None and not normalization.is_valid_method(normalize):
            raise InvalidQuery(f"Unknown normalization method: {normalize}")
        requested = parse_channels(channels)
        wanted = requested if requested is not None else list(range(CHANNEL_COUNT))

        session = get_owned_session(self.db, session_id, user_id)

        # once consolidated, provisional leftovers of an interrupted
        # finalization are already contained in the consolidated chunk
        kind = ChunkKind.CONSOLIDATED if self.store.has_consolidated(session_id) else ChunkKind.PROVISIONAL
        slices = self.store.scan_by_time_range(session_id, start_time, end_time, wanted, kind)

        series = {ch: [] for ch in wanted}
        aggregates = {ch: EMPTY_AGGREGATE for ch in wanted}
        total_samples = 0

        for chunk in slices:
            in_range = [
                i
                for i, ts in enumerate(chunk.timestamps)
                if (start_time is None or ts >= start_time) and (end_time is None or ts <= end_time)
            ]
            if not in_range:
                continue
            whole = len(in_range) == chunk.sample_count
            total_samples += len(in_range)

            for ch in wanted:
                values = chunk.channels[ch]
                series[ch].extend(
                    {"timestamp": chunk.timestamps[i], "value": values[i]} for i in in_range
                )
                partial = chunk.stats[ch] if whole else channel_stats([values[i] for i in in_range])
                aggregates[ch] = combine(aggregates[ch], partial, len(in_range))

        channel_data = {channel_key(ch): series[ch] for ch in wanted}
        all_timestamps = [p["timestamp"] for points in channel_data.values() for p in points]
        if all_timestamps:
            time_range = [min(all_timestamps), max(all_timestamps)]
        else:
            time_range = [start_time, end_time]

        normalized_stats = None
        if normalize is not None or apply_filter:
            filter_options = None
            if apply_filter:
                filter_options = {
                    "device_type": session.device_type,
                    "sample_rate": session.sample_rate,
                    "zero_phase": zero_phase,
                }
            if normalize is not None:
                channel_data = normalization.normalize_channels(
                    channel_data, normalize, normalize_options, filter_options
                )
                normalized_stats = normalization.normalized_stats(channel_data)
            else:
                channel_data = self._filter_only(channel_data, filter_options)

        longest = max((len(points) for points in channel_data.values()), default=0)
        stride = decimation_stride(longest, max_points)
        if stride > 1:
            logger.info(
                "Decimating session %s query by %d (%d points, budget %d)",
                session_id,
                stride,
                longest,
                max_points,
            )
            channel_data = {key: decimate(points, stride) for key, points in channel_data.items()}

        return QueryResult(
            success=True,
            session_id=session_id,
            time_range=time_range,
            chunks=len(slices),
            total_samples=total_samples,
            decimation_factor=stride,
            channels=channel_data,
            stats={channel_key(ch): self._summary(aggregates[ch]) for ch in wanted},
            normalized_stats=normalized_stats,
        )

    @staticmethod
    def _filter_only(channel_data: dict, filter_options: dict) -> dict:
        values = {key: [p["value"] for p in points] for key, points in channel_data.items()}
        filtered = filters.filter_channels(
            values,
            filter_options["device_type"],
            filter_options["sample_rate"],
            zero_phase=filter_options["zero_phase"],
        )
        return {
            key: [{"timestamp": p["timestamp"], "value": v} for p, v in zip(points, filtered[key])]
            for key, points in channel_data.items()
        }

    @staticmethod
    def _summary(aggregate: AggregateStats) -> dict:
        return aggregate.to_dict()
