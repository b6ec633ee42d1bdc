import math
from datetime import datetime, timezone

from signal_store.config import BATCH_TIME_TOLERANCE_MS, CHANNEL_COUNT, STRICT_CHANNEL_COUNT
from signal_store.errors import BatchIntegrityError
from signal_store.schemas import UploadBatch


def ms_to_datetime(ms: float) -> datetime:
    """Epoch milliseconds to an aware UTC datetime; ValueError when unrepresentable."""
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Timestamp {ms} out of range") from exc


def batch_integrity_errors(
    batch: UploadBatch,
    tolerance_ms: float = BATCH_TIME_TOLERANCE_MS,
    strict_channels: bool = STRICT_CHANNEL_COUNT,
) -> list[str]:
    """List every inconsistency between a batch's declared metadata and its payload."""
    errors = []
    samples = batch.samples
    info = batch.batch_info

    if len(samples) != info.size:
        errors.append(f"Sample count mismatch: expected {info.size}, got {len(samples)}")

    if samples:
        if abs(samples[0].timestamp - info.start_time) > tolerance_ms:
            errors.append("First sample timestamp does not match batch start time")
        if abs(samples[-1].timestamp - info.end_time) > tolerance_ms:
            errors.append("Last sample timestamp does not match batch end time")
        latest = max(sample.timestamp for sample in samples)
        try:
            ms_to_datetime(latest)
        except ValueError:
            errors.append(f"Sample timestamp {latest} is out of range for epoch milliseconds")

    for index, sample in enumerate(samples):
        if sample.session_id != batch.session_id:
            errors.append(f"Sample {index}: session ID does not match batch session ID")
        count = len(sample.values)
        if count > CHANNEL_COUNT or (strict_channels and count != CHANNEL_COUNT):
            errors.append(f"Sample {index}: Expected {CHANNEL_COUNT} channel values, got {count}")
        for channel, value in enumerate(sample.values):
            if not math.isfinite(value):
                errors.append(f"Sample {index}, Channel {channel}: Invalid value {value}")

    return errors


def validate_batch(batch: UploadBatch, **kwargs) -> None:
    errors = batch_integrity_errors(batch, **kwargs)
    if errors:
        raise BatchIntegrityError(errors)
