from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from signal_store.config import CHANNEL_COUNT, MAX_BATCH_SAMPLES
from signal_store.models import DeviceType, SessionStatus


class SampleData(BaseModel):
    """One multi-channel sample as sent by the device"""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: float = Field(ge=0)  # epoch milliseconds
    values: list[float] = Field(min_length=1)
    session_id: str = Field(alias="sessionId")


class DeviceInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1, max_length=100)
    address: str = Field(min_length=1, max_length=50)


class BatchInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    size: int = Field(ge=1, le=MAX_BATCH_SAMPLES)
    start_time: float = Field(ge=0, alias="startTime")
    end_time: float = Field(ge=0, alias="endTime")


class UploadBatch(BaseModel):
    """Request model for one upload batch"""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(min_length=10, max_length=100, alias="sessionId")
    samples: list[SampleData] = Field(min_length=1, max_length=MAX_BATCH_SAMPLES)
    device_info: DeviceInfo | None = Field(default=None, alias="deviceInfo")
    batch_info: BatchInfo = Field(alias="batchInfo")


class OperationResult(BaseModel):
    """Structured outcome of a core operation"""

    success: bool
    message: str = ""
    error: str | None = None
    errors: list[str] = Field(default_factory=list)


class IngestResult(OperationResult):
    samples_processed: int = Field(default=0, serialization_alias="samplesProcessed")
    chunk_id: int | None = Field(default=None, serialization_alias="chunkId")
    chunk_index: int | None = Field(default=None, serialization_alias="chunkIndex")
    session_status: str | None = Field(default=None, serialization_alias="sessionStatus")
    is_provisional: bool = Field(default=False, serialization_alias="isTemporary")


class FinalizeResult(OperationResult):
    samples_processed: int = Field(default=0, serialization_alias="samplesProcessed")
    chunk_id: int | None = Field(default=None, serialization_alias="chunkId")
    session_status: str | None = Field(default=None, serialization_alias="sessionStatus")
    consolidated_chunks: int = Field(default=0, serialization_alias="consolidatedChunks")


class ChannelPoint(BaseModel):
    timestamp: float
    value: float


class StatsSummary(BaseModel):
    min: float
    max: float
    avg: float
    rms: float
    count: int


class QueryResult(OperationResult):
    session_id: str = Field(serialization_alias="sessionId")
    time_range: list[float | None] = Field(
        default_factory=lambda: [None, None], serialization_alias="timeRange"
    )
    chunks: int = 0
    total_samples: int = Field(default=0, serialization_alias="totalSamples")
    decimation_factor: int = Field(default=1, serialization_alias="decimationFactor")
    channels: dict[str, list[ChannelPoint]] = Field(default_factory=dict)
    stats: dict[str, StatsSummary] = Field(default_factory=dict)
    normalized_stats: dict[str, dict[str, float | int]] | None = Field(
        default=None, serialization_alias="normalizedStats"
    )


class SessionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(min_length=10, max_length=100, alias="sessionId")
    device_id: str = Field(min_length=1, max_length=100, alias="deviceId")
    device_name: str = Field(min_length=1, max_length=100, alias="deviceName")
    device_type: DeviceType | None = Field(default=None, alias="deviceType")
    start_time: datetime = Field(alias="startTime")
    sample_rate: int = Field(default=1000, ge=1, le=10000, alias="sampleRate")
    channel_count: int = Field(default=CHANNEL_COUNT, ge=1, le=20, alias="channelCount")
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str = Field(serialization_alias="sessionId")
    user_id: str = Field(serialization_alias="userId")
    device_id: str = Field(serialization_alias="deviceId")
    device_name: str = Field(serialization_alias="deviceName")
    device_type: str | None = Field(serialization_alias="deviceType")
    session_type: str = Field(serialization_alias="sessionType")
    sample_rate: int = Field(serialization_alias="sampleRate")
    channel_count: int = Field(serialization_alias="channelCount")
    total_samples: int = Field(serialization_alias="totalSamples")
    status: SessionStatus
    start_time: datetime = Field(serialization_alias="startTime")
    end_time: datetime | None = Field(serialization_alias="endTime")
    duration: int | None = None
    device_info: dict[str, Any] = Field(default_factory=dict, serialization_alias="deviceInfo")


class SessionDetail(SessionOut):
    chunks: int = 0
    actual_samples: int = Field(default=0, serialization_alias="actualSamples")
    data_integrity: float = Field(default=100.0, serialization_alias="dataIntegrity")
    data_time_range: dict[str, float] | None = Field(default=None, serialization_alias="dataTimeRange")


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool = Field(serialization_alias="hasMore")


class SessionList(BaseModel):
    success: bool = True
    sessions: list[SessionOut]
    pagination: Pagination


class DeleteResult(OperationResult):
    deleted_chunks: int = Field(default=0, serialization_alias="deletedChunks")
