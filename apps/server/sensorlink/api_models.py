"""Pydantic request/response models for the SensorLink HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ConnectRequest(BaseModel):
    use_simulation: bool = False


class IngestRequest(BaseModel):
    channel_id: str | None = Field(default=None, max_length=64)
    payload: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    connection_state: str
    demo_mode: bool
    snapshot_version: int
    monitor_running: bool
    ws_connections: int
    intake_stats: dict[str, Any]


class ChannelResponse(BaseModel):
    id: str
    name: str
    unit: str
    current_value: float | None = None
    last_updated: str | None = None
    status: str


class ReadingResponse(BaseModel):
    id: int
    timestamp: str
    parameter: str
    value: float


class SessionSnapshotResponse(BaseModel):
    version: int
    connection_state: str
    demo_mode: bool
    device_label: str | None = None
    last_error: str | None = None
    session_started_at: str
    parse_warnings: int
    channels: list[ChannelResponse]
    readings: list[ReadingResponse]


class ChannelListResponse(BaseModel):
    channels: list[ChannelResponse]


class ParseWarningResponse(BaseModel):
    position: int
    token: str
    reason: str


class IngestResponse(BaseModel):
    accepted: int
    readings: list[ReadingResponse]
    warnings: list[ParseWarningResponse]


class SessionSummaryResponse(BaseModel):
    id: int
    device_name: str
    start_time: str
    end_time: str | None = None
    data_point_count: int


class SessionListResponse(BaseModel):
    sessions: list[SessionSummaryResponse]


class SessionDetailResponse(BaseModel):
    id: int
    device_name: str
    start_time: str
    end_time: str | None = None
    data_points: list[dict[str, Any]]


class DeleteSessionResponse(BaseModel):
    id: int
    status: str


class ExportWrittenResponse(BaseModel):
    path: str
    rows: int
