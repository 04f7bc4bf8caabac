"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- location producer input (`LocationFix`)
- the append-only history log (`VisitedLocationRecord`)
- the sharing wire format (`ExportableLocation`, `LocationExportData`)
- transfer/discovery state reported to callers (`DiscoveredDevice`, `TransferProgress`)

Geometry values are not pydantic models; see `fogmap.geometry.shapes`.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

EXPORT_FORMAT_VERSION = 1

HistorySource = Literal["self", "shared"]


class LocationFix(BaseModel):
    """One GPS fix as delivered by the location source."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    timestamp: int = Field(..., ge=0)


class VisitedLocationRecord(BaseModel):
    """One accepted fix in the history log. Rows are never updated."""

    id: int
    latitude: float
    longitude: float
    timestamp: int
    source: HistorySource = "self"


class RevealedStats(BaseModel):
    point_count: int = Field(0, ge=0)
    last_updated: int = Field(0, ge=0)


class ExportableLocation(BaseModel):
    """Compact wire projection of a history row."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    ts: int = Field(..., ge=0)


class LocationExportData(BaseModel):
    """Versioned export record: `{"version": 1, "locations": [{lat, lon, ts}, ...]}`."""

    model_config = ConfigDict(frozen=True)

    version: int = EXPORT_FORMAT_VERSION
    locations: tuple[ExportableLocation, ...] = ()


class DiscoveredDevice(BaseModel):
    id: str
    name: str | None = None
    signal_strength: int | None = None


class TransferState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    ERROR = "error"


class TransferProgress(BaseModel):
    """Progress snapshot emitted during an exchange."""

    state: TransferState = TransferState.IDLE
    current_chunk: int = 0
    total_chunks: int = 0
    message: str = ""
    fraction: float = Field(0.0, ge=0, le=1)
    error_message: str | None = None


class ExchangeResult(BaseModel):
    sent: int = Field(0, ge=0)
    received: int = Field(0, ge=0)
