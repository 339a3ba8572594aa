"""
Pydantic models for FitWatch.

Shared data models across the application.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, Field

from fitwatch.utils.helpers import now_utc


# =====================================================
# Discovery Models
# =====================================================

class DiscoverySource(str, Enum):
    """How an artifact was found."""
    WATCH = "watch"
    SCAN = "scan"
    API = "api"


class ActivityMetadata(BaseModel):
    """Decoded activity summary. Every field is optional."""
    activity_type: Optional[str] = None
    activity_name: Optional[str] = None
    started_at: Optional[datetime] = None
    duration_secs: Optional[int] = None
    distance_m: Optional[float] = None
    calories: Optional[int] = None
    avg_power_w: Optional[int] = None
    max_power_w: Optional[int] = None
    norm_power_w: Optional[int] = None
    avg_hr: Optional[int] = None
    max_hr: Optional[int] = None
    avg_cadence: Optional[int] = None
    avg_speed_mps: Optional[float] = None
    total_ascent_m: Optional[float] = None
    device_name: Optional[str] = None
    software_version: Optional[str] = None

    def is_empty(self) -> bool:
        """True when no field was decoded."""
        return all(value is None for value in self.model_dump().values())


class Artifact(BaseModel):
    """A discovered activity file."""
    id: Optional[int] = None
    path: str
    fingerprint: str
    size: int
    discovered_at: datetime = Field(default_factory=now_utc)
    source: DiscoverySource = DiscoverySource.WATCH
    metadata: ActivityMetadata = Field(default_factory=ActivityMetadata)


# =====================================================
# Delivery Models
# =====================================================

class DeliveryStatus(str, Enum):
    """State of one artifact's delivery to one destination."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeliveryRecord(BaseModel):
    """Per-(artifact, destination) sync state."""
    id: Optional[int] = None
    artifact_id: int
    destination: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    remote_id: Optional[str] = None
    remote_url: Optional[str] = None
    error: Optional[str] = None
    retries: int = 0


class DeliveryReceipt(BaseModel):
    """What a destination hands back after accepting an artifact."""
    remote_id: Optional[str] = None
    remote_url: Optional[str] = None
    duplicate: bool = False


class DispatchOutcome(BaseModel):
    """Result of pushing one artifact to one destination."""
    destination: str
    artifact: Artifact
    success: bool
    error: Optional[str] = None
    attempts: int = 0
    cancelled: bool = False
    receipt: Optional[DeliveryReceipt] = None


# =====================================================
# Response Models
# =====================================================

class LedgerStats(BaseModel):
    """Aggregate ledger counts for operational visibility."""
    total_artifacts: int = 0
    total_deliveries: int = 0
    pending_by_destination: Dict[str, int] = {}
    succeeded_by_destination: Dict[str, int] = {}
    failed_by_destination: Dict[str, int] = {}
