from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

LOG_LEVELS = ("debug", "info", "warning", "error", "suspicious")


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GeoLocation(BaseModel):
    country: Optional[str] = None  # ISO 3166 alpha-2 code, or "Local"
    country_name: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    isp: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


class LogRecord(BaseModel):
    """A validated application log entry as seen by the classifier."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    level: str
    message: str = ""
    keywords: List[str] = Field(default_factory=list, validation_alias=AliasChoices("keywords", "keyword"))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ip_address: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    user_agent: Optional[str] = None
    archived: bool = False
    archived_at: Optional[datetime] = None

    @field_validator("level", mode="before")
    @classmethod
    def normalise_level(cls, value):
        level = str(value or "").strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("message", mode="before")
    @classmethod
    def default_message(cls, value):
        return "" if value is None else str(value)

    @field_validator("keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(k) for k in value if k is not None]


class AlertCreate(BaseModel):
    log_id: int
    severity: Severity
    title: str
    description: str
    keywords: List[str] = Field(default_factory=list)


class Alert(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    log_id: int
    severity: Severity
    title: str
    description: str
    keywords: List[str] = Field(default_factory=list)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TrafficEventCreate(BaseModel):
    ip: str
    method: str
    path: str
    status: int
    user_agent: str = ""
    headers: Dict[str, Any] = Field(default_factory=dict)
    session_id: str
    user_id: Optional[str] = None
    geo: Optional[GeoLocation] = None
    module: str
    is_spike: bool = False
    tags: List[str] = Field(default_factory=list)
    anomaly_score: int = Field(0, ge=0, le=100)
    anomaly_reasons: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0


class TrafficEvent(TrafficEventCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: Optional[datetime] = None


class LogIngest(BaseModel):
    level: str
    message: Optional[str] = ""
    keywords: List[str] = Field(default_factory=list, validation_alias=AliasChoices("keywords", "keyword"))
    ip_address: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    user_agent: Optional[str] = None
    notify_email: Optional[str] = None  # overrides ADMIN_EMAIL for this alert


class LogIngestResult(BaseModel):
    log: LogRecord
    alert: Optional[Alert] = None


class AcknowledgeRequest(BaseModel):
    acknowledged_by: Optional[str] = None


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(default_factory=list)


class ArchiveRequest(BaseModel):
    ids: List[int] = Field(default_factory=list)
    auto_archive: bool = False  # archive everything older than LOG_ARCHIVE_AFTER_DAYS
