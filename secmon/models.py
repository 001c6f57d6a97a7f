from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, Boolean, Text, DateTime, JSON, ForeignKey
from secmon.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class TrafficEventDB(Base):
    __tablename__ = "traffic_events"

    id = Column(Integer, primary_key=True, index=True)
    ip = Column(String, index=True)
    method = Column(String)
    path = Column(String)
    status = Column(Integer)
    user_agent = Column(String)
    headers = Column(JSON, default=dict)
    session_id = Column(String, index=True)
    user_id = Column(String, nullable=True)
    geo = Column(JSON, nullable=True)
    module = Column(String, index=True)
    is_spike = Column(Boolean, default=False, index=True)
    tags = Column(JSON, default=list)
    anomaly_score = Column(Integer, default=0, index=True)
    anomaly_reasons = Column(JSON, default=list)
    duration_ms = Column(Float)
    created_at = Column(DateTime, default=utcnow, index=True)


class LogDB(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String, index=True)
    message = Column(Text, default="")
    keywords = Column(JSON, default=list)
    ip_address = Column(String, nullable=True)
    url = Column(String, nullable=True)
    method = Column(String, nullable=True)
    status_code = Column(Integer, nullable=True)
    user_agent = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    archived = Column(Boolean, default=False, index=True)
    archived_at = Column(DateTime, nullable=True)


class AlertDB(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    log_id = Column(Integer, ForeignKey("logs.id"), nullable=False, index=True)
    severity = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    keywords = Column(JSON, default=list)
    acknowledged = Column(Boolean, default=False, index=True)
    acknowledged_by = Column(String, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    resolved = Column(Boolean, default=False, index=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
