from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Storage
    DATABASE_URL: str = "sqlite:///./data/processed/secmon.db"
    LOG_LEVEL: str = "INFO"

    # Spike detection (sliding log per source IP)
    SPIKE_WINDOW_SECONDS: float = 8.0
    SPIKE_THRESHOLD: int = 10
    SPIKE_MAX_TRACKED_SOURCES: int = 10000
    SPIKE_PRUNE_INTERVAL_SECONDS: int = 60

    # Anomaly scoring
    HIGH_RISK_COUNTRIES: List[str] = ["CN", "RU", "KP", "IR", "SY", "PK"]

    # Geo lookup
    GEO_LOOKUP_ENABLED: bool = True
    GEO_LOOKUP_URL: str = "http://ip-api.com/json/{ip}"
    GEO_TIMEOUT_SECONDS: float = 2.0

    # Mail
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    SMTP_USE_TLS: bool = True
    ADMIN_EMAIL: Optional[str] = None
    FRONTEND_URL: str = "http://localhost:5173"

    # Optional chat/webhook notification for new alerts
    ALERT_WEBHOOK_URL: Optional[str] = None

    # API Security
    API_KEY_HEADER: str = "X-API-Key"
    API_KEYS: List[str] = ["change-me-secmon-admin-key"]  # In production, use environment variables

    # Traffic recording
    TRAFFIC_EXCLUDED_PREFIXES: List[str] = [
        "/api/traffic",
        "/api/logs",
        "/api/auth",
        "/api/dashboard",
        "/metrics",
        "/ws",
        "/health",
    ]
    TRAFFIC_RETENTION_DAYS: int = 0  # 0 keeps events forever

    # Classify every ingested log, not only warning/error/suspicious ones
    ALERT_SCAN_ALL_LEVELS: bool = False

    # Log housekeeping
    LOG_ARCHIVE_AFTER_DAYS: int = 30
    LOG_CLEANUP_AFTER_DAYS: int = 90  # archived logs older than this are purged


settings = Settings()
