from fastapi import FastAPI, HTTPException, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from pydantic import BaseModel
from prometheus_client import make_asgi_app
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text
from sqlalchemy.orm import Session

from secmon.config import settings
from secmon.database import get_db
from secmon.api.security import verify_api_key
from secmon.detection.classifier import ALERT_LEVELS, SuspiciousActivityClassifier
from secmon.detection.spike import SlidingWindowSpikeDetector
from secmon.monitoring.metrics import ALERTS_RAISED, TRACKED_SOURCES
from secmon.monitoring.middleware import TrafficMiddleware
from secmon.schemas import (
    AcknowledgeRequest, ArchiveRequest, BulkDeleteRequest, LogIngest, LogIngestResult, LogRecord,
    Severity
)
from secmon.utils.alerter import AlertDispatcher, AlertWorker
from secmon.utils.broadcaster import AlertBroadcaster
from secmon.utils.data_manager import DataManager
from secmon.utils.geo import GeoLocator
from secmon.utils.mailer import Mailer
from secmon.utils.traffic_recorder import TrafficRecorder

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Global instances
data_manager = DataManager()
spike_detector = SlidingWindowSpikeDetector(
    window_seconds=settings.SPIKE_WINDOW_SECONDS,
    threshold=settings.SPIKE_THRESHOLD,
    max_tracked_sources=settings.SPIKE_MAX_TRACKED_SOURCES,
)
geo_locator = GeoLocator(
    url_template=settings.GEO_LOOKUP_URL,
    timeout=settings.GEO_TIMEOUT_SECONDS,
    enabled=settings.GEO_LOOKUP_ENABLED,
)
broadcaster = AlertBroadcaster()
mailer = Mailer(
    host=settings.SMTP_HOST,
    port=settings.SMTP_PORT,
    username=settings.SMTP_USER,
    password=settings.SMTP_PASSWORD,
    sender=settings.SMTP_FROM,
    use_tls=settings.SMTP_USE_TLS,
)
alerter = AlertDispatcher(
    broadcaster=broadcaster,
    mailer=mailer,
    admin_email=settings.ADMIN_EMAIL,
    frontend_url=settings.FRONTEND_URL,
    webhook_url=settings.ALERT_WEBHOOK_URL,
)
alert_worker = AlertWorker(alerter)
classifier = SuspiciousActivityClassifier(data_manager, alert_worker)
recorder = TrafficRecorder(
    data_manager,
    spike_detector,
    geo_locator=geo_locator,
    high_risk_countries=settings.HIGH_RISK_COUNTRIES,
    excluded_prefixes=settings.TRAFFIC_EXCLUDED_PREFIXES,
)
scheduler = BackgroundScheduler()


def prune_spike_store_task():
    """Drop idle sources from the spike window store."""
    pruned = spike_detector.prune()
    TRACKED_SOURCES.set(len(spike_detector.active_sources()))
    if pruned:
        logger.debug("Spike store pruned: %d sources", pruned)


def traffic_retention_task():
    """Delete traffic events older than the retention window."""
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.TRAFFIC_RETENTION_DAYS)
        deleted = data_manager.delete_traffic_before(cutoff)
        logger.info("Traffic retention removed %d events", deleted)
    except Exception as e:
        logger.error(f"Traffic retention failed: {e}")


def log_housekeeping_task():
    """Archive old logs and purge long-archived ones."""
    try:
        now = datetime.now(timezone.utc)
        archived = data_manager.archive_logs(older_than=now - timedelta(days=settings.LOG_ARCHIVE_AFTER_DAYS))
        purged = data_manager.cleanup_archived_logs(now - timedelta(days=settings.LOG_CLEANUP_AFTER_DAYS))
        logger.info("Log housekeeping archived %d, purged %d", archived, purged)
    except Exception as e:
        logger.error(f"Log housekeeping failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    alert_worker.start()

    scheduler.add_job(prune_spike_store_task, 'interval', seconds=settings.SPIKE_PRUNE_INTERVAL_SECONDS)
    if settings.TRAFFIC_RETENTION_DAYS > 0:
        scheduler.add_job(traffic_retention_task, 'interval', hours=1)
    scheduler.add_job(log_housekeeping_task, 'interval', hours=24)
    scheduler.start()
    logger.info("Background scheduler started.")

    yield
    # Shutdown logic
    scheduler.remove_all_jobs()
    scheduler.shutdown(wait=False)
    alert_worker.stop()

app = FastAPI(title="secmon - Traffic Anomaly & Alerting Service", lifespan=lifespan)
app.add_middleware(TrafficMiddleware, recorder=recorder)
app.mount("/metrics", make_asgi_app())


class AlertConfig(BaseModel):
    webhook_url: Optional[str] = None


@app.get("/")
def root():
    return {"service": "secmon", "status": "running"}


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    return {
        "status": "ok" if db_ok else "degraded",
        "db_connected": db_ok,
        "tracked_sources": len(spike_detector.active_sources()),
        "alert_worker": alert_worker.running,
        "alert_subscribers": broadcaster.subscriber_count,
    }

# ---------------------------------------------------------------------------
# Logs & alerts
# ---------------------------------------------------------------------------

@app.post("/api/logs", response_model=LogIngestResult, status_code=201)
def create_log(payload: LogIngest):
    """
    Store a log entry and check it for suspicious activity.
    """
    try:
        record = LogRecord(**payload.model_dump(exclude={"notify_email"}))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    log = data_manager.create_log(record)

    alert = None
    if settings.ALERT_SCAN_ALL_LEVELS or log.level in ALERT_LEVELS:
        alert = classifier.classify(log, recipient=payload.notify_email)
        if alert is not None:
            ALERTS_RAISED.labels(severity=alert.severity.value).inc()

    return {"log": log, "alert": alert}


@app.get("/api/logs")
def get_logs(
    q: Optional[str] = None,
    level: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    archived: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    api_key: str = Depends(verify_api_key),
):
    logs, total = data_manager.list_logs(
        page=page, limit=limit, q=q, level=level,
        start=start_date, end=end_date, archived=archived,
    )
    return {
        "logs": logs,
        "pagination": {
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit,
            "limit": limit,
        },
    }


@app.get("/api/logs/stats")
def get_log_stats(api_key: str = Depends(verify_api_key)):
    return data_manager.log_stats()


@app.post("/api/logs/archive")
def archive_logs(body: ArchiveRequest, api_key: str = Depends(verify_api_key)):
    if body.auto_archive:
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.LOG_ARCHIVE_AFTER_DAYS)
        modified = data_manager.archive_logs(older_than=cutoff)
    elif body.ids:
        modified = data_manager.archive_logs(ids=body.ids)
    else:
        raise HTTPException(status_code=400, detail="No logs specified")
    return {"message": "Logs archived successfully", "modified_count": modified}


@app.post("/api/logs/restore")
def restore_logs(body: BulkDeleteRequest, api_key: str = Depends(verify_api_key)):
    if not body.ids:
        raise HTTPException(status_code=400, detail="No logs specified")
    modified = data_manager.restore_logs(body.ids)
    return {"message": "Logs restored successfully", "modified_count": modified}


@app.delete("/api/logs/cleanup")
def cleanup_logs(api_key: str = Depends(verify_api_key)):
    cutoff = datetime.now(timezone.utc) - timedelta(days=settings.LOG_CLEANUP_AFTER_DAYS)
    deleted = data_manager.cleanup_archived_logs(cutoff)
    logger.info("Log cleanup removed %d archived logs", deleted)
    return {"message": "Logs deleted successfully", "deleted_count": deleted}


@app.delete("/api/logs/bulk")
def bulk_delete_logs(body: BulkDeleteRequest, api_key: str = Depends(verify_api_key)):
    if not body.ids:
        raise HTTPException(status_code=400, detail="No log IDs provided")
    deleted = data_manager.delete_logs(body.ids)
    logger.info("Bulk log delete removed %d of %d requested logs", deleted, len(body.ids))
    return {
        "success": True,
        "message": f"{deleted} logs deleted successfully",
        "deleted_count": deleted,
        "requested_count": len(body.ids),
    }


@app.get("/api/logs/alerts")
def get_alerts(acknowledged: Optional[bool] = None, severity: Optional[Severity] = None):
    return data_manager.list_alerts(
        acknowledged=acknowledged,
        severity=severity.value if severity else None,
    )


@app.patch("/api/logs/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: int, body: Optional[AcknowledgeRequest] = None):
    alert = data_manager.acknowledge_alert(alert_id, acknowledged_by=body.acknowledged_by if body else None)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.patch("/api/logs/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: int):
    alert = data_manager.resolve_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.delete("/api/logs/alerts/bulk")
def bulk_delete_alerts(body: BulkDeleteRequest, api_key: str = Depends(verify_api_key)):
    if not body.ids:
        raise HTTPException(status_code=400, detail="No alert IDs provided")
    deleted = data_manager.delete_alerts(body.ids)
    return {
        "success": True,
        "message": f"{deleted} alerts deleted successfully",
        "deleted_count": deleted,
        "requested_count": len(body.ids),
    }


@app.delete("/api/logs/alerts/{alert_id}")
def delete_alert(alert_id: int, api_key: str = Depends(verify_api_key)):
    if not data_manager.delete_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"success": True, "message": "Alert deleted successfully"}


@app.delete("/api/logs/{log_id}")
def delete_log(log_id: int, api_key: str = Depends(verify_api_key)):
    if not data_manager.delete_log(log_id):
        raise HTTPException(status_code=404, detail="Log not found")
    return {"success": True, "message": "Log deleted successfully"}


@app.post("/api/logs/alerts/config")
def configure_alerts(config: AlertConfig, api_key: str = Depends(verify_api_key)):
    """
    Configure the webhook URL for alerts.
    """
    alerter.set_webhook(config.webhook_url)
    return {"status": "Alert configuration updated", "webhook_enabled": bool(alerter.webhook_url)}


@app.websocket("/ws/alerts")
async def alerts_stream(websocket: WebSocket):
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        broadcaster.disconnect(websocket)

# ---------------------------------------------------------------------------
# Traffic
# ---------------------------------------------------------------------------

def traffic_filters(
    search: Optional[str] = None,
    ip: Optional[str] = None,
    country: Optional[str] = None,
    method: Optional[str] = None,
    path: Optional[str] = None,
    status: Optional[int] = None,
    spike: bool = False,
    min_anomaly: Optional[int] = Query(None, ge=0, le=100),
):
    return dict(search=search, ip=ip, country=country, method=method,
                path=path, status=status, spike=spike, min_anomaly=min_anomaly)


@app.get("/api/traffic")
def get_traffic_events(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=500),
                       filters: dict = Depends(traffic_filters)):
    events, total = data_manager.list_traffic(page=page, limit=limit, **filters)
    return {
        "events": events,
        "pagination": {
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit,
            "limit": limit,
        },
    }


@app.get("/api/traffic/stats")
def get_traffic_stats():
    return data_manager.traffic_stats()


@app.get("/api/traffic/alerts")
def get_traffic_alerts():
    """Spike events from the last 15 minutes."""
    since = datetime.now(timezone.utc) - timedelta(minutes=15)
    return data_manager.recent_spikes(since, limit=20)


@app.get("/api/traffic/export")
def export_traffic(format: str = "csv", limit: int = Query(1000, ge=1, le=10000),
                   filters: dict = Depends(traffic_filters)):
    df = data_manager.load_traffic(limit=limit, **filters)
    if df.empty:
        raise HTTPException(status_code=404, detail="No traffic events found to export for the selected filters")
    if format == "csv":
        csv_data = df.to_csv(index=False)
        return PlainTextResponse(
            content=csv_data,
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=traffic_report.csv"},
        )
    df["created_at"] = df["created_at"].astype(str)
    return df.to_dict(orient="records")


@app.get("/api/traffic/{event_id}")
def get_traffic_event(event_id: int):
    event = data_manager.get_traffic_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Traffic event not found")
    return event


@app.delete("/api/traffic")
def delete_traffic_events(body: Optional[BulkDeleteRequest] = None, api_key: str = Depends(verify_api_key)):
    deleted = data_manager.delete_traffic(body.ids if body else None)
    logger.info("Bulk traffic delete removed %d events", deleted)
    return {"message": "Traffic events deleted successfully", "deleted_count": deleted}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
