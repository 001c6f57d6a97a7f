import logging
import time

from secmon.detection.scoring import HIGH_RISK_COUNTRIES, score_request
from secmon.monitoring.metrics import (
    ANOMALY_SCORE, SPIKES_DETECTED, TRACKED_SOURCES,
    TRAFFIC_EVENTS_RECORDED, TRAFFIC_RECORD_FAILURES
)
from secmon.schemas import TrafficEventCreate

logger = logging.getLogger(__name__)

REDACTED_HEADERS = ("authorization", "cookie", "x-api-key")


def module_for_path(path):
    """Coarse API area a path belongs to: /api/products/7 -> products."""
    segments = [s for s in (path or "").split("?", 1)[0].split("/") if s]
    if not segments:
        return "root"
    if segments[0] == "api":
        return segments[1] if len(segments) > 1 else "api"
    return segments[0]


def tags_for(is_spike, status):
    tags = []
    if is_spike:
        tags.append("spike")
    if status >= 500:
        tags.append("server-error")
    elif status >= 400:
        tags.append("client-error")
    return tags


def sanitize_headers(headers):
    clean = {}
    for key, value in (headers or {}).items():
        key = key.lower()
        clean[key] = "[redacted]" if key in REDACTED_HEADERS else value
    return clean


class TrafficRecorder:
    def __init__(self, store, spike_detector, geo_locator=None,
                 high_risk_countries=HIGH_RISK_COUNTRIES, excluded_prefixes=()):
        self.store = store
        self.spike_detector = spike_detector
        self.geo_locator = geo_locator
        self.high_risk_countries = tuple(high_risk_countries)
        self.excluded_prefixes = tuple(excluded_prefixes)

    def should_record(self, path):
        return not any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    def _lookup_geo(self, ip):
        if self.geo_locator is None:
            return None
        try:
            return self.geo_locator.lookup(ip)
        except Exception as e:
            logger.warning(f"Geo lookup raised for {ip}: {e}")
            return None

    def _check_spike(self, ip, now):
        try:
            spike = self.spike_detector.is_spike(ip, now)
        except Exception as e:
            logger.warning(f"Spike check failed for {ip}: {e}")
            return False
        TRACKED_SOURCES.set(len(self.spike_detector.active_sources()))
        return spike

    def record(self, method, path, status, headers, ip, user_agent, session_id,
               user_id=None, started_at=None, now=None):
        """
        Capture one completed request as a TrafficEvent.
        Never raises: failures are logged and None is returned.
        """
        if now is None:
            now = time.time()
        if started_at is None:
            started_at = now

        try:
            # The geo lookup can block; take the spike reading first
            is_spike = self._check_spike(ip, now)
            geo = self._lookup_geo(ip)

            score, reasons = score_request(
                method, path, status, geo, is_spike, user_agent,
                high_risk_countries=self.high_risk_countries
            )

            event = TrafficEventCreate(
                ip=ip,
                method=method,
                path=path,
                status=status,
                user_agent=user_agent or "",
                headers=sanitize_headers(headers),
                session_id=session_id,
                user_id=user_id,
                geo=geo,
                module=module_for_path(path),
                is_spike=is_spike,
                tags=tags_for(is_spike, status),
                anomaly_score=score,
                anomaly_reasons=reasons,
                duration_ms=round(max(0.0, now - started_at) * 1000, 3),
            )
            created = self.store.create_traffic_event(event)
        except Exception as e:
            TRAFFIC_RECORD_FAILURES.inc()
            logger.error(f"Traffic event save error for {method} {path}: {e}")
            return None

        TRAFFIC_EVENTS_RECORDED.labels(module=event.module).inc()
        ANOMALY_SCORE.observe(score)
        if is_spike:
            SPIKES_DETECTED.inc()
            logger.warning("Traffic spike from %s on %s %s", ip, method, path)
        return created
