import logging
from datetime import datetime, timedelta, timezone

import pandas as pd
from sqlalchemy import String, cast, or_

from secmon.database import Base, SessionLocal, engine as default_engine
from secmon.models import AlertDB, LogDB, TrafficEventDB
from secmon.schemas import Alert, LogRecord, TrafficEvent

logger = logging.getLogger(__name__)

TRAFFIC_COLUMNS = [
    "id", "created_at", "ip", "method", "path", "status", "user_agent", "session_id",
    "user_id", "module", "is_spike", "tags", "anomaly_score", "anomaly_reasons",
    "duration_ms", "country",
]


def _naive_utc(value):
    # SQLite hands back naive datetimes; compare in naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DataManager:
    def __init__(self, session_factory=None, engine=None):
        self.Session = session_factory or SessionLocal
        self._initialize_db(engine or default_engine)

    def _initialize_db(self, engine):
        Base.metadata.create_all(bind=engine)

    # ------------------------------------------------------------------
    # Traffic events
    # ------------------------------------------------------------------
    def create_traffic_event(self, event):
        """Persist a TrafficEventCreate. Events are never updated afterwards."""
        session = self.Session()
        try:
            data = event.model_dump()
            entry = TrafficEventDB(**data)
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return TrafficEvent.model_validate(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _traffic_query(self, session, search=None, ip=None, country=None, method=None,
                       path=None, status=None, spike=None, min_anomaly=None):
        q = session.query(TrafficEventDB)
        if search:
            pattern = f"%{search}%"
            q = q.filter(or_(
                TrafficEventDB.ip.ilike(pattern),
                TrafficEventDB.path.ilike(pattern),
                TrafficEventDB.user_agent.ilike(pattern),
                TrafficEventDB.geo["country"].as_string().ilike(pattern),
            ))
        if ip:
            q = q.filter(TrafficEventDB.ip == ip)
        if country:
            q = q.filter(TrafficEventDB.geo["country"].as_string() == country)
        if method:
            q = q.filter(TrafficEventDB.method == method.upper())
        if path:
            q = q.filter(TrafficEventDB.path.ilike(f"%{path}%"))
        if status is not None:
            q = q.filter(TrafficEventDB.status == status)
        if spike:
            q = q.filter(TrafficEventDB.is_spike.is_(True))
        if min_anomaly is not None:
            q = q.filter(TrafficEventDB.anomaly_score >= min_anomaly)
        return q

    def list_traffic(self, page=1, limit=50, **filters):
        session = self.Session()
        try:
            q = self._traffic_query(session, **filters)
            total = q.count()
            rows = (q.order_by(TrafficEventDB.created_at.desc(), TrafficEventDB.id.desc())
                    .offset((page - 1) * limit).limit(limit).all())
            return [TrafficEvent.model_validate(r) for r in rows], total
        finally:
            session.close()

    def get_traffic_event(self, event_id):
        session = self.Session()
        try:
            row = session.get(TrafficEventDB, event_id)
            return TrafficEvent.model_validate(row) if row else None
        finally:
            session.close()

    def recent_spikes(self, since, limit=20):
        session = self.Session()
        try:
            rows = (session.query(TrafficEventDB)
                    .filter(TrafficEventDB.is_spike.is_(True),
                            TrafficEventDB.created_at >= _naive_utc(since))
                    .order_by(TrafficEventDB.created_at.desc())
                    .limit(limit).all())
            return [TrafficEvent.model_validate(r) for r in rows]
        finally:
            session.close()

    def delete_traffic(self, ids=None):
        """Bulk delete by id; with no ids every event goes."""
        session = self.Session()
        try:
            q = session.query(TrafficEventDB)
            if ids:
                q = q.filter(TrafficEventDB.id.in_(ids))
            deleted = q.delete(synchronize_session=False)
            session.commit()
            return deleted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_traffic_before(self, cutoff):
        session = self.Session()
        try:
            deleted = (session.query(TrafficEventDB)
                       .filter(TrafficEventDB.created_at < _naive_utc(cutoff))
                       .delete(synchronize_session=False))
            session.commit()
            return deleted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_traffic(self, limit=10000, **filters):
        """Load recent traffic into a DataFrame for stats and export."""
        session = self.Session()
        try:
            rows = (self._traffic_query(session, **filters)
                    .order_by(TrafficEventDB.created_at.desc())
                    .limit(limit).all())
            records = []
            for r in rows:
                records.append({
                    "id": r.id,
                    "created_at": r.created_at,
                    "ip": r.ip,
                    "method": r.method,
                    "path": r.path,
                    "status": r.status,
                    "user_agent": r.user_agent,
                    "session_id": r.session_id,
                    "user_id": r.user_id,
                    "module": r.module,
                    "is_spike": bool(r.is_spike),
                    "tags": r.tags or [],
                    "anomaly_score": r.anomaly_score,
                    "anomaly_reasons": r.anomaly_reasons or [],
                    "duration_ms": r.duration_ms,
                    "country": (r.geo or {}).get("country"),
                })
            return pd.DataFrame(records, columns=TRAFFIC_COLUMNS)
        finally:
            session.close()

    def traffic_stats(self, now=None):
        now = _naive_utc(now or datetime.now(timezone.utc))
        df = self.load_traffic(limit=None)
        if df.empty:
            return {
                "total": 0,
                "unique_ips": 0,
                "by_country": [],
                "by_method": [],
                "last_1h_spikes": 0,
                "recent_spikes": [],
                "high_anomalies_24h": 0,
                "avg_anomaly_score": 0.0,
            }

        created = pd.to_datetime(df["created_at"])
        by_country = df["country"].fillna("Unknown").value_counts().head(10)
        by_method = df["method"].value_counts()
        spikes = df[df["is_spike"]]

        return {
            "total": int(len(df)),
            "unique_ips": int(df["ip"].nunique()),
            "by_country": [{"country": k, "count": int(v)} for k, v in by_country.items()],
            "by_method": [{"method": k, "count": int(v)} for k, v in by_method.items()],
            "last_1h_spikes": int((df["is_spike"] & (created >= now - timedelta(hours=1))).sum()),
            "recent_spikes": spikes.head(20)["id"].astype(int).tolist(),
            "high_anomalies_24h": int(((df["anomaly_score"] >= 70) & (created >= now - timedelta(hours=24))).sum()),
            "avg_anomaly_score": round(float(df["anomaly_score"].mean()), 2),
        }

    # ------------------------------------------------------------------
    # Logs and alerts
    # ------------------------------------------------------------------
    def create_log(self, log):
        session = self.Session()
        try:
            entry = LogDB(**log.model_dump(exclude={"id"}))
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return LogRecord.model_validate(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_logs(self, page=1, limit=50, q=None, level=None, start=None, end=None, archived=False):
        session = self.Session()
        try:
            query = session.query(LogDB).filter(LogDB.archived.is_(archived))
            if q:
                pattern = f"%{q}%"
                query = query.filter(or_(
                    LogDB.message.ilike(pattern),
                    cast(LogDB.keywords, String).ilike(pattern),
                ))
            if level and level != "all":
                query = query.filter(LogDB.level == level.lower())
            if start is not None:
                query = query.filter(LogDB.timestamp >= _naive_utc(start))
            if end is not None:
                query = query.filter(LogDB.timestamp <= _naive_utc(end))
            total = query.count()
            rows = (query.order_by(LogDB.timestamp.desc(), LogDB.id.desc())
                    .offset((page - 1) * limit).limit(limit).all())
            return [LogRecord.model_validate(r) for r in rows], total
        finally:
            session.close()

    def log_stats(self):
        session = self.Session()
        try:
            rows = session.query(LogDB.level, LogDB.archived).all()
        finally:
            session.close()

        df = pd.DataFrame(rows, columns=["level", "archived"])
        live = df[~df["archived"].astype(bool)]
        by_level = live["level"].value_counts()
        return {
            "total": int(len(live)),
            "errors": int(by_level.get("error", 0)),
            "warnings": int(by_level.get("warning", 0)),
            "suspicious": int(by_level.get("suspicious", 0)),
            "archived": int(len(df) - len(live)),
            "by_level": [{"level": k, "count": int(v)} for k, v in by_level.items()],
        }

    def _update_logs(self, query_filter, **changes):
        session = self.Session()
        try:
            updated = (session.query(LogDB).filter(*query_filter)
                       .update(changes, synchronize_session=False))
            session.commit()
            return updated
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def archive_logs(self, ids=None, older_than=None):
        """Archive the given logs, or every live log older than ``older_than``."""
        if ids:
            condition = LogDB.id.in_(ids)
        elif older_than is not None:
            condition = LogDB.timestamp < _naive_utc(older_than)
        else:
            return 0
        return self._update_logs(
            (condition, LogDB.archived.is_(False)),
            archived=True, archived_at=datetime.now(timezone.utc),
        )

    def restore_logs(self, ids):
        if not ids:
            return 0
        return self._update_logs(
            (LogDB.id.in_(ids), LogDB.archived.is_(True)),
            archived=False, archived_at=None,
        )

    def _delete_logs(self, query_filter):
        session = self.Session()
        try:
            log_ids = [r.id for r in session.query(LogDB.id).filter(*query_filter).all()]
            if not log_ids:
                return 0
            # Alerts reference their log, so they go first
            (session.query(AlertDB).filter(AlertDB.log_id.in_(log_ids))
             .delete(synchronize_session=False))
            deleted = (session.query(LogDB).filter(LogDB.id.in_(log_ids))
                       .delete(synchronize_session=False))
            session.commit()
            return deleted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_logs(self, ids):
        if not ids:
            return 0
        return self._delete_logs((LogDB.id.in_(ids),))

    def delete_log(self, log_id):
        return self.delete_logs([log_id]) == 1

    def cleanup_archived_logs(self, cutoff):
        """Purge archived logs archived before ``cutoff``."""
        return self._delete_logs((LogDB.archived.is_(True), LogDB.archived_at < _naive_utc(cutoff)))

    def create_alert(self, alert):
        session = self.Session()
        try:
            entry = AlertDB(
                log_id=alert.log_id,
                severity=alert.severity.value,
                title=alert.title,
                description=alert.description,
                keywords=list(alert.keywords),
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return Alert.model_validate(entry)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_alerts(self, acknowledged=None, severity=None, limit=100):
        session = self.Session()
        try:
            q = session.query(AlertDB)
            if acknowledged is not None:
                q = q.filter(AlertDB.acknowledged.is_(acknowledged))
            if severity:
                q = q.filter(AlertDB.severity == severity)
            rows = q.order_by(AlertDB.created_at.desc(), AlertDB.id.desc()).limit(limit).all()
            return [Alert.model_validate(r) for r in rows]
        finally:
            session.close()

    def _update_alert(self, alert_id, **changes):
        session = self.Session()
        try:
            row = session.get(AlertDB, alert_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return Alert.model_validate(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def acknowledge_alert(self, alert_id, acknowledged_by=None):
        return self._update_alert(
            alert_id,
            acknowledged=True,
            acknowledged_by=acknowledged_by,
            acknowledged_at=datetime.now(timezone.utc),
        )

    def resolve_alert(self, alert_id):
        return self._update_alert(alert_id, resolved=True, resolved_at=datetime.now(timezone.utc))

    def delete_alerts(self, ids):
        if not ids:
            return 0
        session = self.Session()
        try:
            deleted = (session.query(AlertDB).filter(AlertDB.id.in_(ids))
                       .delete(synchronize_session=False))
            session.commit()
            return deleted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_alert(self, alert_id):
        session = self.Session()
        try:
            row = session.get(AlertDB, alert_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
