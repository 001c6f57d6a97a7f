import html
import json
import logging
import queue
import threading
from datetime import datetime

import requests

from secmon.monitoring.metrics import DISPATCH_FAILURES

logger = logging.getLogger(__name__)

NEW_ALERT_EVENT = "new-alert"


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


class AlertDispatcher:
    """
    Delivers a persisted alert to every notification channel.
    Each channel fails on its own; dispatch() never raises.
    """

    def __init__(self, broadcaster=None, mailer=None, admin_email=None,
                 frontend_url="", webhook_url=None):
        self.broadcaster = broadcaster
        self.mailer = mailer
        self.admin_email = admin_email
        self.frontend_url = (frontend_url or "").rstrip("/")
        self.webhook_url = webhook_url

    def set_webhook(self, url):
        self.webhook_url = url or None

    def dispatch(self, alert, log, recipient=None):
        self._broadcast(alert)
        self._email(alert, log, recipient)
        if self.webhook_url:
            self._post_to_webhook(alert, log)

    def _broadcast(self, alert):
        if self.broadcaster is None:
            return
        payload = {
            "id": alert.id,
            "severity": alert.severity.value,
            "title": alert.title,
            "description": alert.description,
            "createdAt": _iso(alert.created_at),
            "keywords": list(alert.keywords),
        }
        try:
            self.broadcaster.emit(NEW_ALERT_EVENT, payload)
        except Exception as e:
            DISPATCH_FAILURES.labels(channel="broadcast").inc()
            logger.error(f"Alert broadcast failed for alert {alert.id}: {e}")

    def _email(self, alert, log, recipient=None):
        if self.mailer is None:
            return
        to = recipient or self.admin_email
        if not to:
            logger.warning("No email recipient configured, skipping mail for alert %s", alert.id)
            return

        try:
            sent = self.mailer.send(
                to=to,
                subject=f"[{alert.severity.value.upper()}] Security Alert - {alert.title}",
                html=self.render_email(alert, log),
            )
        except Exception as e:
            sent = False
            logger.error(f"Alert email failed for alert {alert.id}: {e}")

        if sent:
            logger.info("Alert %s mailed to %s", alert.id, to)
        else:
            DISPATCH_FAILURES.labels(channel="email").inc()

    def render_email(self, alert, log):
        keywords = ""
        if alert.keywords:
            keywords = f"<p><strong>Keywords:</strong> {html.escape(', '.join(alert.keywords))}</p>"
        timestamp = log.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z').strip()
        return (
            '<div style="font-family: Arial; padding: 20px;">'
            "<h2>Security Alert</h2>"
            f"<p><strong>Severity:</strong> {alert.severity.value.upper()}</p>"
            f"<p><strong>Message:</strong> {html.escape(log.message)}</p>"
            f"<p><strong>Time:</strong> {timestamp}</p>"
            f"{keywords}"
            f'<a href="{html.escape(self.frontend_url)}/alerts">View Alert</a>'
            "</div>"
        )

    def _post_to_webhook(self, alert, log):
        payload = {
            "text": f"**Security Alert** ({alert.severity.value.upper()})\n\n"
                    f"**Title:** {alert.title}\n"
                    f"**Message:** {log.message}\n"
                    f"**Keywords:** {', '.join(alert.keywords)}\n"
                    f"**Time:** {log.timestamp.strftime('%Y-%m-%d %H:%M:%S')}"
        }
        try:
            response = requests.post(
                self.webhook_url,
                data=json.dumps(payload),
                headers={'Content-Type': 'application/json'},
                timeout=5
            )
            if response.status_code >= 300:
                DISPATCH_FAILURES.labels(channel="webhook").inc()
                logger.error(f"Failed to send alert webhook: {response.status_code} {response.text}")
        except requests.RequestException as e:
            DISPATCH_FAILURES.labels(channel="webhook").inc()
            logger.error(f"Alert webhook error: {e}")


class AlertWorker:
    """
    Runs alert dispatch off the request path on a single daemon thread.
    While the worker is stopped, submit() dispatches inline.
    """

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self._queue = queue.Queue()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="alert-dispatch", daemon=True)
        self._thread.start()
        logger.info("Alert dispatch worker started")

    def stop(self, timeout=5):
        if not self.running:
            return
        self._queue.put(None)
        self._thread.join(timeout)
        self._thread = None
        logger.info("Alert dispatch worker stopped")

    def submit(self, alert, log, recipient=None):
        if self.running:
            self._queue.put((alert, log, recipient))
        else:
            self._dispatch(alert, log, recipient)

    def drain(self):
        """Block until everything submitted so far has been dispatched."""
        self._queue.join()

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                self._dispatch(*item)
            finally:
                self._queue.task_done()

    def _dispatch(self, alert, log, recipient):
        try:
            self.dispatcher.dispatch(alert, log, recipient)
        except Exception as e:
            logger.exception(f"Alert dispatch crashed for alert {alert.id}: {e}")
