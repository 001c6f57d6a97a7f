import logging

from secmon.schemas import AlertCreate, Severity

logger = logging.getLogger(__name__)

# Free-text terms that make a log worth an alert
RISK_TERMS = (
    "critical",
    "vulnerability",
    "exploit",
    "sql injection",
    "xss",
    "csrf",
    "malware",
    "virus",
    "hack",
    "breach",
    "attack",
    "intrusion",
    "malicious",
    "phishing",
    "backdoor",
    "trojan",
    "ransomware",
    "ddos",
    "brute force",
    "injection",
    "shell",
    "payload",
    "penetration",
    "unauthorized",
    "high",
    "medium",
    "low",
    "error",
    "warning",
    "suspicious",
)

ALERT_LEVELS = ("warning", "error", "suspicious")

CRITICAL_TERMS = {"critical", "exploit", "breach", "attack"}
HIGH_TERMS = {"sql injection", "xss", "malware", "virus", "hack"}
MEDIUM_TERMS = {"unauthorized", "intrusion"}


def find_risk_terms(message, keywords):
    """
    Risk terms found in the message, or overlapping a keyword in either
    direction ("sql" matches "sql injection" and vice versa).
    """
    text = (message or "").lower()
    tags = [k.lower() for k in (keywords or []) if k and k.strip()]

    found = []
    for term in RISK_TERMS:
        if term in text or any(term in tag or tag in term for tag in tags):
            found.append(term)
    return found


def assign_severity(level, found_terms):
    found = set(found_terms)
    if level == "suspicious" or found & CRITICAL_TERMS:
        return Severity.CRITICAL
    if found & HIGH_TERMS or level == "error":
        return Severity.HIGH
    if found & MEDIUM_TERMS or level == "warning":
        return Severity.MEDIUM
    return Severity.LOW


def should_alert(level, found_terms):
    return bool(found_terms) or level in ALERT_LEVELS


class SuspiciousActivityClassifier:
    """
    Turns suspicious log records into persisted alerts.

    store: anything with ``create_alert(AlertCreate) -> Alert``.
    dispatcher: anything with ``submit(alert, log, recipient)``; the alert is
    handed over after it has been persisted.
    """

    def __init__(self, store, dispatcher=None):
        self.store = store
        self.dispatcher = dispatcher

    def classify(self, log, recipient=None):
        found_terms = find_risk_terms(log.message, log.keywords)
        if not should_alert(log.level, found_terms):
            return None

        severity = assign_severity(log.level, found_terms)
        logger.info("Log %s classified as suspicious (%s): %s", log.id, severity.value, found_terms)

        try:
            alert = self.store.create_alert(AlertCreate(
                log_id=log.id,
                severity=severity,
                title=f"Suspicious Activity Detected: {log.level.upper()}",
                description=log.message,
                keywords=found_terms if found_terms else [log.level],
            ))
        except Exception as e:
            logger.error(f"Could not persist alert for log {log.id}: {e}")
            return None

        if alert is None:
            return None

        if self.dispatcher is not None:
            try:
                self.dispatcher.submit(alert, log, recipient)
            except Exception as e:
                logger.error(f"Could not hand alert {alert.id} to dispatcher: {e}")

        return alert
