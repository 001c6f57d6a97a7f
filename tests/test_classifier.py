from secmon.detection.classifier import (
    SuspiciousActivityClassifier, assign_severity, find_risk_terms
)
from secmon.schemas import LogRecord, Severity


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def submit(self, alert, log, recipient=None):
        self.calls.append((alert, log, recipient))


class BrokenStore:
    def create_alert(self, alert):
        raise RuntimeError("database is locked")


def test_find_risk_terms_in_message():
    assert find_risk_terms("Possible SQL Injection detected in query", []) == ["sql injection", "injection"]
    assert find_risk_terms("user logged in", []) == []
    assert find_risk_terms(None, None) == []


def test_keyword_overlap_matches_in_both_directions():
    # keyword inside a term
    assert "sql injection" in find_risk_terms("", ["SQL"])
    # term inside a keyword
    assert find_risk_terms("", ["brute force attempt"]) == ["brute force"]


def test_blank_keywords_are_ignored():
    assert find_risk_terms("hello", ["", "   "]) == []


def test_severity_priority_order():
    assert assign_severity("suspicious", []) == Severity.CRITICAL
    assert assign_severity("info", ["exploit"]) == Severity.CRITICAL
    assert assign_severity("error", ["breach", "xss"]) == Severity.CRITICAL
    assert assign_severity("info", ["sql injection", "injection"]) == Severity.HIGH
    assert assign_severity("error", []) == Severity.HIGH
    assert assign_severity("warning", ["xss"]) == Severity.HIGH
    assert assign_severity("info", ["unauthorized"]) == Severity.MEDIUM
    assert assign_severity("warning", []) == Severity.MEDIUM
    assert assign_severity("info", ["phishing"]) == Severity.LOW


def test_benign_info_log_raises_nothing(store, make_log):
    dispatcher = RecordingDispatcher()
    classifier = SuspiciousActivityClassifier(store, dispatcher)

    log = make_log(level="info", message="user logged in")
    assert classifier.classify(log) is None
    assert dispatcher.calls == []
    assert store.list_alerts() == []


def test_error_log_without_terms_is_high(store, make_log):
    dispatcher = RecordingDispatcher()
    classifier = SuspiciousActivityClassifier(store, dispatcher)

    log = make_log(level="error", message="unexpected failure")
    alert = classifier.classify(log)

    assert alert.severity == Severity.HIGH
    assert alert.title == "Suspicious Activity Detected: ERROR"
    assert alert.description == "unexpected failure"
    assert alert.keywords == ["error"]
    assert alert.log_id == log.id
    assert [a.id for a in store.list_alerts()] == [alert.id]


def test_sql_injection_on_info_log_is_high_not_critical(store, make_log):
    classifier = SuspiciousActivityClassifier(store, RecordingDispatcher())
    log = make_log(level="info", message="possible sql injection detected in query")

    alert = classifier.classify(log)
    assert alert.severity == Severity.HIGH
    assert alert.keywords == ["sql injection", "injection"]
    assert alert.title == "Suspicious Activity Detected: INFO"


def test_suspicious_level_is_critical(store, make_log):
    classifier = SuspiciousActivityClassifier(store, RecordingDispatcher())
    alert = classifier.classify(make_log(level="suspicious", message="odd login pattern"))
    assert alert.severity == Severity.CRITICAL


def test_log_without_message_degrades_gracefully(store, make_log):
    classifier = SuspiciousActivityClassifier(store, RecordingDispatcher())
    log = make_log(level="warning", message=None)
    alert = classifier.classify(log)
    assert alert.severity == Severity.MEDIUM
    assert alert.keywords == ["warning"]
    assert alert.description == ""


def test_alert_is_handed_to_dispatcher_with_recipient(store, make_log):
    dispatcher = RecordingDispatcher()
    classifier = SuspiciousActivityClassifier(store, dispatcher)
    log = make_log(level="warning", message="unauthorized access to /admin")

    alert = classifier.classify(log, recipient="owner@example.com")

    assert len(dispatcher.calls) == 1
    sent_alert, sent_log, recipient = dispatcher.calls[0]
    assert sent_alert.id == alert.id
    assert sent_log.id == log.id
    assert recipient == "owner@example.com"


def test_persistence_failure_skips_dispatch():
    dispatcher = RecordingDispatcher()
    classifier = SuspiciousActivityClassifier(BrokenStore(), dispatcher)
    log = LogRecord(id=7, level="error", message="exploit attempt")

    assert classifier.classify(log) is None
    assert dispatcher.calls == []


def test_unpersisted_log_cannot_raise_an_alert(store):
    dispatcher = RecordingDispatcher()
    classifier = SuspiciousActivityClassifier(store, dispatcher)

    assert classifier.classify(LogRecord(level="error", message="boom")) is None
    assert dispatcher.calls == []
