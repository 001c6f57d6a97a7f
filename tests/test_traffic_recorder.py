import requests

from secmon.detection.spike import SlidingWindowSpikeDetector
from secmon.schemas import GeoLocation
from secmon.utils import geo as geo_module
from secmon.utils import mailer as mailer_module
from secmon.utils.geo import GeoLocator
from secmon.utils.mailer import Mailer
from secmon.utils.traffic_recorder import (
    TrafficRecorder, module_for_path, sanitize_headers, tags_for
)

BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/124.0"


class StubGeo:
    def __init__(self, result=None, fail=False):
        self.result = result
        self.fail = fail
        self.calls = []

    def lookup(self, ip):
        self.calls.append(ip)
        if self.fail:
            raise TimeoutError("geo backend timed out")
        return self.result


class BrokenStore:
    def create_traffic_event(self, event):
        raise RuntimeError("disk full")


def make_recorder(store, geo=None, threshold=10, excluded=("/api/traffic",)):
    return TrafficRecorder(
        store,
        SlidingWindowSpikeDetector(window_seconds=8.0, threshold=threshold),
        geo_locator=geo or StubGeo(),
        excluded_prefixes=excluded,
    )


def record(recorder, **overrides):
    data = dict(
        method="GET",
        path="/products",
        status=200,
        headers={"Host": "shop.example.com", "User-Agent": BROWSER_UA},
        ip="8.8.8.8",
        user_agent=BROWSER_UA,
        session_id="sess-1",
        user_id=None,
        started_at=100.0,
        now=100.25,
    )
    data.update(overrides)
    return recorder.record(**data)


def test_records_enriched_event(store):
    geo = StubGeo(GeoLocation(country="CN", country_name="China", city="Beijing"))
    recorder = make_recorder(store, geo=geo)

    event = record(recorder, method="POST", path="/api/orders?id=1 union select", status=502,
                   user_id="user-42")

    assert geo.calls == ["8.8.8.8"]
    assert event.id is not None
    assert event.module == "orders"
    assert event.is_spike is False
    assert event.tags == ["server-error"]
    assert event.anomaly_score == 30 + 5 + 15 + 10
    assert event.anomaly_reasons == [
        "5xx server error",
        "Write operation (POST)",
        "Suspicious pattern in path (possible injection/XSS)",
        "High-risk geo region: CN",
    ]
    assert event.duration_ms == 250.0
    assert event.geo.city == "Beijing"
    assert event.user_id == "user-42"
    assert event.session_id == "sess-1"
    assert event.headers["host"] == "shop.example.com"

    stored = store.get_traffic_event(event.id)
    assert stored.anomaly_score == event.anomaly_score


def test_spike_is_tagged(store):
    recorder = make_recorder(store, threshold=3)
    results = [record(recorder, now=100.0 + i, status=404) for i in range(3)]

    assert [e.is_spike for e in results] == [False, False, True]
    assert results[-1].tags == ["spike", "client-error"]
    assert results[-1].anomaly_reasons[0] == "High request rate (spike)"
    assert results[-1].anomaly_score == 40 + 20


def test_geo_failure_degrades_to_no_geo(store):
    recorder = make_recorder(store, geo=StubGeo(fail=True))
    event = record(recorder)
    assert event is not None
    assert event.geo is None
    assert event.anomaly_score == 0


def test_persistence_failure_is_swallowed():
    recorder = make_recorder(BrokenStore())
    assert record(recorder) is None


def test_spike_check_failure_counts_as_no_spike(store):
    class BrokenDetector(SlidingWindowSpikeDetector):
        def is_spike(self, source_id, now=None):
            raise RuntimeError("lock poisoned")

    recorder = TrafficRecorder(store, BrokenDetector())
    event = record(recorder)
    assert event.is_spike is False


def test_exclusion_prefixes():
    recorder = make_recorder(None, excluded=("/api/traffic", "/metrics"))
    assert recorder.should_record("/api/products")
    assert recorder.should_record("/")
    assert not recorder.should_record("/api/traffic/stats")
    assert not recorder.should_record("/metrics")


def test_module_for_path():
    assert module_for_path("/") == "root"
    assert module_for_path("/api") == "api"
    assert module_for_path("/api/products/7?x=1") == "products"
    assert module_for_path("/login") == "login"


def test_tags_for():
    assert tags_for(False, 200) == []
    assert tags_for(True, 200) == ["spike"]
    assert tags_for(False, 499) == ["client-error"]
    assert tags_for(True, 500) == ["spike", "server-error"]


def test_sanitize_headers_redacts_credentials():
    headers = sanitize_headers({"Authorization": "Bearer abc", "Cookie": "sid=1", "X-API-Key": "k",
                                "Accept-Language": "en"})
    assert headers == {
        "authorization": "[redacted]",
        "cookie": "[redacted]",
        "x-api-key": "[redacted]",
        "accept-language": "en",
    }


def test_geo_locator_local_and_invalid_addresses():
    locator = GeoLocator()
    assert locator.lookup("127.0.0.1").country == "Local"
    assert locator.lookup("::1").city == "Localhost"
    assert locator.lookup("10.1.2.3").country == "Local"
    assert locator.lookup("testclient") is None
    assert locator.lookup("") is None


def test_geo_locator_parses_ip_api_response(monkeypatch):
    class Response:
        def json(self):
            return {"status": "success", "country": "Russia", "countryCode": "RU", "city": "Moscow",
                    "regionName": "Moscow", "isp": "Example ISP", "lat": 55.75, "lon": 37.61}

    calls = {}

    def fake_get(url, timeout=None):
        calls.update(url=url, timeout=timeout)
        return Response()

    monkeypatch.setattr(geo_module.requests, "get", fake_get)
    geo = GeoLocator(timeout=1.5).lookup("8.8.8.8")

    assert calls == {"url": "http://ip-api.com/json/8.8.8.8", "timeout": 1.5}
    assert geo.country == "RU"
    assert geo.country_name == "Russia"
    assert geo.lat == 55.75


def test_geo_locator_failures_return_none(monkeypatch):
    def timeout(url, timeout=None):
        raise requests.Timeout("slow")

    monkeypatch.setattr(geo_module.requests, "get", timeout)
    assert GeoLocator().lookup("8.8.8.8") is None

    class Failed:
        def json(self):
            return {"status": "fail", "message": "reserved range"}

    monkeypatch.setattr(geo_module.requests, "get", lambda url, timeout=None: Failed())
    assert GeoLocator().lookup("8.8.8.8") is None

    assert GeoLocator(enabled=False).lookup("8.8.8.8") is None


def test_unconfigured_mailer_is_a_no_op():
    assert Mailer().send("admin@example.com", "subject", "<p>hi</p>") is False


def test_mailer_sends_to_bare_address(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host, self.port = host, port

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    mailer = Mailer(host="smtp.example.com", username="alerts@example.com", password="pw")

    assert mailer.send("Admin <admin@example.com>", "[HIGH] alert", "<p>hi</p>") is True
    assert sent[0]["To"] == "admin@example.com"
    assert sent[0]["From"] == "alerts@example.com"


def test_mailer_reports_smtp_failure(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no smtp")

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", refuse)
    mailer = Mailer(host="smtp.example.com", sender="alerts@example.com")
    assert mailer.send("admin@example.com", "s", "<p>x</p>") is False


def test_retention_deletes_old_events(store):
    from datetime import datetime, timedelta, timezone

    recorder = make_recorder(store)
    record(recorder)
    record(recorder, ip="1.1.1.1")

    assert store.delete_traffic_before(datetime.now(timezone.utc) - timedelta(days=1)) == 0
    assert store.delete_traffic_before(datetime.now(timezone.utc) + timedelta(minutes=1)) == 2


def test_stats_on_empty_store(store):
    stats = store.traffic_stats()
    assert stats["total"] == 0
    assert stats["by_country"] == []
    assert stats["avg_anomaly_score"] == 0.0


def test_spike_reading_is_taken_before_geo_lookup(store):
    seen = []

    class SlowGeo:
        def lookup(self, ip):
            seen.append(list(recorder.spike_detector.active_sources()))
            return None

    recorder = make_recorder(store, geo=SlowGeo())
    record(recorder, ip="9.9.9.9")

    assert seen == [["9.9.9.9"]]
