import threading
from collections import defaultdict, deque

import pytest

from scanworker import create_app
from scanworker.errors import ExecutionError
from scanworker.extensions import db
from scanworker.jobqueue import RedisJobQueue
from scanworker.models import ScanRecord
from scanworker.scanner.base import BaseAdapter, RawFinding, RawResult


class FakeRedis:
    """In-process stand-in for the handful of list commands the queue uses."""

    def __init__(self):
        self._lists = defaultdict(deque)
        self._cond = threading.Condition()

    def lpush(self, key, *values):
        with self._cond:
            for value in values:
                self._lists[key].appendleft(value)
            self._cond.notify_all()
            return len(self._lists[key])

    def brpop(self, key, timeout=0):
        with self._cond:
            if not self._lists[key]:
                self._cond.wait(timeout=min(timeout or 0.05, 0.05))
            if not self._lists[key]:
                return None
            return key, self._lists[key].pop()

    def llen(self, key):
        with self._cond:
            return len(self._lists[key])

    def lrange(self, key, start, end):
        with self._cond:
            items = list(self._lists[key])
        end = len(items) if end == -1 else end + 1
        return items[start:end]


def zap_alert(name="Cross Site Scripting", risk="High", url="https://example.com/", **extra):
    alert = {
        "name": name,
        "risk": risk,
        "confidence": "Medium",
        "description": f"{name} description",
        "solution": "Fix it",
        "reference": "https://owasp.org",
        "pluginId": "40012",
        "cweid": "79",
        "wascid": "8",
        "url": url,
        "method": "GET",
        "param": "q",
        "attack": "<script>",
        "evidence": "<script>",
        "otherinfo": "",
        "messageId": "17",
    }
    alert.update(extra)
    return alert


class FakeAdapter(BaseAdapter):
    """
    Adapter double with ZAP-shaped alerts, per-stage failure injection and
    a record of every hook call.

    alerts_by_context maps a context name to the alerts collect() returns;
    anything else gets default_alerts.
    """

    def __init__(self, name="zap", default_alerts=None, fail_on=None, alerts_by_context=None):
        self._name = name
        self.default_alerts = list(default_alerts or [])
        self.alerts_by_context = dict(alerts_by_context or {})
        self.fail_on = fail_on
        self.calls = []
        self.scanned = []
        self.released = []

    @property
    def name(self):
        return self._name

    def context_name(self, scan_id):
        return f"scan-{scan_id}"

    def _stage(self, stage):
        self.calls.append(stage)
        if self.fail_on == stage:
            raise ExecutionError(self.name, f"{self.name} {stage} exploded")

    def build_invocation(self, targets, options):
        return {"targets": list(targets)}

    def execute(self, targets, options=None):
        return self.parse_results(self.default_alerts)

    def parse_results(self, raw_output):
        return RawResult(
            adapter_name=self.name,
            findings=[RawFinding(source=self.name, data=a) for a in raw_output or []],
        )

    def acquire(self, context, targets):
        self._stage("acquire")

    def scan_target(self, target, options, context):
        self._stage("scan_target")
        self.scanned.append((context, target))
        return RawResult(adapter_name=self.name)

    def collect(self, context):
        self._stage("collect")
        return self.parse_results(self.alerts_by_context.get(context, self.default_alerts))

    def release(self, context):
        self.released.append(context)
        if self.fail_on == "release":
            raise ExecutionError(self.name, "release exploded")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(tmp_path, fake_redis):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'scans.db'}",
        "SCAN_ADAPTERS": ["zap"],
        "POLL_INTERVAL_MS": 1,
        "POLL_MAX_ATTEMPTS": 5,
    })
    app.extensions["scan_queue"] = RedisJobQueue(
        fake_redis,
        queue_name="scans",
        notification_queue="scan-notifications",
        max_attempts=3,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def queue(app):
    return app.extensions["scan_queue"]


@pytest.fixture
def make_scan(app):
    def _make(target_urls=("https://example.com",), **fields):
        record = ScanRecord(target_urls=list(target_urls), **fields)
        db.session.add(record)
        db.session.commit()
        return record

    return _make


def job_payload(scan_id, target_urls=("https://example.com",), **request):
    return {"scanId": scan_id, "request": {"targetUrls": list(target_urls), **request}}
