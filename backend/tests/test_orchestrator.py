import pytest

from scanworker.errors import (
    ExecutionError,
    InvalidInput,
    PersistenceError,
    ScanNotFound,
    TargetValidationError,
)
from scanworker.extensions import db
from scanworker.models import ScanFinding, ScanRecord
from scanworker.scanner.orchestrator import AdapterScope, ScanOrchestrator
from scanworker.scanner.store import ScanStore
from conftest import FakeAdapter, job_payload, zap_alert


def _reload(scan_id):
    db.session.expire_all()
    return db.session.get(ScanRecord, scan_id)


def _orchestrator(*adapters, notifications=None):
    notifier = notifications.append if notifications is not None else None
    return ScanOrchestrator(list(adapters), ScanStore(), notifier=notifier)


def test_successful_scan_persists_findings_and_counts(app, make_scan):
    record = make_scan(target_urls=["https://a.example", "https://b.example"], project_id="proj-1")
    adapter = FakeAdapter(default_alerts=[
        zap_alert(risk="High"),
        zap_alert(name="Cookie Without Secure Flag", risk="Low"),
        zap_alert(name="Server Leaks Version", risk="Informational"),
    ])
    notifications = []

    summary = _orchestrator(adapter, notifications=notifications).run_scan(
        job_payload(record.id, ["https://a.example", "https://b.example"])
    )

    record = _reload(record.id)
    assert record.status == "completed"
    assert record.error_message is None
    assert record.total_findings == 3
    assert record.high_count == 1
    assert record.low_count == 1
    assert record.info_count == 1
    assert record.max_risk_score == 3.0
    assert ScanFinding.query.filter_by(scan_id=record.id).count() == 3

    assert summary["totalFindings"] == 3
    assert summary["severityCounts"]["high"] == 1
    assert notifications == [{"scanId": record.id, "projectId": "proj-1"}]

    # targets in order, all inside the scan's own context, released once
    assert adapter.scanned == [
        (f"scan-{record.id}", "https://a.example"),
        (f"scan-{record.id}", "https://b.example"),
    ]
    assert adapter.calls == ["acquire", "scan_target", "scan_target", "collect"]
    assert adapter.released == [f"scan-{record.id}"]


def test_no_findings_completes_with_zero_stats(app, make_scan):
    record = make_scan()
    notifications = []

    summary = _orchestrator(FakeAdapter(), notifications=notifications).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "completed"
    assert record.total_findings == 0
    assert record.avg_risk_score == 0
    assert record.severity_counts == {"critical": 0, "high": 0, "medium": 0, "low": 0, "info": 0}
    assert summary["totalFindings"] == 0
    assert len(notifications) == 1


@pytest.mark.parametrize("stage", ["acquire", "scan_target", "collect"])
def test_failure_at_any_stage_marks_failed_and_releases_once(app, make_scan, stage):
    record = make_scan()
    adapter = FakeAdapter(default_alerts=[zap_alert()], fail_on=stage)
    notifications = []

    with pytest.raises(ExecutionError):
        _orchestrator(adapter, notifications=notifications).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "failed"
    assert record.error_message == f"zap {stage} exploded"
    assert record.completed_at is not None
    assert adapter.released == [f"scan-{record.id}"]
    assert ScanFinding.query.filter_by(scan_id=record.id).count() == 0
    assert notifications == []


def test_persistence_failure_marks_failed_and_releases(app, make_scan, monkeypatch):
    record = make_scan()
    adapter = FakeAdapter(default_alerts=[zap_alert()])
    store = ScanStore()

    def broken(*args, **kwargs):
        raise PersistenceError("Failed to store results: database is locked")

    monkeypatch.setattr(store, "store_scan_results", broken)

    with pytest.raises(PersistenceError):
        ScanOrchestrator([adapter], store).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "failed"
    assert "database is locked" in record.error_message
    assert adapter.released == [f"scan-{record.id}"]


def test_invalid_target_fails_scan_before_any_context_is_created(app, make_scan):
    record = make_scan(target_urls=["ftp://example.com"])
    adapter = FakeAdapter()

    with pytest.raises(TargetValidationError):
        _orchestrator(adapter).run_scan(job_payload(record.id, ["ftp://example.com"]))

    assert _reload(record.id).status == "failed"
    assert adapter.calls == []
    assert adapter.released == []


@pytest.mark.parametrize("payload", [
    None,
    {"request": {"targetUrls": ["https://example.com"]}},
    {"scanId": "x", "request": {}},
    {"scanId": "x", "request": {"targetUrls": "https://example.com"}},
])
def test_invalid_payload_is_rejected_without_side_effects(app, make_scan, payload):
    record = make_scan()
    adapter = FakeAdapter()

    with pytest.raises(InvalidInput):
        _orchestrator(adapter).run_scan(payload)

    assert _reload(record.id).status == "pending"
    assert adapter.calls == []


def test_unknown_scan_is_rejected_without_side_effects(app):
    adapter = FakeAdapter()
    with pytest.raises(ScanNotFound):
        _orchestrator(adapter).run_scan(job_payload("does-not-exist"))
    assert adapter.calls == []
    assert adapter.released == []


def test_release_failure_does_not_mask_success(app, make_scan):
    record = make_scan()
    adapter = FakeAdapter(default_alerts=[zap_alert()], fail_on="release")

    summary = _orchestrator(adapter).run_scan(job_payload(record.id))

    assert summary["status"] == "completed"
    assert _reload(record.id).status == "completed"
    assert adapter.released == [f"scan-{record.id}"]


def test_partial_acquire_releases_every_attempted_adapter(app, make_scan):
    record = make_scan()
    first = FakeAdapter(name="zap")
    second = FakeAdapter(name="nuclei", fail_on="acquire")
    third = FakeAdapter(name="katana")

    with pytest.raises(ExecutionError):
        _orchestrator(first, second, third).run_scan(job_payload(record.id))

    assert first.released == [f"scan-{record.id}"]
    assert second.released == [f"scan-{record.id}"]
    assert third.calls == []
    assert third.released == []


def test_notifier_failure_is_ignored(app, make_scan):
    record = make_scan()

    def broken_notifier(message):
        raise ConnectionError("redis gone")

    orchestrator = ScanOrchestrator([FakeAdapter()], ScanStore(), notifier=broken_notifier)
    summary = orchestrator.run_scan(job_payload(record.id))

    assert summary["status"] == "completed"
    assert _reload(record.id).status == "completed"


def test_rerun_after_failure_clears_error_and_replaces_findings(app, make_scan):
    record = make_scan()
    failing = FakeAdapter(default_alerts=[zap_alert()], fail_on="collect")
    with pytest.raises(ExecutionError):
        _orchestrator(failing).run_scan(job_payload(record.id))
    assert _reload(record.id).status == "failed"

    working = FakeAdapter(default_alerts=[zap_alert(), zap_alert(name="Other", risk="Medium")])
    _orchestrator(working).run_scan(job_payload(record.id))
    _orchestrator(working).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "completed"
    assert record.error_message is None
    assert record.total_findings == 2
    assert ScanFinding.query.filter_by(scan_id=record.id).count() == 2


def test_adapter_scope_release_is_idempotent():
    adapter = FakeAdapter()
    scope = AdapterScope([adapter], "s1")
    scope.acquire(["https://example.com"])

    scope.release()
    scope.release()

    assert adapter.released == ["scan-s1"]


def test_adapter_scope_releases_in_reverse_order():
    released = []

    class Tracking(FakeAdapter):
        def release(self, context):
            released.append(self.name)

    with AdapterScope([Tracking(name="zap"), Tracking(name="nuclei")], "s1") as scope:
        scope.acquire(["https://example.com"])

    assert released == ["nuclei", "zap"]


def _nuclei_match(template_id, **info):
    return {
        "template-id": template_id,
        "info": {"name": template_id, "severity": "medium", **info},
        "matched-at": "https://example.com/",
    }


def test_one_oddly_typed_record_does_not_fail_the_scan(app, make_scan):
    record = make_scan()
    adapter = FakeAdapter(name="nuclei", default_alerts=[
        _nuclei_match("a"),
        _nuclei_match("b"),
        _nuclei_match("odd", classification=["cve"]),
        _nuclei_match("c"),
        "not a record",
    ])

    summary = _orchestrator(adapter).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "completed"
    assert record.total_findings == 4
    assert summary["totalFindings"] == 4
    assert ScanFinding.query.filter_by(scan_id=record.id).count() == 4


def test_failed_persist_leaves_no_rows_on_the_failed_scan(app, make_scan, monkeypatch):
    record = make_scan()
    adapter = FakeAdapter(default_alerts=[zap_alert(name="a"), zap_alert(name="b")])

    from scanworker.scanner import store as store_module
    real = store_module._draft_to_model
    built = []

    def flaky(draft):
        built.append(draft)
        if len(built) == 2:
            raise TypeError("'int' object is not subscriptable")
        return real(draft)

    monkeypatch.setattr(store_module, "_draft_to_model", flaky)

    with pytest.raises(PersistenceError):
        _orchestrator(adapter).run_scan(job_payload(record.id))

    record = _reload(record.id)
    assert record.status == "failed"
    assert record.total_findings == 0
    assert ScanFinding.query.filter_by(scan_id=record.id).count() == 0
    assert adapter.released == [f"scan-{record.id}"]
