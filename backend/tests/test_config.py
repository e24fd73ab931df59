import pytest

from scanworker import create_app
from scanworker.scanner.adapters import KatanaAdapter, NucleiAdapter, ZapAdapter, build_adapters


def test_missing_database_uri_fails_fast(monkeypatch):
    monkeypatch.delenv("SQLALCHEMY_DATABASE_URI", raising=False)
    with pytest.raises(RuntimeError, match="SQLALCHEMY_DATABASE_URI"):
        create_app()


def test_environment_is_read(monkeypatch, tmp_path):
    monkeypatch.setenv("SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'x.db'}")
    monkeypatch.setenv("WORKER_CONCURRENCY", "4")
    monkeypatch.setenv("SCAN_ADAPTERS", "zap, nuclei")
    monkeypatch.setenv("SCAN_QUEUE_NAME", "jobs")

    app = create_app()

    assert app.config["WORKER_CONCURRENCY"] == 4
    assert app.config["SCAN_ADAPTERS"] == ["zap", "nuclei"]
    assert app.extensions["scan_queue"].queue_name == "jobs"
    assert app.extensions["scan_queue"].failed_queue == "jobs:failed"


def test_malformed_integer_falls_back_to_default(monkeypatch, tmp_path):
    monkeypatch.setenv("SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'x.db'}")
    monkeypatch.setenv("POLL_INTERVAL_MS", "fast")
    monkeypatch.setenv("JOB_MAX_ATTEMPTS", "")

    app = create_app()

    assert app.config["POLL_INTERVAL_MS"] == 2000
    assert app.config["JOB_MAX_ATTEMPTS"] == 3


def test_build_adapters_in_configured_order():
    adapters = build_adapters({
        "SCAN_ADAPTERS": "katana,zap,nuclei",
        "NUCLEI_TEMPLATES": ["cves/"],
        "KATANA_DEPTH": 4,
    })
    assert [type(a) for a in adapters] == [KatanaAdapter, ZapAdapter, NucleiAdapter]
    assert adapters[0].defaults["depth"] == 4
    assert adapters[2].defaults["templates"] == ["cves/"]


def test_unknown_adapter_name_is_rejected():
    with pytest.raises(ValueError, match="Unknown scan adapter"):
        build_adapters({"SCAN_ADAPTERS": ["zap", "burp"]})
