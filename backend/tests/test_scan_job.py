import pytest

from scanworker.errors import InvalidInput, TargetValidationError
from scanworker.scanner.base import ScanJob, ScanRequest
from conftest import FakeAdapter


def test_queue_key_names_are_accepted():
    job = ScanJob.from_payload({
        "scanId": "abc",
        "request": {
            "targetUrls": ["https://a.example", "https://b.example"],
            "severityLevels": ["High", "critical", "high"],
            "rateLimit": 50,
            "timeout": 10,
        },
    })
    assert job.scan_id == "abc"
    assert job.request.target_urls == ("https://a.example", "https://b.example")
    assert job.request.severity_filter == ("high", "critical")
    assert job.request.rate_limit == 50
    assert job.request.timeout_minutes == 10


def test_alternate_key_names_are_accepted():
    job = ScanJob.from_payload({
        "scanId": "abc",
        "request": {
            "targetUrls": ["https://a.example"],
            "severityFilter": ["low"],
            "timeoutMinutes": 3,
        },
    })
    assert job.request.severity_filter == ("low",)
    assert job.request.timeout_minutes == 3
    assert job.request.rate_limit is None


@pytest.mark.parametrize("payload", [
    None,
    "scan",
    {},
    {"scanId": "abc"},
    {"scanId": "abc", "request": {"targetUrls": []}},
    {"request": {"targetUrls": ["https://a.example"]}},
    {"scanId": "abc", "request": {"targetUrls": "https://a.example"}},
    {"scanId": "abc", "request": {"targetUrls": ["https://a.example"], "rateLimit": 0}},
    {"scanId": "abc", "request": {"targetUrls": ["https://a.example"], "timeout": "soon"}},
    {"scanId": "abc", "request": {"targetUrls": ["https://a.example"], "rateLimit": True}},
])
def test_malformed_payloads_raise_invalid_input(payload):
    with pytest.raises(InvalidInput):
        ScanJob.from_payload(payload)


def test_job_is_immutable():
    job = ScanJob.from_payload({"scanId": "a", "request": {"targetUrls": ["https://x.example"]}})
    with pytest.raises(Exception):
        job.scan_id = "b"


def test_to_options_leaves_out_unset_fields():
    assert ScanRequest(target_urls=("https://x.example",)).to_options() == {}
    options = ScanRequest(
        target_urls=("https://x.example",), severity_filter=("high",), rate_limit=5,
    ).to_options()
    assert options == {"severity_filter": ["high"], "rate_limit": 5}


@pytest.mark.parametrize("urls", [
    [],
    [""],
    ["example.com"],
    ["ftp://example.com"],
    ["https://"],
    ["https://ok.example", "javascript:alert(1)"],
])
def test_validate_targets_rejects_non_http_urls(urls):
    with pytest.raises(TargetValidationError):
        FakeAdapter().validate_targets(urls)


def test_validate_targets_accepts_http_and_https():
    FakeAdapter().validate_targets(["http://a.example", "https://b.example:8443/path?q=1"])
