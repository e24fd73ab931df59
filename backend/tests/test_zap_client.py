import httpx
import pytest

from scanworker.errors import ExecutionError, ToolNotAvailable
from scanworker.scanner.zap_client import ZapClient, escape_url_for_context


def _client(handler, api_key="secret"):
    return ZapClient("http://zap:8080", api_key=api_key, transport=httpx.MockTransport(handler))


def test_api_path_layout():
    client = ZapClient("http://zap:8080/", api_key="k")
    assert client.api_path("spider", "scan") == "/JSON/spider/action/scan/k"
    assert client.api_path("ascan", "status", view=True) == "/JSON/ascan/view/status/k"


def test_calls_send_params_and_skip_unset_ones():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"scan": "7"})

    spider_id = _client(handler).start_spider("https://example.com", context_name="scan-1", scan_id="1")

    assert spider_id == "7"
    request = seen[0]
    assert request.url.path == "/JSON/spider/action/scan/secret"
    assert request.url.params["url"] == "https://example.com"
    assert request.url.params["contextName"] == "scan-1"
    assert request.url.params["scanName"] == "Spider-1"
    assert "maxChildren" not in request.url.params
    assert request.headers["X-ZAP-API-Key"] == "secret"


def test_active_scan_is_tagged_with_scan_id():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"scan": "3"})

    assert _client(handler).start_active_scan("https://example.com", scan_id="abc") == "3"
    assert seen[0].url.path == "/JSON/ascan/action/scan/secret"
    assert seen[0].url.params["scanName"] == "Scan-abc"


@pytest.mark.parametrize("status, complete", [("100", True), ("99", False), ("0", False)])
def test_status_views_report_completion_only_at_100(status, complete):
    client = _client(lambda request: httpx.Response(200, json={"status": status}))
    assert client.spider_status("1").is_complete is complete
    assert client.scan_status("1").is_complete is complete
    assert client.scan_status("1").progress == status


def test_context_include_pattern_is_anchored_and_escaped():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"Result": "OK"})

    _client(handler).include_in_context("scan-1", "https://example.com/a+b?x=1")

    assert seen[0].url.path == "/JSON/context/action/includeInContext/secret"
    assert seen[0].url.params["regex"] == escape_url_for_context("https://example.com/a+b?x=1")
    assert escape_url_for_context("https://example.com/a+b?x=1") == r"^https://example\.com/a\+b\?x=1/?$"


def test_alerts_are_scoped_to_context():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"alerts": [{"name": "x"}]})

    alerts = _client(handler).get_alerts(context_name="scan-1")

    assert alerts == [{"name": "x"}]
    assert seen[0].url.path == "/JSON/core/view/alerts/secret"
    assert seen[0].url.params["contextName"] == "scan-1"


def test_http_error_raises_execution_error_with_body():
    client = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(ExecutionError) as exc:
        client.create_context("scan-1")
    assert exc.value.tool == "zap"
    assert "boom" in str(exc.value)


def test_transport_error_raises_execution_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExecutionError):
        _client(handler).remove_context("scan-1")


def test_unreachable_zap_is_tool_not_available():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ToolNotAvailable):
        _client(handler).version()


def test_version_and_spider_results():
    def handler(request):
        if request.url.path.startswith("/JSON/core/view/version"):
            return httpx.Response(200, json={"version": "2.15.0"})
        return httpx.Response(200, json={"results": ["https://example.com/a"]})

    client = _client(handler)
    assert client.version() == "2.15.0"
    assert client.spider_results("1") == ["https://example.com/a"]
