import asyncio
import json

import httpx
import pytest

from opentrack.client import TrackerClient, TrackerClientError


def _client(handler) -> TrackerClient:
    return TrackerClient("http://tracker.local/", transport=httpx.MockTransport(handler))


def test_generate_pixel_posts_subject_and_recipient():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "trackingId": "abc", "pixelUrl": "/pixel/abc.png"})

    payload = asyncio.run(_client(handler).generate_pixel("Hello", "bob@example.com"))

    assert seen["url"] == "http://tracker.local/api/pixel/generate"
    assert seen["method"] == "POST"
    assert seen["body"] == {"subject": "Hello", "recipient": "bob@example.com"}
    assert payload["trackingId"] == "abc"


def test_error_status_raises_with_server_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"success": False, "error": "Tracking ID not found"})

    with pytest.raises(TrackerClientError) as excinfo:
        asyncio.run(_client(handler).get_tracking("missing"))

    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "Tracking ID not found"


def test_remove_self_opens_path():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tracking/abc/remove-self-opens"
        return httpx.Response(200, json={"success": True, "removedCount": 1, "remainingOpens": 2})

    result = asyncio.run(_client(handler).remove_self_opens("abc"))

    assert result["removedCount"] == 1


def test_health_false_when_backend_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(_client(handler).health()) is False


def test_health_true_when_ok():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok", "timestamp": "2024-01-01T00:00:00+00:00"})

    assert asyncio.run(_client(handler).health()) is True


def test_blank_base_url_is_rejected():
    with pytest.raises(TrackerClientError):
        TrackerClient("  ")
