from starlette.requests import Request

from opentrack.security.client_ip import first_forwarded_address, resolve_client_ip


def _make_request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.1.1.1", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/pixel/abc.png",
        "headers": [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


def test_forwarded_for_chain_uses_first_entry():
    request = _make_request({"X-Forwarded-For": "5.5.5.5, 10.0.0.1"})

    assert resolve_client_ip(request) == "5.5.5.5"


def test_forwarded_for_entry_is_trimmed():
    assert first_forwarded_address("  7.7.7.7 ,8.8.8.8") == "7.7.7.7"


def test_forwarded_for_takes_priority_over_real_ip():
    request = _make_request({"X-Forwarded-For": "1.2.3.4", "X-Real-IP": "9.9.9.9"})

    assert resolve_client_ip(request) == "1.2.3.4"


def test_real_ip_used_without_forwarded_for():
    request = _make_request({"X-Real-IP": " 9.9.9.9 "})

    assert resolve_client_ip(request) == "9.9.9.9"


def test_blank_forwarded_entry_falls_through():
    request = _make_request({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "6.6.6.6"})

    assert resolve_client_ip(request) == "6.6.6.6"


def test_peer_address_used_without_proxy_headers():
    request = _make_request()

    assert resolve_client_ip(request) == "10.1.1.1"


def test_unknown_when_no_source_available():
    request = _make_request(client=None)

    assert resolve_client_ip(request) == "unknown"
