import pytest

from opentrack.core import logging as app_logging
from opentrack.security import request_logger


@pytest.mark.parametrize(
    ("path", "status_code", "expected_function", "expected_message"),
    [
        ("/api/tracking/all", 200, app_logging.log_info, "Request completed"),
        ("/pixel/abc.png", 200, app_logging.log_debug, "Pixel served"),
        ("/api/pixel/generate", 500, app_logging.log_error, "Request completed with server error"),
        ("/pixel/abc.png", 503, app_logging.log_error, "Request completed with server error"),
    ],
)
def test_completion_logger_levels(path, status_code, expected_function, expected_message):
    log_function, message = request_logger._completion_logger(path, status_code)

    assert log_function is expected_function
    assert message == expected_message


def test_format_meta_is_sorted():
    assert app_logging._format_meta({"b": 2, "a": "x"}) == "a=x b=2"
