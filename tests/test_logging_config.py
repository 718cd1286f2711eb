"""Tests for logging setup and secret masking."""

import logging

import pytest

from konto.logging_config import RedactSecretsFilter, get_logger, setup_logging


def _record(msg, *args):
    return logging.LogRecord("konto.test", logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.parametrize("message, expected", [
    ("Authorization: Bearer abc.def-123", "Authorization: Bearer ***"),
    ("refresh payload {'access_token': 'tok-1', 'expires_in': 3600}", "refresh payload {'access_token': '***', 'expires_in': 3600}"),
    ("POST /auth/token/refresh refresh_token=r-9&client_secret=s3cret", "POST /auth/token/refresh refresh_token=***&client_secret=***"),
])
def test_secrets_are_masked(message, expected):
    record = _record(message)
    assert RedactSecretsFilter().filter(record) is True
    assert record.getMessage() == expected


def test_format_args_are_masked_too():
    record = _record("token for user %s: Bearer %s", 7, "secret-value")
    RedactSecretsFilter().filter(record)
    assert record.getMessage() == "token for user 7: Bearer ***"


def test_plain_messages_are_untouched():
    record = _record("Refreshed %d accounts", 3)
    RedactSecretsFilter().filter(record)
    assert record.args == (3,)
    assert record.getMessage() == "Refreshed 3 accounts"


def test_log_file_receives_masked_lines(tmp_path):
    log_file = tmp_path / "logs" / "konto.log"
    app_logger = setup_logging(app_log_level="INFO", log_file=str(log_file))
    try:
        get_logger("services.refresh").warning("Provider rejected Bearer live-token-42")
        for handler in app_logger.handlers:
            handler.flush()
        content = log_file.read_text()
    finally:
        for handler in list(app_logger.handlers):
            handler.close()
            app_logger.removeHandler(handler)

    assert "Bearer ***" in content
    assert "live-token-42" not in content


def test_get_logger_namespaces_under_konto():
    assert get_logger("jobs.scheduler").name == "konto.jobs.scheduler"
    assert get_logger("konto.services.refresh").name == "konto.services.refresh"
