"""Tests for CLI wiring and log redaction."""

import logging

from click.testing import CliRunner

from grounded_chat.cli import SecretRedactingFilter, cli


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, message, None, None)


def test_redacts_api_keys():
    record = _record("Using api_key=sk-ant-REDACTED")
    SecretRedactingFilter().filter(record)
    assert "abcdefghijklmnop" not in record.msg
    assert "[REDACTED]" in record.msg


def test_redacts_bearer_tokens():
    record = _record("Authorization: Bearer abc123def456")
    SecretRedactingFilter().filter(record)
    assert "abc123def456" not in record.msg


def test_leaves_plain_messages():
    record = _record("Recorded knowledge gap 42")
    SecretRedactingFilter().filter(record)
    assert record.msg == "Recorded knowledge gap 42"


def test_commands_registered():
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in [
        "init-database",
        "create-workspace",
        "set-api-key",
        "add-pair",
        "update-pair",
        "deactivate-pair",
        "test-match",
        "import-pairs",
        "list-gaps",
        "auto-resolve-gaps",
        "list-sessions",
        "show-session",
        "ask",
        "serve",
    ]:
        assert command in result.output
