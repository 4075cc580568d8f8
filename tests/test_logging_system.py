"""
Unit tests for logging system.

Tests logging configuration, formatters, handlers, and audit logging
to ensure proper log management throughout the bot.
"""

import gzip
import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

import logging_config.logger
from logging_config.logger import TicketBotLogger, AuditLogger, setup_logging, get_logger, get_audit_logger
from logging_config.formatters import TicketBotFormatter, AuditFormatter
from logging_config.handlers import RotatingFileHandler, AuditFileHandler


@pytest.fixture(autouse=True)
def restore_logging():
    """Drop the bot's root handlers and module globals after each test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler, RotatingFileHandler) or isinstance(handler.formatter, TicketBotFormatter):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)

    if logging_config.logger._audit_logger_instance is not None:
        logging_config.logger._audit_logger_instance.close()
    logging_config.logger._logger_instance = None
    logging_config.logger._audit_logger_instance = None


def make_record(msg="Test message", level=logging.INFO, name="test.logger", exc_info=None):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info
    )


class TestTicketBotLogger:
    """Test the main TicketBotLogger class."""

    def test_logger_initialization(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = TicketBotLogger(log_dir=str(log_dir), log_level="DEBUG")

        assert logger.log_dir == log_dir
        assert logger.log_level == logging.DEBUG
        assert log_dir.exists()

    def test_unknown_level_falls_back_to_info(self, tmp_path):
        assert TicketBotLogger(log_dir=str(tmp_path), log_level="LOUD").log_level == logging.INFO

    def test_errors_go_to_error_log(self, tmp_path):
        TicketBotLogger(log_dir=str(tmp_path), log_level="INFO")
        test_logger = logging.getLogger("tests.logging")

        test_logger.info("Ticket AB12CD34 opened")
        test_logger.error("Reminder 7 failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        bot_log = (tmp_path / "bot.log").read_text()
        error_log = (tmp_path / "error.log").read_text()
        assert "Ticket AB12CD34 opened" in bot_log
        assert "Reminder 7 failed" in bot_log
        assert "Reminder 7 failed" in error_log
        assert "Ticket AB12CD34 opened" not in error_log

    def test_setup_replaces_handlers(self, tmp_path):
        TicketBotLogger(log_dir=str(tmp_path))
        TicketBotLogger(log_dir=str(tmp_path))

        assert len(logging.getLogger().handlers) == 3

    def test_setup_audit_logging(self, tmp_path):
        audit_logger = TicketBotLogger(log_dir=str(tmp_path)).setup_audit_logging()

        assert isinstance(audit_logger, AuditLogger)
        assert audit_logger.log_dir == tmp_path
        audit_logger.close()


class TestAuditLogger:
    """Test the AuditLogger class."""

    @pytest.fixture
    def audit_logger(self, tmp_path):
        audit_logger = AuditLogger(tmp_path)
        yield audit_logger
        audit_logger.close()

    def read_entries(self, audit_logger):
        for handler in audit_logger.logger.handlers:
            handler.flush()
        lines = audit_logger.log_file.read_text().splitlines()
        return [json.loads(line) for line in lines]

    def test_initialization(self, audit_logger, tmp_path):
        assert audit_logger.log_file == tmp_path / "audit.log"
        assert audit_logger.logger.name == "audit"
        assert not audit_logger.logger.propagate

    def test_log_event(self, audit_logger):
        with patch.object(audit_logger.logger, 'info') as mock_info:
            audit_logger.log_event(
                "PAYMENT_CONFIRMED",
                guild_id=67890,
                user_id=12345,
                ticket_id="AB12CD34",
                details={'amount': 199, 'currency': 'INR'}
            )

        mock_info.assert_called_once()
        assert mock_info.call_args[0][0] == "Audit event"
        audit_data = mock_info.call_args[1]['extra']['audit_data']
        assert audit_data['event_type'] == "PAYMENT_CONFIRMED"
        assert audit_data['ticket_id'] == "AB12CD34"
        assert audit_data['amount'] == 199
        assert 'subscription_id' not in audit_data

    def test_entries_written_as_json_lines(self, audit_logger):
        audit_logger.log_event("TICKET_OPENED", guild_id=1, user_id=2, channel_id=3, ticket_id="AB12CD34")
        audit_logger.log_scheduler_run(processed=4, sent=2, skipped=1, failed=1, expired=0)

        first, second = self.read_entries(audit_logger)
        assert first['event_type'] == "TICKET_OPENED"
        assert first['channel_id'] == 3
        assert second['event_type'] == "SCHEDULER_SWEEP"
        assert (second['processed'], second['sent'], second['skipped'], second['failed']) == (4, 2, 1, 1)

    def test_audit_file_is_owner_only(self, audit_logger):
        audit_logger.log_event("SUBSCRIPTION_EXPIRED", subscription_id=9)

        assert os.stat(audit_logger.log_file).st_mode & 0o777 == 0o600


class TestFormatters:
    """Test log formatters."""

    def test_ticket_bot_formatter_basic(self):
        formatted = TicketBotFormatter(use_colors=False).format(make_record())

        assert "test.logger" in formatted
        assert "INFO" in formatted
        assert "Test message" in formatted
        assert "\033[" not in formatted

    def test_ticket_bot_formatter_with_colors(self):
        formatted = TicketBotFormatter(use_colors=True).format(make_record(level=logging.ERROR))

        assert "\033[31m" in formatted
        assert "\033[0m" in formatted

    def test_colors_do_not_leak_into_record(self):
        record = make_record(level=logging.ERROR)

        TicketBotFormatter(use_colors=True).format(record)

        assert record.levelname == "ERROR"

    def test_ticket_bot_formatter_with_extra(self):
        record = make_record()
        record.user_id = 12345
        record.ticket_id = "AB12CD34"
        record.details = {'plan': '1 Month'}

        formatted = TicketBotFormatter(use_colors=False, include_extra=True).format(record)

        assert "user_id=12345" in formatted
        assert "ticket_id=AB12CD34" in formatted
        assert 'details={"plan": "1 Month"}' in formatted

    def test_audit_formatter(self):
        record = make_record(msg="Audit event", name="audit")
        record.audit_data = {
            'event_type': 'TICKET_CLAIMED',
            'ticket_id': 'AB12CD34',
            'user_id': 12345
        }

        audit_entry = json.loads(AuditFormatter().format(record))

        assert audit_entry['message'] == "Audit event"
        assert audit_entry['event_type'] == "TICKET_CLAIMED"
        assert audit_entry['user_id'] == 12345
        assert 'timestamp' in audit_entry
        assert 'extra' not in audit_entry

    def test_audit_formatter_with_exception(self):
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        audit_entry = json.loads(AuditFormatter().format(
            make_record(msg="Error occurred", level=logging.ERROR, exc_info=exc_info)
        ))

        assert "ValueError: Test exception" in audit_entry['exception']


class TestHandlers:
    """Test rotating handlers."""

    def test_rotated_files_are_gzipped(self, tmp_path):
        handler = RotatingFileHandler(str(tmp_path / "nested" / "bot.log"), max_bytes=200, backup_count=2)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            for index in range(20):
                handler.emit(make_record(msg=f"line {index} " + "x" * 40))
        finally:
            handler.close()

        rotated = tmp_path / "nested" / "bot.log.1.gz"
        assert rotated.exists()
        with gzip.open(rotated, 'rt') as f:
            assert "line" in f.read()
        assert not (tmp_path / "nested" / "bot.log.3.gz").exists()

    def test_uncompressed_rotation(self, tmp_path):
        handler = RotatingFileHandler(str(tmp_path / "bot.log"), max_bytes=100, compress_rotated=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            for index in range(10):
                handler.emit(make_record(msg=f"line {index} " + "x" * 40))
        finally:
            handler.close()

        assert (tmp_path / "bot.log.1").exists()

    def test_audit_handler_secures_after_rollover(self, tmp_path):
        handler = AuditFileHandler(str(tmp_path / "audit.log"), max_bytes=100)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            for index in range(10):
                handler.emit(make_record(msg=f"event {index} " + "x" * 40))
        finally:
            handler.close()

        assert os.stat(tmp_path / "audit.log").st_mode & 0o777 == 0o600


class TestGlobalFunctions:
    """Test global logging functions."""

    def test_setup_logging(self, tmp_path):
        logger = setup_logging(log_dir=str(tmp_path), log_level="DEBUG")

        assert isinstance(logger, TicketBotLogger)
        assert logger.log_level == logging.DEBUG
        assert isinstance(get_audit_logger(), AuditLogger)
        assert get_logger("core.ticket_workflow").name == "core.ticket_workflow"

    def test_get_logger_without_setup(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        logger = get_logger("test.auto")

        assert logger.name == "test.auto"
        assert (tmp_path / "logs" / "bot.log").exists()
