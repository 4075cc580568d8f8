"""
Custom log formatters for the subscription ticket bot.

This module provides the human-readable formatter used for console and
file logs, and the JSON formatter used for the audit log.
"""

import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict


# Attributes every LogRecord carries; anything else came in through ``extra``
STANDARD_RECORD_FIELDS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'asctime', 'message', 'taskName', 'audit_data'
})


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in STANDARD_RECORD_FIELDS and not key.startswith('_')
    }


class TicketBotFormatter(logging.Formatter):
    """
    Formatter for bot logs.

    Colors the level name for console output and can append ``extra``
    fields as ``key=value`` pairs for file output.
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True, include_extra: bool = False):
        """
        Initialize the formatter.

        Args:
            use_colors: Whether to use colors in output (for console)
            include_extra: Whether to include extra fields in output
        """
        self.use_colors = use_colors
        self.include_extra = include_extra
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                         datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        record_copy = logging.makeLogRecord(record.__dict__)

        if self.use_colors:
            color = self.COLORS.get(record_copy.levelname, '')
            record_copy.levelname = f"{color}{record_copy.levelname}{self.COLORS['RESET']}"

        formatted = super().format(record_copy)

        if self.include_extra:
            extra = _extra_fields(record)
            if extra:
                pairs = []
                for key, value in extra.items():
                    if isinstance(value, (dict, list, tuple)):
                        value = json.dumps(value, default=str)
                    pairs.append(f"{key}={value}")
                formatted += " | " + " | ".join(pairs)

        return formatted


class AuditFormatter(logging.Formatter):
    """
    Formatter that renders audit records as one JSON object per line.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format an audit log record as JSON.

        Args:
            record: Log record to format

        Returns:
            str: JSON-formatted audit log entry
        """
        audit_entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage()
        }

        audit_data = getattr(record, 'audit_data', None)
        if audit_data:
            audit_entry.update(audit_data)

        if record.exc_info:
            audit_entry['exception'] = self.formatException(record.exc_info)

        extra = _extra_fields(record)
        if extra:
            audit_entry['extra'] = extra

        try:
            return json.dumps(audit_entry, default=self._json_serializer, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            return f"AUDIT_LOG_ERROR: Failed to serialize audit entry: {e} | Original: {audit_entry}"

    @staticmethod
    def _json_serializer(obj: Any) -> str:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return str(obj)
