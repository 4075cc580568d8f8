"""
Main logging configuration and setup for the subscription ticket bot.

This module installs the console and rotating file handlers on the root
logger and provides the audit logger that records workflow transitions,
payment attestations, subscription changes and reminder deliveries as
JSON lines.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, Union

from .formatters import TicketBotFormatter, AuditFormatter
from .handlers import RotatingFileHandler, AuditFileHandler


class TicketBotLogger:
    """
    Root logging configuration for the bot.

    Sends everything at or above ``log_level`` to the console and to
    ``bot.log``, and errors additionally to ``error.log``.
    """

    def __init__(self, log_dir: str = "logs", log_level: str = "INFO"):
        """
        Initialize the logger.

        Args:
            log_dir: Directory to store log files
            log_level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._setup_root_logger()

    def _setup_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(TicketBotFormatter())
        root_logger.addHandler(console_handler)

        file_handler = RotatingFileHandler(
            filename=str(self.log_dir / "bot.log"),
            max_bytes=10 * 1024 * 1024,
            backup_count=5
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(TicketBotFormatter(use_colors=False, include_extra=True))
        root_logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            filename=str(self.log_dir / "error.log"),
            max_bytes=5 * 1024 * 1024,
            backup_count=3
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(TicketBotFormatter(use_colors=False, include_extra=True))
        root_logger.addHandler(error_handler)

        # discord.py is chatty at DEBUG
        logging.getLogger('discord').setLevel(max(self.log_level, logging.INFO))

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

    def setup_audit_logging(self) -> 'AuditLogger':
        return AuditLogger(self.log_dir)


class AuditLogger:
    """
    Structured logger for audit events.

    Every event is written as one JSON object to ``audit.log`` and never
    propagates to the root logger.
    """

    def __init__(self, log_dir: Union[str, Path], logger_name: str = "audit"):
        """
        Initialize the audit logger.

        Args:
            log_dir: Directory to store audit log files
            logger_name: Name of the underlying logger
        """
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / "audit.log"
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.INFO)

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        audit_handler = AuditFileHandler(filename=str(self.log_file))
        audit_handler.setLevel(logging.INFO)
        audit_handler.setFormatter(AuditFormatter())
        self.logger.addHandler(audit_handler)

        self.logger.propagate = False

    def log_event(self, event_type: str, guild_id: Optional[int] = None,
                  user_id: Optional[int] = None, target_id: Optional[int] = None,
                  channel_id: Optional[int] = None, ticket_id: Optional[str] = None,
                  subscription_id: Optional[int] = None,
                  details: Optional[Dict[str, Any]] = None):
        """
        Log a structured audit event.

        Args:
            event_type: Upper-case event name (e.g. ``PAYMENT_CONFIRMED``)
            guild_id: Guild the event happened in
            user_id: Acting user, when there is one
            target_id: User the action was applied to
            channel_id: Channel involved
            ticket_id: Ticket involved
            subscription_id: Subscription involved
            details: Additional fields merged into the entry
        """
        event_data = {
            'event_type': event_type,
            'recorded_at': datetime.now(timezone.utc).isoformat(),
            'guild_id': guild_id,
            'user_id': user_id,
            'target_id': target_id,
            'channel_id': channel_id,
            'ticket_id': ticket_id,
            'subscription_id': subscription_id
        }

        if details:
            event_data.update(details)

        event_data = {k: v for k, v in event_data.items() if v is not None}

        self.logger.info("Audit event", extra={'audit_data': event_data})

    def log_scheduler_run(self, processed: int, sent: int, skipped: int,
                          failed: int, expired: int):
        self.log_event(
            event_type="SCHEDULER_SWEEP",
            details={
                'processed': processed,
                'sent': sent,
                'skipped': skipped,
                'failed': failed,
                'expired': expired
            }
        )

    def close(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()


# Global logger instances
_logger_instance: Optional[TicketBotLogger] = None
_audit_logger_instance: Optional[AuditLogger] = None


def setup_logging(log_dir: str = "logs", log_level: str = "INFO") -> TicketBotLogger:
    """
    Setup global logging configuration.

    Args:
        log_dir: Directory to store log files
        log_level: Default log level

    Returns:
        TicketBotLogger: Configured logger instance
    """
    global _logger_instance, _audit_logger_instance

    _logger_instance = TicketBotLogger(log_dir, log_level)
    _audit_logger_instance = _logger_instance.setup_audit_logging()

    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        logging.Logger: Configured logger instance
    """
    if _logger_instance is None:
        setup_logging()

    return _logger_instance.get_logger(name)


def get_audit_logger() -> AuditLogger:
    """
    Get the global audit logger instance.

    Returns:
        AuditLogger: Configured audit logger instance
    """
    if _audit_logger_instance is None:
        setup_logging()

    return _audit_logger_instance
