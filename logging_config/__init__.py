"""
Logging configuration module for the subscription ticket bot.

This module provides logging setup including file rotation and the
JSON audit log for workflow, payment, subscription and reminder events.
"""

from .logger import setup_logging, get_logger, get_audit_logger, AuditLogger, TicketBotLogger
from .formatters import TicketBotFormatter, AuditFormatter
from .handlers import RotatingFileHandler, AuditFileHandler

__all__ = [
    'setup_logging',
    'get_logger',
    'get_audit_logger',
    'AuditLogger',
    'TicketBotLogger',
    'TicketBotFormatter',
    'AuditFormatter',
    'RotatingFileHandler',
    'AuditFileHandler'
]
