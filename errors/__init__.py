"""
Error handling module for the subscription ticket bot.

This module provides custom exception classes and error handling utilities
for consistent error management across the bot.
"""

from .exceptions import (
    TicketBotError,
    DatabaseError,
    RejectionReason,
    REJECTION_MESSAGES,
    PreconditionFailed,
    NotFoundError,
    TicketNotFoundError,
    SubscriptionNotFoundError,
    ExternalUnavailableError,
    ConfigurationError,
    ValidationError
)

from .handlers import (
    handle_errors,
    send_error_embed,
    format_error_message,
    error_title,
    error_color,
    log_error
)

__all__ = [
    # Exception classes
    'TicketBotError',
    'DatabaseError',
    'RejectionReason',
    'REJECTION_MESSAGES',
    'PreconditionFailed',
    'NotFoundError',
    'TicketNotFoundError',
    'SubscriptionNotFoundError',
    'ExternalUnavailableError',
    'ConfigurationError',
    'ValidationError',

    # Handler functions
    'handle_errors',
    'send_error_embed',
    'format_error_message',
    'error_title',
    'error_color',
    'log_error'
]
