"""
Custom exception classes for the subscription ticket bot.

This module defines the error taxonomy used by the workflow engine, the
subscription manager and the reminder scheduler, together with the
user-facing messages shown when an action is rejected.
"""

from enum import Enum
from typing import Optional, Dict, Any


class TicketBotError(Exception):
    """
    Base exception for all ticket bot errors.

    All custom exceptions in the bot should inherit from this class
    to provide consistent error handling and logging.
    """

    def __init__(self, message: str, user_message: Optional[str] = None,
                 error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """
        Initialize TicketBotError.

        Args:
            message: Technical error message for logging
            user_message: User-friendly error message for display
            error_code: Optional error code for categorization
            details: Optional additional error details
        """
        super().__init__(message)
        self.user_message = user_message or message
        self.error_code = error_code
        self.details = details or {}


class DatabaseError(TicketBotError):
    """
    Exception raised for storage failures.

    This includes connection failures, query errors and integrity
    violations. Subclasses in the database package mark duplicates.
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 user_message: Optional[str] = None, **kwargs):
        if not user_message:
            user_message = "A database error occurred. Please try again later."

        super().__init__(message, user_message, error_code="DB_ERROR", **kwargs)
        self.operation = operation


class RejectionReason(Enum):
    """Distinct reasons a workflow transition can be refused."""
    NOT_STAFF = "not_staff"
    NOT_OWNER = "not_owner"
    ALREADY_CLAIMED = "already_claimed"
    LIMIT_REACHED = "limit_reached"
    COOLDOWN_ACTIVE = "cooldown_active"
    PANEL_DISABLED = "panel_disabled"
    TICKET_CLOSED = "ticket_closed"
    WRONG_STAGE = "wrong_stage"
    ALREADY_CONFIRMED = "already_confirmed"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    TICKET_NOT_FOUND = "ticket_not_found"
    NOT_FOUND = "not_found"


REJECTION_MESSAGES = {
    RejectionReason.NOT_STAFF: "Only staff members can do this.",
    RejectionReason.NOT_OWNER: "This is not your ticket.",
    RejectionReason.ALREADY_CLAIMED: "This ticket has already been claimed by another staff member.",
    RejectionReason.LIMIT_REACHED: "You already have the maximum number of open tickets. Please close existing tickets first.",
    RejectionReason.COOLDOWN_ACTIVE: "You are opening tickets too quickly. Please wait a moment and try again.",
    RejectionReason.PANEL_DISABLED: "This ticket panel is currently disabled.",
    RejectionReason.TICKET_CLOSED: "This ticket is closed.",
    RejectionReason.WRONG_STAGE: "That step is not available at this stage of your ticket.",
    RejectionReason.ALREADY_CONFIRMED: "Payment for this ticket has already been confirmed.",
    RejectionReason.SUBSCRIPTION_INACTIVE: "This subscription is no longer active.",
    RejectionReason.TICKET_NOT_FOUND: "Ticket not found.",
    RejectionReason.NOT_FOUND: "The requested item could not be found.",
}


class PreconditionFailed(TicketBotError):
    """
    Exception raised when a transition's guard does not hold.

    This covers ownership, permission and stage-order violations. It is
    always reported back to the acting user.
    """

    def __init__(self, reason: RejectionReason, message: Optional[str] = None,
                 user_message: Optional[str] = None, **kwargs):
        """
        Initialize PreconditionFailed.

        Args:
            reason: Which guard rejected the action
            message: Technical error message
            user_message: User-friendly error message
        """
        if not user_message:
            user_message = REJECTION_MESSAGES[reason]

        super().__init__(message or f"Precondition failed: {reason.value}", user_message,
                         error_code="PRECONDITION_FAILED", **kwargs)
        self.reason = reason


class NotFoundError(TicketBotError):
    """Exception raised when a ticket, subscription, plan or method is missing."""

    reason = RejectionReason.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None,
                 user_message: Optional[str] = None, **kwargs):
        """
        Initialize NotFoundError.

        Args:
            entity: Kind of record that was looked up ('plan', 'payment method', ...)
            entity_id: Identifier that was looked up
            user_message: User-friendly error message
        """
        if not user_message:
            user_message = f"{entity.capitalize()} not found."

        super().__init__(f"{entity} {entity_id} not found", user_message,
                         error_code="NOT_FOUND", **kwargs)
        self.entity = entity
        self.entity_id = entity_id


class TicketNotFoundError(NotFoundError):
    """Exception raised when a ticket is not found."""

    reason = RejectionReason.TICKET_NOT_FOUND

    def __init__(self, ticket_id: Any = None, user_message: Optional[str] = None, **kwargs):
        super().__init__("ticket", ticket_id, user_message=user_message, **kwargs)
        self.ticket_id = ticket_id


class SubscriptionNotFoundError(NotFoundError):
    """Exception raised when a subscription is not found."""

    def __init__(self, subscription_id: Any = None, user_message: Optional[str] = None, **kwargs):
        super().__init__("subscription", subscription_id, user_message=user_message, **kwargs)
        self.subscription_id = subscription_id


class ExternalUnavailableError(TicketBotError):
    """
    Exception raised when the chat platform could not complete a call.

    Raised only where a caller is still waiting for the outcome; batch
    processing records these failures instead.
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 user_message: Optional[str] = None, **kwargs):
        if not user_message:
            user_message = "Discord is not responding right now. Please try again in a moment."

        super().__init__(message, user_message, error_code="EXTERNAL_UNAVAILABLE", **kwargs)
        self.operation = operation


class ConfigurationError(TicketBotError):
    """
    Exception raised for configuration-related errors.

    This includes missing settings, invalid configuration values,
    and setup issues.
    """

    def __init__(self, message: str, config_key: Optional[str] = None,
                 user_message: Optional[str] = None, **kwargs):
        """
        Initialize ConfigurationError.

        Args:
            message: Technical error message
            config_key: The configuration key that caused the error
            user_message: User-friendly error message
        """
        if not user_message:
            user_message = "Bot configuration error. Please contact an administrator."

        super().__init__(message, user_message, error_code="CONFIG_ERROR", **kwargs)
        self.config_key = config_key


class ValidationError(TicketBotError):
    """
    Exception raised for input validation errors.

    This includes invalid user input, malformed data,
    and constraint violations.
    """

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Optional[Any] = None, user_message: Optional[str] = None, **kwargs):
        """
        Initialize ValidationError.

        Args:
            message: Technical error message
            field: The field that failed validation
            value: The invalid value
            user_message: User-friendly error message
        """
        if not user_message:
            user_message = "Invalid input provided. Please check your input and try again."

        super().__init__(message, user_message, error_code="VALIDATION_ERROR", **kwargs)
        self.field = field
        self.value = value
