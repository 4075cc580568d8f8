# Models package for data structures and database models

from .ticket import Ticket, TicketStatus, TicketStage, BUSINESS_FIELDS
from .catalog import Panel, Plan, PaymentMethod, PlanPricing, Price
from .subscription import (
    Subscription,
    SubscriptionStatus,
    Reminder,
    DueReminder,
    Payment,
    PaymentStatus,
    AuditEntry
)

__all__ = [
    'Ticket',
    'TicketStatus',
    'TicketStage',
    'BUSINESS_FIELDS',
    'Panel',
    'Plan',
    'PaymentMethod',
    'PlanPricing',
    'Price',
    'Subscription',
    'SubscriptionStatus',
    'Reminder',
    'DueReminder',
    'Payment',
    'PaymentStatus',
    'AuditEntry'
]
