# Core package: ticket workflow, subscription lifecycle and reminder scheduling

from .actions import Actor, parse_custom_id, custom_id
from .audit import AuditTrail
from .catalog import CatalogStore
from .messaging import MessagingService, Notice, NoticeAction, DeliveryResult
from .reminder_scheduler import ReminderScheduler, SweepReport, build_reminder_notice
from .subscription_manager import SubscriptionManager
from .ticket_workflow import TicketWorkflowEngine, WorkflowResult

__all__ = [
    'Actor',
    'parse_custom_id',
    'custom_id',
    'AuditTrail',
    'CatalogStore',
    'MessagingService',
    'Notice',
    'NoticeAction',
    'DeliveryResult',
    'ReminderScheduler',
    'SweepReport',
    'build_reminder_notice',
    'SubscriptionManager',
    'TicketWorkflowEngine',
    'WorkflowResult'
]
