"""
Abstract database adapter interface for the subscription ticket bot.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Dict, Any

from errors.exceptions import DatabaseError
from models.ticket import Ticket
from models.catalog import Panel, Plan, PaymentMethod, PlanPricing
from models.subscription import (
    AuditEntry,
    DueReminder,
    Payment,
    Reminder,
    Subscription,
    SubscriptionStatus
)


class ConnectionError(DatabaseError):
    """Exception raised when database connection fails."""
    pass


class DuplicateTicketError(DatabaseError):
    """Exception raised when a ticket id or ticket channel is already taken."""
    pass


class DuplicateSubscriptionError(DatabaseError):
    """Exception raised when a ticket already produced a subscription."""
    pass


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    This interface defines the contract that all database adapters must
    implement: catalog lookups, ticket, subscription, reminder, payment and
    log persistence, and connection management.

    Every mutation is a field-scoped patch keyed by primary id. Methods that
    guard a state change (``confirm_ticket_payment``, ``claim_ticket``,
    ``close_ticket``, ``expire_subscription``) apply the patch only when the
    guard still holds and return False otherwise.
    """

    def __init__(self, connection_string: str, **kwargs):
        """
        Initialize the database adapter.

        Args:
            connection_string: Database connection string
            **kwargs: Additional configuration parameters
        """
        self.connection_string = connection_string
        self.config = kwargs

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the database.

        Raises:
            ConnectionError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Close the database connection and cleanup resources.
        """
        pass

    @abstractmethod
    async def is_connected(self) -> bool:
        """
        Check if the database connection is active.

        Returns:
            bool: True if connected, False otherwise
        """
        pass

    # Catalog

    @abstractmethod
    async def create_panel(self, panel: Panel) -> int:
        """
        Create a ticket panel.

        Args:
            panel: Panel to store; ``panel_id`` is ignored

        Returns:
            int: The generated panel id

        Raises:
            DatabaseError: If creation fails
        """
        pass

    @abstractmethod
    async def get_panel(self, panel_id: int) -> Optional[Panel]:
        pass

    @abstractmethod
    async def get_panels(self, guild_id: int) -> List[Panel]:
        pass

    @abstractmethod
    async def update_panel(self, panel_id: int, updates: Dict[str, Any]) -> bool:
        """
        Patch panel fields.

        Args:
            panel_id: Panel identifier
            updates: Field name to new value

        Returns:
            bool: True if a row was updated
        """
        pass

    @abstractmethod
    async def create_plan(self, plan: Plan) -> int:
        pass

    @abstractmethod
    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        pass

    @abstractmethod
    async def get_plans(self, guild_id: int, enabled_only: bool = True) -> List[Plan]:
        """
        List a guild's plans in display order.

        Args:
            guild_id: Guild identifier
            enabled_only: Skip disabled plans

        Returns:
            List[Plan]: Plans ordered by display_order then duration
        """
        pass

    @abstractmethod
    async def create_payment_method(self, method: PaymentMethod) -> int:
        pass

    @abstractmethod
    async def get_payment_method(self, method_id: int) -> Optional[PaymentMethod]:
        pass

    @abstractmethod
    async def get_payment_methods(self, guild_id: int, enabled_only: bool = True) -> List[PaymentMethod]:
        pass

    @abstractmethod
    async def set_plan_pricing(self, pricing: PlanPricing) -> None:
        """
        Create or replace the price override for one (plan, method) pair.

        Args:
            pricing: Override to store

        Raises:
            DatabaseError: If the write fails
        """
        pass

    @abstractmethod
    async def get_plan_pricing(self, plan_id: int, method_id: int) -> Optional[PlanPricing]:
        pass

    @abstractmethod
    async def get_pricing_for_plan(self, plan_id: int) -> List[PlanPricing]:
        pass

    # Tickets

    @abstractmethod
    async def create_ticket(self, ticket: Ticket) -> str:
        """
        Create a new ticket in the database.

        Args:
            ticket: Ticket object to create

        Returns:
            str: The ticket ID of the created ticket

        Raises:
            DuplicateTicketError: If the ticket id or channel id is already used
            DatabaseError: If creation fails
        """
        pass

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """
        Retrieve a ticket by its ID.

        Args:
            ticket_id: Unique ticket identifier

        Returns:
            Optional[Ticket]: Ticket object if found, None otherwise

        Raises:
            DatabaseError: If retrieval fails
        """
        pass

    @abstractmethod
    async def get_ticket_by_channel(self, channel_id: int) -> Optional[Ticket]:
        pass

    @abstractmethod
    async def get_open_tickets_for_user(self, guild_id: int, user_id: int,
                                        panel_id: Optional[int] = None) -> List[Ticket]:
        """
        List a member's open tickets, optionally restricted to one panel.

        Args:
            guild_id: Guild identifier
            user_id: Ticket opener
            panel_id: Only count tickets opened from this panel

        Returns:
            List[Ticket]: Open tickets, newest first
        """
        pass

    @abstractmethod
    async def get_latest_ticket_for_user(self, guild_id: int, user_id: int,
                                         panel_id: int) -> Optional[Ticket]:
        pass

    @abstractmethod
    async def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> bool:
        """
        Patch ticket fields.

        Patches that touch a business field (plan, method, payment, email,
        claim) only apply while the ticket is open.

        Args:
            ticket_id: Unique ticket identifier
            updates: Dictionary of field updates

        Returns:
            bool: True if update was applied, False if the ticket is missing
                or closed

        Raises:
            DatabaseError: If update fails
        """
        pass

    @abstractmethod
    async def confirm_ticket_payment(self, ticket_id: str, staff_id: int,
                                     confirmed_at: datetime) -> bool:
        """
        Set payment_confirmed only if it is still false and the ticket is open.

        Args:
            ticket_id: Unique ticket identifier
            staff_id: Staff member attesting the payment
            confirmed_at: Confirmation time

        Returns:
            bool: True if this call flipped the flag
        """
        pass

    @abstractmethod
    async def claim_ticket(self, ticket_id: str, staff_id: int, claimed_at: datetime) -> bool:
        """
        Set claimed_by only if nobody has claimed the open ticket yet.

        Returns:
            bool: True if this call claimed the ticket
        """
        pass

    @abstractmethod
    async def close_ticket(self, ticket_id: str, closed_by: int, closed_at: datetime) -> bool:
        """
        Move an open ticket to closed.

        Args:
            ticket_id: Unique ticket identifier
            closed_by: User closing the ticket
            closed_at: Close time

        Returns:
            bool: True if this call closed the ticket, False if it was
                already closed or missing
        """
        pass

    @abstractmethod
    async def delete_ticket(self, ticket_id: str) -> bool:
        """
        Delete a ticket from the database.

        Args:
            ticket_id: Unique ticket identifier

        Returns:
            bool: True if ticket was deleted, False if ticket not found
        """
        pass

    @abstractmethod
    async def count_tickets_by_guild(self, guild_id: int) -> Dict[str, int]:
        """
        Count a guild's tickets by status.

        Returns:
            Dict[str, int]: ``total``, ``open`` and ``closed`` counts
        """
        pass

    # Subscriptions

    @abstractmethod
    async def create_subscription(self, subscription: Subscription) -> int:
        """
        Persist a new subscription.

        Args:
            subscription: Subscription to store; ``subscription_id`` is ignored

        Returns:
            int: The generated subscription id

        Raises:
            DuplicateSubscriptionError: If the ticket already has a subscription
            DatabaseError: If creation fails
        """
        pass

    @abstractmethod
    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def get_subscription_by_ticket(self, ticket_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def get_subscriptions_by_guild(self, guild_id: int,
                                         status: Optional[SubscriptionStatus] = None,
                                         limit: Optional[int] = None) -> List[Subscription]:
        pass

    @abstractmethod
    async def get_subscriptions_by_user(self, guild_id: int, user_id: int) -> List[Subscription]:
        pass

    @abstractmethod
    async def get_expiring_subscriptions(self, guild_id: int, days: int,
                                         now: datetime) -> List[Subscription]:
        """
        List active subscriptions ending within the next ``days`` days.

        Args:
            guild_id: Guild identifier
            days: Window length in days
            now: Start of the window

        Returns:
            List[Subscription]: Matching subscriptions, soonest end first
        """
        pass

    @abstractmethod
    async def get_lapsed_subscriptions(self, now: datetime) -> List[Subscription]:
        """
        List active subscriptions whose end_date is at or before ``now``.

        Returns:
            List[Subscription]: Subscriptions due to be expired
        """
        pass

    @abstractmethod
    async def update_subscription(self, subscription_id: int, updates: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    async def expire_subscription(self, subscription_id: int) -> bool:
        """
        Move an active subscription to expired.

        Returns:
            bool: True if this call expired it
        """
        pass

    @abstractmethod
    async def get_subscription_stats(self, guild_id: int, now: datetime,
                                     window_days: int = 7) -> Dict[str, Any]:
        """
        Aggregate subscription figures for a guild.

        Args:
            guild_id: Guild identifier
            now: Reference time for the expiring-soon window
            window_days: Expiring-soon window length

        Returns:
            Dict[str, Any]: ``total``, ``active``, ``expired``, ``cancelled``,
                ``expiring_soon`` and ``revenue`` (currency to amount)
        """
        pass

    @abstractmethod
    async def get_plan_stats(self, guild_id: int) -> List[Dict[str, Any]]:
        pass

    # Reminders

    @abstractmethod
    async def create_reminders(self, reminders: List[Reminder]) -> int:
        """
        Bulk-insert reminders, skipping (subscription_id, reminder_date) pairs
        that already exist.

        Args:
            reminders: Reminders to insert

        Returns:
            int: Number of rows actually inserted
        """
        pass

    @abstractmethod
    async def get_pending_reminders(self, as_of: datetime) -> List[DueReminder]:
        """
        Fetch reminders that are due and still owed to an active subscription.

        A reminder is pending when its date is on or before ``as_of``'s date,
        it was never sent, no dispatch error was recorded for it, and its
        subscription is active.

        Args:
            as_of: Reference time

        Returns:
            List[DueReminder]: Reminders joined with plan name and end date
        """
        pass

    @abstractmethod
    async def get_reminders_by_subscription(self, subscription_id: int) -> List[Reminder]:
        pass

    @abstractmethod
    async def get_reminder_history(self, guild_id: int, limit: int = 25) -> List[Reminder]:
        pass

    @abstractmethod
    async def mark_reminder_sent(self, reminder_id: int, sent_at: datetime) -> bool:
        pass

    @abstractmethod
    async def mark_reminder_error(self, reminder_id: int, error: str) -> bool:
        pass

    @abstractmethod
    async def delete_unsent_reminders(self, subscription_id: int) -> int:
        """
        Drop a subscription's reminders that were neither sent nor failed.

        Used when the end date moves, so reminders planned for the old date
        never fire.

        Returns:
            int: Number of reminders removed
        """
        pass

    # Payments

    @abstractmethod
    async def create_payment(self, payment: Payment) -> int:
        pass

    @abstractmethod
    async def get_latest_payment(self, ticket_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def confirm_payment_record(self, payment_id: int, staff_id: int,
                                     confirmed_at: datetime) -> bool:
        """
        Mark a pending payment record as confirmed.

        Returns:
            bool: True if the record was still pending
        """
        pass

    @abstractmethod
    async def deny_payment_record(self, payment_id: int) -> bool:
        """
        Mark a pending payment record as denied.

        Returns:
            bool: True if the record was still pending
        """
        pass

    @abstractmethod
    async def attach_subscription_to_payment(self, payment_id: int, subscription_id: int) -> bool:
        pass

    # Logs

    @abstractmethod
    async def create_log(self, entry: AuditEntry) -> int:
        pass

    @abstractmethod
    async def get_logs(self, guild_id: int, limit: int = 50) -> List[AuditEntry]:
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
