"""
Subscription lifecycle: creation from a completed ticket or a staff grant,
extension, cancellation and reminder planning.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from config.config_manager import ConfigManager
from core.audit import AuditTrail
from core.catalog import CatalogStore
from database.adapter import DatabaseAdapter, DuplicateSubscriptionError
from errors.exceptions import (
    PreconditionFailed,
    RejectionReason,
    SubscriptionNotFoundError,
    ValidationError
)
from models.subscription import PaymentStatus, Reminder, Subscription, SubscriptionStatus
from models.ticket import Ticket
from models.timestamps import ensure_utc, utcnow

logger = logging.getLogger(__name__)


MANUAL_GRANT_METHOD = "Manual grant"


def reminder_schedule(subscription: Subscription, offsets: Iterable[int],
                      now: datetime) -> List[Reminder]:
    """
    Build the reminders owed for a subscription.

    One reminder per offset, dated ``end_date - offset`` days, kept only when
    that moment is still in the future.
    """
    end_date = ensure_utc(subscription.end_date)
    reminders = []
    for days_before in sorted(set(offsets), reverse=True):
        when = end_date - timedelta(days=days_before)
        if when > now:
            reminders.append(Reminder(
                reminder_id=None,
                subscription_id=subscription.subscription_id,
                user_id=subscription.user_id,
                guild_id=subscription.guild_id,
                reminder_date=when.date(),
                days_before=days_before
            ))
    return reminders


class SubscriptionManager:
    """
    Owns subscription creation and the explicit staff actions on it.

    The reminder scheduler owns expiry; this class never sets a
    subscription to expired.
    """

    def __init__(self, database: DatabaseAdapter, config: ConfigManager,
                 audit: AuditTrail, catalog: Optional[CatalogStore] = None):
        self.database = database
        self.config = config
        self.audit = audit
        self.catalog = catalog or CatalogStore(database)

    def _reminder_offsets(self, guild_id: int) -> List[int]:
        return list(self.config.get_guild_config(guild_id).reminder_days)

    async def get_subscription(self, subscription_id: int) -> Subscription:
        subscription = await self.database.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def plan_reminders(self, subscription: Subscription,
                             offsets: Optional[Iterable[int]] = None,
                             now: Optional[datetime] = None) -> int:
        """
        Insert any missing future reminders for a subscription.

        Existing rows (sent or not) for the same date are kept as they are.

        Returns:
            int: Number of reminders inserted
        """
        now = ensure_utc(now) if now else utcnow()
        if offsets is None:
            offsets = self._reminder_offsets(subscription.guild_id)
        return await self.database.create_reminders(reminder_schedule(subscription, offsets, now))

    async def materialize(self, ticket: Ticket, now: Optional[datetime] = None) -> Subscription:
        """
        Create the subscription a completed ticket paid for.

        Calling this again for the same ticket returns the subscription that
        already exists instead of creating a second one.

        Args:
            ticket: Ticket with plan, method, confirmed payment and email set
            now: Start of the subscription (defaults to the current time)

        Returns:
            Subscription: The ticket's subscription

        Raises:
            PreconditionFailed: If the ticket has not reached the email stage
            NotFoundError: If the ticket's plan no longer exists
        """
        if (ticket.plan_id is None or ticket.payment_method_id is None
                or not ticket.payment_confirmed or not ticket.email):
            raise PreconditionFailed(
                RejectionReason.WRONG_STAGE,
                f"Ticket {ticket.ticket_id} is not ready for a subscription"
            )

        existing = await self.database.get_subscription_by_ticket(ticket.ticket_id)
        if existing is not None:
            logger.info(f"Ticket {ticket.ticket_id} already produced subscription {existing.subscription_id}")
            return existing

        now = ensure_utc(now) if now else utcnow()
        plan = await self.catalog.get_plan(ticket.plan_id)

        # Charge what staff confirmed, not what the catalog says today
        payment = await self.database.get_latest_payment(ticket.ticket_id)
        if payment is not None and payment.status == PaymentStatus.CONFIRMED:
            amount, currency, method_label = payment.amount, payment.currency, payment.payment_method
        else:
            payment = None
            method = await self.catalog.find_payment_method(ticket.payment_method_id)
            price = await self.catalog.resolve_price(plan, method)
            amount, currency = price.amount, price.currency
            method_label = method.label if method else None

        subscription = Subscription(
            subscription_id=None,
            guild_id=ticket.guild_id,
            user_id=ticket.user_id,
            ticket_id=ticket.ticket_id,
            plan_id=plan.plan_id,
            email=ticket.email,
            plan_name=plan.name,
            price=amount,
            currency=currency,
            payment_method=method_label,
            start_date=now,
            end_date=now + timedelta(days=plan.duration_days),
            status=SubscriptionStatus.ACTIVE,
            created_at=now
        )

        try:
            subscription.subscription_id = await self.database.create_subscription(subscription)
        except DuplicateSubscriptionError:
            # Lost a race with a concurrent submission for the same ticket
            existing = await self.database.get_subscription_by_ticket(ticket.ticket_id)
            if existing is None:
                raise
            return existing

        reminders_created = await self.plan_reminders(subscription, now=now)

        if payment is not None:
            await self.database.attach_subscription_to_payment(payment.payment_id, subscription.subscription_id)

        await self.audit.record(
            ticket.guild_id, 'subscription_created',
            actor_id=ticket.user_id,
            target_id=ticket.user_id,
            subscription_id=subscription.subscription_id,
            ticket_id=ticket.ticket_id,
            plan=plan.name,
            email=ticket.email,
            end_date=subscription.end_date.isoformat(),
            reminders=reminders_created
        )

        logger.info(
            f"Created subscription {subscription.subscription_id} for user {ticket.user_id} "
            f"({plan.name}, ends {subscription.end_date.isoformat()})"
        )
        return subscription

    async def extend(self, subscription_id: int, days: int, actor_id: Optional[int] = None,
                     now: Optional[datetime] = None) -> Subscription:
        """
        Push a subscription's end date forward.

        An expired subscription becomes active again. Reminders still owed
        for the old end date are dropped and replanned for the new one;
        reminders already sent or failed stay as they are.

        Args:
            subscription_id: Subscription to extend
            days: Days to add (positive)
            actor_id: Staff member extending
            now: Reference time for reminder planning

        Returns:
            Subscription: The updated subscription

        Raises:
            ValidationError: If ``days`` is not a positive integer
            SubscriptionNotFoundError: If the subscription does not exist
            PreconditionFailed: If the subscription was cancelled
        """
        if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
            raise ValidationError(f"Invalid extension: {days!r}", field='days', value=days,
                                  user_message="Days to add must be a positive number.")

        subscription = await self.get_subscription(subscription_id)
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise PreconditionFailed(
                RejectionReason.SUBSCRIPTION_INACTIVE,
                f"Subscription {subscription_id} is cancelled"
            )

        previous_status = subscription.status
        previous_end = subscription.end_date
        new_end = ensure_utc(previous_end) + timedelta(days=days)

        await self.database.update_subscription(subscription_id, {
            'end_date': new_end,
            'status': SubscriptionStatus.ACTIVE
        })
        subscription.end_date = new_end
        subscription.status = SubscriptionStatus.ACTIVE

        superseded = await self.database.delete_unsent_reminders(subscription_id)
        reminders_created = await self.plan_reminders(subscription, now=now)

        await self.audit.record(
            subscription.guild_id, 'subscription_extended',
            actor_id=actor_id,
            target_id=subscription.user_id,
            subscription_id=subscription_id,
            days=days,
            previous_status=previous_status.value,
            previous_end=previous_end.isoformat(),
            new_end=new_end.isoformat(),
            reminders=reminders_created,
            reminders_superseded=superseded
        )

        logger.info(f"Extended subscription {subscription_id} by {days} days to {new_end.isoformat()}")
        return subscription

    async def cancel(self, subscription_id: int, actor_id: Optional[int] = None) -> Subscription:
        """
        Cancel an active subscription.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            PreconditionFailed: If it is not active
        """
        subscription = await self.get_subscription(subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise PreconditionFailed(
                RejectionReason.SUBSCRIPTION_INACTIVE,
                f"Subscription {subscription_id} is {subscription.status.value}"
            )

        await self.database.update_subscription(subscription_id, {'status': SubscriptionStatus.CANCELLED})
        subscription.status = SubscriptionStatus.CANCELLED

        await self.audit.record(
            subscription.guild_id, 'subscription_cancelled',
            actor_id=actor_id,
            target_id=subscription.user_id,
            subscription_id=subscription_id
        )

        logger.info(f"Cancelled subscription {subscription_id}")
        return subscription

    async def grant(self, guild_id: int, user_id: int, plan_id: int,
                    email: Optional[str] = None, start_date: Optional[datetime] = None,
                    actor_id: Optional[int] = None, now: Optional[datetime] = None) -> Subscription:
        """
        Give a member a subscription without a purchase ticket.

        The plan's base price is recorded and reminders are planned as for a
        purchased subscription.

        Args:
            guild_id: Guild the subscription belongs to
            user_id: Member receiving it
            plan_id: Plan granted (must belong to the guild)
            email: Delivery email, if known
            start_date: Start of the entitlement (defaults to now)
            actor_id: Staff member granting it
            now: Reference time

        Raises:
            NotFoundError: If the plan does not exist in the guild
            ValidationError: If the subscription would already be over
        """
        now = ensure_utc(now) if now else utcnow()
        start = ensure_utc(start_date) if start_date else now
        plan = await self.catalog.get_plan(plan_id, guild_id=guild_id)
        end = start + timedelta(days=plan.duration_days)
        if end <= now:
            raise ValidationError(
                f"Granted subscription would have ended on {end.isoformat()}",
                field='start_date', value=start.isoformat(),
                user_message="That start date is too far in the past; the subscription would already be over."
            )

        price = await self.catalog.resolve_price(plan)
        subscription = Subscription(
            subscription_id=None,
            guild_id=guild_id,
            user_id=user_id,
            ticket_id=None,
            plan_id=plan.plan_id,
            email=email,
            plan_name=plan.name,
            price=price.amount,
            currency=price.currency,
            payment_method=MANUAL_GRANT_METHOD,
            start_date=start,
            end_date=end,
            status=SubscriptionStatus.ACTIVE,
            created_at=now
        )
        subscription.subscription_id = await self.database.create_subscription(subscription)
        reminders_created = await self.plan_reminders(subscription, now=now)

        await self.audit.record(
            guild_id, 'subscription_granted',
            actor_id=actor_id,
            target_id=user_id,
            subscription_id=subscription.subscription_id,
            plan=plan.name,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            reminders=reminders_created
        )

        logger.info(f"Granted subscription {subscription.subscription_id} ({plan.name}) to user {user_id}")
        return subscription

    async def list_subscriptions(self, guild_id: int, status: Optional[SubscriptionStatus] = None,
                                 limit: Optional[int] = None) -> List[Subscription]:
        return await self.database.get_subscriptions_by_guild(guild_id, status=status, limit=limit)

    async def expiring_within(self, guild_id: int, days: Optional[int] = None,
                              now: Optional[datetime] = None) -> List[Subscription]:
        if days is None:
            days = self.config.expiring_window_days
        now = ensure_utc(now) if now else utcnow()
        return await self.database.get_expiring_subscriptions(guild_id, days, now)

    async def stats(self, guild_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Collect dashboard figures for a guild.

        Returns:
            Dict[str, Any]: ``subscriptions`` (counts and revenue),
                ``plans`` (per-plan counts) and ``tickets`` (status counts)
        """
        now = ensure_utc(now) if now else utcnow()
        return {
            'subscriptions': await self.database.get_subscription_stats(
                guild_id, now, self.config.expiring_window_days
            ),
            'plans': await self.database.get_plan_stats(guild_id),
            'tickets': await self.database.count_tickets_by_guild(guild_id)
        }
