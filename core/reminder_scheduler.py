"""
Reminder Scheduler for the subscription ticket bot.

A periodic sweep that sends due expiry reminders by direct message and
moves lapsed subscriptions to expired. Every item in a sweep is processed
on its own: a failure is recorded on that reminder and the sweep moves on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from discord.ext import commands, tasks

from config.config_manager import ConfigManager
from core.audit import AuditTrail
from core.messaging import (
    ActionStyle,
    MessagingService,
    Notice,
    NoticeAction,
    NoticeColor,
    format_date
)
from database.adapter import DatabaseAdapter
from errors.exceptions import (
    DatabaseError,
    ExternalUnavailableError,
    PreconditionFailed,
    RejectionReason,
    SubscriptionNotFoundError
)
from models.subscription import DueReminder, Subscription
from models.timestamps import ensure_utc, utcnow

logger = logging.getLogger(__name__)


FINAL_REMINDER_DAYS = 1
RENEWAL_DISCOUNT_PERCENT = 10


@dataclass
class SweepReport:
    """
    Counters for one scheduler sweep.

    Attributes:
        processed: Due reminders looked at
        sent: Reminders delivered
        skipped: Reminders marked sent without delivery (user gone, or
            planned for an end date that has since moved)
        failed: Reminders marked with an error
        expired: Subscriptions moved to expired
        notified: Expired subscribers told by direct message
        errors: Messages for failures that did not belong to a single reminder
    """
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    expired: int = 0
    notified: int = 0
    errors: List[str] = field(default_factory=list)


def build_reminder_notice(plan_name: str, end_date: datetime, days_left: int,
                          resubscribe_url: Optional[str] = None) -> Notice:
    """
    Compose the expiry reminder a subscriber receives.

    The last reminder (``days_left`` of one or less) pushes renewal with a
    discount; earlier ones are a plain heads-up.
    """
    expiry = format_date(ensure_utc(end_date))
    day_word = "day" if days_left == 1 else "days"

    if days_left <= FINAL_REMINDER_DAYS:
        notice = Notice(
            title="⏰ Your Subscription Is About to Expire!",
            description=(
                f"Your **{plan_name}** subscription expires on **{expiry}**.\n\n"
                f"🔥 **Renew now and get {RENEWAL_DISCOUNT_PERCENT}% OFF!**"
            ),
            color=NoticeColor.DANGER
        )
    else:
        notice = Notice(
            title="📅 Subscription Expiring Soon",
            description=(
                f"Your **{plan_name}** subscription expires in **{days_left} {day_word}** "
                f"on **{expiry}**.\n\nRenew before it ends to keep your access."
            ),
            color=NoticeColor.WARNING
        )

    notice.add_field("Plan", plan_name)
    notice.add_field("Expires", expiry)
    notice.add_field("Days Left", str(days_left))

    if resubscribe_url:
        notice.actions.append(NoticeAction(
            label="Resubscribe Now",
            url=resubscribe_url,
            style=ActionStyle.LINK,
            emoji="🔄"
        ))
    return notice


def build_expired_notice(plan_name: str, resubscribe_url: Optional[str] = None) -> Notice:
    """Compose the message sent once a subscription has lapsed."""
    notice = Notice(
        title="❌ Subscription Ended",
        description=(
            f"Your **{plan_name}** subscription has expired.\n\n"
            "Open a new ticket whenever you want to subscribe again."
        ),
        color=NoticeColor.DANGER
    )
    if resubscribe_url:
        notice.actions.append(NoticeAction(
            label="Resubscribe",
            url=resubscribe_url,
            style=ActionStyle.LINK,
            emoji="🔄"
        ))
    return notice


class ReminderScheduler:
    """
    Runs reminder sweeps on a ``discord.ext.tasks`` loop.

    The scheduler is the only writer of ``Reminder.sent``/``error`` and of
    ``Subscription.status = expired``.
    """

    def __init__(self, database: DatabaseAdapter, messaging: MessagingService,
                 config: ConfigManager, audit: AuditTrail,
                 bot: Optional[commands.Bot] = None):
        self.database = database
        self.messaging = messaging
        self.config = config
        self.audit = audit
        self.bot = bot
        self._sweep_lock = asyncio.Lock()
        self.last_report: Optional[SweepReport] = None

    # Loop management

    def start(self) -> None:
        """Start the periodic sweep using the configured interval."""
        if self.sweep_loop.is_running():
            return
        self.sweep_loop.change_interval(hours=self.config.reminder_interval_hours)
        self.sweep_loop.start()
        logger.info(f"Reminder scheduler started (every {self.config.reminder_interval_hours:g}h)")

    def stop(self) -> None:
        if self.sweep_loop.is_running():
            self.sweep_loop.cancel()
            logger.info("Reminder scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self.sweep_loop.is_running()

    @tasks.loop(hours=1)
    async def sweep_loop(self):
        await self.run_sweep()

    @sweep_loop.before_loop
    async def before_sweep(self):
        if self.bot is not None:
            await self.bot.wait_until_ready()
        await asyncio.sleep(self.config.reminder_startup_delay_seconds)

    @sweep_loop.error
    async def sweep_error(self, error):
        logger.error(f"Reminder sweep crashed: {error}", exc_info=error)

    # Sweep

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one sweep: send due reminders, then expire lapsed subscriptions.

        Args:
            now: Reference time (defaults to the current time)

        Returns:
            SweepReport: What the sweep did
        """
        now = ensure_utc(now) if now else utcnow()
        report = SweepReport()

        async with self._sweep_lock:
            await self._send_due_reminders(now, report)
            await self._expire_lapsed(now, report)

        self.last_report = report
        if self.audit.audit_logger is not None:
            self.audit.audit_logger.log_scheduler_run(
                processed=report.processed,
                sent=report.sent,
                skipped=report.skipped,
                failed=report.failed,
                expired=report.expired
            )

        logger.info(
            f"Reminder sweep finished: {report.processed} processed, {report.sent} sent, "
            f"{report.skipped} skipped, {report.failed} failed, {report.expired} expired"
        )
        return report

    async def _send_due_reminders(self, now: datetime, report: SweepReport) -> None:
        try:
            due = await self.database.get_pending_reminders(now)
        except DatabaseError as e:
            logger.error(f"Failed to fetch pending reminders: {e}")
            report.errors.append(str(e))
            return

        for item in due:
            report.processed += 1
            try:
                outcome = await self._process_reminder(item, now)
            except Exception as e:
                logger.error(f"Reminder {item.reminder.reminder_id} failed: {e}", exc_info=True)
                await self._record_failure(item, str(e) or type(e).__name__)
                outcome = 'failed'

            if outcome == 'sent':
                report.sent += 1
            elif outcome == 'skipped':
                report.skipped += 1
            else:
                report.failed += 1

    async def _process_reminder(self, item: DueReminder, now: datetime) -> str:
        reminder = item.reminder
        days_left = item.days_left(now)

        if days_left <= 0:
            # Already over; the expiry notice replaces it
            await self.database.mark_reminder_sent(reminder.reminder_id, now)
            logger.info(f"Skipped reminder {reminder.reminder_id}: subscription {reminder.subscription_id} has ended")
            return 'skipped'

        if days_left > reminder.days_before + 1:
            # Planned for an end date that has since moved out
            await self.database.mark_reminder_sent(reminder.reminder_id, now)
            logger.info(f"Skipped reminder {reminder.reminder_id}: {days_left} days left, "
                        f"planned for {reminder.days_before}")
            return 'skipped'

        lookup = await self.messaging.fetch_user(reminder.user_id)
        if not lookup.ok:
            await self._record_failure(item, lookup.error)
            return 'failed'

        if lookup.value is None:
            # The user is gone; never retry this reminder
            await self.database.mark_reminder_sent(reminder.reminder_id, now)
            logger.info(f"Skipped reminder {reminder.reminder_id}: user {reminder.user_id} not found")
            return 'skipped'

        guild_config = self.config.get_guild_config(reminder.guild_id)
        notice = build_reminder_notice(
            item.plan_name, item.end_date, days_left, guild_config.resubscribe_url
        )

        result = await self.messaging.send_direct_notice(reminder.user_id, notice)
        if not result.ok:
            await self._record_failure(item, result.error)
            return 'failed'

        await self.database.mark_reminder_sent(reminder.reminder_id, now)
        await self.audit.record(
            reminder.guild_id, 'reminder_sent',
            target_id=reminder.user_id,
            subscription_id=reminder.subscription_id,
            reminder_id=reminder.reminder_id,
            days_before=reminder.days_before,
            days_left=days_left
        )
        return 'sent'

    async def _record_failure(self, item: DueReminder, error: Optional[str]) -> None:
        reminder = item.reminder
        error = error or "unknown error"
        try:
            await self.database.mark_reminder_error(reminder.reminder_id, error)
        except DatabaseError as e:
            logger.error(f"Failed to record error on reminder {reminder.reminder_id}: {e}")
            return

        logger.warning(f"Reminder {reminder.reminder_id} for user {reminder.user_id} failed: {error}")
        await self.audit.record(
            reminder.guild_id, 'reminder_failed',
            target_id=reminder.user_id,
            subscription_id=reminder.subscription_id,
            reminder_id=reminder.reminder_id,
            error=error
        )

    async def _expire_lapsed(self, now: datetime, report: SweepReport) -> None:
        try:
            lapsed = await self.database.get_lapsed_subscriptions(now)
        except DatabaseError as e:
            logger.error(f"Failed to fetch lapsed subscriptions: {e}")
            report.errors.append(str(e))
            return

        for subscription in lapsed:
            try:
                if not await self.database.expire_subscription(subscription.subscription_id):
                    continue
            except DatabaseError as e:
                logger.error(f"Failed to expire subscription {subscription.subscription_id}: {e}")
                report.errors.append(str(e))
                continue

            report.expired += 1
            notified = await self._notify_expired(subscription)
            if notified:
                report.notified += 1
            await self.audit.record(
                subscription.guild_id, 'subscription_expired',
                target_id=subscription.user_id,
                subscription_id=subscription.subscription_id,
                end_date=subscription.end_date.isoformat(),
                notified=notified
            )

    async def _notify_expired(self, subscription: Subscription) -> bool:
        guild_config = self.config.get_guild_config(subscription.guild_id)
        notice = build_expired_notice(subscription.plan_name, guild_config.resubscribe_url)

        result = await self.messaging.send_direct_notice(subscription.user_id, notice)
        if not result.ok:
            logger.warning(f"Could not tell user {subscription.user_id} that subscription "
                           f"{subscription.subscription_id} ended: {result.error}")
            return False
        return True

    # Manual dispatch

    async def send_manual_reminder(self, subscription_id: int, actor_id: Optional[int] = None,
                                   now: Optional[datetime] = None) -> Subscription:
        """
        Send one reminder for a subscription right away.

        Used from the admin commands; nothing is written to the reminders
        table, so the regular schedule is unaffected.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            PreconditionFailed: If the subscription is not active
            ExternalUnavailableError: If the user could not be messaged
        """
        now = ensure_utc(now) if now else utcnow()
        subscription = await self.database.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        if not subscription.is_active:
            raise PreconditionFailed(
                RejectionReason.SUBSCRIPTION_INACTIVE,
                f"Subscription {subscription_id} is {subscription.status.value}"
            )

        guild_config = self.config.get_guild_config(subscription.guild_id)
        notice = build_reminder_notice(
            subscription.plan_name,
            subscription.end_date,
            max(subscription.days_remaining(now), 0),
            guild_config.resubscribe_url
        )

        result = await self.messaging.send_direct_notice(subscription.user_id, notice)
        if not result.ok:
            raise ExternalUnavailableError(
                f"Manual reminder for subscription {subscription_id} failed: {result.error}",
                operation='send_direct_notice',
                user_message="Could not message that user. They may have direct messages disabled."
            )

        await self.audit.record(
            subscription.guild_id, 'reminder_sent_manually',
            actor_id=actor_id,
            target_id=subscription.user_id,
            subscription_id=subscription_id
        )
        return subscription
