"""
Tests for the reminder scheduler: notice wording, sweep isolation,
expiry, manual reminders and the periodic loop.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import GUILD_ID, OTHER_USER_ID, STAFF_ID, USER_ID
from core.reminder_scheduler import build_reminder_notice
from errors.exceptions import (
    DatabaseError,
    ExternalUnavailableError,
    PreconditionFailed,
    RejectionReason,
    SubscriptionNotFoundError
)
from models.subscription import Reminder, Subscription, SubscriptionStatus


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


async def subscription_with_reminder(database, user_id=USER_ID, days_before=3,
                                     end_date=None, status=SubscriptionStatus.ACTIVE) -> Subscription:
    """Store a subscription whose ``days_before`` reminder falls due today."""
    end_date = end_date or NOW + timedelta(days=days_before)
    subscription = Subscription(
        subscription_id=None,
        guild_id=GUILD_ID,
        user_id=user_id,
        ticket_id=None,
        plan_id=None,
        email="a@b.com",
        plan_name="1 Month",
        price=199,
        currency="INR",
        start_date=end_date - timedelta(days=30),
        end_date=end_date,
        status=status,
        created_at=NOW - timedelta(days=30)
    )
    subscription.subscription_id = await database.create_subscription(subscription)
    await database.create_reminders([Reminder(
        reminder_id=None,
        subscription_id=subscription.subscription_id,
        user_id=user_id,
        guild_id=GUILD_ID,
        reminder_date=NOW.date(),
        days_before=days_before
    )])
    return subscription


async def only_reminder(database, subscription):
    reminders = await database.get_reminders_by_subscription(subscription.subscription_id)
    assert len(reminders) == 1
    return reminders[0]


class TestReminderNotice:

    def test_early_reminder(self):
        notice = build_reminder_notice("1 Month", datetime(2025, 3, 5, tzinfo=timezone.utc), 3)

        assert notice.title == "📅 Subscription Expiring Soon"
        assert "3 days" in notice.description
        assert notice.fields == [
            ("Plan", "1 Month", True),
            ("Expires", "March 5, 2025", True),
            ("Days Left", "3", True),
        ]
        assert notice.actions == []

    @pytest.mark.parametrize("days_left", [1, 0])
    def test_final_reminder_offers_discount(self, days_left):
        notice = build_reminder_notice("1 Month", datetime(2025, 3, 5, tzinfo=timezone.utc), days_left)

        assert notice.title == "⏰ Your Subscription Is About to Expire!"
        assert "10% OFF" in notice.description

    def test_resubscribe_link(self):
        notice = build_reminder_notice("1 Month", datetime(2025, 3, 5, tzinfo=timezone.utc), 2,
                                       "https://shop.example/renew")

        assert notice.actions[0].url == "https://shop.example/renew"
        assert notice.actions[0].label == "Resubscribe Now"


class TestSweep:

    @pytest.mark.asyncio
    async def test_sends_due_reminder_once(self, scheduler, database, messaging):
        subscription = await subscription_with_reminder(database)

        report = await scheduler.run_sweep(now=NOW)

        assert (report.processed, report.sent, report.failed) == (1, 1, 0)
        user_id, notice = messaging.direct_notices[0]
        assert user_id == USER_ID
        assert notice.title == "📅 Subscription Expiring Soon"
        assert ("Days Left", "3", True) in notice.fields

        reminder = await only_reminder(database, subscription)
        assert reminder.sent
        assert reminder.sent_at == NOW

        again = await scheduler.run_sweep(now=NOW)
        assert again.processed == 0
        assert len(messaging.direct_notices) == 1

    @pytest.mark.asyncio
    async def test_final_reminder_uses_guild_link(self, scheduler, database, messaging, config):
        config.get_guild_config(GUILD_ID).resubscribe_url = "https://shop.example/renew"
        await subscription_with_reminder(database, days_before=1)

        await scheduler.run_sweep(now=NOW)

        notice = messaging.direct_notices[0][1]
        assert notice.title == "⏰ Your Subscription Is About to Expire!"
        assert notice.actions[0].url == "https://shop.example/renew"

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, scheduler, database, messaging):
        blocked = await subscription_with_reminder(database, user_id=1001)
        gone = await subscription_with_reminder(database, user_id=1002)
        crashing = await subscription_with_reminder(database, user_id=1003)
        unreachable = await subscription_with_reminder(database, user_id=1004)
        fine = await subscription_with_reminder(database, user_id=1005)
        messaging.dm_blocked.add(1001)
        messaging.missing_users.add(1002)
        messaging.lookup_crashes.add(1003)
        messaging.lookup_failures.add(1004)

        report = await scheduler.run_sweep(now=NOW)

        assert report.processed == 5
        assert report.sent == 1
        assert report.skipped == 1
        assert report.failed == 3
        assert [user_id for user_id, _ in messaging.direct_notices] == [1005]

        assert (await only_reminder(database, blocked)).error == "User 1001 does not accept direct messages"
        assert (await only_reminder(database, crashing)).error == "lookup exploded for 1003"
        assert (await only_reminder(database, unreachable)).error == "Failed to look up user 1004"
        skipped = await only_reminder(database, gone)
        assert skipped.sent and skipped.error is None
        assert (await only_reminder(database, fine)).sent

        # Failed reminders are not retried
        assert (await scheduler.run_sweep(now=NOW)).processed == 0

        actions = [entry.action for entry in await database.get_logs(GUILD_ID)]
        assert actions.count('reminder_failed') == 3
        assert actions.count('reminder_sent') == 1

    @pytest.mark.asyncio
    async def test_cancelled_subscription_not_reminded(self, scheduler, database, messaging):
        await subscription_with_reminder(database, status=SubscriptionStatus.CANCELLED)

        report = await scheduler.run_sweep(now=NOW)

        assert report.processed == 0
        assert messaging.direct_notices == []

    @pytest.mark.asyncio
    async def test_expires_lapsed_subscriptions(self, scheduler, database):
        lapsed = await subscription_with_reminder(database, end_date=NOW - timedelta(hours=1), user_id=OTHER_USER_ID)
        current = await subscription_with_reminder(database, end_date=NOW + timedelta(days=3))

        report = await scheduler.run_sweep(now=NOW)

        assert report.expired == 1
        assert (await database.get_subscription(lapsed.subscription_id)).status == SubscriptionStatus.EXPIRED
        assert (await database.get_subscription(current.subscription_id)).status == SubscriptionStatus.ACTIVE
        assert (await scheduler.run_sweep(now=NOW)).expired == 0

        logs = await database.get_logs(GUILD_ID)
        assert sum(1 for entry in logs if entry.action == 'subscription_expired') == 1

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_send_once(self, scheduler, database, messaging):
        await subscription_with_reminder(database)

        reports = await asyncio.gather(scheduler.run_sweep(now=NOW), scheduler.run_sweep(now=NOW))

        assert sum(report.sent for report in reports) == 1
        assert len(messaging.direct_notices) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_still_expires(self, scheduler, database, monkeypatch):
        lapsed = await subscription_with_reminder(database, end_date=NOW - timedelta(hours=1))
        monkeypatch.setattr(database, 'get_pending_reminders',
                            AsyncMock(side_effect=DatabaseError("database is locked")))

        report = await scheduler.run_sweep(now=NOW)

        assert report.errors == ["database is locked"]
        assert report.expired == 1
        assert (await database.get_subscription(lapsed.subscription_id)).status == SubscriptionStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_sweep_reported_to_audit_log(self, scheduler, database, audit):
        audit.audit_logger = Mock()
        await subscription_with_reminder(database)

        report = await scheduler.run_sweep(now=NOW)

        audit.audit_logger.log_scheduler_run.assert_called_once_with(
            processed=1, sent=1, skipped=0, failed=0, expired=0
        )
        assert scheduler.last_report is report

    @pytest.mark.asyncio
    async def test_expired_subscriber_told(self, scheduler, database, messaging, config):
        config.get_guild_config(GUILD_ID).resubscribe_url = "https://shop.example/renew"
        await subscription_with_reminder(database, end_date=NOW - timedelta(hours=1))

        report = await scheduler.run_sweep(now=NOW)

        assert (report.expired, report.notified) == (1, 1)
        user_id, notice = messaging.direct_notices[-1]
        assert user_id == USER_ID
        assert notice.title == "❌ Subscription Ended"
        assert "**1 Month**" in notice.description
        assert notice.actions[0].url == "https://shop.example/renew"

    @pytest.mark.asyncio
    async def test_expiry_stands_when_dm_blocked(self, scheduler, database, messaging):
        lapsed = await subscription_with_reminder(database, end_date=NOW - timedelta(hours=1))
        messaging.dm_blocked.add(USER_ID)

        report = await scheduler.run_sweep(now=NOW)

        assert (report.expired, report.notified) == (1, 0)
        assert (await database.get_subscription(lapsed.subscription_id)).status == SubscriptionStatus.EXPIRED
        logs = await database.get_logs(GUILD_ID)
        expired = next(entry for entry in logs if entry.action == 'subscription_expired')
        assert expired.details['notified'] is False

    @pytest.mark.asyncio
    async def test_reminder_for_moved_end_date_skipped(self, scheduler, database, messaging):
        subscription = await subscription_with_reminder(database, days_before=3,
                                                        end_date=NOW + timedelta(days=33))

        report = await scheduler.run_sweep(now=NOW)

        assert (report.processed, report.skipped, report.sent) == (1, 1, 0)
        assert messaging.direct_notices == []
        reminder = await only_reminder(database, subscription)
        assert reminder.sent and reminder.error is None

    @pytest.mark.asyncio
    async def test_no_reminder_once_ended(self, scheduler, database, messaging):
        subscription = await subscription_with_reminder(database, end_date=NOW - timedelta(hours=1))

        report = await scheduler.run_sweep(now=NOW)

        assert report.skipped == 1
        assert [notice.title for _, notice in messaging.direct_notices] == ["❌ Subscription Ended"]
        assert (await only_reminder(database, subscription)).sent

    @pytest.mark.asyncio
    async def test_days_left_counted_from_end_date(self, scheduler, database, messaging):
        # A sweep running late still reports the real time remaining
        await subscription_with_reminder(database, days_before=3, end_date=NOW + timedelta(days=2, hours=1))

        await scheduler.run_sweep(now=NOW)

        notice = messaging.direct_notices[0][1]
        assert ("Days Left", "3", True) in notice.fields

        messaging.direct_notices.clear()
        await subscription_with_reminder(database, user_id=OTHER_USER_ID, days_before=3,
                                         end_date=NOW + timedelta(hours=20))
        await scheduler.run_sweep(now=NOW)
        assert messaging.direct_notices[0][1].title == "⏰ Your Subscription Is About to Expire!"


class TestExtendThenSweep:

    @pytest.mark.asyncio
    async def test_no_stale_reminder_after_extension(self, scheduler, subscriptions, database, messaging, shop):
        subscription = await subscriptions.grant(GUILD_ID, USER_ID, shop.month.plan_id, now=NOW)
        await subscriptions.extend(subscription.subscription_id, 30, now=NOW)

        report = await scheduler.run_sweep(now=NOW + timedelta(days=27))
        assert report.processed == 0
        assert messaging.direct_notices == []

        await scheduler.run_sweep(now=NOW + timedelta(days=57))
        notice = messaging.direct_notices[0][1]
        assert ("Days Left", "3", True) in notice.fields


class TestManualReminder:

    @pytest.mark.asyncio
    async def test_sends_without_touching_schedule(self, scheduler, database, messaging):
        subscription = await subscription_with_reminder(database, end_date=NOW + timedelta(days=5))

        await scheduler.send_manual_reminder(subscription.subscription_id, actor_id=STAFF_ID, now=NOW)

        notice = messaging.direct_notices[0][1]
        assert ("Days Left", "5", True) in notice.fields
        assert not (await only_reminder(database, subscription)).sent

        logs = await database.get_logs(GUILD_ID)
        assert logs[0].action == 'reminder_sent_manually'
        assert logs[0].actor_id == STAFF_ID

    @pytest.mark.asyncio
    async def test_inactive_subscription_rejected(self, scheduler, database):
        subscription = await subscription_with_reminder(database, status=SubscriptionStatus.EXPIRED)

        with pytest.raises(PreconditionFailed) as exc_info:
            await scheduler.send_manual_reminder(subscription.subscription_id)
        assert exc_info.value.reason == RejectionReason.SUBSCRIPTION_INACTIVE

    @pytest.mark.asyncio
    async def test_missing_subscription(self, scheduler):
        with pytest.raises(SubscriptionNotFoundError):
            await scheduler.send_manual_reminder(9999)

    @pytest.mark.asyncio
    async def test_undeliverable(self, scheduler, database, messaging):
        subscription = await subscription_with_reminder(database)
        messaging.dm_blocked.add(USER_ID)

        with pytest.raises(ExternalUnavailableError):
            await scheduler.send_manual_reminder(subscription.subscription_id, now=NOW)


class TestLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler, config):
        config.set_global_config('reminder_startup_delay_seconds', 3600)

        scheduler.start()
        scheduler.start()
        assert scheduler.is_running

        scheduler.stop()
        await asyncio.sleep(0.05)
        assert not scheduler.is_running

    def test_not_running_until_started(self, scheduler):
        assert not scheduler.is_running
        scheduler.stop()
