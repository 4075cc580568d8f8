"""
Unit tests for the ticket, catalog and subscription models.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from models.catalog import Price
from models.subscription import Subscription, SubscriptionStatus
from models.ticket import Ticket, TicketStage, TicketStatus
from models.timestamps import ensure_utc, from_storage, parse_date, to_storage


def make_ticket(**overrides) -> Ticket:
    data = dict(
        ticket_id="AB12CD34",
        guild_id=111,
        channel_id=222,
        user_id=333,
        panel_id=1,
        status=TicketStatus.OPEN,
        created_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    )
    data.update(overrides)
    return Ticket(**data)


class TestTicketStage:
    """The workflow stage is derived purely from which fields are set."""

    def test_new_ticket_awaits_plan(self):
        assert make_ticket().stage() == TicketStage.AWAITING_PLAN

    def test_plan_selected_awaits_method(self):
        assert make_ticket(plan_id=1).stage() == TicketStage.AWAITING_METHOD

    def test_method_selected_awaits_payment(self):
        ticket = make_ticket(plan_id=1, payment_method_id=2)
        assert ticket.stage() == TicketStage.AWAITING_PAYMENT
        assert ticket.stage(payment_claimed=True) == TicketStage.AWAITING_CONFIRMATION

    def test_confirmed_awaits_email(self):
        ticket = make_ticket(plan_id=1, payment_method_id=2, payment_confirmed=True)
        assert ticket.stage() == TicketStage.AWAITING_EMAIL

    def test_email_completes(self):
        ticket = make_ticket(plan_id=1, payment_method_id=2, payment_confirmed=True, email="a@b.com")
        assert ticket.stage() == TicketStage.COMPLETED

    def test_closed_wins_over_fields(self):
        ticket = make_ticket(plan_id=1, status=TicketStatus.CLOSED)
        assert ticket.stage() == TicketStage.CLOSED
        assert not ticket.is_open


class TestTicketSerialization:

    def test_to_dict_and_back(self):
        ticket = make_ticket(plan_id=3, payment_method_id=4, claimed_by=55,
                             claimed_at=datetime(2025, 1, 2, tzinfo=timezone.utc))
        restored = Ticket.from_dict(ticket.to_dict())

        assert restored == ticket

    def test_from_dict_parses_stored_timestamps(self):
        data = make_ticket().to_dict()
        data['created_at'] = '2025-01-01T12:00:00.000000+00:00'
        data['payment_confirmed'] = 1

        ticket = Ticket.from_dict(data)

        assert ticket.created_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert ticket.payment_confirmed is True


class TestTimestamps:

    def test_naive_datetimes_are_treated_as_utc(self):
        naive = datetime(2025, 3, 5, 8, 30)
        assert ensure_utc(naive).tzinfo == timezone.utc
        assert ensure_utc(naive).hour == 8

    def test_storage_strings_sort_like_times(self):
        earlier = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
        later = earlier + timedelta(microseconds=1)
        offset = timezone(timedelta(hours=5, minutes=30))
        same_instant_elsewhere = later.astimezone(offset)

        assert to_storage(earlier) < to_storage(later)
        assert to_storage(same_instant_elsewhere) == to_storage(later)

    def test_storage_round_trip(self):
        value = datetime(2025, 6, 30, 23, 59, 59, 123456, tzinfo=timezone.utc)
        assert from_storage(to_storage(value)) == value
        assert from_storage(None) is None

    def test_parse_date(self):
        assert parse_date("2025-03-05") == date(2025, 3, 5)
        assert parse_date(datetime(2025, 3, 5, 10, 0)) == date(2025, 3, 5)
        assert parse_date(None) is None


class TestPrice:

    @pytest.mark.parametrize("price, expected", [
        (Price(199, 'INR'), "₹199"),
        (Price(3.5, 'USD'), "$3.5"),
        (Price(1499, 'inr'), "₹1,499"),
        (Price(10, 'EUR'), "EUR 10"),
    ])
    def test_format(self, price, expected):
        assert price.format() == expected


class TestSubscription:

    def make_subscription(self, end_date: datetime) -> Subscription:
        start = end_date - timedelta(days=30)
        return Subscription(
            subscription_id=1,
            guild_id=111,
            user_id=333,
            ticket_id="AB12CD34",
            plan_id=1,
            email="a@b.com",
            plan_name="1 Month",
            price=199,
            currency="INR",
            start_date=start,
            end_date=end_date
        )

    def test_days_remaining_rounds_up(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        subscription = self.make_subscription(now + timedelta(days=2, hours=1))

        assert subscription.days_remaining(now) == 3

    def test_days_remaining_negative_after_end(self):
        now = datetime(2025, 1, 10, tzinfo=timezone.utc)
        subscription = self.make_subscription(now - timedelta(days=2))

        assert subscription.days_remaining(now) == -2

    def test_is_active(self):
        subscription = self.make_subscription(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert subscription.is_active

        subscription.status = SubscriptionStatus.CANCELLED
        assert not subscription.is_active
