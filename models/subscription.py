"""
Subscription, reminder, payment and audit entry models.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from models.timestamps import ensure_utc, utcnow


class SubscriptionStatus(Enum):
    """Enumeration for subscription status values."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    """Enumeration for claimed payment status values."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DENIED = "denied"


@dataclass
class Subscription:
    """
    A time-bounded entitlement produced when a ticket completes.

    Attributes:
        subscription_id: Unique identifier
        guild_id: Guild the subscription was bought in
        user_id: Subscriber
        ticket_id: Ticket that produced the subscription
        plan_id: Plan bought
        email: Delivery email collected on the ticket
        plan_name: Plan name at purchase time
        price: Amount charged
        currency: Currency of the amount
        start_date: Start of the entitlement
        end_date: End of the entitlement
        payment_method: Payment method label at purchase time
        status: Current status
    """
    subscription_id: Optional[int]
    guild_id: int
    user_id: int
    ticket_id: Optional[str]
    plan_id: Optional[int]
    email: Optional[str]
    plan_name: str
    price: float
    currency: str
    start_date: datetime
    end_date: datetime
    payment_method: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole days left until end_date, rounded up; negative once lapsed."""
        now = ensure_utc(now) if now else utcnow()
        seconds = (ensure_utc(self.end_date) - now).total_seconds()
        return math.ceil(seconds / 86400)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subscription_id': self.subscription_id,
            'guild_id': self.guild_id,
            'user_id': self.user_id,
            'ticket_id': self.ticket_id,
            'plan_id': self.plan_id,
            'email': self.email,
            'plan_name': self.plan_name,
            'price': self.price,
            'currency': self.currency,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'payment_method': self.payment_method,
            'status': self.status.value,
        }


@dataclass
class Reminder:
    """A one-time expiry notification tied to one subscription."""
    reminder_id: Optional[int]
    subscription_id: int
    user_id: int
    guild_id: int
    reminder_date: date
    days_before: int
    sent: bool = False
    sent_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class DueReminder:
    """A pending reminder joined with the subscription details it reports on."""
    reminder: Reminder
    plan_name: str
    end_date: datetime

    def days_left(self, now: datetime) -> int:
        """Whole days until the subscription's current end date, rounded up."""
        seconds = (ensure_utc(self.end_date) - ensure_utc(now)).total_seconds()
        return math.ceil(seconds / 86400)


@dataclass
class Payment:
    """Audit record of a claimed payment attempt (not a verified transaction)."""
    payment_id: Optional[int]
    guild_id: int
    ticket_id: str
    user_id: int
    amount: float
    currency: str
    payment_method: Optional[str]
    status: PaymentStatus = PaymentStatus.PENDING
    subscription_id: Optional[int] = None
    confirmed_by: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class AuditEntry:
    """Append-only record of a workflow transition or scheduler action."""
    guild_id: int
    action: str
    actor_id: Optional[int] = None
    target_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    log_id: Optional[int] = None
