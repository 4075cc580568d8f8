"""
Ticket data model for the subscription ticket bot.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from models.timestamps import from_storage


class TicketStatus(Enum):
    """Enumeration for ticket status values."""
    OPEN = "open"
    CLOSED = "closed"


class TicketStage(Enum):
    """Workflow sub-stage derived from which ticket fields are set."""
    AWAITING_PLAN = "awaiting_plan"
    AWAITING_METHOD = "awaiting_method"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_EMAIL = "awaiting_email"
    COMPLETED = "completed"
    CLOSED = "closed"


# Fields that carry purchase state and are frozen once a ticket is closed
BUSINESS_FIELDS = frozenset({
    'plan_id',
    'payment_method_id',
    'payment_confirmed',
    'payment_confirmed_by',
    'payment_confirmed_at',
    'email',
    'claimed_by',
    'claimed_at',
})


@dataclass
class Ticket:
    """
    Data model representing one member's pass through the purchase workflow.

    Attributes:
        ticket_id: Unique identifier for the ticket
        guild_id: Discord guild (server) ID where ticket was created
        channel_id: Discord channel ID backing the ticket (unique)
        user_id: Discord user ID of the member who opened the ticket
        panel_id: Panel the ticket was opened from
        status: Current status of the ticket
        created_at: Timestamp when ticket was created
        plan_id: Selected plan (None until chosen)
        payment_method_id: Selected payment method (None until chosen)
        claimed_by: Staff member handling the ticket
        payment_confirmed: Whether staff attested the payment
        email: Subscription delivery email, collected after confirmation
        closed_by: User who closed the ticket
        closed_at: Timestamp when ticket was closed (None if still open)
    """
    ticket_id: str
    guild_id: int
    channel_id: int
    user_id: int
    panel_id: Optional[int]
    status: TicketStatus
    created_at: datetime
    plan_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    claimed_by: Optional[int] = None
    claimed_at: Optional[datetime] = None
    payment_confirmed: bool = False
    payment_confirmed_by: Optional[int] = None
    payment_confirmed_at: Optional[datetime] = None
    email: Optional[str] = None
    closed_by: Optional[int] = None
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == TicketStatus.OPEN

    def stage(self, payment_claimed: bool = False) -> TicketStage:
        """
        Derive the workflow sub-stage.

        Args:
            payment_claimed: Whether a pending payment claim exists for the ticket

        Returns:
            TicketStage: Current position in the purchase chain
        """
        if self.status == TicketStatus.CLOSED:
            return TicketStage.CLOSED
        if self.plan_id is None:
            return TicketStage.AWAITING_PLAN
        if self.payment_method_id is None:
            return TicketStage.AWAITING_METHOD
        if not self.payment_confirmed:
            if payment_claimed:
                return TicketStage.AWAITING_CONFIRMATION
            return TicketStage.AWAITING_PAYMENT
        if self.email is None:
            return TicketStage.AWAITING_EMAIL
        return TicketStage.COMPLETED

    def to_dict(self) -> dict:
        """Convert ticket to dictionary representation."""
        return {
            'ticket_id': self.ticket_id,
            'guild_id': self.guild_id,
            'channel_id': self.channel_id,
            'user_id': self.user_id,
            'panel_id': self.panel_id,
            'status': self.status.value,
            'created_at': self.created_at,
            'plan_id': self.plan_id,
            'payment_method_id': self.payment_method_id,
            'claimed_by': self.claimed_by,
            'claimed_at': self.claimed_at,
            'payment_confirmed': self.payment_confirmed,
            'payment_confirmed_by': self.payment_confirmed_by,
            'payment_confirmed_at': self.payment_confirmed_at,
            'email': self.email,
            'closed_by': self.closed_by,
            'closed_at': self.closed_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Ticket':
        """Create ticket instance from dictionary representation."""
        return cls(
            ticket_id=data['ticket_id'],
            guild_id=data['guild_id'],
            channel_id=data['channel_id'],
            user_id=data['user_id'],
            panel_id=data.get('panel_id'),
            status=TicketStatus(data['status']),
            created_at=from_storage(data['created_at']),
            plan_id=data.get('plan_id'),
            payment_method_id=data.get('payment_method_id'),
            claimed_by=data.get('claimed_by'),
            claimed_at=from_storage(data.get('claimed_at')),
            payment_confirmed=bool(data.get('payment_confirmed', False)),
            payment_confirmed_by=data.get('payment_confirmed_by'),
            payment_confirmed_at=from_storage(data.get('payment_confirmed_at')),
            email=data.get('email'),
            closed_by=data.get('closed_by'),
            closed_at=from_storage(data.get('closed_at'))
        )
