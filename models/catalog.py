"""
Catalog reference data: panels, plans, payment methods and price overrides.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


CURRENCY_SYMBOLS = {
    'INR': '₹',
    'USD': '$',
}


@dataclass(frozen=True)
class Price:
    """A resolved amount in a specific currency."""
    amount: float
    currency: str = 'INR'

    def format(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency.upper())
        amount = f"{self.amount:,.2f}".rstrip('0').rstrip('.')
        if symbol:
            return f"{symbol}{amount}"
        return f"{self.currency.upper()} {amount}"


@dataclass
class Panel:
    """
    Administrator-configured entry point that opens new tickets.

    Attributes:
        panel_id: Unique panel identifier
        guild_id: Guild the panel belongs to
        channel_id: Channel where the panel message is posted
        category_id: Category new ticket channels are created under
        staff_role_id: Role that can see and manage tickets from this panel
        log_channel_id: Channel receiving ticket log notices
        max_tickets_per_user: Open tickets a member may hold on this panel
        cooldown_seconds: Minimum delay between two tickets from one member
    """
    panel_id: Optional[int]
    guild_id: int
    channel_id: int
    category_id: Optional[int] = None
    staff_role_id: Optional[int] = None
    log_channel_id: Optional[int] = None
    max_tickets_per_user: int = 1
    cooldown_seconds: int = 0
    enabled: bool = True
    title: str = "Support Tickets"
    description: str = "Click the button below to open a ticket."
    button_label: str = "Open Ticket"
    message_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class Plan:
    """A purchasable duration/price unit."""
    plan_id: Optional[int]
    guild_id: int
    name: str
    duration_days: int
    price: float
    currency: str = 'INR'
    discount_percent: int = 0
    enabled: bool = True
    recommended: bool = False
    display_order: int = 0

    @property
    def base_price(self) -> Price:
        return Price(amount=self.price, currency=self.currency)


@dataclass
class PaymentMethod:
    """A named way to pay, with instructions shown after selection."""
    method_id: Optional[int]
    guild_id: int
    name: str
    label: str
    instructions: Optional[str] = None
    emoji: Optional[str] = None
    payment_link: Optional[str] = None
    recommended: bool = False
    enabled: bool = True
    display_order: int = 0


@dataclass
class PlanPricing:
    """Per (plan, payment method) price override."""
    plan_id: int
    method_id: int
    price: float
    currency: str = 'INR'

    @property
    def as_price(self) -> Price:
        return Price(amount=self.price, currency=self.currency)
