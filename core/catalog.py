"""
Catalog store for plans, payment methods and price overrides.

All price resolution goes through :meth:`CatalogStore.resolve_price` so that
plan selection, method selection, payment claims and subscription creation
quote the same amount.
"""

import logging
from typing import List, Optional, Tuple

from database.adapter import DatabaseAdapter
from errors.exceptions import NotFoundError, ValidationError
from models.catalog import Panel, PaymentMethod, Plan, PlanPricing, Price
from models.timestamps import utcnow

logger = logging.getLogger(__name__)


DEFAULT_PLANS = [
    {'name': '1 Month', 'duration_days': 30, 'price': 199, 'display_order': 1},
    {'name': '3 Months', 'duration_days': 90, 'price': 499, 'display_order': 2, 'recommended': True},
    {'name': '6 Months', 'duration_days': 180, 'price': 899, 'display_order': 3},
    {'name': '1 Year', 'duration_days': 365, 'price': 1499, 'display_order': 4},
]

DEFAULT_PAYMENT_METHODS = [
    {'name': 'upi', 'label': 'UPI', 'emoji': '💳', 'recommended': True, 'display_order': 1,
     'instructions': 'Send payment to the UPI ID provided and click "I Have Paid".'},
    {'name': 'paypal', 'label': 'PayPal', 'emoji': '🅿️', 'display_order': 2,
     'instructions': 'Send payment via PayPal and click "I Have Paid".'},
    {'name': 'crypto', 'label': 'Bitcoin', 'emoji': '₿', 'display_order': 3,
     'instructions': 'Send crypto to the wallet address provided and click "I Have Paid".'},
    {'name': 'card', 'label': 'Card', 'emoji': '💳', 'display_order': 4,
     'instructions': 'Complete the card payment and click "I Have Paid".'},
]


def _currency(code: Optional[str]) -> str:
    code = (code or '').strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency: {code!r}", field='currency', value=code,
                              user_message="Currency must be a three-letter code such as INR or USD.")
    return code


class CatalogStore:
    """
    A guild's panels, plans, payment methods and price overrides.

    Lookups that must succeed raise :class:`NotFoundError`; the ``find_*``
    variants return None instead.
    """

    def __init__(self, database: DatabaseAdapter):
        self.database = database

    async def get_panel(self, panel_id: int) -> Panel:
        panel = await self.database.get_panel(panel_id)
        if panel is None:
            raise NotFoundError('panel', panel_id)
        return panel

    async def get_plan(self, plan_id: int, guild_id: Optional[int] = None) -> Plan:
        """
        Fetch a plan, optionally checking it belongs to ``guild_id``.

        Raises:
            NotFoundError: If the plan does not exist in that guild
        """
        plan = await self.database.get_plan(plan_id)
        if plan is None or (guild_id is not None and plan.guild_id != guild_id):
            raise NotFoundError('plan', plan_id)
        return plan

    async def get_payment_method(self, method_id: int, guild_id: Optional[int] = None) -> PaymentMethod:
        method = await self.database.get_payment_method(method_id)
        if method is None or (guild_id is not None and method.guild_id != guild_id):
            raise NotFoundError('payment method', method_id)
        return method

    async def find_plan(self, plan_id: Optional[int]) -> Optional[Plan]:
        if plan_id is None:
            return None
        return await self.database.get_plan(plan_id)

    async def find_payment_method(self, method_id: Optional[int]) -> Optional[PaymentMethod]:
        if method_id is None:
            return None
        return await self.database.get_payment_method(method_id)

    async def list_plans(self, guild_id: int, enabled_only: bool = True) -> List[Plan]:
        return await self.database.get_plans(guild_id, enabled_only=enabled_only)

    async def list_payment_methods(self, guild_id: int, enabled_only: bool = True) -> List[PaymentMethod]:
        return await self.database.get_payment_methods(guild_id, enabled_only=enabled_only)

    async def resolve_price(self, plan: Plan, method: Optional[PaymentMethod] = None) -> Price:
        """
        Resolve what a plan costs when paid with ``method``.

        Args:
            plan: Plan being bought
            method: Payment method, or None for the plan's base price

        Returns:
            Price: The (plan, method) override when one exists, else the
                plan's own price and currency
        """
        if method is not None and method.method_id is not None:
            override = await self.database.get_plan_pricing(plan.plan_id, method.method_id)
            if override is not None:
                return override.as_price
        return plan.base_price

    async def quote_payment_methods(self, plan: Plan,
                                    methods: List[PaymentMethod]) -> List[Tuple[PaymentMethod, Price]]:
        """Pair every method with the price it would charge for ``plan``."""
        overrides = {
            pricing.method_id: pricing
            for pricing in await self.database.get_pricing_for_plan(plan.plan_id)
        }
        quotes = []
        for method in methods:
            override = overrides.get(method.method_id)
            quotes.append((method, override.as_price if override else plan.base_price))
        return quotes

    async def add_panel(self, panel: Panel) -> Panel:
        if panel.max_tickets_per_user < 1:
            raise ValidationError(f"Invalid ticket limit: {panel.max_tickets_per_user}",
                                  field='max_tickets_per_user', value=panel.max_tickets_per_user,
                                  user_message="The ticket limit must be at least 1.")
        if panel.cooldown_seconds < 0:
            raise ValidationError(f"Invalid cooldown: {panel.cooldown_seconds}",
                                  field='cooldown_seconds', value=panel.cooldown_seconds,
                                  user_message="The cooldown cannot be negative.")

        if panel.created_at is None:
            panel.created_at = utcnow()
        panel.panel_id = await self.database.create_panel(panel)
        logger.info(f"Added panel {panel.panel_id} in channel {panel.channel_id} of guild {panel.guild_id}")
        return panel

    async def add_plan(self, guild_id: int, name: str, duration_days: int, price: float,
                       currency: str = 'INR', discount_percent: int = 0,
                       recommended: bool = False) -> Plan:
        """
        Add a plan to a guild's catalog.

        Raises:
            ValidationError: If the name, duration, price or discount is invalid
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError("Plan name is empty", field='name', user_message="Plan name cannot be empty.")
        if duration_days <= 0:
            raise ValidationError(f"Invalid duration: {duration_days}", field='duration_days', value=duration_days,
                                  user_message="Duration must be at least one day.")
        if price < 0:
            raise ValidationError(f"Invalid price: {price}", field='price', value=price,
                                  user_message="Price cannot be negative.")
        if not 0 <= discount_percent <= 100:
            raise ValidationError(f"Invalid discount: {discount_percent}", field='discount_percent',
                                  value=discount_percent, user_message="Discount must be between 0 and 100.")

        existing = await self.database.get_plans(guild_id, enabled_only=False)
        plan = Plan(
            plan_id=None,
            guild_id=guild_id,
            name=name,
            duration_days=duration_days,
            price=price,
            currency=_currency(currency),
            discount_percent=discount_percent,
            recommended=recommended,
            display_order=len(existing) + 1
        )
        plan.plan_id = await self.database.create_plan(plan)
        logger.info(f"Added plan {plan.plan_id} ({name}) to guild {guild_id}")
        return plan

    async def add_payment_method(self, guild_id: int, name: str, label: str,
                                 instructions: Optional[str] = None, emoji: Optional[str] = None,
                                 payment_link: Optional[str] = None,
                                 recommended: bool = False) -> PaymentMethod:
        name = (name or '').strip().lower()
        label = (label or '').strip()
        if not name or not label:
            raise ValidationError("Payment method name or label is empty", field='name',
                                  user_message="Payment method name and label cannot be empty.")

        existing = await self.database.get_payment_methods(guild_id, enabled_only=False)
        method = PaymentMethod(
            method_id=None,
            guild_id=guild_id,
            name=name,
            label=label,
            instructions=instructions,
            emoji=emoji,
            payment_link=payment_link,
            recommended=recommended,
            display_order=len(existing) + 1
        )
        method.method_id = await self.database.create_payment_method(method)
        logger.info(f"Added payment method {method.method_id} ({label}) to guild {guild_id}")
        return method

    async def set_price_override(self, plan_id: int, method_id: int, amount: float,
                                 currency: Optional[str] = None) -> PlanPricing:
        if amount < 0:
            raise ValidationError(f"Invalid price: {amount}", field='price', value=amount,
                                  user_message="Price cannot be negative.")
        plan = await self.get_plan(plan_id)
        method = await self.get_payment_method(method_id, guild_id=plan.guild_id)
        pricing = PlanPricing(
            plan_id=plan.plan_id,
            method_id=method.method_id,
            price=amount,
            currency=_currency(currency or plan.currency)
        )
        await self.database.set_plan_pricing(pricing)
        return pricing

    async def seed_defaults(self, guild_id: int, currency: str = 'INR') -> Tuple[int, int]:
        """
        Create the starter plans and payment methods for a guild.

        Existing entries are left alone: nothing is seeded when the guild
        already has any plan (or any method, respectively).

        Returns:
            Tuple[int, int]: Number of plans and methods created
        """
        plans_created = 0
        methods_created = 0

        if not await self.database.get_plans(guild_id, enabled_only=False):
            for data in DEFAULT_PLANS:
                await self.database.create_plan(Plan(
                    plan_id=None,
                    guild_id=guild_id,
                    currency=currency,
                    **data
                ))
                plans_created += 1

        if not await self.database.get_payment_methods(guild_id, enabled_only=False):
            for data in DEFAULT_PAYMENT_METHODS:
                await self.database.create_payment_method(PaymentMethod(
                    method_id=None,
                    guild_id=guild_id,
                    **data
                ))
                methods_created += 1

        logger.info(f"Seeded {plans_created} plans and {methods_created} payment methods for guild {guild_id}")
        return plans_created, methods_created
