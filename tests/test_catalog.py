"""
Tests for the catalog store: price resolution, validation and seeding.
"""
import pytest

from conftest import GUILD_ID, PANEL_CHANNEL_ID
from core.catalog import DEFAULT_PAYMENT_METHODS, DEFAULT_PLANS
from errors.exceptions import NotFoundError, ValidationError
from models.catalog import Panel, Price


class TestPriceResolution:

    @pytest.mark.asyncio
    async def test_override_wins_for_its_method(self, catalog, shop):
        assert await catalog.resolve_price(shop.month, shop.paypal) == Price(3, 'USD')

    @pytest.mark.asyncio
    async def test_base_price_without_override(self, catalog, shop):
        assert await catalog.resolve_price(shop.month, shop.upi) == Price(199, 'INR')
        assert await catalog.resolve_price(shop.quarter, shop.paypal) == Price(499, 'INR')
        assert await catalog.resolve_price(shop.month) == Price(199, 'INR')

    @pytest.mark.asyncio
    async def test_quotes_match_resolved_prices(self, catalog, shop):
        methods = await catalog.list_payment_methods(GUILD_ID)

        quotes = await catalog.quote_payment_methods(shop.month, methods)

        for method, price in quotes:
            assert price == await catalog.resolve_price(shop.month, method)
        assert [method.name for method, _ in quotes] == ['upi', 'paypal']

    @pytest.mark.asyncio
    async def test_override_can_be_replaced(self, catalog, shop):
        await catalog.set_price_override(shop.month.plan_id, shop.paypal.method_id, 4.5)

        # Currency falls back to the plan's currency
        assert await catalog.resolve_price(shop.month, shop.paypal) == Price(4.5, 'INR')


class TestCatalogValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, days, price, discount", [
        ("", 30, 199, 0),
        ("Month", 0, 199, 0),
        ("Month", 30, -1, 0),
        ("Month", 30, 199, 101),
    ])
    async def test_invalid_plans_rejected(self, catalog, name, days, price, discount):
        with pytest.raises(ValidationError):
            await catalog.add_plan(GUILD_ID, name, days, price, discount_percent=discount)

    @pytest.mark.asyncio
    async def test_invalid_currency_rejected(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.add_plan(GUILD_ID, "Month", 30, 199, currency="rupees")

    @pytest.mark.asyncio
    async def test_plan_currency_normalized(self, catalog):
        plan = await catalog.add_plan(GUILD_ID, " Month ", 30, 5, currency="usd")

        assert plan.name == "Month"
        assert plan.currency == "USD"

    @pytest.mark.asyncio
    async def test_panel_limits_validated(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.add_panel(Panel(panel_id=None, guild_id=GUILD_ID, channel_id=PANEL_CHANNEL_ID,
                                          max_tickets_per_user=0))

        with pytest.raises(ValidationError):
            await catalog.add_panel(Panel(panel_id=None, guild_id=GUILD_ID, channel_id=PANEL_CHANNEL_ID,
                                          cooldown_seconds=-5))

    @pytest.mark.asyncio
    async def test_method_needs_name_and_label(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.add_payment_method(GUILD_ID, "upi", " ")

    @pytest.mark.asyncio
    async def test_override_needs_method_in_same_guild(self, catalog, shop):
        foreign = await catalog.add_payment_method(GUILD_ID + 1, 'upi', 'UPI')

        with pytest.raises(NotFoundError):
            await catalog.set_price_override(shop.month.plan_id, foreign.method_id, 10)

    @pytest.mark.asyncio
    async def test_lookups_check_guild(self, catalog, shop):
        with pytest.raises(NotFoundError):
            await catalog.get_plan(shop.month.plan_id, guild_id=GUILD_ID + 1)

        with pytest.raises(NotFoundError):
            await catalog.get_panel(9999)

        assert await catalog.find_plan(None) is None
        assert await catalog.find_payment_method(9999) is None


class TestSeeding:

    @pytest.mark.asyncio
    async def test_seed_defaults(self, catalog):
        created = await catalog.seed_defaults(GUILD_ID)

        assert created == (len(DEFAULT_PLANS), len(DEFAULT_PAYMENT_METHODS))
        plans = await catalog.list_plans(GUILD_ID)
        assert [plan.name for plan in plans] == ['1 Month', '3 Months', '6 Months', '1 Year']
        assert [plan.recommended for plan in plans] == [False, True, False, False]

    @pytest.mark.asyncio
    async def test_seed_leaves_existing_catalog_alone(self, catalog, shop):
        assert await catalog.seed_defaults(GUILD_ID) == (0, 0)
        assert len(await catalog.list_plans(GUILD_ID)) == 2
