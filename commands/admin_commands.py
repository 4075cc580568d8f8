"""
Admin Commands Cog

Implements administrative commands for server setup, the plan and payment
method catalog, ticket panels, and subscription management.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from commands.base_cog import BaseCog, require_admin_role, require_staff_role
from core.actions import OpenTicket, custom_id, normalize_email
from core.messaging import ActionStyle, Notice, NoticeAction, NoticeColor, format_date
from errors import handle_errors, SubscriptionNotFoundError, ValidationError
from models.catalog import Panel, Price
from models.subscription import SubscriptionStatus
from models.timestamps import utcnow

logger = logging.getLogger(__name__)


LIST_LIMIT = 15


def parse_reminder_days(value: str):
    """Parse ``"3,2,1"`` into ``[3, 2, 1]``."""
    try:
        days = [int(part) for part in value.replace(' ', '').split(',') if part]
    except ValueError:
        raise ValidationError(f"Invalid reminder days: {value!r}", field='reminder_days', value=value,
                              user_message="Reminder days must be a comma-separated list such as `3,2,1`.")

    if not days or any(day <= 0 for day in days) or len(set(days)) != len(days):
        raise ValidationError(f"Invalid reminder days: {value!r}", field='reminder_days', value=value,
                              user_message="Reminder days must be distinct positive numbers.")
    return sorted(days, reverse=True)


def parse_start_date(value: str) -> datetime:
    """Parse ``"2025-03-01"`` into midnight UTC of that day."""
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValidationError(f"Invalid start date: {value!r}", field='start_date', value=value,
                              user_message="Start date must look like `2025-03-01`.")


class AdminCommands(BaseCog):
    """Cog containing administrative commands for setup and subscription management."""

    panel = app_commands.Group(name="panel", description="Manage ticket panels", guild_only=True)
    plan = app_commands.Group(name="plan", description="Manage subscription plans", guild_only=True)
    method = app_commands.Group(name="method", description="Manage payment methods", guild_only=True)
    pricing = app_commands.Group(name="pricing", description="Manage per-method prices", guild_only=True)
    catalog_group = app_commands.Group(name="catalog", description="Manage the plan catalog", guild_only=True)
    subscription = app_commands.Group(name="subscription", description="Manage subscriptions", guild_only=True)

    def __init__(self, bot: commands.Bot):
        super().__init__(bot)

    @property
    def config_manager(self):
        return self.bot.config_manager

    @property
    def catalog(self):
        return self.bot.catalog

    @property
    def subscriptions(self):
        return self.bot.subscriptions

    @property
    def scheduler(self):
        return self.bot.scheduler

    async def _guild_subscription(self, interaction: discord.Interaction, subscription_id: int):
        subscription = await self.subscriptions.get_subscription(subscription_id)
        if subscription.guild_id != interaction.guild.id:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    # Server setup

    @app_commands.command(name="setup", description="Initial setup for the subscription ticket system")
    @app_commands.describe(
        staff_role="The role that can manage tickets",
        ticket_category="Category where ticket channels will be created",
        log_channel="Channel for ticket logs (optional)",
        resubscribe_url="Link shown on renewal reminders (optional)",
        reminder_days="Days before expiry to remind members, e.g. 3,2,1 (optional)"
    )
    @app_commands.guild_only()
    @require_admin_role()
    @handle_errors
    async def setup(
        self,
        interaction: discord.Interaction,
        staff_role: discord.Role,
        ticket_category: discord.CategoryChannel,
        log_channel: Optional[discord.TextChannel] = None,
        resubscribe_url: Optional[str] = None,
        reminder_days: Optional[str] = None
    ):
        """
        Initial setup command for the ticket system.

        Stores the staff role, ticket category, log channel and reminder
        schedule for this server.
        """
        days = parse_reminder_days(reminder_days) if reminder_days else None

        await interaction.response.defer()

        guild_config = self.config_manager.get_guild_config(interaction.guild.id)
        guild_config.staff_roles = [staff_role.id]
        guild_config.ticket_category = ticket_category.id
        if log_channel:
            guild_config.log_channel = log_channel.id
        if resubscribe_url:
            guild_config.resubscribe_url = resubscribe_url
        if days:
            guild_config.reminder_days = days

        self.config_manager.set_guild_config(guild_config)
        self.config_manager.save_configuration()

        embed = discord.Embed(
            title="✅ Setup Complete",
            description="Subscription ticket system has been configured successfully!",
            color=discord.Color.green()
        )
        embed.add_field(name="Staff Role", value=staff_role.mention, inline=True)
        embed.add_field(name="Ticket Category", value=ticket_category.mention, inline=True)
        if log_channel:
            embed.add_field(name="Log Channel", value=log_channel.mention, inline=True)
        embed.add_field(
            name="Reminders",
            value=", ".join(f"{day}d" for day in guild_config.reminder_days),
            inline=True
        )
        embed.add_field(
            name="Next Steps",
            value="Use `/catalog seed` or `/plan add` to create plans, then `/panel create` to post a ticket panel.",
            inline=False
        )

        await interaction.followup.send(embed=embed)

    # Panels

    @panel.command(name="create", description="Post a ticket panel with an open button")
    @app_commands.describe(
        channel="Channel to post the panel in",
        staff_role="Role that handles tickets from this panel (optional)",
        category="Category for ticket channels (optional, defaults to the server setting)",
        log_channel="Channel for this panel's ticket logs (optional)",
        max_tickets="Open tickets a member may hold on this panel",
        cooldown_seconds="Minimum seconds between two tickets from one member",
        title="Panel title (optional)",
        description="Panel description (optional)"
    )
    @require_admin_role()
    @handle_errors
    async def panel_create(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        staff_role: Optional[discord.Role] = None,
        category: Optional[discord.CategoryChannel] = None,
        log_channel: Optional[discord.TextChannel] = None,
        max_tickets: app_commands.Range[int, 1, 10] = 1,
        cooldown_seconds: app_commands.Range[int, 0, 86400] = 0,
        title: Optional[str] = None,
        description: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)

        panel = Panel(
            panel_id=None,
            guild_id=interaction.guild.id,
            channel_id=channel.id,
            category_id=category.id if category else None,
            staff_role_id=staff_role.id if staff_role else None,
            log_channel_id=log_channel.id if log_channel else None,
            max_tickets_per_user=max_tickets,
            cooldown_seconds=cooldown_seconds
        )
        if title:
            panel.title = title
        if description:
            panel.description = description

        panel = await self.catalog.add_panel(panel)

        notice = Notice(
            title=f"🎫 {panel.title}",
            description=panel.description,
            color=NoticeColor.PRIMARY,
            footer="Subscription Tickets"
        )
        notice.actions.append(NoticeAction(
            label=panel.button_label,
            custom_id=custom_id(OpenTicket.operation, panel.panel_id),
            style=ActionStyle.PRIMARY,
            emoji="🎫"
        ))

        result = await self.bot.messaging.send_channel_notice(channel.id, notice)
        if not result.ok:
            await self.send_error_embed(
                interaction,
                "❌ Failed to Post Panel",
                f"Panel {panel.panel_id} was saved but could not be posted in {channel.mention}: {result.error}"
            )
            return

        await self.catalog.database.update_panel(panel.panel_id, {'message_id': result.value})
        await self.send_success_embed(
            interaction,
            "✅ Panel Created",
            f"Panel **{panel.panel_id}** has been posted in {channel.mention}.",
            ephemeral=True
        )

    @panel.command(name="list", description="List ticket panels")
    @require_admin_role()
    @handle_errors
    async def panel_list(self, interaction: discord.Interaction):
        panels = await self.catalog.database.get_panels(interaction.guild.id)

        embed = discord.Embed(title="🎫 Ticket Panels", color=discord.Color.blue())
        if not panels:
            embed.description = "*No panels configured.* Use `/panel create` to add one."
        for panel in panels[:LIST_LIMIT]:
            status = "Enabled" if panel.enabled else "Disabled"
            embed.add_field(
                name=f"#{panel.panel_id} {panel.title}",
                value=(
                    f"Channel: <#{panel.channel_id}>\n"
                    f"Limit: {panel.max_tickets_per_user} open | Cooldown: {panel.cooldown_seconds}s\n"
                    f"Status: {status}"
                ),
                inline=False
            )

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @panel.command(name="toggle", description="Enable or disable a ticket panel")
    @app_commands.describe(panel_id="Panel to change", enabled="Whether members can open tickets")
    @require_admin_role()
    @handle_errors
    async def panel_toggle(self, interaction: discord.Interaction, panel_id: int, enabled: bool):
        panel = await self.catalog.get_panel(panel_id)
        if panel.guild_id != interaction.guild.id:
            raise ValidationError(f"Panel {panel_id} belongs to another guild", field='panel_id',
                                  user_message="That panel does not belong to this server.")

        await self.catalog.database.update_panel(panel_id, {'enabled': enabled})
        state = "enabled" if enabled else "disabled"
        await self.send_success_embed(interaction, "✅ Panel Updated", f"Panel **{panel_id}** is now {state}.",
                                      ephemeral=True)

    # Catalog

    @plan.command(name="add", description="Add a subscription plan")
    @app_commands.describe(
        name="Plan name, e.g. 1 Month",
        duration_days="How long the subscription lasts",
        price="Base price",
        currency="Three-letter currency code (defaults to the server currency)",
        discount_percent="Discount shown next to the price",
        recommended="Highlight this plan"
    )
    @require_admin_role()
    @handle_errors
    async def plan_add(
        self,
        interaction: discord.Interaction,
        name: str,
        duration_days: app_commands.Range[int, 1, 3650],
        price: app_commands.Range[float, 0.0],
        currency: Optional[str] = None,
        discount_percent: app_commands.Range[int, 0, 100] = 0,
        recommended: bool = False
    ):
        guild_config = self.config_manager.get_guild_config(interaction.guild.id)
        plan = await self.catalog.add_plan(
            interaction.guild.id,
            name,
            duration_days,
            price,
            currency=currency or guild_config.default_currency,
            discount_percent=discount_percent,
            recommended=recommended
        )
        await self.send_success_embed(
            interaction,
            "✅ Plan Added",
            f"**{plan.name}** (#{plan.plan_id}): {plan.base_price.format()} for {plan.duration_days} days",
            ephemeral=True
        )

    @plan.command(name="list", description="List subscription plans")
    @require_staff_role()
    @handle_errors
    async def plan_list(self, interaction: discord.Interaction):
        plans = await self.catalog.list_plans(interaction.guild.id, enabled_only=False)

        embed = discord.Embed(title="📦 Subscription Plans", color=discord.Color.blue())
        if not plans:
            embed.description = "*No plans configured.* Use `/plan add` or `/catalog seed`."
        for plan in plans[:LIST_LIMIT]:
            value = f"{plan.base_price.format()} for {plan.duration_days} days"
            if plan.discount_percent:
                value += f" ({plan.discount_percent}% OFF)"
            if not plan.enabled:
                value += " - disabled"
            embed.add_field(name=f"#{plan.plan_id} {plan.name}", value=value, inline=False)

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @method.command(name="add", description="Add a payment method")
    @app_commands.describe(
        name="Short key, e.g. upi",
        label="Name shown to members, e.g. UPI",
        instructions="Payment instructions shown after selection",
        emoji="Emoji shown next to the label",
        payment_link="Link members can pay through",
        recommended="Highlight this method"
    )
    @require_admin_role()
    @handle_errors
    async def method_add(
        self,
        interaction: discord.Interaction,
        name: str,
        label: str,
        instructions: Optional[str] = None,
        emoji: Optional[str] = None,
        payment_link: Optional[str] = None,
        recommended: bool = False
    ):
        method = await self.catalog.add_payment_method(
            interaction.guild.id, name, label,
            instructions=instructions,
            emoji=emoji,
            payment_link=payment_link,
            recommended=recommended
        )
        await self.send_success_embed(
            interaction,
            "✅ Payment Method Added",
            f"**{method.label}** (#{method.method_id}) is now available.",
            ephemeral=True
        )

    @pricing.command(name="set", description="Set the price of a plan for one payment method")
    @app_commands.describe(
        plan_id="Plan to price",
        method_id="Payment method the price applies to",
        price="Price when paying with this method",
        currency="Three-letter currency code (defaults to the plan currency)"
    )
    @require_admin_role()
    @handle_errors
    async def pricing_set(
        self,
        interaction: discord.Interaction,
        plan_id: int,
        method_id: int,
        price: app_commands.Range[float, 0.0],
        currency: Optional[str] = None
    ):
        await self.catalog.get_plan(plan_id, guild_id=interaction.guild.id)
        pricing = await self.catalog.set_price_override(plan_id, method_id, price, currency)
        await self.send_success_embed(
            interaction,
            "✅ Price Updated",
            f"Plan #{plan_id} now costs {pricing.as_price.format()} with method #{method_id}.",
            ephemeral=True
        )

    @catalog_group.command(name="seed", description="Create the default plans and payment methods")
    @require_admin_role()
    @handle_errors
    async def catalog_seed(self, interaction: discord.Interaction):
        guild_config = self.config_manager.get_guild_config(interaction.guild.id)
        plans, methods = await self.catalog.seed_defaults(interaction.guild.id, guild_config.default_currency)

        if not plans and not methods:
            description = "This server already has plans and payment methods; nothing was added."
        else:
            description = f"Added {plans} plans and {methods} payment methods."
        await self.send_success_embed(interaction, "✅ Catalog Seeded", description, ephemeral=True)

    # Subscriptions

    @subscription.command(name="add", description="Give a member a subscription without a ticket")
    @app_commands.describe(
        user="Member receiving the subscription",
        plan_id="Plan to grant",
        email="Delivery email (optional)",
        start_date="Start date as YYYY-MM-DD (defaults to today)"
    )
    @require_admin_role()
    @handle_errors
    async def subscription_add(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        plan_id: int,
        email: Optional[str] = None,
        start_date: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        start = parse_start_date(start_date) if start_date else None
        subscription = await self.subscriptions.grant(
            interaction.guild.id, user.id, plan_id,
            email=normalize_email(email) if email else None,
            start_date=start,
            actor_id=interaction.user.id
        )
        await self.send_success_embed(
            interaction,
            "✅ Subscription Added",
            f"Subscription **{subscription.subscription_id}** ({subscription.plan_name}) for "
            f"{user.mention} runs until **{format_date(subscription.end_date)}**.",
            ephemeral=True
        )

    @subscription.command(name="extend", description="Extend a subscription")
    @app_commands.describe(subscription_id="Subscription to extend", days="Days to add")
    @require_staff_role()
    @handle_errors
    async def subscription_extend(
        self,
        interaction: discord.Interaction,
        subscription_id: int,
        days: app_commands.Range[int, 1, 3650]
    ):
        await interaction.response.defer(ephemeral=True)
        await self._guild_subscription(interaction, subscription_id)
        subscription = await self.subscriptions.extend(subscription_id, days, actor_id=interaction.user.id)
        await self.send_success_embed(
            interaction,
            "✅ Subscription Extended",
            f"Subscription **{subscription_id}** for <@{subscription.user_id}> now ends on "
            f"**{format_date(subscription.end_date)}**.",
            ephemeral=True
        )

    @subscription.command(name="cancel", description="Cancel an active subscription")
    @app_commands.describe(subscription_id="Subscription to cancel")
    @require_staff_role()
    @handle_errors
    async def subscription_cancel(self, interaction: discord.Interaction, subscription_id: int):
        await interaction.response.defer(ephemeral=True)
        await self._guild_subscription(interaction, subscription_id)
        subscription = await self.subscriptions.cancel(subscription_id, actor_id=interaction.user.id)
        await self.send_success_embed(
            interaction,
            "✅ Subscription Cancelled",
            f"Subscription **{subscription_id}** for <@{subscription.user_id}> has been cancelled.",
            ephemeral=True
        )

    @subscription.command(name="remind", description="Send an expiry reminder now")
    @app_commands.describe(subscription_id="Subscription to remind about")
    @require_staff_role()
    @handle_errors
    async def subscription_remind(self, interaction: discord.Interaction, subscription_id: int):
        await interaction.response.defer(ephemeral=True)
        await self._guild_subscription(interaction, subscription_id)
        subscription = await self.scheduler.send_manual_reminder(subscription_id, actor_id=interaction.user.id)
        await self.send_success_embed(
            interaction,
            "✅ Reminder Sent",
            f"Sent a reminder to <@{subscription.user_id}>.",
            ephemeral=True
        )

    @subscription.command(name="list", description="List subscriptions")
    @app_commands.describe(status="Only show subscriptions with this status")
    @app_commands.choices(status=[
        app_commands.Choice(name="Active", value="active"),
        app_commands.Choice(name="Expired", value="expired"),
        app_commands.Choice(name="Cancelled", value="cancelled")
    ])
    @require_staff_role()
    @handle_errors
    async def subscription_list(self, interaction: discord.Interaction, status: Optional[str] = None):
        subscriptions = await self.subscriptions.list_subscriptions(
            interaction.guild.id,
            status=SubscriptionStatus(status) if status else None,
            limit=LIST_LIMIT
        )

        embed = discord.Embed(title="📋 Subscriptions", color=discord.Color.blue())
        if not subscriptions:
            embed.description = "*No subscriptions found.*"
        for sub in subscriptions:
            embed.add_field(
                name=f"#{sub.subscription_id} {sub.plan_name} ({sub.status.value})",
                value=(
                    f"<@{sub.user_id}> | {Price(sub.price, sub.currency).format()}\n"
                    f"Ends {format_date(sub.end_date)}"
                ),
                inline=False
            )

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @subscription.command(name="expiring", description="List subscriptions ending soon")
    @app_commands.describe(days="Look this many days ahead (defaults to the configured window)")
    @require_staff_role()
    @handle_errors
    async def subscription_expiring(
        self,
        interaction: discord.Interaction,
        days: Optional[app_commands.Range[int, 1, 365]] = None
    ):
        now = utcnow()
        subscriptions = await self.subscriptions.expiring_within(interaction.guild.id, days, now=now)
        window = days or self.config_manager.expiring_window_days

        embed = discord.Embed(
            title="⏳ Expiring Subscriptions",
            description=f"Active subscriptions ending in the next {window} days.",
            color=discord.Color.orange()
        )
        if not subscriptions:
            embed.description += "\n\n*None.*"
        for sub in subscriptions[:LIST_LIMIT]:
            embed.add_field(
                name=f"#{sub.subscription_id} {sub.plan_name}",
                value=f"<@{sub.user_id}> | {sub.days_remaining(now)} days left ({format_date(sub.end_date)})",
                inline=False
            )

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="stats", description="Show subscription and ticket statistics")
    @app_commands.guild_only()
    @require_staff_role()
    @handle_errors
    async def stats(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        stats = await self.subscriptions.stats(interaction.guild.id)
        subs = stats['subscriptions']
        tickets = stats['tickets']

        embed = discord.Embed(title="📊 Statistics", color=discord.Color.blue())
        embed.add_field(
            name="Subscriptions",
            value=(
                f"Total: {subs['total']}\nActive: {subs['active']}\n"
                f"Expired: {subs['expired']}\nCancelled: {subs['cancelled']}\n"
                f"Expiring soon: {subs['expiring_soon']}"
            ),
            inline=True
        )
        embed.add_field(
            name="Tickets",
            value=f"Total: {tickets['total']}\nOpen: {tickets['open']}\nClosed: {tickets['closed']}",
            inline=True
        )

        revenue = [Price(amount, currency).format() for currency, amount in subs['revenue'].items()]
        embed.add_field(name="Revenue", value="\n".join(revenue) or "None", inline=True)

        if stats['plans']:
            embed.add_field(
                name="Plans",
                value="\n".join(
                    f"{row['plan_name']}: {row['count']} ({Price(row['revenue'], row['currency']).format()})"
                    for row in stats['plans'][:LIST_LIMIT]
                ),
                inline=False
            )

        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(AdminCommands(bot))
