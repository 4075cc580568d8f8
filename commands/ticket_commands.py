"""
Ticket Commands Cog

Routes ticket buttons and the email form to the workflow engine, and
provides slash commands for closing, claiming and inspecting tickets.
"""

from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from commands.base_cog import BaseCog, actor_from_interaction, require_staff_role
from core.actions import (
    EMAIL_MAX_LENGTH,
    EMAIL_MIN_LENGTH,
    ClaimTicket,
    CloseTicket,
    ComponentRoute,
    SubmitEmail,
    custom_id,
    parse_custom_id
)
from core.ticket_workflow import TicketWorkflowEngine, WorkflowResult
from errors import (
    handle_errors,
    PreconditionFailed,
    RejectionReason,
    TicketNotFoundError
)
from logging_config import get_logger
from models.ticket import Ticket

logger = get_logger(__name__)


class EmailModal(discord.ui.Modal, title="Subscription Email"):
    """Form collecting the email the subscription is delivered to."""

    email = discord.ui.TextInput(
        label="Email Address",
        placeholder="you@example.com",
        min_length=EMAIL_MIN_LENGTH,
        max_length=EMAIL_MAX_LENGTH
    )

    def __init__(self, cog: 'TicketCommands', ticket_id: str):
        super().__init__(custom_id=custom_id(SubmitEmail.operation, ticket_id))
        self.cog = cog
        self.ticket_id = ticket_id

    async def on_submit(self, interaction: discord.Interaction):
        await self.cog.submit_email(interaction, self.ticket_id, self.email.value)


class TicketCommands(BaseCog):
    """Cog wiring ticket interactions to the workflow engine."""

    def __init__(self, bot: commands.Bot):
        super().__init__(bot)
        self.workflow: Optional[TicketWorkflowEngine] = None

    async def cog_load(self):
        """Pick up the workflow engine when cog loads."""
        await super().cog_load()

        if getattr(self.bot, 'workflow', None) is not None:
            self.workflow = self.bot.workflow
        else:
            self.logger.warning("Workflow engine not available - ticket buttons will not work")

    def _validate_workflow(self) -> bool:
        """Check if the workflow engine is available."""
        return self.workflow is not None

    async def _reply(self, interaction: discord.Interaction, result: WorkflowResult):
        await self.send_success_embed(interaction, "✅ Done", result.message, ephemeral=True)

    async def _ticket_for_channel(self, interaction: discord.Interaction) -> Ticket:
        ticket = await self.workflow.database.get_ticket_by_channel(interaction.channel_id)
        if ticket is None:
            raise TicketNotFoundError(
                user_message="This command can only be used in ticket channels."
            )
        return ticket

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route ``ticket:*`` button clicks; other components are ignored."""
        if interaction.type != discord.InteractionType.component or interaction.guild is None:
            return

        route = parse_custom_id((interaction.data or {}).get('custom_id', ''))
        if route is None:
            return

        if route.is_email_prompt:
            await self.prompt_email(interaction, route.target)
        else:
            await self.run_route(interaction, route)

    @handle_errors
    async def run_route(self, interaction: discord.Interaction, route: ComponentRoute):
        """Run the transition a button stands for."""
        if not self._validate_workflow():
            await self.send_error_embed(
                interaction,
                "❌ Service Unavailable",
                "Ticket system is currently unavailable. Please try again later."
            )
            return

        action = route.to_action(actor_from_interaction(interaction))

        # Channel creation and notices can take longer than the 3s window
        await interaction.response.defer(ephemeral=True, thinking=True)

        result = await self.workflow.dispatch(action)
        await self._reply(interaction, result)

    @handle_errors
    async def prompt_email(self, interaction: discord.Interaction, ticket_id: str):
        """Show the email form to the ticket opener."""
        if not self._validate_workflow():
            await self.send_error_embed(
                interaction,
                "❌ Service Unavailable",
                "Ticket system is currently unavailable. Please try again later."
            )
            return

        ticket = await self.workflow.database.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        if ticket.user_id != interaction.user.id:
            raise PreconditionFailed(RejectionReason.NOT_OWNER)

        await interaction.response.send_modal(EmailModal(self, ticket_id))

    @handle_errors
    async def submit_email(self, interaction: discord.Interaction, ticket_id: str, email: str):
        """Handle the email form submission."""
        await interaction.response.defer(ephemeral=True, thinking=True)

        action = SubmitEmail(
            actor=actor_from_interaction(interaction),
            ticket_id=ticket_id,
            email=email
        )
        result = await self.workflow.dispatch(action)
        await self._reply(interaction, result)

    @app_commands.command(name="close", description="Close the current ticket")
    @app_commands.describe(reason="Optional reason for closing the ticket")
    @app_commands.guild_only()
    @handle_errors
    async def close_ticket(self, interaction: discord.Interaction, reason: Optional[str] = None):
        """
        Close the ticket this command is used in.

        The opener and staff can close a ticket; the channel is deleted a
        few seconds later.
        """
        if not self._validate_workflow():
            await self.send_error_embed(
                interaction,
                "❌ Service Unavailable",
                "Ticket system is currently unavailable. Please try again later."
            )
            return

        ticket = await self._ticket_for_channel(interaction)
        await interaction.response.defer(ephemeral=True)

        result = await self.workflow.dispatch(CloseTicket(
            actor=actor_from_interaction(interaction),
            ticket_id=ticket.ticket_id,
            reason=reason
        ))
        await self._reply(interaction, result)

    @app_commands.command(name="claim", description="Claim the current ticket")
    @app_commands.guild_only()
    @require_staff_role()
    @handle_errors
    async def claim_ticket(self, interaction: discord.Interaction):
        if not self._validate_workflow():
            await self.send_error_embed(
                interaction,
                "❌ Service Unavailable",
                "Ticket system is currently unavailable. Please try again later."
            )
            return

        ticket = await self._ticket_for_channel(interaction)
        await interaction.response.defer(ephemeral=True)

        result = await self.workflow.dispatch(ClaimTicket(
            actor=actor_from_interaction(interaction),
            ticket_id=ticket.ticket_id
        ))
        await self._reply(interaction, result)

    @app_commands.command(name="info", description="Get information about the current ticket")
    @app_commands.guild_only()
    @handle_errors
    async def ticket_info(self, interaction: discord.Interaction):
        """
        Display information about the current ticket.

        Shows ticket ID, opener, workflow stage, selections and claim.
        """
        if not self._validate_workflow():
            await self.send_error_embed(
                interaction,
                "❌ Service Unavailable",
                "Ticket system is currently unavailable. Please try again later."
            )
            return

        ticket = await self._ticket_for_channel(interaction)
        database = self.workflow.database
        catalog = self.workflow.catalog

        payment = await database.get_latest_payment(ticket.ticket_id)
        plan = await catalog.find_plan(ticket.plan_id)
        method = await catalog.find_payment_method(ticket.payment_method_id)

        embed = discord.Embed(
            title="📋 Ticket Information",
            color=discord.Color.blue(),
            timestamp=ticket.created_at
        )

        embed.add_field(name="Ticket ID", value=ticket.ticket_id, inline=True)
        embed.add_field(name="Status", value=ticket.status.value.title(), inline=True)
        embed.add_field(name="Opened By", value=f"<@{ticket.user_id}>", inline=True)
        embed.add_field(
            name="Stage",
            value=ticket.stage(payment_claimed=payment is not None).value.replace('_', ' ').title(),
            inline=True
        )
        embed.add_field(name="Plan", value=plan.name if plan else "*Not selected*", inline=True)
        embed.add_field(name="Payment Method", value=method.label if method else "*Not selected*", inline=True)

        if ticket.claimed_by:
            embed.add_field(name="Claimed By", value=f"<@{ticket.claimed_by}>", inline=True)
        if ticket.email:
            embed.add_field(name="Email", value=ticket.email, inline=True)

        embed.set_footer(text="Created")

        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(TicketCommands(bot))
