"""
Base Cog Class

Provides common functionality for all command cogs: permission checks,
building the workflow actor from an interaction and standard embeds.
"""

import logging
from typing import Callable
from functools import wraps

import discord
from discord.ext import commands
from discord import app_commands

from core.actions import Actor
from core.discord_messaging import render_embed, render_view
from core.messaging import Notice


logger = logging.getLogger(__name__)


def actor_from_interaction(interaction: discord.Interaction) -> Actor:
    """Describe the member behind an interaction for the workflow engine."""
    user = interaction.user
    permissions = getattr(user, 'guild_permissions', None)
    is_admin = bool(permissions and (permissions.administrator or permissions.manage_guild))
    return Actor(
        user_id=user.id,
        guild_id=interaction.guild.id if interaction.guild else 0,
        is_admin=is_admin,
        role_ids=frozenset(role.id for role in getattr(user, 'roles', []))
    )


def require_staff_role():
    """Decorator to check if user has staff role permissions."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, interaction: discord.Interaction, *args, **kwargs):
            if not self.check_staff_permissions(interaction):
                embed = discord.Embed(
                    title="❌ Permission Denied",
                    description="You don't have permission to use this command. Staff role required.",
                    color=discord.Color.red()
                )
                await interaction.response.send_message(embed=embed, ephemeral=True)
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator


def require_admin_role():
    """Decorator to check if user has admin permissions."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, interaction: discord.Interaction, *args, **kwargs):
            if not actor_from_interaction(interaction).is_admin:
                embed = discord.Embed(
                    title="❌ Permission Denied",
                    description="You don't have permission to use this command. Manage Server permission required.",
                    color=discord.Color.red()
                )
                await interaction.response.send_message(embed=embed, ephemeral=True)
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator


class BaseCog(commands.Cog):
    """Base cog class with common functionality for all command cogs."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def check_staff_permissions(self, interaction: discord.Interaction) -> bool:
        """Check if the user is an administrator or holds a configured staff role."""
        actor = actor_from_interaction(interaction)
        if actor.is_admin:
            return True

        config_manager = getattr(self.bot, 'config_manager', None)
        if config_manager is None or interaction.guild is None:
            return False

        guild_config = config_manager.get_guild_config(interaction.guild.id)
        return any(role_id in actor.role_ids for role_id in guild_config.staff_roles)

    async def send_error_embed(self, interaction: discord.Interaction, title: str, description: str,
                               color: discord.Color = discord.Color.red(), ephemeral: bool = True):
        """Send a standardized error embed."""
        embed = discord.Embed(
            title=title,
            description=description,
            color=color
        )

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=ephemeral)

    async def send_success_embed(self, interaction: discord.Interaction, title: str, description: str,
                                 ephemeral: bool = False):
        """Send a standardized success embed."""
        embed = discord.Embed(
            title=title,
            description=description,
            color=discord.Color.green()
        )

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=ephemeral)

    async def send_notice(self, interaction: discord.Interaction, notice: Notice, ephemeral: bool = False):
        """Reply with a rendered notice."""
        kwargs = {'embed': render_embed(notice), 'ephemeral': ephemeral}
        view = render_view(notice)
        if view is not None:
            kwargs['view'] = view

        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)

    async def cog_load(self):
        """Called when the cog is loaded."""
        self.logger.info(f"{self.__class__.__name__} cog loaded")

    async def cog_unload(self):
        """Called when the cog is unloaded."""
        self.logger.info(f"{self.__class__.__name__} cog unloaded")

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Handle application command errors."""
        self.logger.error(f"App command error in {interaction.command}: {error}")

        if isinstance(error, app_commands.CommandOnCooldown):
            embed = discord.Embed(
                title="⏰ Command on Cooldown",
                description=f"Please wait {error.retry_after:.1f} seconds before using this command again.",
                color=discord.Color.orange()
            )
        elif isinstance(error, app_commands.MissingPermissions):
            embed = discord.Embed(
                title="❌ Missing Permissions",
                description="You don't have the required permissions to use this command.",
                color=discord.Color.red()
            )
        elif isinstance(error, app_commands.NoPrivateMessage):
            embed = discord.Embed(
                title="❌ Server Only",
                description="This command can only be used inside a server.",
                color=discord.Color.red()
            )
        else:
            embed = discord.Embed(
                title="❌ Command Error",
                description="An error occurred while executing the command.",
                color=discord.Color.red()
            )

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)
