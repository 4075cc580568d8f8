"""
Error handling utilities and decorators for the subscription ticket bot.

This module provides the decorator and helpers used by the cogs to turn
workflow rejections and platform failures into user-facing embeds.
"""

import logging
import traceback
import functools
from typing import Optional, Callable, Union
from datetime import datetime, timezone

import discord
from discord.ext import commands

from .exceptions import (
    TicketBotError,
    PreconditionFailed,
    NotFoundError,
    ValidationError,
    ExternalUnavailableError
)

logger = logging.getLogger(__name__)


def log_error(error: Exception, context: Optional[str] = None,
              user_id: Optional[int] = None, guild_id: Optional[int] = None,
              additional_info: Optional[dict] = None) -> None:
    """
    Log an error with context information.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
        user_id: ID of the user involved (if applicable)
        guild_id: ID of the guild involved (if applicable)
        additional_info: Additional information to log
    """
    error_info = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        'context': context,
        'user_id': user_id,
        'guild_id': guild_id,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }

    if isinstance(error, PreconditionFailed):
        error_info['reason'] = error.reason.value

    if additional_info:
        error_info.update(additional_info)

    # Rejections are expected outcomes, not faults
    if isinstance(error, TicketBotError):
        if error.error_code in ['PRECONDITION_FAILED', 'VALIDATION_ERROR', 'NOT_FOUND']:
            logger.warning(f"Bot error: {error_info}")
        else:
            logger.error(f"Bot error: {error_info}")
    else:
        logger.error(f"Unexpected error: {error_info}", exc_info=True)


def format_error_message(error: Exception, include_details: bool = False) -> str:
    """
    Format an error message for display to users.

    Args:
        error: The exception to format
        include_details: Whether to include technical details

    Returns:
        str: Formatted error message
    """
    if isinstance(error, TicketBotError):
        message = error.user_message
        if include_details and error.details:
            details = ", ".join(f"{k}: {v}" for k, v in error.details.items())
            message += f"\n\n**Details:** {details}"
        return message
    else:
        return "An unexpected error occurred. Please try again later."


def error_title(error: Exception) -> str:
    """Pick the embed title for an error family."""
    if isinstance(error, PreconditionFailed):
        return "⛔ Not Allowed"
    if isinstance(error, NotFoundError):
        return "❌ Not Found"
    if isinstance(error, ValidationError):
        return "⚠️ Invalid Input"
    if isinstance(error, ExternalUnavailableError):
        return "⏱️ Discord Unavailable"
    return "❌ Error"


def error_color(error: Exception) -> discord.Color:
    """Rejections are orange, platform outages yellow, everything else red."""
    if isinstance(error, PreconditionFailed):
        return discord.Color.orange()
    if isinstance(error, ExternalUnavailableError):
        return discord.Color.yellow()
    return discord.Color.red()


async def send_error_embed(interaction_or_context: Union[discord.Interaction, commands.Context],
                           title: str, description: str,
                           color: discord.Color = discord.Color.red(),
                           ephemeral: bool = True) -> None:
    """
    Send an error embed to the user.

    Args:
        interaction_or_context: Discord interaction or command context
        title: Error embed title
        description: Error embed description
        color: Embed color (default: red)
        ephemeral: Whether the message should be ephemeral (for interactions)
    """
    embed = discord.Embed(
        title=title,
        description=description,
        color=color,
        timestamp=datetime.now(timezone.utc)
    )
    embed.set_footer(text="Ticket Bot")

    try:
        if isinstance(interaction_or_context, discord.Interaction):
            if interaction_or_context.response.is_done():
                await interaction_or_context.followup.send(embed=embed, ephemeral=ephemeral)
            else:
                await interaction_or_context.response.send_message(embed=embed, ephemeral=ephemeral)
        else:
            await interaction_or_context.send(embed=embed)
    except discord.HTTPException as e:
        logger.error(f"Failed to send error embed: {e}")


def handle_errors(func: Callable) -> Callable:
    """
    Decorator for handling errors in command and component callbacks.

    This decorator catches exceptions, logs them appropriately,
    and sends user-friendly error messages.

    Args:
        func: The function to wrap

    Returns:
        Callable: Wrapped function with error handling
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        interaction_or_context = None
        user_id = None
        guild_id = None

        for arg in args:
            if isinstance(arg, discord.Interaction):
                interaction_or_context = arg
                user_id = arg.user.id
                guild_id = arg.guild.id if arg.guild else None
                break
            elif isinstance(arg, commands.Context):
                interaction_or_context = arg
                user_id = arg.author.id
                guild_id = arg.guild.id if arg.guild else None
                break

        try:
            return await func(*args, **kwargs)

        except TicketBotError as e:
            log_error(e, context=func.__name__, user_id=user_id, guild_id=guild_id)

            if interaction_or_context:
                await send_error_embed(
                    interaction_or_context,
                    error_title(e),
                    format_error_message(e),
                    color=error_color(e)
                )

        except discord.Forbidden as e:
            error_msg = "The bot doesn't have permission to perform this action. Please check bot permissions."
            log_error(e, context=func.__name__, user_id=user_id, guild_id=guild_id)

            if interaction_or_context:
                await send_error_embed(
                    interaction_or_context,
                    "❌ Permission Error",
                    error_msg
                )

        except discord.HTTPException as e:
            error_msg = "A Discord API error occurred. Please try again later."
            log_error(e, context=func.__name__, user_id=user_id, guild_id=guild_id)

            if interaction_or_context:
                await send_error_embed(
                    interaction_or_context,
                    "❌ API Error",
                    error_msg
                )

        except Exception as e:
            log_error(e, context=func.__name__, user_id=user_id, guild_id=guild_id,
                      additional_info={'traceback': traceback.format_exc()})

            if interaction_or_context:
                await send_error_embed(
                    interaction_or_context,
                    "❌ Unexpected Error",
                    "An unexpected error occurred. The issue has been logged and will be investigated."
                )

    return wrapper
