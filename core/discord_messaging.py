"""
discord.py implementation of the messaging collaborator.
"""

import io
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

import discord
from discord.ext import commands

from core.messaging import (
    ActionStyle,
    DeliveryResult,
    MessagingService,
    Notice,
    NoticeColor,
    TranscriptMessage
)

logger = logging.getLogger(__name__)


COLOR_MAP = {
    NoticeColor.INFO: discord.Color.blurple,
    NoticeColor.SUCCESS: discord.Color.green,
    NoticeColor.WARNING: discord.Color.orange,
    NoticeColor.DANGER: discord.Color.red,
    NoticeColor.PRIMARY: discord.Color.blue,
}

STYLE_MAP = {
    ActionStyle.PRIMARY: discord.ButtonStyle.primary,
    ActionStyle.SECONDARY: discord.ButtonStyle.secondary,
    ActionStyle.SUCCESS: discord.ButtonStyle.success,
    ActionStyle.DANGER: discord.ButtonStyle.danger,
    ActionStyle.LINK: discord.ButtonStyle.link,
}


def render_embed(notice: Notice) -> discord.Embed:
    """Render a notice as a Discord embed."""
    embed = discord.Embed(
        title=notice.title,
        description=notice.description or None,
        color=COLOR_MAP[notice.color](),
        timestamp=datetime.now(timezone.utc)
    )
    for name, value, inline in notice.fields:
        embed.add_field(name=name, value=value, inline=inline)
    if notice.footer:
        embed.set_footer(text=notice.footer)
    return embed


def render_view(notice: Notice) -> Optional[discord.ui.View]:
    """
    Render a notice's actions as a persistent button view.

    Buttons carry the workflow custom ids; clicks are routed by the ticket
    cog's interaction listener, so the view needs no callbacks.
    """
    if not notice.actions:
        return None

    view = discord.ui.View(timeout=None)
    for action in notice.actions:
        if action.url:
            button = discord.ui.Button(
                label=action.label,
                url=action.url,
                style=discord.ButtonStyle.link,
                emoji=action.emoji
            )
        else:
            button = discord.ui.Button(
                label=action.label,
                custom_id=action.custom_id,
                style=STYLE_MAP[action.style],
                emoji=action.emoji
            )
        view.add_item(button)
    return view


def _send_kwargs(notice: Notice) -> dict:
    kwargs = {'content': notice.content, 'embed': render_embed(notice)}
    view = render_view(notice)
    if view is not None:
        kwargs['view'] = view
    if notice.files:
        kwargs['files'] = [discord.File(io.BytesIO(f.data), filename=f.filename) for f in notice.files]
    return kwargs


def _message_text(message: discord.Message) -> str:
    if message.content:
        return message.content
    if message.embeds:
        text = "[Embed]"
        for embed in message.embeds:
            if embed.title:
                text += f" Title: {embed.title}"
            if embed.description:
                text += f" Description: {embed.description}"
        return text
    if message.attachments:
        names = " ".join(attachment.filename for attachment in message.attachments)
        return f"[{len(message.attachments)} Attachment(s)] {names}"
    return "[System Message]"


class DiscordMessagingService(MessagingService):
    """
    Messaging collaborator backed by a running discord.py bot.

    Every Discord error is converted into a failed DeliveryResult.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    async def _resolve_channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    async def create_private_channel(self, guild_id: int, name: str,
                                     category_id: Optional[int],
                                     member_ids: Sequence[int],
                                     role_ids: Sequence[int],
                                     topic: Optional[str] = None) -> DeliveryResult:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return DeliveryResult.failure(f"Guild {guild_id} is not available")

        try:
            category = None
            if category_id:
                category = guild.get_channel(category_id)
                if not isinstance(category, discord.CategoryChannel):
                    logger.warning(f"Invalid ticket category {category_id} for guild {guild_id}")
                    category = None

            overwrites = {
                guild.default_role: discord.PermissionOverwrite(view_channel=False),
                guild.me: discord.PermissionOverwrite(
                    view_channel=True,
                    send_messages=True,
                    manage_channels=True,
                    manage_messages=True,
                    read_message_history=True
                )
            }

            for member_id in member_ids:
                member = guild.get_member(member_id) or await guild.fetch_member(member_id)
                overwrites[member] = discord.PermissionOverwrite(
                    view_channel=True,
                    send_messages=True,
                    attach_files=True,
                    read_message_history=True
                )

            for role_id in role_ids:
                role = guild.get_role(role_id)
                if role:
                    overwrites[role] = discord.PermissionOverwrite(
                        view_channel=True,
                        send_messages=True,
                        manage_messages=True,
                        read_message_history=True
                    )

            channel = await guild.create_text_channel(
                name=name,
                category=category,
                overwrites=overwrites,
                topic=topic,
                reason=topic
            )

            logger.info(f"Created private channel {channel.id} ({name}) in guild {guild_id}")
            return DeliveryResult.success(channel.id)

        except discord.Forbidden:
            return DeliveryResult.failure("Bot lacks permission to create channels")
        except discord.NotFound as e:
            return DeliveryResult.failure(f"Member or category not found: {e}")
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to create channel: {e}")

    async def send_channel_notice(self, channel_id: int, notice: Notice) -> DeliveryResult:
        try:
            channel = await self._resolve_channel(channel_id)
            message = await channel.send(**_send_kwargs(notice))
            return DeliveryResult.success(message.id)

        except discord.NotFound:
            return DeliveryResult.failure(f"Channel {channel_id} not found")
        except discord.Forbidden:
            return DeliveryResult.failure(f"Cannot send messages in channel {channel_id}")
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to send to channel {channel_id}: {e}")

    async def send_direct_notice(self, user_id: int, notice: Notice) -> DeliveryResult:
        lookup = await self.fetch_user(user_id)
        if not lookup.ok:
            return lookup
        if lookup.value is None:
            return DeliveryResult.failure(f"User {user_id} not found")

        try:
            message = await lookup.value.send(**_send_kwargs(notice))
            return DeliveryResult.success(message.id)

        except discord.Forbidden:
            return DeliveryResult.failure(f"User {user_id} does not accept direct messages")
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to message user {user_id}: {e}")

    async def fetch_user(self, user_id: int) -> DeliveryResult:
        user = self.bot.get_user(user_id)
        if user is not None:
            return DeliveryResult.success(user)

        try:
            return DeliveryResult.success(await self.bot.fetch_user(user_id))
        except discord.NotFound:
            return DeliveryResult.success(None)
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to look up user {user_id}: {e}")

    async def delete_channel(self, channel_id: int, reason: Optional[str] = None) -> DeliveryResult:
        try:
            channel = await self._resolve_channel(channel_id)
            await channel.delete(reason=reason)
            logger.info(f"Deleted channel {channel_id}")
            return DeliveryResult.success()

        except discord.NotFound:
            # Already gone
            return DeliveryResult.success()
        except discord.Forbidden:
            return DeliveryResult.failure(f"Bot lacks permission to delete channel {channel_id}")
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to delete channel {channel_id}: {e}")

    async def fetch_channel_history(self, channel_id: int) -> DeliveryResult:
        try:
            channel = await self._resolve_channel(channel_id)
            messages = [
                TranscriptMessage(
                    created_at=message.created_at,
                    author_id=message.author.id,
                    author_name=message.author.display_name,
                    content=_message_text(message)
                )
                async for message in channel.history(limit=None, oldest_first=True)
            ]
            return DeliveryResult.success(messages)

        except discord.NotFound:
            return DeliveryResult.failure(f"Channel {channel_id} not found")
        except discord.Forbidden:
            return DeliveryResult.failure(f"Cannot read history of channel {channel_id}")
        except discord.HTTPException as e:
            return DeliveryResult.failure(f"Failed to read channel {channel_id}: {e}")
