"""
Unit tests for base cog functionality and command infrastructure.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import Mock, AsyncMock
import discord
from discord.ext import commands

from commands.admin_commands import parse_reminder_days, parse_start_date
from commands.base_cog import BaseCog, actor_from_interaction, require_staff_role, require_admin_role
from conftest import GUILD_ID, STAFF_ROLE_ID
from core.messaging import Notice, NoticeAction
from errors.exceptions import ValidationError


def make_member(user_id: int, administrator: bool = False, manage_guild: bool = False, role_ids=()):
    user = Mock(spec=discord.Member)
    user.id = user_id
    user.guild_permissions.administrator = administrator
    user.guild_permissions.manage_guild = manage_guild
    roles = []
    for role_id in role_ids:
        role = Mock()
        role.id = role_id
        roles.append(role)
    user.roles = roles
    return user


def make_interaction(user, guild_id: int = GUILD_ID, done: bool = False):
    interaction = Mock(spec=discord.Interaction)
    interaction.user = user
    interaction.guild = Mock(spec=discord.Guild)
    interaction.guild.id = guild_id
    interaction.response = Mock()
    interaction.response.is_done.return_value = done
    interaction.response.send_message = AsyncMock()
    interaction.followup = Mock()
    interaction.followup.send = AsyncMock()
    return interaction


class TestActorFromInteraction:

    def test_regular_member(self):
        actor = actor_from_interaction(make_interaction(make_member(33333, role_ids=[1, 2])))

        assert actor.user_id == 33333
        assert actor.guild_id == GUILD_ID
        assert not actor.is_admin
        assert actor.role_ids == frozenset({1, 2})

    @pytest.mark.parametrize("administrator, manage_guild", [(True, False), (False, True)])
    def test_admins(self, administrator, manage_guild):
        user = make_member(67890, administrator=administrator, manage_guild=manage_guild)

        assert actor_from_interaction(make_interaction(user)).is_admin


class TestBaseCog:
    """Test cases for BaseCog class."""

    @pytest.fixture
    def base_cog(self, config):
        bot = Mock(spec=commands.Bot)
        bot.config_manager = config
        return BaseCog(bot)

    def test_check_staff_permissions(self, base_cog):
        staff = make_interaction(make_member(11111, role_ids=[STAFF_ROLE_ID]))
        admin = make_interaction(make_member(67890, administrator=True))
        regular = make_interaction(make_member(33333, role_ids=[99]))

        assert base_cog.check_staff_permissions(staff)
        assert base_cog.check_staff_permissions(admin)
        assert not base_cog.check_staff_permissions(regular)

    def test_staff_roles_are_per_guild(self, base_cog):
        elsewhere = make_interaction(make_member(11111, role_ids=[STAFF_ROLE_ID]), guild_id=999)

        assert not base_cog.check_staff_permissions(elsewhere)

    def test_no_config_means_admins_only(self):
        bot = Mock(spec=commands.Bot)
        bot.config_manager = None
        cog = BaseCog(bot)

        assert not cog.check_staff_permissions(make_interaction(make_member(11111, role_ids=[STAFF_ROLE_ID])))

    @pytest.mark.asyncio
    async def test_send_error_embed(self, base_cog):
        interaction = make_interaction(make_member(33333))

        await base_cog.send_error_embed(interaction, "Test Error", "Test description")

        call_args = interaction.response.send_message.call_args
        assert call_args[1]['ephemeral'] is True
        assert call_args[1]['embed'].title == "Test Error"

    @pytest.mark.asyncio
    async def test_send_success_embed_followup(self, base_cog):
        interaction = make_interaction(make_member(33333), done=True)

        await base_cog.send_success_embed(interaction, "Test Success", "Test description")

        interaction.response.send_message.assert_not_called()
        call_args = interaction.followup.send.call_args
        assert call_args[1]['ephemeral'] is False
        assert call_args[1]['embed'].color == discord.Color.green()

    @pytest.mark.asyncio
    async def test_send_notice_with_actions(self, base_cog):
        interaction = make_interaction(make_member(33333))
        notice = Notice(title="💳 Choose a Payment Method", description="Pick one")
        notice.actions.append(NoticeAction(label="UPI", custom_id="ticket:pay:AB12CD34:1"))

        await base_cog.send_notice(interaction, notice, ephemeral=True)

        kwargs = interaction.response.send_message.call_args[1]
        assert kwargs['embed'].title == "💳 Choose a Payment Method"
        assert isinstance(kwargs['view'], discord.ui.View)


class TestPermissionDecorators:
    """Test cases for permission decorators."""

    @pytest.mark.asyncio
    async def test_require_staff_role(self):
        cog = Mock()
        cog.check_staff_permissions.return_value = False
        interaction = make_interaction(make_member(33333))

        @require_staff_role()
        async def command(self, interaction):
            return "success"

        assert await command(cog, interaction) is None
        embed = interaction.response.send_message.call_args[1]['embed']
        assert embed.title == "❌ Permission Denied"

        cog.check_staff_permissions.return_value = True
        assert await command(cog, interaction) == "success"

    @pytest.mark.asyncio
    async def test_require_admin_role(self):
        regular = make_interaction(make_member(33333))
        admin = make_interaction(make_member(67890, manage_guild=True))

        @require_admin_role()
        async def command(self, interaction):
            return "success"

        assert await command(Mock(), regular) is None
        regular.response.send_message.assert_called_once()
        assert await command(Mock(), admin) == "success"


class TestReminderDaysOption:

    def test_parses_and_sorts(self):
        assert parse_reminder_days("1, 3,2") == [3, 2, 1]
        assert parse_reminder_days("7") == [7]

    @pytest.mark.parametrize("value", ["", "a,b", "3,0", "-1", "2,2"])
    def test_rejects_bad_input(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_reminder_days(value)
        assert exc_info.value.field == 'reminder_days'


class TestStartDateOption:

    def test_parses_to_utc_midnight(self):
        assert parse_start_date(" 2025-03-01 ") == datetime(2025, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "01/03/2025", "2025-02-30", "tomorrow"])
    def test_rejects_bad_input(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_start_date(value)
        assert exc_info.value.field == 'start_date'
