"""
Unit tests for bot startup, extension loading and shutdown.
"""

import pytest
from unittest.mock import Mock, AsyncMock, patch

from discord.ext import commands

from bot import TicketBot, validate_environment
from core.reminder_scheduler import ReminderScheduler
from core.ticket_workflow import TicketWorkflowEngine
from errors import ConfigurationError


@pytest.fixture
def bot_instance():
    return TicketBot()


class TestStartup:
    """Test bot initialization and service wiring."""

    @pytest.mark.asyncio
    async def test_bot_initialization(self, bot_instance):
        assert bot_instance.help_command is None
        assert bot_instance.intents.guilds is True
        assert bot_instance.intents.members is True
        assert bot_instance.workflow is None
        assert not bot_instance.is_ready_for_operation()

    @pytest.mark.asyncio
    async def test_initialize_services(self, bot_instance, database, config):
        bot_instance.database = database
        bot_instance.config_manager = config

        bot_instance._initialize_services()

        assert isinstance(bot_instance.workflow, TicketWorkflowEngine)
        assert isinstance(bot_instance.scheduler, ReminderScheduler)
        assert bot_instance.scheduler.bot is bot_instance
        assert bot_instance.workflow.subscriptions is bot_instance.subscriptions

    @pytest.mark.asyncio
    async def test_services_need_database(self, bot_instance):
        with pytest.raises(RuntimeError):
            bot_instance._initialize_services()

    @pytest.mark.asyncio
    async def test_initialize_database(self, bot_instance, config, db_path, monkeypatch):
        monkeypatch.setenv('DATABASE_TYPE', 'sqlite')
        monkeypatch.setenv('DATABASE_URL', db_path)
        bot_instance.config_manager = config

        await bot_instance._initialize_database()
        try:
            assert await bot_instance.database.is_connected()
        finally:
            await bot_instance.database.disconnect()

    @pytest.mark.asyncio
    async def test_unsupported_database(self, bot_instance, config, monkeypatch):
        monkeypatch.setenv('DATABASE_TYPE', 'mongodb')
        bot_instance.config_manager = config

        with pytest.raises(ConfigurationError):
            await bot_instance._initialize_database()

    @pytest.mark.asyncio
    async def test_invalid_configuration_rejected(self, bot_instance, tmp_path, monkeypatch):
        config_file = tmp_path / "config.json"
        config_file.write_text('{"global": {"close_delay_seconds": -1}, "guilds": {}}')
        monkeypatch.setenv('CONFIG_FILE', str(config_file))

        with pytest.raises(ConfigurationError):
            bot_instance._initialize_config()


class TestExtensionLoading:
    """Test cases for command loading."""

    @pytest.mark.asyncio
    async def test_loads_every_cog_module(self, bot_instance):
        with patch.object(bot_instance, 'load_extension', new_callable=AsyncMock) as mock_load:
            await bot_instance.load_extensions()

        loaded = [call.args[0] for call in mock_load.call_args_list]
        assert loaded == ['commands.admin_commands', 'commands.ticket_commands']

    @pytest.mark.asyncio
    async def test_failed_extension_does_not_stop_loading(self, bot_instance):
        mock_load = AsyncMock(side_effect=[commands.ExtensionFailed('commands.admin_commands', ValueError("boom")), None])

        with patch.object(bot_instance, 'load_extension', mock_load):
            await bot_instance.load_extensions()

        assert mock_load.await_count == 2


class TestShutdown:

    @pytest.mark.asyncio
    async def test_close_releases_resources_once(self, bot_instance):
        bot_instance.scheduler = Mock()
        bot_instance.workflow = Mock()
        bot_instance.workflow.shutdown = AsyncMock()
        bot_instance.database = Mock()
        bot_instance.database.disconnect = AsyncMock()
        bot_instance.config_manager = Mock()

        with patch.object(commands.Bot, 'close', new_callable=AsyncMock) as parent_close:
            await bot_instance.close()
            await bot_instance.close()

        bot_instance.scheduler.stop.assert_called_once()
        bot_instance.workflow.shutdown.assert_awaited_once()
        bot_instance.database.disconnect.assert_awaited_once()
        bot_instance.config_manager.save_configuration.assert_called_once()
        parent_close.assert_awaited_once()


class TestEnvironment:

    def test_token_required(self, monkeypatch):
        monkeypatch.delenv('DISCORD_TOKEN', raising=False)

        assert not validate_environment()

    def test_only_sqlite_supported(self, monkeypatch):
        monkeypatch.setenv('DISCORD_TOKEN', 'test_token')
        monkeypatch.setenv('DATABASE_TYPE', 'postgres')

        assert not validate_environment()

    def test_valid_environment(self, monkeypatch):
        monkeypatch.setenv('DISCORD_TOKEN', 'test_token')
        monkeypatch.delenv('DATABASE_TYPE', raising=False)

        assert validate_environment()
