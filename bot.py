#!/usr/bin/env python3
"""
Subscription Ticket Bot - Main Entry Point

A Discord bot that sells subscriptions through private ticket channels:
members pick a plan and payment method, staff confirm the payment, and the
bot tracks the resulting subscription and sends expiry reminders.
"""

import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import discord
from discord.ext import commands
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from logging_config import setup_logging, get_logger, get_audit_logger
from config.config_manager import ConfigManager
from core.audit import AuditTrail
from core.catalog import CatalogStore
from core.discord_messaging import DiscordMessagingService
from core.reminder_scheduler import ReminderScheduler
from core.subscription_manager import SubscriptionManager
from core.ticket_workflow import TicketWorkflowEngine
from database.sqlite_adapter import SQLiteAdapter
from errors import ConfigurationError

# Setup logging
log_level = os.getenv('LOG_LEVEL', 'INFO')
setup_logging(log_dir=os.getenv('LOG_DIR', 'logs'), log_level=log_level)
logger = get_logger(__name__)


class TicketBot(commands.Bot):
    """Main Discord bot class for the subscription ticket system."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=os.getenv('COMMAND_PREFIX', '!'),
            intents=intents,
            help_command=None
        )

        self.config_manager: Optional[ConfigManager] = None
        self.database: Optional[SQLiteAdapter] = None
        self.catalog: Optional[CatalogStore] = None
        self.messaging: Optional[DiscordMessagingService] = None
        self.audit: Optional[AuditTrail] = None
        self.subscriptions: Optional[SubscriptionManager] = None
        self.workflow: Optional[TicketWorkflowEngine] = None
        self.scheduler: Optional[ReminderScheduler] = None
        self._startup_complete = False
        self._shutdown_initiated = False

    async def setup_hook(self):
        """Initialize bot components and load extensions."""
        logger.info("Starting bot setup...")

        try:
            self._initialize_config()
            await self._initialize_database()
            self._initialize_services()

            await self.load_extensions()

            await self.tree.sync()
            logger.info("Slash commands synced successfully")

            self.scheduler.start()

            self._startup_complete = True
            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            await self._cleanup_on_error()
            raise

    def _initialize_config(self):
        logger.info("Initializing configuration manager...")

        config_file = os.getenv('CONFIG_FILE', 'config.json')
        self.config_manager = ConfigManager(config_file)

        errors = self.config_manager.validate_configuration()
        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors)
            logger.error(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("Configuration manager initialized successfully")

    async def _initialize_database(self):
        """Initialize database connection and test connectivity."""
        logger.info("Initializing database connection...")

        db_type = os.getenv('DATABASE_TYPE') or self.config_manager.get_global_config('database_type')
        db_url = os.getenv('DATABASE_URL') or self.config_manager.get_global_config('database_url')

        if db_type.lower() != 'sqlite':
            raise ConfigurationError(f"Unsupported database type: {db_type}", config_key='database_type')

        self.database = SQLiteAdapter(db_url)
        await self.database.connect()

        if not await self.database.is_connected():
            raise ConnectionError("Database connection test failed")

        logger.info(f"Database connection established successfully ({db_type})")

    def _initialize_services(self):
        """Build the workflow engine, subscription manager and reminder scheduler."""
        if not self.database or not self.config_manager:
            raise RuntimeError("Database and configuration must be initialized before services")

        self.catalog = CatalogStore(self.database)
        self.messaging = DiscordMessagingService(self)
        self.audit = AuditTrail(self.database, get_audit_logger())
        self.subscriptions = SubscriptionManager(self.database, self.config_manager, self.audit, self.catalog)
        self.workflow = TicketWorkflowEngine(
            self.database,
            self.catalog,
            self.messaging,
            self.subscriptions,
            self.config_manager,
            self.audit
        )
        self.scheduler = ReminderScheduler(
            self.database,
            self.messaging,
            self.config_manager,
            self.audit,
            bot=self
        )
        logger.info("Ticket workflow and reminder scheduler initialized successfully")

    async def _cleanup_on_error(self):
        """Cleanup resources when initialization fails."""
        logger.info("Cleaning up resources due to initialization error...")

        if self.scheduler:
            self.scheduler.stop()

        if self.database:
            try:
                await self.database.disconnect()
            except Exception as e:
                logger.error(f"Error during database cleanup: {e}")

        self.database = None
        self.workflow = None
        self.scheduler = None

    async def load_extensions(self):
        """Load every command module in the commands directory."""
        commands_dir = Path(__file__).parent / "commands"

        if not commands_dir.exists():
            logger.warning("Commands directory not found")
            return

        loaded_count = 0
        failed_count = 0

        for file_path in sorted(commands_dir.glob("*.py")):
            # base_cog.py holds shared helpers, not a cog
            if file_path.name.startswith("__") or file_path.name == "base_cog.py":
                continue

            module_name = f"commands.{file_path.stem}"

            try:
                await self.load_extension(module_name)
                logger.info(f"✅ Loaded extension: {module_name}")
                loaded_count += 1
            except Exception as e:
                logger.error(f"❌ Failed to load extension {module_name}: {e}")
                failed_count += 1

        logger.info(f"Extension loading complete: {loaded_count} loaded, {failed_count} failed")

        if failed_count > 0:
            logger.warning("Some extensions failed to load. Bot will continue with available commands.")

    async def on_ready(self):
        """Called when the bot is ready and connected to Discord."""
        logger.info(f"{self.user} has connected to Discord!")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        activity = discord.Activity(
            type=discord.ActivityType.watching,
            name="for tickets"
        )
        await self.change_presence(activity=activity)

    async def on_error(self, event, *args, **kwargs):
        """Global error handler for bot events."""
        logger.error(f"Error in event {event}: {args}", exc_info=True)

    async def close(self):
        """Cleanup when bot is shutting down."""
        if self._shutdown_initiated:
            return

        self._shutdown_initiated = True
        logger.info("Bot is shutting down...")

        try:
            if self.scheduler:
                self.scheduler.stop()

            if self.workflow:
                await self.workflow.shutdown()

            if self.database:
                logger.info("Closing database connection...")
                await self.database.disconnect()

            if self.config_manager:
                try:
                    self.config_manager.save_configuration()
                    logger.info("Configuration saved")
                except ConfigurationError as e:
                    logger.error(f"Error saving configuration: {e}")

        except Exception as e:
            logger.error(f"Error during shutdown cleanup: {e}")
        finally:
            await super().close()

    def is_ready_for_operation(self) -> bool:
        """Check if bot is fully initialized and ready for operation."""
        return (
            self._startup_complete and
            not self._shutdown_initiated and
            self.workflow is not None and
            self.scheduler is not None
        )


def validate_environment() -> bool:
    """
    Validate required environment variables.

    Returns:
        bool: True if environment is valid, False otherwise
    """
    logger.info("Validating environment configuration...")

    if not os.getenv('DISCORD_TOKEN'):
        logger.error("Missing required environment variable: DISCORD_TOKEN")
        logger.error("Please check your .env file or environment configuration")
        return False

    db_type = os.getenv('DATABASE_TYPE', 'sqlite')
    if db_type.lower() != 'sqlite':
        logger.error(f"Invalid DATABASE_TYPE: {db_type}. Only sqlite is supported")
        return False

    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if log_level.upper() not in valid_log_levels:
        logger.warning(f"Invalid LOG_LEVEL: {log_level}. Using INFO instead")

    logger.info("Environment validation completed successfully")
    return True


def setup_signal_handlers(bot: TicketBot):
    """Close the bot cleanly on SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(_shutdown(bot, s.name)))
        except (NotImplementedError, AttributeError):
            # Windows event loops do not support signal handlers
            pass


async def _shutdown(bot: TicketBot, signal_name: str):
    logger.info(f"Received {signal_name}, initiating graceful shutdown...")
    await bot.close()


async def main():
    """Start the bot with proper initialization and error handling."""
    logger.info("Starting Subscription Ticket Bot...")

    if not validate_environment():
        logger.error("Environment validation failed. Exiting.")
        sys.exit(1)

    bot = TicketBot()
    setup_signal_handlers(bot)

    try:
        logger.info("Connecting to Discord...")
        await bot.start(os.getenv('DISCORD_TOKEN'))

    except discord.LoginFailure:
        logger.error("Invalid Discord token. Please check your DISCORD_TOKEN environment variable.")
        sys.exit(1)

    except discord.HTTPException as e:
        logger.error(f"HTTP error connecting to Discord: {e}")
        sys.exit(1)

    finally:
        if not bot._shutdown_initiated:
            await bot.close()


def run():
    """Console entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
