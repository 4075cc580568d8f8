"""
Configuration management system for the subscription ticket bot.

This module provides configuration loading, validation, and management
for both global bot settings (storage, scheduler timing) and per-server
(guild) settings such as staff roles and reminder offsets.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from pathlib import Path
import logging

from errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_REMINDER_DAYS = [3, 2, 1]

GLOBAL_DEFAULTS: Dict[str, Any] = {
    'database_type': 'sqlite',
    'database_url': 'tickets.db',
    'log_level': 'INFO',
    'close_delay_seconds': 5,
    'reminder_interval_hours': 1,
    'reminder_startup_delay_seconds': 10,
    'expiring_window_days': 7,
    'delete_closed_tickets': False
}


def _is_positive_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass
class GuildConfig:
    """Configuration settings for a specific Discord guild (server)."""

    guild_id: int
    staff_roles: List[int] = field(default_factory=list)
    ticket_category: Optional[int] = None
    log_channel: Optional[int] = None
    reminder_days: List[int] = field(default_factory=lambda: list(DEFAULT_REMINDER_DAYS))
    resubscribe_url: Optional[str] = None
    default_currency: str = 'INR'
    transcript_dm: bool = True
    embed_settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not _is_positive_id(self.guild_id):
            raise ValueError(f"Invalid guild_id: {self.guild_id}")

        if not isinstance(self.staff_roles, list):
            raise ValueError("staff_roles must be a list")

        for role_id in self.staff_roles:
            if not _is_positive_id(role_id):
                raise ValueError(f"Invalid staff role ID: {role_id}")

        if self.ticket_category is not None and not _is_positive_id(self.ticket_category):
            raise ValueError(f"Invalid ticket_category: {self.ticket_category}")

        if self.log_channel is not None and not _is_positive_id(self.log_channel):
            raise ValueError(f"Invalid log_channel: {self.log_channel}")

        if not isinstance(self.reminder_days, list):
            raise ValueError("reminder_days must be a list")

        for days in self.reminder_days:
            if not _is_positive_id(days):
                raise ValueError(f"Invalid reminder offset: {days}")

        if len(set(self.reminder_days)) != len(self.reminder_days):
            raise ValueError(f"Duplicate reminder offsets: {self.reminder_days}")

        if not isinstance(self.default_currency, str) or len(self.default_currency) != 3:
            raise ValueError(f"Invalid default_currency: {self.default_currency}")
        self.default_currency = self.default_currency.upper()

        if not isinstance(self.transcript_dm, bool):
            raise ValueError(f"transcript_dm must be a boolean: {self.transcript_dm}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert GuildConfig to dictionary for serialization."""
        return {
            'guild_id': self.guild_id,
            'staff_roles': self.staff_roles,
            'ticket_category': self.ticket_category,
            'log_channel': self.log_channel,
            'reminder_days': self.reminder_days,
            'resubscribe_url': self.resubscribe_url,
            'default_currency': self.default_currency,
            'transcript_dm': self.transcript_dm,
            'embed_settings': self.embed_settings
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GuildConfig':
        """Create GuildConfig from dictionary."""
        return cls(
            guild_id=data['guild_id'],
            staff_roles=data.get('staff_roles', []),
            ticket_category=data.get('ticket_category'),
            log_channel=data.get('log_channel'),
            reminder_days=data.get('reminder_days', list(DEFAULT_REMINDER_DAYS)),
            resubscribe_url=data.get('resubscribe_url'),
            default_currency=data.get('default_currency', 'INR'),
            transcript_dm=data.get('transcript_dm', True),
            embed_settings=data.get('embed_settings', {})
        )


class ConfigManager:
    """Manages bot configuration including global settings and per-guild configurations."""

    def __init__(self, config_file: str = "config.json"):
        """
        Initialize ConfigManager.

        Args:
            config_file: Path to the main configuration file
        """
        self.config_file = Path(config_file)
        self.guild_configs: Dict[int, GuildConfig] = {}
        self.global_config: Dict[str, Any] = {}
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration from file with error handling."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)

                self.global_config = config_data.get('global', {})

                guild_configs_data = config_data.get('guilds', {})
                for guild_id_str, guild_data in guild_configs_data.items():
                    try:
                        guild_id = int(guild_id_str)
                        guild_data['guild_id'] = guild_id
                        self.guild_configs[guild_id] = GuildConfig.from_dict(guild_data)
                    except (ValueError, TypeError) as e:
                        logger.error(f"Invalid guild configuration for {guild_id_str}: {e}")
                        raise ConfigurationError(
                            f"Invalid guild configuration for {guild_id_str}: {e}",
                            config_key=f"guilds.{guild_id_str}"
                        )

                logger.info(f"Configuration loaded successfully from {self.config_file}")
            else:
                logger.info(f"Configuration file {self.config_file} not found, using defaults")
                self._create_default_config()

        except ConfigurationError:
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file: {e}")
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}")
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise ConfigurationError(f"Error loading configuration: {e}")

    def _create_default_config(self):
        """Create default configuration file."""
        default_config = {
            'global': dict(GLOBAL_DEFAULTS),
            'guilds': {}
        }

        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(default_config, f, indent=2)

            self.global_config = default_config['global']
            logger.info(f"Created default configuration file at {self.config_file}")

        except Exception as e:
            logger.error(f"Error creating default configuration: {e}")
            raise ConfigurationError(f"Error creating default configuration: {e}")

    def get_guild_config(self, guild_id: int) -> GuildConfig:
        """
        Get configuration for a specific guild.

        Args:
            guild_id: Discord guild ID

        Returns:
            GuildConfig for the specified guild

        Raises:
            ConfigurationError: If guild_id is invalid
        """
        if not _is_positive_id(guild_id):
            raise ConfigurationError(f"Invalid guild_id: {guild_id}", config_key='guild_id')

        if guild_id not in self.guild_configs:
            self.guild_configs[guild_id] = GuildConfig(guild_id=guild_id)
            logger.info(f"Created default configuration for guild {guild_id}")

        return self.guild_configs[guild_id]

    def set_guild_config(self, guild_config: GuildConfig):
        """
        Set configuration for a specific guild.

        Args:
            guild_config: GuildConfig object to set
        """
        if not isinstance(guild_config, GuildConfig):
            raise ConfigurationError("guild_config must be a GuildConfig instance")

        self.guild_configs[guild_config.guild_id] = guild_config
        logger.info(f"Updated configuration for guild {guild_config.guild_id}")

    def get_global_config(self, key: str, default: Any = None) -> Any:
        """
        Get a global configuration value.

        Falls back to the built-in default for known keys when no explicit
        default is passed.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if default is None:
            default = GLOBAL_DEFAULTS.get(key)
        return self.global_config.get(key, default)

    def set_global_config(self, key: str, value: Any):
        """
        Set a global configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self.global_config[key] = value
        logger.info(f"Updated global configuration: {key} = {value}")

    @property
    def close_delay_seconds(self) -> float:
        return float(self.get_global_config('close_delay_seconds'))

    @property
    def reminder_interval_hours(self) -> float:
        return float(self.get_global_config('reminder_interval_hours'))

    @property
    def reminder_startup_delay_seconds(self) -> float:
        return float(self.get_global_config('reminder_startup_delay_seconds'))

    @property
    def expiring_window_days(self) -> int:
        return int(self.get_global_config('expiring_window_days'))

    @property
    def delete_closed_tickets(self) -> bool:
        return bool(self.get_global_config('delete_closed_tickets'))

    def save_configuration(self):
        """Save current configuration to file."""
        try:
            config_data = {
                'global': self.global_config,
                'guilds': {
                    str(guild_id): guild_config.to_dict()
                    for guild_id, guild_config in self.guild_configs.items()
                }
            }

            if self.config_file.exists():
                backup_file = self.config_file.with_suffix('.bak')
                self.config_file.replace(backup_file)

            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(config_data, f, indent=2)

            logger.info(f"Configuration saved to {self.config_file}")

        except Exception as e:
            logger.error(f"Error saving configuration: {e}")
            raise ConfigurationError(f"Error saving configuration: {e}")

    def validate_configuration(self) -> List[str]:
        """
        Validate the current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        required_global_keys = ['database_type', 'database_url']
        for key in required_global_keys:
            if key not in self.global_config:
                errors.append(f"Missing required global configuration: {key}")

        valid_db_types = ['sqlite']
        db_type = self.global_config.get('database_type')
        if db_type and db_type not in valid_db_types:
            errors.append(f"Invalid database_type: {db_type}. Must be one of {valid_db_types}")

        for key in ('close_delay_seconds', 'reminder_startup_delay_seconds'):
            value = self.global_config.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value < 0):
                errors.append(f"{key} must be a non-negative number, got {value}")

        for key in ('reminder_interval_hours', 'expiring_window_days'):
            value = self.global_config.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                errors.append(f"{key} must be a positive number, got {value}")

        for guild_id, guild_config in self.guild_configs.items():
            if not guild_config.reminder_days:
                errors.append(f"Guild {guild_id} has no reminder offsets configured")

        return errors

    def reload_configuration(self):
        """Reload configuration from file."""
        self.guild_configs.clear()
        self.global_config.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")
