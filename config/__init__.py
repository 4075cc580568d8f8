# Configuration package for bot settings and server configurations

from errors.exceptions import ConfigurationError
from .config_manager import ConfigManager, GuildConfig, GLOBAL_DEFAULTS, DEFAULT_REMINDER_DAYS

__all__ = ['ConfigManager', 'GuildConfig', 'ConfigurationError', 'GLOBAL_DEFAULTS', 'DEFAULT_REMINDER_DAYS']
