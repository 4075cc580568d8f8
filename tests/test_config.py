"""
Unit tests for configuration management system.
"""

import json
import os
import shutil
import tempfile
import unittest

from config import ConfigManager, GuildConfig, ConfigurationError, DEFAULT_REMINDER_DAYS


class TestGuildConfig(unittest.TestCase):
    """Test cases for GuildConfig dataclass."""

    def test_valid_guild_config_creation(self):
        config = GuildConfig(
            guild_id=123456789,
            staff_roles=[111, 222, 333],
            ticket_category=444,
            log_channel=555,
            reminder_days=[7, 3, 1],
            resubscribe_url="https://example.com/renew",
            default_currency="usd"
        )

        self.assertEqual(config.guild_id, 123456789)
        self.assertEqual(config.staff_roles, [111, 222, 333])
        self.assertEqual(config.ticket_category, 444)
        self.assertEqual(config.log_channel, 555)
        self.assertEqual(config.reminder_days, [7, 3, 1])
        self.assertEqual(config.resubscribe_url, "https://example.com/renew")
        self.assertEqual(config.default_currency, "USD")

    def test_guild_config_with_defaults(self):
        config = GuildConfig(guild_id=123456789)

        self.assertEqual(config.staff_roles, [])
        self.assertIsNone(config.ticket_category)
        self.assertIsNone(config.log_channel)
        self.assertEqual(config.reminder_days, DEFAULT_REMINDER_DAYS)
        self.assertEqual(config.default_currency, "INR")
        self.assertIsNone(config.resubscribe_url)

    def test_default_reminder_days_are_not_shared(self):
        first = GuildConfig(guild_id=1)
        second = GuildConfig(guild_id=2)

        first.reminder_days.append(14)

        self.assertEqual(second.reminder_days, [3, 2, 1])

    def test_invalid_guild_id(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=0)

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=-1)

        with self.assertRaises(ValueError):
            GuildConfig(guild_id="invalid")

    def test_invalid_staff_roles(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, staff_roles="not_a_list")

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, staff_roles=[1, 2, "invalid"])

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, staff_roles=[1, 2, -1])

    def test_invalid_channel_ids(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, ticket_category=0)

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, log_channel=-1)

    def test_invalid_reminder_days(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, reminder_days=[3, 0])

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, reminder_days=[2, 2])

        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, reminder_days="3,2,1")

    def test_invalid_currency(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, default_currency="RUPEE")

    def test_invalid_transcript_dm(self):
        with self.assertRaises(ValueError):
            GuildConfig(guild_id=123, transcript_dm="yes")

    def test_to_dict_and_from_dict(self):
        config = GuildConfig(
            guild_id=123,
            staff_roles=[111, 222],
            ticket_category=333,
            log_channel=444,
            reminder_days=[5, 1],
            transcript_dm=False,
            embed_settings={'color': 0xff0000}
        )

        data = config.to_dict()
        self.assertEqual(data['reminder_days'], [5, 1])
        self.assertEqual(data['default_currency'], 'INR')
        self.assertFalse(data['transcript_dm'])

        self.assertEqual(GuildConfig.from_dict(data), config)

    def test_from_dict_with_defaults(self):
        config = GuildConfig.from_dict({'guild_id': 123})

        self.assertEqual(config.staff_roles, [])
        self.assertEqual(config.reminder_days, [3, 2, 1])
        self.assertEqual(config.embed_settings, {})
        self.assertTrue(config.transcript_dm)


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager class."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, 'test_config.json')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, data):
        with open(self.config_file, 'w') as f:
            json.dump(data, f)

    def test_config_manager_with_nonexistent_file(self):
        manager = ConfigManager(self.config_file)

        self.assertTrue(os.path.exists(self.config_file))
        self.assertEqual(manager.get_global_config('database_type'), 'sqlite')
        self.assertEqual(manager.get_global_config('database_url'), 'tickets.db')
        self.assertEqual(manager.close_delay_seconds, 5.0)
        self.assertEqual(manager.reminder_interval_hours, 1.0)
        self.assertEqual(manager.expiring_window_days, 7)
        self.assertFalse(manager.delete_closed_tickets)

    def test_missing_global_keys_fall_back_to_defaults(self):
        self.write_config({'global': {'database_type': 'sqlite', 'database_url': 'x.db'}, 'guilds': {}})

        manager = ConfigManager(self.config_file)

        self.assertEqual(manager.reminder_startup_delay_seconds, 10.0)
        self.assertEqual(manager.close_delay_seconds, 5.0)

    def test_config_manager_with_valid_file(self):
        self.write_config({
            'global': {
                'database_type': 'sqlite',
                'database_url': 'data/tickets.db',
                'close_delay_seconds': 2,
                'reminder_interval_hours': 0.5
            },
            'guilds': {
                '123456789': {
                    'staff_roles': [111, 222],
                    'ticket_category': 333,
                    'log_channel': 444,
                    'reminder_days': [7, 1]
                }
            }
        })

        manager = ConfigManager(self.config_file)

        self.assertEqual(manager.get_global_config('database_url'), 'data/tickets.db')
        self.assertEqual(manager.close_delay_seconds, 2.0)
        self.assertEqual(manager.reminder_interval_hours, 0.5)

        guild_config = manager.get_guild_config(123456789)
        self.assertEqual(guild_config.guild_id, 123456789)
        self.assertEqual(guild_config.staff_roles, [111, 222])
        self.assertEqual(guild_config.reminder_days, [7, 1])

    def test_config_manager_with_invalid_json(self):
        with open(self.config_file, 'w') as f:
            f.write('invalid json content')

        with self.assertRaises(ConfigurationError):
            ConfigManager(self.config_file)

    def test_config_manager_with_invalid_guild_config(self):
        self.write_config({
            'global': {'database_type': 'sqlite', 'database_url': 'test.db'},
            'guilds': {'123': {'staff_roles': [1, 2, "invalid"]}}
        })

        with self.assertRaises(ConfigurationError):
            ConfigManager(self.config_file)

    def test_get_guild_config_creates_default(self):
        manager = ConfigManager(self.config_file)

        guild_config = manager.get_guild_config(999999999)

        self.assertEqual(guild_config.guild_id, 999999999)
        self.assertEqual(guild_config.staff_roles, [])
        self.assertIs(manager.get_guild_config(999999999), guild_config)

    def test_get_guild_config_invalid_id(self):
        manager = ConfigManager(self.config_file)

        with self.assertRaises(ConfigurationError):
            manager.get_guild_config(0)

        with self.assertRaises(ConfigurationError):
            manager.get_guild_config("invalid")

    def test_set_guild_config_invalid_type(self):
        manager = ConfigManager(self.config_file)

        with self.assertRaises(ConfigurationError):
            manager.set_guild_config("not_a_guild_config")

    def test_global_config_operations(self):
        manager = ConfigManager(self.config_file)

        self.assertEqual(manager.get_global_config('nonexistent', 'default'), 'default')

        manager.set_global_config('delete_closed_tickets', True)
        self.assertTrue(manager.delete_closed_tickets)

    def test_save_configuration(self):
        manager = ConfigManager(self.config_file)

        manager.set_global_config('close_delay_seconds', 1)
        manager.set_guild_config(GuildConfig(guild_id=123, staff_roles=[111], reminder_days=[4]))
        manager.save_configuration()

        self.assertTrue(os.path.exists(os.path.join(self.temp_dir, 'test_config.bak')))

        new_manager = ConfigManager(self.config_file)
        self.assertEqual(new_manager.close_delay_seconds, 1.0)

        retrieved = new_manager.get_guild_config(123)
        self.assertEqual(retrieved.staff_roles, [111])
        self.assertEqual(retrieved.reminder_days, [4])

    def test_validate_configuration_valid(self):
        self.write_config({'global': {'database_type': 'sqlite', 'database_url': 'test.db'}, 'guilds': {}})

        manager = ConfigManager(self.config_file)

        self.assertEqual(manager.validate_configuration(), [])

    def test_validate_configuration_missing_required(self):
        self.write_config({'global': {}, 'guilds': {}})

        errors = ConfigManager(self.config_file).validate_configuration()

        self.assertIn('Missing required global configuration: database_type', errors)
        self.assertIn('Missing required global configuration: database_url', errors)

    def test_validate_configuration_invalid_values(self):
        self.write_config({
            'global': {
                'database_type': 'mongodb',
                'database_url': 'test.db',
                'close_delay_seconds': -1,
                'reminder_interval_hours': 0
            },
            'guilds': {'123': {'reminder_days': []}}
        })

        errors = ConfigManager(self.config_file).validate_configuration()

        self.assertTrue(any('Invalid database_type' in error for error in errors))
        self.assertTrue(any('close_delay_seconds' in error for error in errors))
        self.assertTrue(any('reminder_interval_hours' in error for error in errors))
        self.assertTrue(any('no reminder offsets' in error for error in errors))

    def test_reload_configuration(self):
        manager = ConfigManager(self.config_file)

        self.write_config({
            'global': {'database_type': 'sqlite', 'database_url': 'other.db'},
            'guilds': {'123': {'staff_roles': [999]}}
        })

        manager.reload_configuration()

        self.assertEqual(manager.get_global_config('database_url'), 'other.db')
        self.assertEqual(manager.get_guild_config(123).staff_roles, [999])


if __name__ == '__main__':
    unittest.main()
