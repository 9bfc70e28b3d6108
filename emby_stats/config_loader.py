"""
Configuration loader for Emby Stats.

Supports loading configuration from:
1. config.ini file (recommended)
2. Environment variables (for automation/Docker)

A config file holds one ``[Server:<name>]`` section per Emby server and an
optional ``[Settings]`` section.
"""

import configparser
import os
from dataclasses import dataclass
from typing import Optional

from emby_stats.models import ServerConfig

SERVER_SECTION_PREFIX = 'Server:'


class MissingConfigError(ValueError):
    """Raised when neither a config file nor environment variables define a server."""


@dataclass
class AnalyticsSettings:
    """Settings for sync and analytics processing."""

    # Marathon detection
    marathon_min_episodes: int = 3
    marathon_min_hours: float = 3.0

    # Abandonment detection (watched fraction)
    abandon_threshold: float = 0.30

    # Peak-hour prediction
    prediction_window_days: int = 7
    peak_hour_count: int = 3

    # Leaderboards
    top_users: int = 20
    top_media: int = 50


class ConfigLoader:
    """Load configuration from various sources."""

    def __init__(self, config_file: str = "config.ini"):
        """
        Initialize config loader.

        Args:
            config_file: Path to config file (default: config.ini)
        """
        self.config_file = config_file
        self.config = None

    def load_from_file(self) -> bool:
        """
        Load configuration from INI file.

        Returns:
            True if file was loaded successfully, False otherwise
        """
        if not os.path.exists(self.config_file):
            return False

        self.config = configparser.ConfigParser()
        self.config.read(self.config_file)
        return True

    def get_server_configs(self) -> list[ServerConfig]:
        """
        Get server configurations.

        Returns:
            List of server configs, in file order

        Raises:
            ValueError: If configuration is missing or invalid
        """
        if self.config:
            servers = []
            for section in self.config.sections():
                if not section.startswith(SERVER_SECTION_PREFIX):
                    continue
                name = section[len(SERVER_SECTION_PREFIX):].strip()
                try:
                    server = ServerConfig(
                        name=name,
                        url=self.config.get(section, 'url'),
                        api_key=self.config.get(section, 'api_key'),
                        port=self.config.getint(section, 'port', fallback=8096),
                    )
                except (configparser.NoOptionError, ValueError) as e:
                    raise ValueError(f"Invalid config file section [{section}]: {e}")

                if 'YOUR_API_KEY' in server.api_key:
                    raise ValueError(
                        f"Please update config.ini with your actual API key for {name}!\n"
                        "Replace 'YOUR_API_KEY_HERE' with an Emby API key."
                    )
                servers.append(server)

            if servers:
                return servers

        env_name = os.getenv('EMBY_SERVER_NAME')
        env_url = os.getenv('EMBY_SERVER_URL')
        env_key = os.getenv('EMBY_SERVER_KEY')

        if all([env_name, env_url, env_key]):
            try:
                port = int(os.getenv('EMBY_SERVER_PORT', '8096'))
            except ValueError:
                raise ValueError("EMBY_SERVER_PORT must be an integer")
            return [ServerConfig(name=env_name, url=env_url, api_key=env_key, port=port)]

        raise MissingConfigError(
            "No configuration found!\n\n"
            "Please create a config.ini file with one section per server:\n"
            "  [Server:Home]\n"
            "  url = http://192.168.1.10\n"
            "  port = 8096\n"
            "  api_key = ...\n\n"
            "Or set environment variables:\n"
            "  EMBY_SERVER_NAME, EMBY_SERVER_URL, EMBY_SERVER_KEY\n"
            "  (Optional) EMBY_SERVER_PORT"
        )

    def get_settings(self) -> AnalyticsSettings:
        """
        Get analytics settings.

        Returns:
            AnalyticsSettings with configured values
        """
        settings = AnalyticsSettings()

        if self.config and self.config.has_section('Settings'):
            section = 'Settings'
            settings.marathon_min_episodes = self.config.getint(section, 'marathon_min_episodes', fallback=3)
            settings.marathon_min_hours = self.config.getfloat(section, 'marathon_min_hours', fallback=3.0)
            settings.abandon_threshold = self.config.getfloat(section, 'abandon_threshold', fallback=0.30)
            settings.prediction_window_days = self.config.getint(section, 'prediction_window_days', fallback=7)
            settings.peak_hour_count = self.config.getint(section, 'peak_hour_count', fallback=3)
            settings.top_users = self.config.getint(section, 'top_users', fallback=20)
            settings.top_media = self.config.getint(section, 'top_media', fallback=50)
            return settings

        settings.marathon_min_episodes = int(os.getenv('EMBY_MARATHON_MIN_EPISODES', '3'))
        settings.marathon_min_hours = float(os.getenv('EMBY_MARATHON_MIN_HOURS', '3.0'))
        settings.abandon_threshold = float(os.getenv('EMBY_ABANDON_THRESHOLD', '0.30'))
        settings.prediction_window_days = int(os.getenv('EMBY_PREDICTION_WINDOW_DAYS', '7'))
        settings.peak_hour_count = int(os.getenv('EMBY_PEAK_HOUR_COUNT', '3'))
        settings.top_users = int(os.getenv('EMBY_TOP_USERS', '20'))
        settings.top_media = int(os.getenv('EMBY_TOP_MEDIA', '50'))

        return settings


def load_config(config_file: str = "config.ini") -> tuple[list[ServerConfig], AnalyticsSettings]:
    """
    Convenience function to load all configuration.

    Args:
        config_file: Path to config file

    Returns:
        Tuple of (servers, settings)

    Raises:
        ValueError: If configuration is missing or invalid
    """
    loader = ConfigLoader(config_file)
    loader.load_from_file()

    servers = loader.get_server_configs()
    settings = loader.get_settings()

    return servers, settings


def load_optional_servers(config_file: str = "config.ini") -> Optional[list[ServerConfig]]:
    """Like ``load_config`` for servers, but returns None when nothing is configured."""
    loader = ConfigLoader(config_file)
    loader.load_from_file()
    try:
        return loader.get_server_configs()
    except MissingConfigError:
        return None
