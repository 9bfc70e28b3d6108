"""
Configuration service for managing database-driven configuration.
"""
from typing import Iterable, List, Optional

from flask_app.models import db, Server, AnalyticsSettings


class ConfigService:
    """Service for managing configuration from database."""

    @staticmethod
    def get_analytics_settings() -> object:
        """Get analytics settings in emby_stats format."""
        settings = AnalyticsSettings.query.first()
        if settings is None:
            from emby_stats.config_loader import AnalyticsSettings as EmbySettings
            return EmbySettings()
        return settings.to_emby_settings()

    @staticmethod
    def has_valid_config() -> bool:
        """Check if at least one server is configured."""
        return Server.query.filter_by(is_active=True).count() > 0

    @staticmethod
    def get_active_servers(server_ids: Optional[Iterable[int]] = None) -> List[Server]:
        """
        Get active servers in creation order.

        Args:
            server_ids: Optional subset of server ids to restrict to
        """
        query = Server.query.filter_by(is_active=True)
        if server_ids is not None:
            query = query.filter(Server.id.in_(list(server_ids)))
        return query.order_by(Server.id).all()

    @staticmethod
    def get_server(server_id: int) -> Server:
        """Get a server by id, raising LookupError when unknown."""
        server = db.session.get(Server, server_id)
        if server is None:
            raise LookupError(f"Server {server_id} not found")
        return server

    @staticmethod
    def create_or_update_server(emby_server_config, is_active: bool = True) -> Server:
        """
        Create or update a server from an emby_stats ServerConfig, keyed by name.

        Args:
            emby_server_config: emby_stats.models.ServerConfig object
            is_active: Whether the server takes part in syncs
        """
        server = Server.query.filter_by(name=emby_server_config.name).first()

        if server:
            server.url = emby_server_config.url
            server.port = emby_server_config.port
            server.api_key = emby_server_config.api_key
            server.is_active = is_active
        else:
            server = Server(
                name=emby_server_config.name,
                url=emby_server_config.url,
                port=emby_server_config.port,
                api_key=emby_server_config.api_key,
                is_active=is_active
            )
            db.session.add(server)

        db.session.commit()
        return server

    @staticmethod
    def delete_server(server_id: int) -> None:
        """Delete a server together with its users, history, sessions and sync logs."""
        server = ConfigService.get_server(server_id)
        db.session.delete(server)
        db.session.commit()

    @staticmethod
    def update_analytics_settings(emby_settings):
        """
        Update analytics settings from emby_stats AnalyticsSettings.

        Args:
            emby_settings: emby_stats.config_loader.AnalyticsSettings object
        """
        settings = AnalyticsSettings.query.first()

        if not settings:
            settings = AnalyticsSettings()
            db.session.add(settings)

        settings.marathon_min_episodes = emby_settings.marathon_min_episodes
        settings.marathon_min_hours = emby_settings.marathon_min_hours
        settings.abandon_threshold = emby_settings.abandon_threshold
        settings.prediction_window_days = emby_settings.prediction_window_days
        settings.peak_hour_count = emby_settings.peak_hour_count
        settings.top_users = emby_settings.top_users
        settings.top_media = emby_settings.top_media

        db.session.commit()
