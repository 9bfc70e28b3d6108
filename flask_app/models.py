"""
Database models for Flask application.
"""
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class Server(db.Model):
    """An Emby server configured for syncing."""
    __tablename__ = 'servers'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    url = db.Column(db.String(255), nullable=False)
    port = db.Column(db.Integer, nullable=False, default=8096)
    api_key = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = db.relationship('ServerUser', back_populates='server', cascade='all, delete')
    history = db.relationship('PlayHistory', back_populates='server', cascade='all, delete')
    sessions = db.relationship('SessionLog', back_populates='server', cascade='all, delete')
    sync_logs = db.relationship('SyncLog', back_populates='server', cascade='all, delete')

    def to_emby_config(self):
        """Convert to emby_stats.models.ServerConfig"""
        from emby_stats.models import ServerConfig as EmbyServerConfig
        return EmbyServerConfig(
            name=self.name,
            url=self.url,
            api_key=self.api_key,
            port=self.port
        )


class GlobalUser(db.Model):
    """A person identity spanning accounts on several servers."""
    __tablename__ = 'global_users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    avatar = db.Column(db.String(500), nullable=True)
    is_hidden = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Deleting an identity keeps its accounts and only clears the link
    server_users = db.relationship('ServerUser', back_populates='global_user')


class ServerUser(db.Model):
    """An Emby account on one server."""
    __tablename__ = 'server_users'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.Integer, db.ForeignKey('servers.id', ondelete='CASCADE'), nullable=False)
    emby_user_id = db.Column(db.String(100), nullable=False)
    username = db.Column(db.String(255), nullable=False)
    global_user_id = db.Column(db.Integer, db.ForeignKey('global_users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    server = db.relationship('Server', back_populates='users')
    global_user = db.relationship('GlobalUser', back_populates='server_users')
    history = db.relationship('PlayHistory', back_populates='server_user', cascade='all, delete')

    __table_args__ = (
        db.UniqueConstraint('server_id', 'emby_user_id', name='uq_server_user_emby_id'),
    )

    @property
    def display_name(self) -> str:
        return self.global_user.name if self.global_user else self.username


class PlayHistory(db.Model):
    """One watch record of one item by one server user."""
    __tablename__ = 'play_history'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.Integer, db.ForeignKey('servers.id', ondelete='CASCADE'), nullable=False)
    server_user_id = db.Column(db.Integer, db.ForeignKey('server_users.id', ondelete='CASCADE'), nullable=False)

    # Media info
    item_id = db.Column(db.String(100), nullable=False)
    item_name = db.Column(db.String(500), nullable=False)
    item_type = db.Column(db.String(50), nullable=False)  # Movie, Episode
    series_name = db.Column(db.String(500), nullable=True)
    season_name = db.Column(db.String(255), nullable=True)
    episode_number = db.Column(db.Integer, nullable=True)
    genres = db.Column(db.Text, nullable=False, default='[]')  # JSON array
    year = db.Column(db.Integer, nullable=True)
    duration = db.Column(db.BigInteger, nullable=False, default=0)  # Runtime in ticks

    # Playback info
    played_at = db.Column(db.DateTime, nullable=False)  # Naive UTC
    play_duration = db.Column(db.BigInteger, nullable=False, default=0)
    play_count = db.Column(db.Integer, nullable=False, default=1)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    playback_position = db.Column(db.BigInteger, nullable=False, default=0)

    # Quality info
    video_codec = db.Column(db.String(50), nullable=True)
    resolution = db.Column(db.String(20), nullable=True)  # 4K, 1080P, 720P, 480P, SD
    is_hdr = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    server = db.relationship('Server', back_populates='history')
    server_user = db.relationship('ServerUser', back_populates='history')

    __table_args__ = (
        db.UniqueConstraint('server_id', 'server_user_id', 'item_id', 'played_at',
                            name='uq_play_history_item_played_at'),
        db.Index('ix_play_history_server_played_at', 'server_id', 'played_at'),
        db.Index('ix_play_history_user_played_at', 'server_user_id', 'played_at'),
        db.Index('ix_play_history_user_item', 'server_user_id', 'item_id'),
        db.Index('ix_play_history_item_type', 'item_type'),
    )


class SessionLog(db.Model):
    """One playback session, recorded by the session poller."""
    __tablename__ = 'session_logs'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.Integer, db.ForeignKey('servers.id', ondelete='CASCADE'), nullable=False)
    session_id = db.Column(db.String(100), nullable=False)  # Emby session ID

    # User/client info
    server_user_id = db.Column(db.Integer, nullable=True)
    emby_user_id = db.Column(db.String(100), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)
    device_id = db.Column(db.String(255), nullable=True)
    device_name = db.Column(db.String(255), nullable=True)
    client = db.Column(db.String(100), nullable=True)

    # Media info
    item_id = db.Column(db.String(100), nullable=True)
    item_name = db.Column(db.String(500), nullable=True)
    item_type = db.Column(db.String(50), nullable=True)
    series_name = db.Column(db.String(500), nullable=True)

    # Playback info
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.BigInteger, nullable=False, default=0)
    position_ticks = db.Column(db.BigInteger, nullable=False, default=0)
    real_duration = db.Column(db.BigInteger, nullable=False, default=0)
    is_paused = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_transcoding = db.Column(db.Boolean, nullable=False, default=False)
    video_codec = db.Column(db.String(50), nullable=True)
    audio_codec = db.Column(db.String(50), nullable=True)
    bitrate = db.Column(db.Integer, nullable=True)  # bits per second

    server = db.relationship('Server', back_populates='sessions')


class SyncLog(db.Model):
    """Audit trail of sync runs, one row per server per run."""
    __tablename__ = 'sync_logs'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.Integer, db.ForeignKey('servers.id', ondelete='CASCADE'), nullable=False)
    sync_type = db.Column(db.String(20), nullable=False, default='full')
    last_sync = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    status = db.Column(db.String(20), nullable=False)  # success, failed
    message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    server = db.relationship('Server', back_populates='sync_logs')


class SyncLease(db.Model):
    """Stored lease preventing overlapping runs of a named job."""
    __tablename__ = 'sync_leases'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    run_id = db.Column(db.String(64), nullable=True)  # None when free
    acquired_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)


class AnalyticsSettings(db.Model):
    """Analytics configuration settings (singleton table)."""
    __tablename__ = 'analytics_settings'

    id = db.Column(db.Integer, primary_key=True)
    marathon_min_episodes = db.Column(db.Integer, default=3)
    marathon_min_hours = db.Column(db.Float, default=3.0)
    abandon_threshold = db.Column(db.Float, default=0.30)
    prediction_window_days = db.Column(db.Integer, default=7)
    peak_hour_count = db.Column(db.Integer, default=3)
    top_users = db.Column(db.Integer, default=20)
    top_media = db.Column(db.Integer, default=50)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_emby_settings(self):
        """Convert to emby_stats.config_loader.AnalyticsSettings"""
        from emby_stats.config_loader import AnalyticsSettings as EmbySettings
        return EmbySettings(
            marathon_min_episodes=self.marathon_min_episodes,
            marathon_min_hours=self.marathon_min_hours,
            abandon_threshold=self.abandon_threshold,
            prediction_window_days=self.prediction_window_days,
            peak_hour_count=self.peak_hour_count,
            top_users=self.top_users,
            top_media=self.top_media
        )
