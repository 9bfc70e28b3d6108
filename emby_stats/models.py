"""
Data models and value types for Emby analytics.

Remote payloads are loosely typed JSON; everything the sync engine consumes
is converted into the frozen dataclasses below at the ingestion boundary.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

_FRACTION_RE = re.compile(r'\.(\d+)')


def parse_emby_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an Emby timestamp into a naive UTC datetime.

    Emby emits seven fractional digits and a trailing ``Z``
    (``2024-01-15T20:31:12.0000000Z``), which ``fromisoformat`` does not
    accept on every interpreter, so the fraction is trimmed first.

    Returns:
        Naive UTC datetime, or None if the value is empty or unparseable
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class ServerConfig:
    """Connection settings for an Emby server."""

    name: str
    url: str
    api_key: str
    port: int = 8096

    @property
    def base_url(self) -> str:
        """Get the base URL for API requests."""
        url = self.url.rstrip('/')
        if '://' not in url:
            url = f"http://{url}"
        if self.port and self.port not in (80, 443):
            url = f"{url}:{self.port}"
        return url

    def __repr__(self) -> str:
        """String representation with masked API key."""
        masked_key = f"{self.api_key[:4]}...{self.api_key[-4:]}" if len(self.api_key) > 8 else "***"
        return f"ServerConfig(name='{self.name}', url='{self.url}', port={self.port}, api_key='{masked_key}')"


@dataclass(frozen=True)
class EmbyUser:
    """An account on an Emby server."""

    id: str
    name: str

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> 'EmbyUser':
        user_id = payload.get('Id')
        if not user_id:
            raise ValueError("Emby user payload has no Id")
        return cls(id=str(user_id), name=payload.get('Name') or str(user_id))


@dataclass(frozen=True)
class EmbyMediaStream:
    """Video stream descriptor used to derive codec, resolution and HDR."""

    codec: Optional[str] = None
    height: Optional[int] = None
    is_hdr: bool = False
    video_range_type: Optional[str] = None

    @property
    def resolution(self) -> Optional[str]:
        """Resolution bucket label, or None when the height is unknown."""
        if not self.height:
            return None
        if self.height >= 2160:
            return '4K'
        if self.height >= 1080:
            return '1080P'
        if self.height >= 720:
            return '720P'
        if self.height >= 480:
            return '480P'
        return 'SD'

    @property
    def hdr(self) -> bool:
        return bool(self.is_hdr) or self.video_range_type == 'HDR'


@dataclass(frozen=True)
class EmbyUserData:
    """Per-user playback state attached to an item."""

    playback_position_ticks: int = 0
    play_count: int = 0
    played: bool = False
    last_played_date: Optional[datetime] = None
    last_activity_date: Optional[datetime] = None

    @property
    def reliable_date(self) -> Optional[datetime]:
        """The remote played date, if the server supplied one."""
        return self.last_played_date or self.last_activity_date


@dataclass(frozen=True)
class EmbyItem:
    """A movie or episode as returned by the item endpoints."""

    id: str
    name: str
    type: str
    series_name: Optional[str] = None
    season_name: Optional[str] = None
    episode_number: Optional[int] = None
    genres: tuple[str, ...] = field(default_factory=tuple)
    production_year: Optional[int] = None
    run_time_ticks: int = 0
    user_data: EmbyUserData = field(default_factory=EmbyUserData)
    video_stream: Optional[EmbyMediaStream] = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> 'EmbyItem':
        """
        Build an item from a raw ``/Items`` payload.

        Raises:
            ValueError: If the payload is not an object, carries no Id, or has
                a ``UserData``, ``MediaSources`` or ``Genres`` of the wrong shape
        """
        if not isinstance(payload, dict):
            raise ValueError("Emby item payload is not an object")
        item_id = payload.get('Id')
        if not item_id:
            raise ValueError("Emby item payload has no Id")

        raw_user_data = payload.get('UserData') or {}
        if not isinstance(raw_user_data, dict):
            raise ValueError(f"Emby item {item_id} has malformed UserData")
        user_data = EmbyUserData(
            playback_position_ticks=_to_int(raw_user_data.get('PlaybackPositionTicks')) or 0,
            play_count=_to_int(raw_user_data.get('PlayCount')) or 0,
            played=bool(raw_user_data.get('Played')),
            last_played_date=parse_emby_datetime(raw_user_data.get('LastPlayedDate')),
            last_activity_date=parse_emby_datetime(raw_user_data.get('LastActivityDate')),
        )

        video_stream = None
        sources = payload.get('MediaSources') or []
        if not isinstance(sources, list):
            raise ValueError(f"Emby item {item_id} has malformed MediaSources")
        if sources:
            if not isinstance(sources[0], dict):
                raise ValueError(f"Emby item {item_id} has malformed MediaSources")
            streams = sources[0].get('MediaStreams') or []
            if not isinstance(streams, list):
                raise ValueError(f"Emby item {item_id} has malformed MediaStreams")
            for stream in streams:
                if isinstance(stream, dict) and stream.get('Type') == 'Video':
                    video_stream = EmbyMediaStream(
                        codec=stream.get('Codec'),
                        height=_to_int(stream.get('Height')),
                        is_hdr=bool(stream.get('IsHDR')),
                        video_range_type=stream.get('VideoRangeType'),
                    )
                    break

        raw_genres = payload.get('Genres') or []
        if not isinstance(raw_genres, list):
            raise ValueError(f"Emby item {item_id} has malformed Genres")
        genres = tuple(str(g) for g in raw_genres if g is not None)

        return cls(
            id=str(item_id),
            name=payload.get('Name') or str(item_id),
            type=payload.get('Type') or 'Unknown',
            series_name=payload.get('SeriesName'),
            season_name=payload.get('SeasonName'),
            episode_number=_to_int(payload.get('IndexNumber')),
            genres=genres,
            production_year=_to_int(payload.get('ProductionYear')),
            run_time_ticks=_to_int(payload.get('RunTimeTicks')) or 0,
            user_data=user_data,
            video_stream=video_stream,
        )
