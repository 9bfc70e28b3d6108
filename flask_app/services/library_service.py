"""
Service for server libraries and per-library storage statistics.
"""
import logging
from typing import Any, Dict, List

from emby_stats.api_client import EmbyApiError, EmbyClient
from emby_stats.data_processing import record_real_duration
from flask_app.models import PlayHistory
from flask_app.services.config_service import ConfigService

logger = logging.getLogger(__name__)

# Virtual folders that group other items rather than hold media
SKIPPED_COLLECTION_TYPES = ('boxsets', 'playlists')

COLLECTION_ITEM_TYPES = {
    'tvshows': 'Episode',
    'music': 'Audio',
}


class LibraryService:
    """Service for reading library layout from Emby servers."""

    def get_server_libraries(self, server_id: int) -> List[Dict[str, Any]]:
        """
        Libraries of one server, as reported by Emby.

        Raises:
            LookupError: If the server does not exist
            EmbyApiError: If the server cannot be reached
        """
        server = ConfigService.get_server(server_id)
        client = EmbyClient(server.to_emby_config())
        return [
            {
                'name': library.get('Name'),
                'item_id': library.get('ItemId'),
                'type': library.get('CollectionType') or 'unknown',
                'locations': library.get('Locations') or [],
            }
            for library in client.get_libraries()
        ]

    def _played_by_type(self, server_id: int) -> Dict[str, Dict[str, Any]]:
        totals: Dict[str, Dict[str, Any]] = {}
        for record in PlayHistory.query.filter_by(server_id=server_id).all():
            entry = totals.setdefault(record.item_type, {'items': set(), 'records': 0, 'duration': 0})
            entry['items'].add(record.item_id)
            entry['records'] += 1
            entry['duration'] += record_real_duration(record)
        return totals

    def get_storage(self) -> Dict[str, Any]:
        """
        Library sizes and played coverage for every active server.

        A server that cannot be reached is reported with ``error`` set and
        no libraries; the others are still returned.
        """
        servers = ConfigService.get_active_servers()
        results = []
        for server in servers:
            played = self._played_by_type(server.id)
            entry = {
                'server_id': server.id,
                'server_name': server.name,
                'version': None,
                'operating_system': None,
                'libraries': [],
                'total_records': sum(t['records'] for t in played.values()),
                'total_duration': sum(t['duration'] for t in played.values()),
            }

            try:
                client = EmbyClient(server.to_emby_config())
                info = client.get_system_info()
                entry['version'] = info.get('Version') or 'Unknown'
                entry['operating_system'] = info.get('OperatingSystem') or 'Unknown'

                for library in client.get_libraries():
                    collection_type = library.get('CollectionType')
                    if collection_type in SKIPPED_COLLECTION_TYPES:
                        continue
                    item_type = COLLECTION_ITEM_TYPES.get(collection_type, 'Movie')
                    stats = played.get(item_type, {'items': set(), 'duration': 0})
                    entry['libraries'].append({
                        'name': library.get('Name'),
                        'type': collection_type or 'unknown',
                        'locations': library.get('Locations') or [],
                        'media_count': client.get_library_item_count(library.get('ItemId')),
                        'played_count': len(stats['items']),
                        'watched_duration': stats['duration'],
                    })
            except EmbyApiError as e:
                logger.warning("Storage info unavailable for server %s: %s", server.name, e)
                entry['error'] = str(e)
                entry['libraries'] = []

            results.append(entry)

        return {'servers': results, 'total_servers': len(servers)}
