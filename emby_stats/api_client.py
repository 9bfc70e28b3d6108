"""
Emby API client for fetching users, play state and libraries.
"""

import logging
from typing import Any, Iterator, Optional, Sequence

import requests
import urllib3
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from emby_stats.models import EmbyUser, ServerConfig

# Suppress SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

ITEM_FIELDS = 'MediaSources,Genres,Overview,ProductionYear,DateCreated'


class EmbyApiError(Exception):
    """Raised when the Emby API cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _status_of(error: requests.RequestException) -> Optional[int]:
    response = getattr(error, 'response', None)
    return response.status_code if response is not None else None


def is_retryable(error: BaseException) -> bool:
    """Network errors, 5xx and 429 are retried; other client errors are not."""
    if not isinstance(error, requests.RequestException):
        return False
    status = _status_of(error)
    if status is None:
        return True
    return status == 429 or not 400 <= status < 500


class EmbyClient:
    """Client for interacting with the Emby REST API."""

    MAX_RETRIES = 3
    BASE_DELAY = 1.0
    MAX_DELAY = 10.0

    def __init__(self, server_config: ServerConfig, timeout: float = 30.0, verify_ssl: bool = False):
        """
        Initialize Emby client.

        Args:
            server_config: Server configuration containing URL and API key
            timeout: Per-request timeout in seconds
            verify_ssl: Whether to verify TLS certificates
        """
        self.config = server_config
        self.base_url = server_config.base_url
        self.api_key = server_config.api_key
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = requests.Session()
        self.session.headers.update({
            'X-Emby-Token': self.api_key,
            'Accept': 'application/json',
        })

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        response = self.session.request(method, url, timeout=self.timeout, verify=self.verify_ssl, **kwargs)
        response.raise_for_status()
        return response

    def _make_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """
        Make a request to the Emby API with retry and exponential backoff.

        Waits start at ``BASE_DELAY`` and double up to ``MAX_DELAY``.
        Client errors other than 429 are not retried.

        Raises:
            EmbyApiError: If the request still fails after all retries
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=self.BASE_DELAY, max=self.MAX_DELAY),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        try:
            return retrying(self._send, method, f"{self.base_url}{path}", **kwargs)
        except requests.HTTPError as e:
            status = _status_of(e)
            raise EmbyApiError(f"{method} {path} failed: HTTP {status}", status) from e
        except requests.RequestException as e:
            raise EmbyApiError(f"{method} {path} failed: {e}") from e

    def _get_json(self, path: str, **params: Any) -> Any:
        return self._make_request('GET', path, params=params or None).json()

    def test_connection(self) -> dict[str, Any]:
        """
        Test connectivity using the public system info endpoint.

        Returns:
            Dictionary with success flag and server name/version or error
        """
        try:
            info = self._get_json('/System/Info/Public')
        except EmbyApiError as e:
            return {'success': False, 'error': str(e)}
        return {
            'success': True,
            'server_name': info.get('ServerName'),
            'version': info.get('Version'),
        }

    def get_users(self) -> list[EmbyUser]:
        """
        Get all users on the server.

        Payloads without an Id are dropped.
        """
        users = []
        for payload in self._get_json('/Users') or []:
            try:
                users.append(EmbyUser.from_api(payload))
            except ValueError:
                logger.warning("Ignoring malformed user payload from %s", self.config.name)
        return users

    def get_user_items(
        self,
        user_id: str,
        start_index: int = 0,
        limit: int = 100,
        item_types: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[str]] = None,
        sort_by: str = 'DatePlayed',
        sort_order: str = 'Descending',
    ) -> dict[str, Any]:
        """
        Get one page of items for a user.

        Returns:
            Raw API response with ``Items`` and ``TotalRecordCount``
        """
        params: dict[str, Any] = {
            'StartIndex': start_index,
            'Limit': limit,
            'SortBy': sort_by,
            'SortOrder': sort_order,
            'Recursive': 'true',
            'Fields': ITEM_FIELDS,
        }
        if item_types:
            params['IncludeItemTypes'] = ','.join(item_types)
        if filters:
            params['Filters'] = ','.join(filters)
        return self._get_json(f'/Users/{user_id}/Items', **params)

    def iter_played_items(
        self,
        user_id: str,
        item_types: Sequence[str] = ('Movie', 'Episode'),
        page_size: int = 100,
    ) -> Iterator[list[dict[str, Any]]]:
        """
        Yield played items one page at a time, most recently played first.

        Pages are fetched lazily: a consumer that stops iterating (or closes
        the generator) never triggers the remaining requests.

        Yields:
            Raw item payloads for each non-empty page
        """
        start_index = 0
        while True:
            response = self.get_user_items(
                user_id,
                start_index=start_index,
                limit=page_size,
                item_types=item_types,
                filters=['IsPlayed'],
            )
            items = response.get('Items') or []
            if items:
                yield items

            start_index += page_size
            if not items or start_index >= (response.get('TotalRecordCount') or 0):
                break

    def get_resume_items(self, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """Get resumable (in-progress) video items from the dedicated endpoint."""
        response = self._get_json(
            f'/Users/{user_id}/Items/Resume',
            Limit=limit,
            Fields=ITEM_FIELDS,
            MediaTypes='Video',
        )
        return response.get('Items') or []

    def get_system_info(self) -> dict[str, Any]:
        """Get authenticated system info (name, version, operating system)."""
        return self._get_json('/System/Info') or {}

    def get_libraries(self) -> list[dict[str, Any]]:
        """Get virtual folders (libraries)."""
        return self._get_json('/Library/VirtualFolders') or []

    def get_library_item_count(self, library_id: str) -> int:
        """
        Count the video items below a library.

        Uses ``/Items/Counts`` and falls back to a zero-length ``/Items``
        query when the counts endpoint is unavailable.
        """
        try:
            counts = self._get_json('/Items/Counts', ParentId=library_id) or {}
        except EmbyApiError as e:
            logger.info("Item counts unavailable for library %s (%s), querying items", library_id, e)
            response = self._get_json('/Items', ParentId=library_id, Recursive='true', Limit=0) or {}
            return int(response.get('TotalRecordCount') or 0)
        return sum(int(counts.get(key) or 0)
                   for key in ('MovieCount', 'EpisodeCount', 'MusicVideoCount', 'TrailerCount'))

    def stop_session(self, session_id: str) -> None:
        """Stop playback on a session."""
        self._make_request('POST', f'/Sessions/{session_id}/Playing/Stop')

    def send_message(self, session_id: str, text: str, header: str = 'Message from administrator') -> None:
        """Display a message on a session's client."""
        self._make_request('POST', f'/Sessions/{session_id}/Message', json={
            'Header': header,
            'Text': text,
            'TimeoutMs': 10000,
        })
