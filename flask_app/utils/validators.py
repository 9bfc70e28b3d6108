"""
Form validation utilities.
"""
from typing import List, Dict, Any


def validate_server_config(data: Dict[str, Any]) -> List[str]:
    """
    Validate server configuration data.

    Args:
        data: Dictionary with 'name', 'url', 'port', 'api_key'

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    # Validate name
    if not data.get('name') or not str(data['name']).strip():
        errors.append('Server name is required.')

    # Validate URL
    url = str(data.get('url') or '').strip()
    if not url:
        errors.append('Server URL is required.')
    elif ' ' in url:
        errors.append('Server URL must not contain spaces.')

    # Validate port
    port = data.get('port')
    if port not in (None, ''):
        try:
            port = int(port)
        except (TypeError, ValueError):
            errors.append('Port must be a number.')
        else:
            if port < 1 or port > 65535:
                errors.append('Port must be between 1 and 65535.')

    # Validate API key
    api_key = str(data.get('api_key') or '').strip()
    if not api_key:
        errors.append('API key is required.')
    elif api_key.upper() in ('YOUR_API_KEY', 'YOUR_API_KEY_HERE'):
        errors.append('Please replace "YOUR_API_KEY" with your actual Emby API key.')

    return errors


def validate_analytics_settings(data: Dict[str, Any]) -> List[str]:
    """Validate analytics settings; every field is optional."""
    errors = []

    int_ranges = {
        'marathon_min_episodes': (1, 100),
        'prediction_window_days': (1, 365),
        'peak_hour_count': (1, 24),
        'top_users': (1, 100),
        'top_media': (1, 500),
    }
    for field, (low, high) in int_ranges.items():
        if data.get(field) is None:
            continue
        try:
            value = int(data[field])
        except (TypeError, ValueError):
            errors.append(f'{field} must be a whole number.')
            continue
        if value < low or value > high:
            errors.append(f'{field} must be between {low} and {high}.')

    if data.get('marathon_min_hours') is not None:
        try:
            if float(data['marathon_min_hours']) < 0:
                errors.append('marathon_min_hours must not be negative.')
        except (TypeError, ValueError):
            errors.append('marathon_min_hours must be a number.')

    if data.get('abandon_threshold') is not None:
        try:
            threshold = float(data['abandon_threshold'])
        except (TypeError, ValueError):
            errors.append('abandon_threshold must be a number.')
        else:
            if not 0 < threshold < 1:
                errors.append('abandon_threshold must be between 0 and 1.')

    return errors
