"""
Settings routes for managing servers, users and analytics settings.
"""
from flask import Blueprint, jsonify, request

from emby_stats.api_client import EmbyClient
from emby_stats.models import ServerConfig as EmbyServerConfig
from emby_stats.utils import mask_api_key
from flask_app.models import db, Server, AnalyticsSettings
from flask_app.services.config_service import ConfigService
from flask_app.services.user_service import UserService
from flask_app.utils.validators import validate_analytics_settings, validate_server_config

settings_bp = Blueprint('settings', __name__)


def _server_to_dict(server: Server) -> dict:
    return {
        'id': server.id,
        'name': server.name,
        'url': server.url,
        'port': server.port,
        'api_key': mask_api_key(server.api_key),
        'is_active': server.is_active,
    }


def _settings_to_dict(settings: AnalyticsSettings) -> dict:
    return {
        'marathon_min_episodes': settings.marathon_min_episodes,
        'marathon_min_hours': settings.marathon_min_hours,
        'abandon_threshold': settings.abandon_threshold,
        'prediction_window_days': settings.prediction_window_days,
        'peak_hour_count': settings.peak_hour_count,
        'top_users': settings.top_users,
        'top_media': settings.top_media,
    }


@settings_bp.route('/')
def index():
    """All servers and analytics settings."""
    servers = Server.query.order_by(Server.id).all()
    settings = AnalyticsSettings.query.first()
    return jsonify({
        'servers': [_server_to_dict(s) for s in servers],
        'analytics': _settings_to_dict(settings) if settings else None,
    })


@settings_bp.route('/server/add', methods=['POST'])
def add_server():
    """Add or update a server (updates when ``server_id`` is given)."""
    payload = request.get_json(silent=True) or {}
    data = {
        'name': (payload.get('name') or '').strip(),
        'url': (payload.get('url') or '').strip(),
        'port': payload.get('port', 8096),
        'api_key': (payload.get('api_key') or '').strip(),
    }

    errors = validate_server_config(data)
    if errors:
        return jsonify({'errors': errors}), 400

    try:
        server_id = payload.get('server_id')
        if server_id:
            server = db.session.get(Server, server_id)
            if server is None:
                return jsonify({'error': 'Server not found.'}), 404
            server.name = data['name']
            server.url = data['url']
            server.port = int(data['port'] or 8096)
            server.api_key = data['api_key']
            if 'is_active' in payload:
                server.is_active = bool(payload['is_active'])
        else:
            server = Server(
                name=data['name'],
                url=data['url'],
                port=int(data['port'] or 8096),
                api_key=data['api_key'],
                is_active=bool(payload.get('is_active', True))
            )
            db.session.add(server)

        db.session.commit()
        return jsonify({'server': _server_to_dict(server)})
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@settings_bp.route('/server/<int:server_id>/delete', methods=['POST'])
def delete_server(server_id):
    """Delete a server and everything recorded for it."""
    try:
        ConfigService.delete_server(server_id)
        return jsonify({'success': True})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@settings_bp.route('/server/test', methods=['POST'])
def test_server():
    """Test connectivity with unsaved server details."""
    payload = request.get_json(silent=True) or {}
    data = {
        'name': (payload.get('name') or 'test').strip(),
        'url': (payload.get('url') or '').strip(),
        'port': payload.get('port', 8096),
        'api_key': (payload.get('api_key') or '').strip(),
    }
    errors = validate_server_config(data)
    if errors:
        return jsonify({'errors': errors}), 400

    config = EmbyServerConfig(name=data['name'], url=data['url'], api_key=data['api_key'],
                              port=int(data['port'] or 8096))
    return jsonify(EmbyClient(config, timeout=10.0).test_connection())


@settings_bp.route('/analytics', methods=['POST'])
def update_analytics_settings():
    """Update analytics settings from a JSON body."""
    payload = request.get_json(silent=True) or {}
    errors = validate_analytics_settings(payload)
    if errors:
        return jsonify({'errors': errors}), 400

    settings = AnalyticsSettings.query.first()
    if settings is None:
        settings = AnalyticsSettings()
        db.session.add(settings)

    int_fields = ('marathon_min_episodes', 'prediction_window_days', 'peak_hour_count', 'top_users', 'top_media')
    float_fields = ('marathon_min_hours', 'abandon_threshold')
    for field in int_fields:
        if payload.get(field) is not None:
            setattr(settings, field, int(payload[field]))
    for field in float_fields:
        if payload.get(field) is not None:
            setattr(settings, field, float(payload[field]))

    db.session.commit()
    return jsonify({'analytics': _settings_to_dict(settings)})


@settings_bp.route('/import-from-ini', methods=['POST'])
def import_from_ini():
    """Import servers and settings from an existing config.ini file."""
    try:
        from emby_stats.config_loader import load_config

        servers, analytics_settings = load_config()
        for server_config in servers:
            ConfigService.create_or_update_server(server_config)
        ConfigService.update_analytics_settings(analytics_settings)

        return jsonify({'imported': [s.name for s in servers]})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500


# User management routes

@settings_bp.route('/users', methods=['GET'])
def list_users():
    """Global users with their accounts, plus unlinked accounts."""
    return jsonify(UserService().list_users())


@settings_bp.route('/users/global', methods=['POST'])
def create_global_user():
    """Create a global user."""
    payload = request.get_json(silent=True) or {}
    try:
        global_user = UserService().create_global_user(payload.get('name'), payload.get('avatar'))
        return jsonify({'id': global_user.id, 'name': global_user.name}), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400


@settings_bp.route('/users/global/<int:global_user_id>/delete', methods=['POST'])
def delete_global_user(global_user_id):
    """Delete a global user, unlinking its accounts."""
    try:
        UserService().delete_global_user(global_user_id)
        return jsonify({'success': True})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404


@settings_bp.route('/users/link', methods=['POST'])
def link_user():
    """Link a server account (``serverUserId``) to a global user (``globalUserId``)."""
    payload = request.get_json(silent=True) or {}
    server_user_id = payload.get('serverUserId')
    global_user_id = payload.get('globalUserId')
    if server_user_id is None or global_user_id is None:
        return jsonify({'error': 'serverUserId and globalUserId are required.'}), 400

    try:
        UserService().link(int(server_user_id), int(global_user_id))
        return jsonify({'success': True})
    except (TypeError, ValueError):
        return jsonify({'error': 'Ids must be numbers.'}), 400
    except LookupError as e:
        return jsonify({'error': str(e)}), 404


@settings_bp.route('/users/unlink', methods=['POST'])
def unlink_user():
    """Unlink a server account from its global user."""
    payload = request.get_json(silent=True) or {}
    try:
        UserService().unlink(int(payload.get('serverUserId')))
        return jsonify({'success': True})
    except (TypeError, ValueError):
        return jsonify({'error': 'serverUserId is required.'}), 400
    except LookupError as e:
        return jsonify({'error': str(e)}), 404


@settings_bp.route('/users/<int:server_user_id>/delete', methods=['POST'])
def delete_server_user(server_user_id):
    """Delete a server account and its history."""
    try:
        UserService().delete_server_user(server_user_id)
        return jsonify({'success': True})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
