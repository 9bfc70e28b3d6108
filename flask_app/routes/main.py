"""
Main application routes: sync triggers and statistics JSON endpoints.
"""
from flask import Blueprint, current_app, jsonify, request

from emby_stats.api_client import EmbyApiError
from emby_stats.timezone_utils import local_range_bounds
from flask_app.services.config_service import ConfigService
from flask_app.services.history_query import HistoryFilter
from flask_app.services.insights_service import InsightsService
from flask_app.services.leaderboard_service import LeaderboardService
from flask_app.services.library_service import LibraryService
from flask_app.services.session_service import SessionService
from flask_app.services.stats_service import StatsService
from flask_app.services.sync_lease_service import SyncLeaseService
from flask_app.services.sync_service import SyncService
from flask_app.services.utils import isoformat, parse_date, to_int

main_bp = Blueprint('main', __name__)


def _lease() -> SyncLeaseService:
    return SyncLeaseService(ttl_seconds=current_app.config['SYNC_LEASE_TTL'])


def _history_filter() -> HistoryFilter:
    """Filter from ``serverIds``, ``userId``, ``startDate`` and ``endDate`` query args."""
    start = parse_date(request.args.get('startDate'))
    end = parse_date(request.args.get('endDate'))
    start_bound = end_bound = None
    if start or end:
        first, last = local_range_bounds(start or end, end or start)
        start_bound = first if start else None
        end_bound = last if end else None
    return HistoryFilter.from_args(request.args, start=start_bound, end=end_bound)


@main_bp.route('/')
def index():
    """Service summary."""
    return jsonify({
        'servers': StatsService().get_overview(),
        'timezone': current_app.config.get('TIMEZONE_NAME'),
    })


@main_bp.route('/api/sync', methods=['POST'])
def api_sync():
    """Run a sync of all active servers, or of ``serverIds`` from the JSON body."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'Request body must be a JSON object.'}), 400
    server_ids = payload.get('serverIds')
    if server_ids is not None:
        if not isinstance(server_ids, list):
            return jsonify({'error': 'serverIds must be a list of server ids.'}), 400
        server_ids = [sid for sid in (to_int(s) for s in server_ids) if sid is not None]

    try:
        service = SyncService(
            page_size=current_app.config['SYNC_PAGE_SIZE'],
            resume_limit=current_app.config['SYNC_RESUME_LIMIT'],
        )
        results = service.run_exclusive(server_ids, lease=_lease())
        if results is None:
            return jsonify({'error': 'A sync is already running.'}), 409
        return jsonify({'results': results})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/sync/status')
def api_sync_status():
    """Recent sync logs and whether a run is in progress."""
    try:
        lease_status = _lease().get_status()
        lease_status['acquired_at'] = isoformat(lease_status['acquired_at'])
        lease_status['expires_at'] = isoformat(lease_status['expires_at'])
        sync_service = SyncService()
        return jsonify({
            'lease': lease_status,
            'logs': sync_service.get_sync_logs(),
            'history': sync_service.get_history_stats(),
        })
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/daily')
def api_stats_daily():
    """Daily report for ``date`` (YYYY-MM-DD, default today)."""
    try:
        day = parse_date(request.args.get('date'))
    except ValueError:
        return jsonify({'error': 'Invalid date. Use YYYY-MM-DD.'}), 400

    try:
        history_filter = HistoryFilter.from_args(request.args)
        return jsonify(StatsService().get_daily_report(day=day, history_filter=history_filter))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/trends')
def api_stats_trends():
    """Watch-time trend over ``days`` days in ``granularity`` buckets."""
    days = request.args.get('days', default=7, type=int)
    if not days or days < 1 or days > 365:
        return jsonify({'error': 'Invalid day range. Use 1-365.'}), 400
    granularity = request.args.get('granularity', 'day')

    try:
        history_filter = HistoryFilter.from_args(request.args)
        return jsonify(StatsService().get_trends(days=days, granularity=granularity,
                                                 history_filter=history_filter))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/comparison')
def api_stats_comparison():
    """Day, week and month over previous period."""
    try:
        history_filter = HistoryFilter.from_args(request.args)
        return jsonify(StatsService().get_comparison(history_filter=history_filter))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/time')
def api_stats_time():
    """Hour-of-day and day-of-week distribution."""
    try:
        history_filter = _history_filter()
    except ValueError:
        return jsonify({'error': 'Invalid date. Use YYYY-MM-DD.'}), 400

    try:
        return jsonify(StatsService().get_time_distribution(history_filter))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/content')
def api_stats_content():
    """Genre, type, resolution, HDR and year breakdown."""
    try:
        history_filter = _history_filter()
    except ValueError:
        return jsonify({'error': 'Invalid date. Use YYYY-MM-DD.'}), 400

    try:
        return jsonify(StatsService().get_content_breakdown(history_filter))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/tags')
def api_stats_tags():
    """Genre tag cloud."""
    try:
        return jsonify(StatsService().get_tag_cloud(HistoryFilter.from_args(request.args)))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/leaderboard')
def api_stats_leaderboard():
    """Leaderboard of ``type`` users, media or servers."""
    board_type = request.args.get('type', 'users')
    server_id = request.args.get('serverId', type=int)

    try:
        settings = ConfigService.get_analytics_settings()
        service = LeaderboardService(top_users=settings.top_users, top_media=settings.top_media)
        return jsonify(service.get_leaderboard(board_type, server_id))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/marathon')
def api_stats_marathon():
    """Binge-watching sessions."""
    min_episodes = request.args.get('minEpisodes', type=int)
    min_hours = request.args.get('minHours', type=float)
    if min_episodes is not None and min_episodes < 1:
        return jsonify({'error': 'minEpisodes must be at least 1.'}), 400
    if min_hours is not None and min_hours < 0:
        return jsonify({'error': 'minHours must not be negative.'}), 400

    try:
        history_filter = _history_filter()
    except ValueError:
        return jsonify({'error': 'Invalid date. Use YYYY-MM-DD.'}), 400

    try:
        service = InsightsService(ConfigService.get_analytics_settings())
        return jsonify(service.get_marathons(history_filter, min_episodes=min_episodes, min_hours=min_hours))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/abandoned')
def api_stats_abandoned():
    """Items dropped early."""
    try:
        service = InsightsService(ConfigService.get_analytics_settings())
        return jsonify(service.get_abandoned(HistoryFilter.from_args(request.args)))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/prediction')
def api_stats_prediction():
    """Peak hours and next likely viewing time."""
    try:
        service = InsightsService(ConfigService.get_analytics_settings())
        return jsonify(service.get_prediction(history_filter=HistoryFilter.from_args(request.args)))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/devices')
def api_stats_devices():
    """Client and device breakdown from session logs."""
    try:
        return jsonify(StatsService().get_device_stats(HistoryFilter.from_args(request.args)))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/users/<int:server_user_id>/stats')
def api_user_stats(server_user_id):
    """Detailed stats for one server user."""
    try:
        return jsonify(StatsService().get_user_stats(server_user_id))
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/sessions')
def api_sessions():
    """Currently active sessions."""
    try:
        return jsonify({'sessions': SessionService().get_active_sessions()})
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/sessions/<int:session_log_id>/command', methods=['POST'])
def api_session_command(session_log_id):
    """Run ``stop`` or ``message`` (with ``text``) on a live session."""
    payload = request.get_json(silent=True) or {}

    try:
        SessionService().run_command(session_log_id, payload.get('command'), payload.get('text'))
        return jsonify({'success': True})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except EmbyApiError as e:
        return jsonify({'error': f'Command failed: {e}'}), 502
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/calendar')
def api_stats_calendar():
    """Per-day activity for ``month`` (YYYY-MM, default this month)."""
    try:
        history_filter = HistoryFilter.from_args(request.args)
        return jsonify(StatsService().get_calendar(month=request.args.get('month'),
                                                   history_filter=history_filter))
    except ValueError:
        return jsonify({'error': 'Invalid month. Use YYYY-MM.'}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/dashboard')
def api_stats_dashboard():
    """Overall totals, server split and 30-day trend."""
    try:
        return jsonify(StatsService().get_dashboard())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/stats/storage')
def api_stats_storage():
    """Library sizes and played coverage per active server."""
    try:
        return jsonify(LibraryService().get_storage())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/media/<item_id>')
def api_media_detail(item_id):
    """Watch history and watchers of one item on ``serverId``."""
    server_id = request.args.get('serverId', type=int)
    if server_id is None:
        return jsonify({'error': 'serverId is required.'}), 400

    try:
        return jsonify(StatsService().get_media_detail(item_id, server_id))
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/servers/<int:server_id>/libraries')
def api_server_libraries(server_id):
    """Libraries of one server, read live from Emby."""
    try:
        return jsonify({'libraries': LibraryService().get_server_libraries(server_id)})
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except EmbyApiError as e:
        return jsonify({'error': f'Failed to fetch libraries: {e}'}), 502
    except Exception as e:
        return jsonify({'error': str(e)}), 500
