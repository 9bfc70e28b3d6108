import unittest
from datetime import datetime
from unittest.mock import patch

from flask import Flask

from emby_stats.api_client import EmbyApiError
from emby_stats.models import EmbyUser
from emby_stats.timezone_utils import utcnow
from flask_app.models import GlobalUser, PlayHistory, Server, ServerUser, SyncLease, SyncLog, db
from flask_app.services.sync_lease_service import SyncLeaseService
from flask_app.services.sync_service import SyncService

HOUR_TICKS = 36_000_000_000


def _ts(hour: int, day: int = 10) -> str:
    return f'2024-01-{day:02d}T{hour:02d}:00:00.0000000Z'


def _dt(hour: int, day: int = 10) -> datetime:
    return datetime(2024, 1, day, hour)


def _item(item_id, played_at=None, played=True, position=0, play_count=1, activity_at=None,
          runtime=HOUR_TICKS, item_type='Movie', **extra):
    user_data = {'Played': played, 'PlaybackPositionTicks': position, 'PlayCount': play_count}
    if played_at:
        user_data['LastPlayedDate'] = played_at
    if activity_at:
        user_data['LastActivityDate'] = activity_at
    payload = {
        'Id': item_id,
        'Name': f'Item {item_id}',
        'Type': item_type,
        'RunTimeTicks': runtime,
        'Genres': ['Drama', 'Studio: Acme'],
        'ProductionYear': 2020,
        'UserData': user_data,
        'MediaSources': [{
            'MediaStreams': [
                {'Type': 'Audio', 'Codec': 'aac'},
                {'Type': 'Video', 'Codec': 'hevc', 'Height': 2160, 'VideoRangeType': 'HDR'},
            ]
        }],
    }
    payload.update(extra)
    return payload


class _FakeClient:
    def __init__(self, users, pages=None, resume=None, error=None):
        self.users = users
        self.pages = pages or {}
        self.resume = resume or {}
        self.error = error
        self.pages_fetched = 0

    def get_users(self):
        if self.error:
            raise EmbyApiError(self.error)
        return [EmbyUser(id=user_id, name=name) for user_id, name in self.users]

    def iter_played_items(self, user_id, item_types=('Movie', 'Episode'), page_size=100):
        for page in self.pages.get(user_id, []):
            self.pages_fetched += 1
            yield page

    def get_resume_items(self, user_id, limit=100):
        return self.resume.get(user_id, [])


class SyncServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
        cls.app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
        db.init_app(cls.app)
        with cls.app.app_context():
            db.create_all()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.drop_all()

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        PlayHistory.query.delete()
        SyncLog.query.delete()
        ServerUser.query.delete()
        GlobalUser.query.delete()
        Server.query.delete()
        SyncLease.query.delete()
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _add_server(self, name='Home') -> Server:
        server = Server(name=name, url='http://emby.local', port=8096, api_key='key', is_active=True)
        db.session.add(server)
        db.session.commit()
        return server

    def _add_server_user(self, server, emby_user_id='u1', username='alice') -> ServerUser:
        server_user = ServerUser(server_id=server.id, emby_user_id=emby_user_id, username=username)
        db.session.add(server_user)
        db.session.commit()
        return server_user

    def _add_history(self, server, server_user, item_id, played_at, **kwargs) -> PlayHistory:
        record = PlayHistory(
            server_id=server.id,
            server_user_id=server_user.id,
            item_id=item_id,
            item_name=f'Item {item_id}',
            item_type='Movie',
            duration=HOUR_TICKS,
            played_at=played_at,
            **kwargs
        )
        db.session.add(record)
        db.session.commit()
        return record

    def _sync(self, client):
        with patch('flask_app.services.sync_service.EmbyClient', return_value=client):
            return SyncService().sync_servers()

    def test_first_sync_inserts_users_and_history(self):
        server = self._add_server()
        client = _FakeClient(
            users=[('u1', 'alice')],
            pages={'u1': [[_item('A', _ts(22)), _item('B', _ts(21))], [_item('C', _ts(20))]]},
        )

        results = self._sync(client)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['server_id'], server.id)
        self.assertEqual(results[0]['users_sync'], {'added': 1, 'updated': 0})
        self.assertEqual(results[0]['history_sync'], {'added': 3, 'skipped': 0})
        self.assertNotIn('error', results[0])
        self.assertEqual(PlayHistory.query.count(), 3)

        record = PlayHistory.query.filter_by(item_id='A').one()
        self.assertEqual(record.played_at, _dt(22))
        self.assertEqual(record.play_duration, HOUR_TICKS)
        self.assertEqual(record.resolution, '4K')
        self.assertTrue(record.is_hdr)
        self.assertEqual(record.video_codec, 'hevc')
        self.assertEqual(record.year, 2020)
        self.assertIn('Drama', record.genres)

        log = SyncLog.query.one()
        self.assertEqual(log.status, 'success')
        self.assertEqual(log.message, 'Users: +1/~0, History: +3')

    def test_repeat_sync_with_unchanged_remote_adds_nothing(self):
        self._add_server()
        pages = {'u1': [[_item('A', _ts(22)), _item('B', _ts(21))], [_item('C', _ts(20))]]}

        self._sync(_FakeClient(users=[('u1', 'alice')], pages=pages))
        second_client = _FakeClient(users=[('u1', 'alice')], pages=pages)
        results = self._sync(second_client)

        self.assertEqual(results[0]['users_sync'], {'added': 0, 'updated': 1})
        self.assertEqual(results[0]['history_sync'], {'added': 0, 'skipped': 0})
        self.assertEqual(PlayHistory.query.count(), 3)
        self.assertEqual(ServerUser.query.count(), 1)
        self.assertEqual(second_client.pages_fetched, 1)

    def test_stream_stops_at_first_item_not_newer_than_stored_history(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'OLD', _dt(15))

        client = _FakeClient(
            users=[('u1', 'alice')],
            pages={'u1': [
                [_item('N1', _ts(18)), _item('N2', _ts(17)), _item('X', _ts(14)), _item('LATE', _ts(19))],
                [_item('NEVER', _ts(23))],
            ]},
        )

        results = self._sync(client)

        self.assertEqual(results[0]['history_sync']['added'], 2)
        item_ids = {r.item_id for r in PlayHistory.query.all()}
        self.assertEqual(item_ids, {'OLD', 'N1', 'N2'})
        self.assertEqual(client.pages_fetched, 1)

    def test_item_equal_to_high_water_mark_stops_stream(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'OLD', _dt(15))

        client = _FakeClient(users=[('u1', 'alice')], pages={'u1': [[_item('SAME', _ts(15)), _item('N', _ts(16))]]})
        results = self._sync(client)

        self.assertEqual(results[0]['history_sync']['added'], 0)
        self.assertEqual(PlayHistory.query.count(), 1)

    def test_unplayed_items_are_skipped_without_stopping(self):
        self._add_server()
        client = _FakeClient(
            users=[('u1', 'alice')],
            pages={'u1': [[_item('U', _ts(23), played=False), _item('A', _ts(22))]]},
        )

        results = self._sync(client)

        self.assertEqual(results[0]['history_sync'], {'added': 1, 'skipped': 0})
        self.assertEqual([r.item_id for r in PlayHistory.query.all()], ['A'])

    def test_malformed_item_counts_as_skipped(self):
        self._add_server()
        client = _FakeClient(users=[('u1', 'alice')], pages={'u1': [[{'Name': 'no id'}, _item('A', _ts(22))]]})

        results = self._sync(client)

        self.assertEqual(results[0]['history_sync'], {'added': 1, 'skipped': 1})

    def test_badly_shaped_nested_fields_skip_only_that_item(self):
        self._add_server()
        client = _FakeClient(
            users=[('u1', 'alice'), ('u2', 'bob')],
            pages={
                'u1': [[
                    _item('BAD1', _ts(23), MediaSources=[None]),
                    _item('BAD2', _ts(22), Genres='Drama'),
                    _item('BAD3', _ts(21), UserData='played'),
                    _item('A', _ts(20)),
                ]],
                'u2': [[_item('B', _ts(19))]],
            },
        )

        results = self._sync(client)

        self.assertNotIn('error', results[0])
        self.assertEqual(results[0]['history_sync'], {'added': 2, 'skipped': 3})
        self.assertEqual({r.item_id for r in PlayHistory.query.all()}, {'A', 'B'})

    def test_resume_items_ignore_high_water_mark(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'OLD', _dt(15))

        client = _FakeClient(
            users=[('u1', 'alice')],
            resume={'u1': [
                _item('R1', _ts(9), played=False, position=600_000_000, play_count=0),
                _item('R2', _ts(10), played=False, position=0, play_count=0),
            ]},
        )

        results = self._sync(client)

        self.assertEqual(results[0]['history_sync'], {'added': 1, 'skipped': 0})
        record = PlayHistory.query.filter_by(item_id='R1').one()
        self.assertEqual(record.playback_position, 600_000_000)
        self.assertEqual(record.play_duration, 600_000_000)
        self.assertFalse(record.is_completed)
        self.assertIsNone(PlayHistory.query.filter_by(item_id='R2').first())

    def test_update_without_remote_date_keeps_stored_played_at(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'R', _dt(12), playback_position=100)

        client = _FakeClient(
            users=[('u1', 'alice')],
            resume={'u1': [_item('R', None, played=False, position=500, play_count=0)]},
        )

        results = self._sync(client)

        self.assertEqual(results[0]['history_sync'], {'added': 0, 'skipped': 1})
        record = PlayHistory.query.filter_by(item_id='R').one()
        self.assertEqual(record.played_at, _dt(12))
        self.assertEqual(record.playback_position, 500)
        self.assertEqual(record.play_count, 0)

    def test_update_with_activity_date_moves_played_at(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'R', _dt(12), playback_position=100)

        client = _FakeClient(
            users=[('u1', 'alice')],
            resume={'u1': [_item('R', None, played=False, position=500, activity_at=_ts(13))]},
        )

        self._sync(client)

        self.assertEqual(PlayHistory.query.filter_by(item_id='R').one().played_at, _dt(13))

    def test_new_item_without_any_date_uses_current_time(self):
        self._add_server()
        client = _FakeClient(
            users=[('u1', 'alice')],
            resume={'u1': [_item('R', None, played=False, position=500)]},
        )

        before = utcnow()
        self._sync(client)
        after = utcnow()

        played_at = PlayHistory.query.filter_by(item_id='R').one().played_at
        self.assertTrue(before <= played_at <= after)

    def test_user_reconciliation_only_refreshes_username(self):
        server = self._add_server()
        global_user = GlobalUser(name='Alice')
        db.session.add(global_user)
        db.session.commit()
        existing = self._add_server_user(server, 'u1', 'alice')
        existing.global_user_id = global_user.id
        db.session.commit()

        client = _FakeClient(users=[('u1', 'Alice B.'), ('u2', 'bob')])
        results = self._sync(client)

        self.assertEqual(results[0]['users_sync'], {'added': 1, 'updated': 1})
        refreshed = ServerUser.query.filter_by(emby_user_id='u1').one()
        self.assertEqual(refreshed.username, 'Alice B.')
        self.assertEqual(refreshed.global_user_id, global_user.id)

    def test_unreachable_server_does_not_abort_batch(self):
        self._add_server('Broken')
        self._add_server('Good')
        clients = {
            'Broken': _FakeClient(users=[], error='connection refused'),
            'Good': _FakeClient(users=[('u1', 'alice')], pages={'u1': [[_item('A', _ts(22))]]}),
        }

        with patch('flask_app.services.sync_service.EmbyClient',
                   side_effect=lambda config: clients[config.name]):
            results = SyncService().sync_servers()

        by_name = {r['server_name']: r for r in results}
        self.assertIn('connection refused', by_name['Broken']['error'])
        self.assertNotIn('error', by_name['Good'])
        self.assertEqual(by_name['Good']['history_sync']['added'], 1)

        statuses = {log.server.name: log for log in SyncLog.query.all()}
        self.assertEqual(statuses['Broken'].status, 'failed')
        self.assertIn('connection refused', statuses['Broken'].message)
        self.assertEqual(statuses['Good'].status, 'success')

    def test_write_failure_is_rolled_back_and_skipped(self):
        server = self._add_server()
        server_user = self._add_server_user(server)
        self._add_history(server, server_user, 'DUP', _dt(12))

        client = _FakeClient(
            users=[('u1', 'alice')],
            resume={'u1': [_item('DUP', _ts(12), played=False, position=500), _item('NEW', _ts(13), played=False, position=500)]},
        )

        with patch.object(SyncService, '_latest_record', return_value=None):
            results = self._sync(client)

        self.assertEqual(results[0]['history_sync'], {'added': 1, 'skipped': 1})
        self.assertNotIn('error', results[0])
        self.assertEqual(PlayHistory.query.filter_by(item_id='DUP').count(), 1)
        self.assertEqual(SyncLog.query.one().status, 'success')

    def test_only_requested_servers_are_synced(self):
        self._add_server('Home')
        other = self._add_server('Cabin')

        with patch('flask_app.services.sync_service.EmbyClient',
                   return_value=_FakeClient(users=[('u1', 'alice')])):
            results = SyncService().sync_servers([other.id])

        self.assertEqual([r['server_name'] for r in results], ['Cabin'])

    def test_no_active_servers_raises(self):
        with self.assertRaises(LookupError):
            SyncService().sync_servers()

    def test_run_exclusive_skips_when_lease_is_held(self):
        self._add_server()
        holder = SyncLeaseService().acquire()
        self.assertIsNotNone(holder)

        with patch('flask_app.services.sync_service.EmbyClient') as client_cls:
            results = SyncService().run_exclusive()

        self.assertIsNone(results)
        client_cls.assert_not_called()

    def test_run_exclusive_releases_lease_after_run(self):
        self._add_server()

        with patch('flask_app.services.sync_service.EmbyClient',
                   return_value=_FakeClient(users=[('u1', 'alice')])):
            results = SyncService().run_exclusive()

        self.assertEqual(len(results), 1)
        self.assertFalse(SyncLeaseService().get_status()['is_running'])

    def test_run_exclusive_renews_lease_after_each_server(self):
        self._add_server('Home')
        self._add_server('Cabin')
        lease = SyncLeaseService()

        with patch.object(lease, 'renew', wraps=lease.renew) as renew:
            with patch('flask_app.services.sync_service.EmbyClient',
                       return_value=_FakeClient(users=[('u1', 'alice')])):
                results = SyncService().run_exclusive(lease=lease)

        self.assertEqual(len(results), 2)
        self.assertEqual(renew.call_count, 2)
        self.assertTrue(all(call.args[0] == renew.call_args_list[0].args[0] for call in renew.call_args_list))
        self.assertFalse(lease.get_status()['is_running'])


if __name__ == '__main__':
    unittest.main()
