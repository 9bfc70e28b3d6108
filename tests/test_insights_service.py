import os
import unittest
from datetime import datetime, timedelta

from flask import Flask

from emby_stats.config_loader import AnalyticsSettings
from flask_app.models import GlobalUser, PlayHistory, Server, ServerUser, db
from flask_app.services.history_query import HistoryFilter
from flask_app.services.insights_service import InsightsService

HOUR_TICKS = 36_000_000_000


class InsightsServiceTests(unittest.TestCase):
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
        self.old_tz = os.environ.get('TZ')
        os.environ['TZ'] = 'UTC'

        self.ctx = self.app.app_context()
        self.ctx.push()
        PlayHistory.query.delete()
        ServerUser.query.delete()
        GlobalUser.query.delete()
        Server.query.delete()
        db.session.commit()

        self.home = Server(name='Home', url='http://home', api_key='key')
        self.cabin = Server(name='Cabin', url='http://cabin', api_key='key')
        self.alice = GlobalUser(name='Alice')
        db.session.add_all([self.home, self.cabin, self.alice])
        db.session.commit()

        self.alice_home = ServerUser(server_id=self.home.id, emby_user_id='a1', username='alice',
                                     global_user_id=self.alice.id)
        self.alice_cabin = ServerUser(server_id=self.cabin.id, emby_user_id='a2', username='ally',
                                      global_user_id=self.alice.id)
        self.bob = ServerUser(server_id=self.home.id, emby_user_id='b1', username='bob')
        db.session.add_all([self.alice_home, self.alice_cabin, self.bob])
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()
        if self.old_tz is None:
            os.environ.pop('TZ', None)
        else:
            os.environ['TZ'] = self.old_tz

    def _play(self, user, item_id, played_at, **kwargs):
        kwargs.setdefault('item_type', 'Movie')
        kwargs.setdefault('duration', HOUR_TICKS)
        db.session.add(PlayHistory(
            server_id=user.server_id,
            server_user_id=user.id,
            item_id=item_id,
            item_name=f'Item {item_id}',
            played_at=played_at,
            **kwargs
        ))
        db.session.commit()

    def test_marathons_use_episode_history_only(self):
        start = datetime(2024, 1, 10, 18, 0)
        for i in range(3):
            self._play(self.bob, f'E{i}', start + timedelta(hours=i), item_type='Episode', series_name='Show')
        self._play(self.bob, 'M', start + timedelta(hours=3), series_name='Show')

        result = InsightsService().get_marathons()

        self.assertEqual(result['stats']['total_marathons'], 1)
        marathon = result['marathons'][0]
        self.assertEqual(marathon['episodes'], 3)
        self.assertEqual(marathon['user_name'], 'bob')

    def test_marathon_of_linked_account_names_the_person(self):
        start = datetime(2024, 1, 10, 18, 0)
        for i in range(3):
            self._play(self.alice_cabin, f'E{i}', start + timedelta(hours=i), item_type='Episode', series_name='Show')

        (marathon,) = InsightsService().get_marathons()['marathons']

        self.assertEqual(marathon['user_name'], 'Alice')
        self.assertEqual(marathon['user_id'], self.alice_cabin.id)

    def test_marathon_thresholds_come_from_settings_or_arguments(self):
        start = datetime(2024, 1, 10, 18, 0)
        for i in range(2):
            self._play(self.bob, f'E{i}', start + timedelta(hours=i), item_type='Episode', series_name='Show')

        strict = InsightsService()
        lenient = InsightsService(AnalyticsSettings(marathon_min_episodes=2, marathon_min_hours=1.0))

        self.assertEqual(strict.get_marathons()['marathons'], [])
        self.assertEqual(len(lenient.get_marathons()['marathons']), 1)
        self.assertEqual(len(strict.get_marathons(min_episodes=2, min_hours=2.0)['marathons']), 1)

    def test_abandoners_are_counted_per_person(self):
        played_at = datetime(2024, 1, 10, 20, 0)
        self._play(self.alice_home, 'M', played_at, playback_position=HOUR_TICKS // 10, play_count=0)
        self._play(self.alice_cabin, 'M', played_at + timedelta(hours=1),
                   playback_position=HOUR_TICKS // 10, play_count=0)
        self._play(self.bob, 'M', played_at, playback_position=HOUR_TICKS // 10, play_count=0)
        self._play(self.bob, 'F', played_at, playback_position=HOUR_TICKS // 10, is_completed=True)

        result = InsightsService().get_abandoned()

        self.assertEqual(result['total'], 3)
        (group,) = result['by_item']
        self.assertEqual(group['abandon_count'], 3)
        self.assertEqual(sorted(group['users']), ['Alice', 'bob'])
        self.assertEqual(result['recent'][0]['played_at'], '2024-01-10T21:00:00Z')

    def test_abandonment_threshold_from_settings(self):
        self._play(self.bob, 'M', datetime(2024, 1, 10, 20, 0), playback_position=HOUR_TICKS // 5, play_count=0)

        self.assertEqual(InsightsService().get_abandoned()['total'], 1)
        strict = InsightsService(AnalyticsSettings(abandon_threshold=0.1))
        self.assertEqual(strict.get_abandoned()['total'], 0)

    def test_prediction_window_precedes_as_of(self):
        as_of = datetime(2024, 1, 10, 12, 0)
        self._play(self.bob, 'IN', datetime(2024, 1, 9, 20, 0))
        self._play(self.bob, 'OLD', datetime(2023, 12, 1, 20, 0))
        self._play(self.bob, 'FUTURE', datetime(2024, 1, 10, 13, 0))

        result = InsightsService().get_prediction(as_of=as_of)

        self.assertEqual(result['total_records'], 1)
        self.assertEqual(result['window_days'], 7)
        self.assertEqual([p['hour'] for p in result['peak_hours']], [20])
        self.assertEqual(result['user_patterns'], [
            {'name': 'bob', 'peak_hour': 20, 'peak_hour_label': '20:00', 'is_global': False},
        ])

    def test_prediction_respects_user_filter(self):
        as_of = datetime(2024, 1, 10, 12, 0)
        self._play(self.bob, 'B', datetime(2024, 1, 9, 20, 0))
        self._play(self.alice_cabin, 'A', datetime(2024, 1, 9, 8, 0))

        result = InsightsService().get_prediction(
            as_of=as_of, history_filter=HistoryFilter(user_id=str(self.alice.id)))

        self.assertEqual([p['hour'] for p in result['peak_hours']], [8])
        self.assertTrue(result['user_patterns'][0]['is_global'])


if __name__ == '__main__':
    unittest.main()
