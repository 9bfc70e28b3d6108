import unittest
from datetime import datetime

from flask import Flask

from flask_app.models import GlobalUser, PlayHistory, Server, ServerUser, db
from flask_app.services.leaderboard_service import LeaderboardService


class LeaderboardServiceTests(unittest.TestCase):
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
        self.idle = ServerUser(server_id=self.home.id, emby_user_id='c1', username='carol')
        db.session.add_all([self.alice_home, self.alice_cabin, self.bob, self.idle])
        db.session.commit()

        self._play(self.alice_home, 'M1', 10, play_count=2)
        self._play(self.alice_cabin, 'M1', 11)
        self._play(self.bob, 'M2', 12, duration=3000)
        self._play(self.bob, 'M1', 13, play_count=0, playback_position=100)

        self.service = LeaderboardService()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _play(self, user, item_id, hour, duration=1000, **kwargs):
        db.session.add(PlayHistory(
            server_id=user.server_id,
            server_user_id=user.id,
            item_id=item_id,
            item_name=f'Item {item_id}',
            item_type='Movie',
            duration=duration,
            played_at=datetime(2024, 1, 10, hour, 0),
            **kwargs
        ))
        db.session.commit()

    def test_user_board_keeps_accounts_separate_and_skips_idle(self):
        board = self.service.get_user_leaderboard()

        self.assertEqual([u['name'] for u in board], ['bob', 'alice', 'ally'])
        self.assertEqual(board[0]['id'], f'server:{self.bob.id}')
        self.assertEqual(board[0]['total_duration'], 3100)
        self.assertEqual(board[0]['total_plays'], 2)
        self.assertEqual(board[1]['total_duration'], 2000)
        self.assertEqual(board[2]['server_name'], 'Cabin')
        self.assertFalse(board[0]['is_global'])

    def test_user_board_for_one_server(self):
        board = self.service.get_user_leaderboard(server_id=self.cabin.id)
        self.assertEqual([u['name'] for u in board], ['ally'])

    def test_media_board_lists_watchers_by_identity(self):
        board = self.service.get_media_leaderboard()

        self.assertEqual([m['item_id'] for m in board], ['M1', 'M2'])
        self.assertEqual(board[0]['total_duration'], 3100)
        self.assertEqual(board[0]['total_plays'], 4)
        self.assertEqual(board[0]['watched_by'], ['Alice', 'bob'])

    def test_media_board_sums_real_play_counts(self):
        self._play(self.bob, 'M3', 14, play_count=3)
        self._play(self.alice_home, 'M3', 15, play_count=0, playback_position=0)

        board = {m['item_id']: m for m in self.service.get_media_leaderboard()}

        self.assertEqual(board['M3']['total_plays'], 3)
        self.assertEqual(board['M3']['total_duration'], 3000)

    def test_server_board(self):
        board = self.service.get_server_leaderboard()

        self.assertEqual([(s['server_name'], s['total_duration']) for s in board],
                         [('Home', 5100), ('Cabin', 1000)])

    def test_limits_and_dispatch(self):
        limited = LeaderboardService(top_users=1, top_media=1)
        self.assertEqual(len(limited.get_user_leaderboard()), 1)
        self.assertEqual(len(limited.get_media_leaderboard()), 1)

        self.assertEqual(self.service.get_leaderboard('servers')['type'], 'servers')
        with self.assertRaises(ValueError):
            self.service.get_leaderboard('genres')


if __name__ == '__main__':
    unittest.main()
