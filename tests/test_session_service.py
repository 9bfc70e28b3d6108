import unittest
from datetime import datetime
from unittest.mock import patch

from flask import Flask

from flask_app.models import Server, SessionLog, db
from flask_app.services.session_service import SessionService


class SessionServiceTests(unittest.TestCase):
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
        SessionLog.query.delete()
        Server.query.delete()
        db.session.commit()

        self.server = Server(name='Home', url='http://home', api_key='key')
        db.session.add(self.server)
        db.session.commit()

        self.live = SessionLog(server_id=self.server.id, session_id='abc', user_name='alice',
                               started_at=datetime(2024, 1, 10, 20, 0), is_active=True)
        self.ended = SessionLog(server_id=self.server.id, session_id='old', user_name='bob',
                                started_at=datetime(2024, 1, 10, 18, 0), is_active=False)
        db.session.add_all([self.live, self.ended])
        db.session.commit()

        self.service = SessionService()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_stop_marks_session_ended(self):
        with patch('flask_app.services.session_service.EmbyClient') as client_cls:
            self.service.run_command(self.live.id, 'stop')

        client_cls.return_value.stop_session.assert_called_once_with('abc')
        session = db.session.get(SessionLog, self.live.id)
        self.assertFalse(session.is_active)
        self.assertIsNotNone(session.ended_at)

    def test_message_requires_text(self):
        with patch('flask_app.services.session_service.EmbyClient') as client_cls:
            with self.assertRaises(ValueError):
                self.service.run_command(self.live.id, 'message', '  ')
            self.service.run_command(self.live.id, 'message', ' Bedtime ')

        client_cls.return_value.send_message.assert_called_once_with('abc', 'Bedtime')

    def test_unknown_and_inactive_sessions(self):
        with patch('flask_app.services.session_service.EmbyClient') as client_cls:
            with self.assertRaises(LookupError):
                self.service.stop_session(9999)
            with self.assertRaises(ValueError):
                self.service.stop_session(self.ended.id)
            with self.assertRaises(ValueError):
                self.service.run_command(self.live.id, 'reboot')

        client_cls.assert_not_called()

    def test_active_sessions_listing(self):
        sessions = self.service.get_active_sessions()

        self.assertEqual([s['session_id'] for s in sessions], ['abc'])
        self.assertEqual(sessions[0]['server_name'], 'Home')
        self.assertEqual(sessions[0]['started_at'], '2024-01-10T20:00:00Z')


if __name__ == '__main__':
    unittest.main()
