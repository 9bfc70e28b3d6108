import os
import tempfile
import unittest

from emby_stats.config_loader import ConfigLoader, MissingConfigError, load_config, load_optional_servers


class ConfigLoaderEnvTests(unittest.TestCase):
    def setUp(self):
        self.env_keys = [
            'EMBY_SERVER_NAME',
            'EMBY_SERVER_URL',
            'EMBY_SERVER_KEY',
            'EMBY_SERVER_PORT',
            'EMBY_MARATHON_MIN_EPISODES',
            'EMBY_ABANDON_THRESHOLD',
        ]
        self.original_env = {k: os.environ.get(k) for k in self.env_keys}
        for key in self.env_keys:
            os.environ.pop(key, None)

    def tearDown(self):
        for key, value in self.original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def _set_minimum_server(self):
        os.environ['EMBY_SERVER_NAME'] = 'Home'
        os.environ['EMBY_SERVER_URL'] = '192.168.1.10'
        os.environ['EMBY_SERVER_KEY'] = 'abc123def456'

    def _write_config(self, text):
        handle = tempfile.NamedTemporaryFile('w', suffix='.ini', delete=False)
        handle.write(text)
        handle.close()
        self.addCleanup(os.unlink, handle.name)
        return handle.name

    def test_env_server_uses_default_port(self):
        self._set_minimum_server()

        loader = ConfigLoader(config_file='config-does-not-exist.ini')
        (server,) = loader.get_server_configs()

        self.assertEqual(server.name, 'Home')
        self.assertEqual(server.port, 8096)
        self.assertEqual(server.base_url, 'http://192.168.1.10:8096')

    def test_env_port_must_be_integer(self):
        self._set_minimum_server()
        os.environ['EMBY_SERVER_PORT'] = 'eighty'

        loader = ConfigLoader(config_file='config-does-not-exist.ini')
        with self.assertRaises(ValueError):
            loader.get_server_configs()

    def test_missing_configuration_raises(self):
        loader = ConfigLoader(config_file='config-does-not-exist.ini')
        with self.assertRaises(MissingConfigError):
            loader.get_server_configs()
        self.assertIsNone(load_optional_servers('config-does-not-exist.ini'))

    def test_file_sections_take_precedence_over_env(self):
        self._set_minimum_server()
        path = self._write_config(
            "[Server:Living Room]\n"
            "url = https://emby.example.com/\n"
            "port = 443\n"
            "api_key = 0123456789abcdef\n"
            "\n"
            "[Server:Cabin]\n"
            "url = 10.0.0.5\n"
            "api_key = fedcba9876543210\n"
            "\n"
            "[Settings]\n"
            "marathon_min_episodes = 4\n"
            "abandon_threshold = 0.25\n"
        )

        servers, settings = load_config(path)

        self.assertEqual([s.name for s in servers], ['Living Room', 'Cabin'])
        self.assertEqual(servers[0].base_url, 'https://emby.example.com')
        self.assertEqual(servers[1].base_url, 'http://10.0.0.5:8096')
        self.assertEqual(settings.marathon_min_episodes, 4)
        self.assertEqual(settings.abandon_threshold, 0.25)
        self.assertEqual(settings.top_users, 20)

    def test_placeholder_api_key_is_rejected(self):
        path = self._write_config(
            "[Server:Home]\n"
            "url = 192.168.1.10\n"
            "api_key = YOUR_API_KEY_HERE\n"
        )

        loader = ConfigLoader(path)
        loader.load_from_file()
        with self.assertRaises(ValueError):
            loader.get_server_configs()

    def test_settings_fall_back_to_env(self):
        os.environ['EMBY_MARATHON_MIN_EPISODES'] = '5'
        os.environ['EMBY_ABANDON_THRESHOLD'] = '0.2'

        settings = ConfigLoader(config_file='config-does-not-exist.ini').get_settings()

        self.assertEqual(settings.marathon_min_episodes, 5)
        self.assertEqual(settings.abandon_threshold, 0.2)
        self.assertEqual(settings.prediction_window_days, 7)


if __name__ == '__main__':
    unittest.main()
