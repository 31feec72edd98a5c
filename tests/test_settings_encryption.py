import os
import sys
import unittest
import keyring
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from settings_schema import load_settings, validate_settings

class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1
    def __init__(self):
        self.store = {}
    def get_password(self, service, username):
        return self.store.get((service, username))
    def set_password(self, service, username, password):
        self.store[(service, username)] = password
    def delete_password(self, service, username):
        self.store.pop((service, username), None)

class SettingsEncryptionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.keyring = DummyKeyring()
        keyring.set_keyring(self.keyring)
        os.environ['ENCRYPT_SETTINGS'] = '1'
        self.path = 'enc_settings.yaml'
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop('ENCRYPT_SETTINGS', None)

    def test_encrypt_and_load(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'remote_api_token': 'secret', 'weight_unit': 'lbs'})
        self.assertTrue(os.path.exists(self.path))
        with open(self.path, 'r', encoding='utf-8') as f:
            self.assertNotIn('secret', f.read())
        self.assertEqual(self.keyring.store[('liftsync', 'remote_api_token')], 'secret')
        data = cfg.load()
        self.assertEqual(data['remote_api_token'], 'secret')
        self.assertEqual(data['weight_unit'], 'lbs')
        settings = cfg.settings()
        self.assertEqual(settings.remote_api_token, 'secret')
        self.assertEqual(settings.sync_timeout, 5.0)

    def test_plain_settings_defaults(self) -> None:
        os.environ.pop('ENCRYPT_SETTINGS', None)
        cfg = YamlConfig(self.path)
        self.assertEqual(cfg.load(), {})
        settings = cfg.settings()
        self.assertTrue(settings.sync_enabled)
        self.assertEqual(settings.rest_days_per_week, 2)
        self.assertEqual(settings.weight_unit, 'kg')

    def test_invalid_settings_rejected(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings({'weight_unit': 'stone'})
        with self.assertRaises(ValueError):
            load_settings({'sync_timeout': 0})
        with self.assertRaises(ValueError):
            load_settings({'rest_days_per_week': 9})

if __name__ == '__main__':
    unittest.main()
