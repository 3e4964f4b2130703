import unittest
from dataclasses import replace

from stores.factory import build_secret_store, build_state_store
from stores.host_state_store import SQLiteStateStore
from stores.keyring_store import KeyringSecretStore
from stores.memory_store import MemorySecretStore
from test_token_service import make_settings


class FactoryTests(unittest.TestCase):
    def test_memory_backend(self):
        self.assertIsInstance(build_secret_store(make_settings(secret_backend="MEMORY")), MemorySecretStore)

    def test_keyring_backend(self):
        store = build_secret_store(make_settings(secret_backend="keyring"))
        self.assertIsInstance(store, KeyringSecretStore)
        self.assertEqual(store.service, "switchboard-test")

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            build_secret_store(make_settings(secret_backend="plaintext"))

    def test_state_store_points_at_configured_db(self):
        settings = make_settings()
        store = build_state_store(replace(settings, state_db_path=settings.state_db_path.with_name("x.vscdb")))
        self.assertIsInstance(store, SQLiteStateStore)
        self.assertEqual(store.db_path.name, "x.vscdb")


if __name__ == "__main__":
    unittest.main()
