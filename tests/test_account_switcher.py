import json
import unittest

from core.account_switcher import SNAPSHOTS_KEY, UNKNOWN_EMAIL, AccountSwitcher, SnapshotNotFound
from core.extraction import AUTH_STATUS_KEY
from stores.memory_store import MemorySecretStore, MemoryStateStore


BLOB_A = '{"name":"Alice","email":"A@x.com","apiKey":"ya29.a","note":"it\'s quoted"}'
BLOB_B = '{"name":"Bob","email":"b@x.com","apiKey":"ya29.b"}'


class AccountSwitcherTests(unittest.TestCase):
    def setUp(self):
        self.now = 1_700_000_000.0
        self.state = MemoryStateStore({AUTH_STATUS_KEY: BLOB_A.encode("utf-8")})
        self.secrets = MemorySecretStore()
        self.switcher = AccountSwitcher(self.state, self.secrets, clock=lambda: self.now)

    def test_save_snapshot_keeps_blob_verbatim(self):
        snapshot = self.switcher.save_snapshot()

        self.assertEqual(snapshot.email, "a@x.com")
        self.assertEqual(snapshot.identity_blob, BLOB_A)
        stored = json.loads(self.secrets.get(SNAPSHOTS_KEY))
        self.assertEqual(stored["a@x.com"], {"email": "a@x.com", "identityBlob": BLOB_A, "savedAt": 1_700_000_000_000})

    def test_switch_restores_saved_identity(self):
        self.switcher.save_snapshot()
        self.state.set(AUTH_STATUS_KEY, BLOB_B.encode("utf-8"))
        self.switcher.save_snapshot()

        result = self.switcher.switch_to_account("a@x.com")

        self.assertTrue(result.ok)
        self.assertIsNone(result.error)
        self.assertEqual(self.state.get(AUTH_STATUS_KEY), BLOB_A.encode("utf-8"))

    def test_switch_without_snapshot_leaves_store_untouched(self):
        before = self.state.get(AUTH_STATUS_KEY)

        result = self.switcher.switch_to_account("a@x.com")

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "snapshot_not_found")
        self.assertEqual(self.state.get(AUTH_STATUS_KEY), before)
        self.assertEqual(self.state.writes, [])

    def test_switch_reports_write_failure(self):
        self.state.set(AUTH_STATUS_KEY, BLOB_B.encode("utf-8"))
        self.switcher.save_snapshot()
        self.state.set(AUTH_STATUS_KEY, BLOB_A.encode("utf-8"))
        self.state.fail_writes = True

        result = self.switcher.switch_to_account("b@x.com")

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "store_write_failed")
        self.assertEqual(self.state.get(AUTH_STATUS_KEY), BLOB_A.encode("utf-8"))

    def test_save_without_active_identity(self):
        switcher = AccountSwitcher(MemoryStateStore(), self.secrets)
        self.assertIsNone(switcher.save_snapshot())
        self.assertIsNone(self.secrets.get(SNAPSHOTS_KEY))

    def test_unparseable_blob_uses_sentinel(self):
        self.state.set(AUTH_STATUS_KEY, b"not json at all")
        self.assertEqual(self.switcher.save_snapshot().email, UNKNOWN_EMAIL)

    def test_name_used_when_email_missing(self):
        self.state.set(AUTH_STATUS_KEY, b'{"name": "carol@x.com"}')
        self.assertEqual(self.switcher.save_snapshot().email, "carol@x.com")

    def test_saving_again_overwrites(self):
        self.switcher.save_snapshot()
        self.now += 100
        self.switcher.save_snapshot()

        self.assertEqual(self.switcher.snapshot_count(), 1)
        self.assertEqual(self.switcher.get_snapshot("a@x.com").saved_at, self.now)

    def test_list_and_delete(self):
        self.switcher.save_snapshot()
        self.state.set(AUTH_STATUS_KEY, BLOB_B.encode("utf-8"))
        self.switcher.save_snapshot()

        self.assertEqual([s.email for s in self.switcher.list_snapshots()], ["a@x.com", "b@x.com"])
        self.assertTrue(self.switcher.delete_snapshot("B@x.com"))
        self.assertFalse(self.switcher.delete_snapshot("b@x.com"))
        self.assertEqual([s.email for s in self.switcher.list_snapshots()], ["a@x.com"])
        with self.assertRaises(SnapshotNotFound):
            self.switcher.get_snapshot("b@x.com")

    def test_malformed_entry_does_not_wipe_other_snapshots(self):
        broken = {"email": "b@x.com"}
        self.secrets.set(
            SNAPSHOTS_KEY,
            json.dumps(
                {
                    "a@x.com": {"email": "a@x.com", "identityBlob": BLOB_A, "savedAt": 1},
                    "b@x.com": broken,
                }
            ),
        )
        self.state.set(AUTH_STATUS_KEY, b'{"email": "c@x.com", "apiKey": "ya29.c"}')

        with self.assertLogs("core.account_switcher", level="WARNING"):
            self.switcher.save_snapshot()

        stored = json.loads(self.secrets.get(SNAPSHOTS_KEY))
        self.assertEqual(sorted(stored), ["a@x.com", "b@x.com", "c@x.com"])
        self.assertEqual(stored["b@x.com"], broken)
        self.assertEqual([s.email for s in self.switcher.list_snapshots()], ["a@x.com", "c@x.com"])
        self.assertTrue(self.switcher.switch_to_account("a@x.com").ok)

    def test_malformed_entry_can_be_deleted(self):
        self.secrets.set(SNAPSHOTS_KEY, json.dumps({"b@x.com": {"email": "b@x.com"}}))
        self.assertTrue(self.switcher.delete_snapshot("b@x.com"))
        self.assertEqual(json.loads(self.secrets.get(SNAPSHOTS_KEY)), {})

    def test_unreadable_snapshot_map_is_not_overwritten(self):
        self.secrets.set(SNAPSHOTS_KEY, "{not json")

        with self.assertLogs("core.account_switcher", level="ERROR"):
            self.assertIsNone(self.switcher.save_snapshot())

        self.assertEqual(self.secrets.get(SNAPSHOTS_KEY), "{not json")
        self.assertEqual(self.switcher.list_snapshots(), [])


if __name__ == "__main__":
    unittest.main()
