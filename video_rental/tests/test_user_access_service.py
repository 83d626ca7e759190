import os
import tempfile
import unittest
from unittest.mock import patch

from video_rental.services import user_access_service
from video_rental.services.user_access_service import (
    create_session,
    get_session,
    remove_session,
    verify_staff_credentials,
)


STAFF_ENV = {
    "SESSION_SIGNING_SECRET": "s" * 40,
    "LOCAL_ADMIN_PASSWORD": "front-desk-pin",
    "STAFF_ACCOUNTS": "Night:owl-pass, broken-entry ,day:",
}


class UserAccessServiceTests(unittest.TestCase):
    def setUp(self):
        patcher = patch.dict(os.environ, STAFF_ENV)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_admin_and_configured_staff_can_authenticate(self):
        self.assertTrue(verify_staff_credentials("admin", "front-desk-pin"))
        self.assertTrue(verify_staff_credentials("NIGHT", "owl-pass"))
        self.assertFalse(verify_staff_credentials("night", "wrong"))
        self.assertFalse(verify_staff_credentials("day", ""))
        self.assertFalse(verify_staff_credentials("broken-entry", ""))

    def test_session_round_trip_and_revocation(self):
        token = create_session({"username": "night"})

        self.assertEqual(get_session(token)["username"], "night")
        remove_session(token)
        self.assertIsNone(get_session(token))

    def test_tampered_token_is_rejected(self):
        token = create_session({"username": "night"})
        encoded, signature = token.split(".", 1)
        forged = create_session({"username": "admin"}).split(".", 1)[0]

        self.assertIsNone(get_session(f"{forged}.{signature}"))
        self.assertIsNone(get_session("not-a-token"))
        self.assertIsNotNone(get_session(f"{encoded}.{signature}"))

    def test_unsigned_or_expired_tokens_are_not_recorded(self):
        before = user_access_service._load_revoked_tokens_unlocked()
        forged = create_session({"username": "night"}).split(".", 1)[0] + ".AAAA"
        with patch.object(user_access_service, "SESSION_TTL_SECONDS", -1):
            expired = create_session({"username": "night"})

        for token in ("garbage", "a.b", forged, expired):
            self.assertFalse(remove_session(token))

        self.assertEqual(user_access_service._load_revoked_tokens_unlocked(), before)

    def test_expired_revocations_are_pruned(self):
        with patch.dict(user_access_service._REVOKED_TOKENS, {"stale-token": 1.0}):
            remove_session(create_session({"username": "night"}))

            self.assertNotIn("stale-token", user_access_service._REVOKED_TOKENS)

    def test_revocations_persist_to_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "revoked_sessions.json")
            with patch.dict(os.environ, {"SESSION_REVOCATION_FILE": path}):
                token = create_session({"username": "night"})
                self.assertTrue(remove_session(token))
                # A restart loses the in-process cache but not the file.
                user_access_service._SESSIONS.clear()

                self.assertTrue(os.path.exists(path))
                self.assertIn(token, user_access_service._load_revoked_tokens_unlocked())
                self.assertIsNone(get_session(token))

    def test_short_secret_is_refused(self):
        with patch.dict(os.environ, {"SESSION_SIGNING_SECRET": "short"}):
            with self.assertRaises(RuntimeError):
                create_session({"username": "night"})


if __name__ == "__main__":
    unittest.main()
