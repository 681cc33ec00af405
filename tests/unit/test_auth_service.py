import sys
from datetime import timedelta
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.bootstrap import create_inmemory_container
from encounter_tracker.domain.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from encounter_tracker.domain.models.user import UserRole


PASSWORD = "Str0ng!Passw0rd"


def _register(container, email="dm@example.com", username="dungeon_master", **overrides):
    payload = {
        "email": email,
        "username": username,
        "first_name": "Dana",
        "last_name": "Mercer",
        "password": PASSWORD,
    }
    payload.update(overrides)
    return container.auth.register(**payload)


class RegistrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")

    def test_register_hashes_password_and_queues_verification_email(self) -> None:
        user = _register(self.container)

        self.assertIsNotNone(user.id)
        self.assertNotEqual(PASSWORD, user.password_hash)
        self.assertFalse(user.is_email_verified)
        self.assertEqual(1, len(self.container.outbox.messages))
        message = self.container.outbox.messages[0]
        self.assertEqual("dm@example.com", message.to)
        self.assertIn(f"/verify-email?token={user.email_verification_token}", message.link)

    def test_register_rejects_duplicate_email_and_username(self) -> None:
        _register(self.container)

        with self.assertRaises(ConflictError) as email_ctx:
            _register(self.container, username="someone_else")
        with self.assertRaises(ConflictError):
            _register(self.container, email="other@example.com")
        self.assertEqual("USER_ALREADY_EXISTS", email_ctx.exception.code)

    def test_register_rejects_weak_password_and_mismatch(self) -> None:
        with self.assertRaises(ValidationError) as weak:
            _register(self.container, password="password")
        self.assertTrue(weak.exception.details)

        with self.assertRaises(ValidationError):
            _register(self.container, confirm_password="Different!Passw0rd")

    def test_register_rejects_invalid_username(self) -> None:
        with self.assertRaises(ValidationError):
            _register(self.container, username="no spaces allowed")

    def test_verify_email_consumes_token(self) -> None:
        user = _register(self.container)
        token = user.email_verification_token

        verified = self.container.auth.verify_email(token)

        self.assertTrue(verified.is_email_verified)
        with self.assertRaises(ValidationError) as ctx:
            self.container.auth.verify_email(token)
        self.assertEqual("INVALID_VERIFICATION_TOKEN", ctx.exception.code)

    def test_resend_verification_rules(self) -> None:
        user = _register(self.container)

        self.container.auth.resend_verification("dm@example.com")
        self.assertEqual(2, len(self.container.outbox.messages))

        self.container.auth.verify_email(self.container.users.get_user(user.id).email_verification_token)
        with self.assertRaises(ValidationError):
            self.container.auth.resend_verification("dm@example.com")
        with self.assertRaises(NotFoundError):
            self.container.auth.resend_verification("ghost@example.com")


class LoginAndSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.user = _register(self.container)

    def test_authenticate_issues_session_that_resolves_to_user(self) -> None:
        result = self.container.auth.authenticate("DM@example.com", PASSWORD)

        self.assertTrue(result.requires_verification)
        self.assertIsNotNone(result.user.last_login_at)
        self.assertEqual(self.user.id, self.container.auth.resolve_session(result.session_token).id)

    def test_authenticate_uses_one_message_for_unknown_email_and_bad_password(self) -> None:
        with self.assertRaises(AuthenticationError) as unknown:
            self.container.auth.authenticate("ghost@example.com", PASSWORD)
        with self.assertRaises(AuthenticationError) as wrong:
            self.container.auth.authenticate("dm@example.com", "Wr0ng!Password")

        self.assertEqual(str(unknown.exception), str(wrong.exception))

    def test_logout_invalidates_session(self) -> None:
        token = self.container.auth.authenticate("dm@example.com", PASSWORD).session_token

        self.container.auth.logout(token)

        with self.assertRaises(AuthenticationError):
            self.container.auth.resolve_session(token)

    def test_expired_session_is_rejected(self) -> None:
        self.container.auth.session_ttl = timedelta(seconds=-1)
        token, _ = self.container.auth.create_session(self.user.id)

        with self.assertRaises(AuthenticationError):
            self.container.auth.resolve_session(token)


class PasswordLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.user = _register(self.container)

    def test_change_password_revokes_existing_sessions(self) -> None:
        token = self.container.auth.authenticate("dm@example.com", PASSWORD).session_token

        self.container.auth.change_password(self.user.id, PASSWORD, "N3w!Passphrase")

        with self.assertRaises(AuthenticationError):
            self.container.auth.resolve_session(token)
        self.container.auth.authenticate("dm@example.com", "N3w!Passphrase")

    def test_change_password_requires_current_password(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.container.auth.change_password(self.user.id, "Wr0ng!Password", "N3w!Passphrase")
        self.assertEqual("INVALID_CURRENT_PASSWORD", ctx.exception.code)

    def test_reset_flow_sends_link_and_accepts_token_once(self) -> None:
        token = self.container.auth.request_password_reset("dm@example.com")

        self.assertTrue(self.container.outbox.messages[-1].link.endswith(f"/reset-password/{token}"))
        self.container.auth.reset_password(token, "R3set!Passphrase", "R3set!Passphrase")
        self.container.auth.authenticate("dm@example.com", "R3set!Passphrase")

        with self.assertRaises(ValidationError) as ctx:
            self.container.auth.reset_password(token, "Another!Pass1")
        self.assertEqual("INVALID_RESET_TOKEN", ctx.exception.code)

    def test_reset_request_for_unknown_email_is_silent(self) -> None:
        before = len(self.container.outbox.messages)

        self.assertIsNone(self.container.auth.request_password_reset("ghost@example.com"))
        self.assertEqual(before, len(self.container.outbox.messages))


class UserServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.admin = _register(self.container, "admin@example.com", "admin_user", role=UserRole.ADMIN)
        self.player = _register(self.container, "player@example.com", "player_one")

    def test_profile_access_is_limited_to_self_or_admin(self) -> None:
        other = _register(self.container, "other@example.com", "player_two")

        self.assertEqual(self.player.id, self.container.users.get_profile(self.admin, self.player.id).id)
        with self.assertRaises(PermissionDeniedError):
            self.container.users.get_profile(other, self.player.id)

    def test_update_profile_merges_preferences_and_checks_uniqueness(self) -> None:
        updated = self.container.users.update_profile(
            self.player, self.player.id, {"first_name": "Pat", "preferences": {"theme": "dark"}}
        )

        self.assertEqual("Pat", updated.first_name)
        self.assertEqual("dark", updated.preferences.theme)
        with self.assertRaises(ConflictError):
            self.container.users.update_profile(self.player, self.player.id, {"email": "admin@example.com"})

    def test_subscription_changes_are_admin_only(self) -> None:
        with self.assertRaises(PermissionDeniedError):
            self.container.users.update_subscription(self.player, self.player.id, "expert")
        with self.assertRaises(ValidationError):
            self.container.users.update_subscription(self.admin, self.player.id, "platinum")

        self.assertEqual(
            "expert", self.container.users.update_subscription(self.admin, self.player.id, "expert").subscription_tier.value
        )

    def test_user_stats_counts_roles(self) -> None:
        stats = self.container.users.user_stats(self.admin)

        self.assertEqual(2, stats["total_users"])
        self.assertEqual({"admin": 1, "user": 1}, stats["users_by_role"])

    def test_delete_user_removes_account(self) -> None:
        self.container.users.delete_user(self.player, self.player.id)

        with self.assertRaises(NotFoundError):
            self.container.users.get_user(self.player.id)


if __name__ == "__main__":
    unittest.main()
