import io
import sys
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker import __main__ as cli
from encounter_tracker.bootstrap import create_inmemory_container
from encounter_tracker.infrastructure.db.migrate import MigrationError


class CliFlowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")

    def test_migrate_dry_run(self) -> None:
        with mock.patch("sys.stdout", new_callable=io.StringIO) as output:
            code = cli.main(["migrate", "--dry-run"])

        self.assertEqual(0, code)
        self.assertIn("Dry run complete", output.getvalue())

    def test_migrate_failure_returns_non_zero(self) -> None:
        with mock.patch.object(cli, "run_migrations", side_effect=MigrationError("unreachable")), mock.patch(
            "sys.stderr", new_callable=io.StringIO
        ) as errors:
            code = cli.main(["migrate"])

        self.assertEqual(1, code)
        self.assertIn("Migration failed: unreachable", errors.getvalue())

    def test_tracker_prints_turn_order(self) -> None:
        encounter = self.container.encounters.create_encounter(
            "dm",
            {"name": "Goblin Ambush", "participants": [
                {"character_id": "gob", "name": "Goblin", "type": "monster", "max_hit_points": 7, "initiative": 12},
                {"character_id": "aria", "name": "Aria", "type": "pc", "max_hit_points": 20, "initiative": 18},
            ]},
        )
        self.container.combat.start_combat(encounter.id, "dm", auto_roll=False)

        with mock.patch.object(cli, "create_container", return_value=self.container), mock.patch(
            "sys.stdout", new_callable=io.StringIO
        ) as output:
            code = cli.main(["tracker", encounter.id, "--user-id", "dm"])

        transcript = output.getvalue()
        self.assertEqual(0, code)
        self.assertIn("Goblin Ambush", transcript)
        self.assertLess(transcript.index("Aria"), transcript.index("Goblin", transcript.index("Aria")))

    def test_tracker_reports_domain_errors(self) -> None:
        with mock.patch.object(cli, "create_container", return_value=self.container), mock.patch(
            "sys.stderr", new_callable=io.StringIO
        ) as errors:
            code = cli.main(["tracker", "missing"])

        self.assertEqual(1, code)
        self.assertIn("Error [", errors.getvalue())

    def test_create_admin_registers_verified_admin(self) -> None:
        with mock.patch.object(cli, "create_container", return_value=self.container), mock.patch(
            "sys.stdout", new_callable=io.StringIO
        ) as output:
            code = cli.main(
                ["create-admin", "--email", "root@example.com", "--username", "root_admin",
                 "--password", "Str0ng!Passw0rd"]
            )

        self.assertEqual(0, code)
        self.assertIn("Admin created", output.getvalue())
        admin = self.container.auth.authenticate("root@example.com", "Str0ng!Passw0rd").user
        self.assertTrue(admin.is_admin)
        self.assertTrue(admin.is_email_verified)


if __name__ == "__main__":
    unittest.main()
