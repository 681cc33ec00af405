import sys
import tempfile
from pathlib import Path
import unittest

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.bootstrap import _sql_repositories, build_container
from encounter_tracker.domain.errors import AuthenticationError, PermissionDeniedError
from encounter_tracker.domain.models.combat import CombatActionType
from encounter_tracker.infrastructure.db.migrate import build_migration_plan, execute_migration_plan
from encounter_tracker.infrastructure.db.sql.atomic_persistence import create_sql_atomic_persistor
from encounter_tracker.infrastructure.db.sql.repos import SqlCombatLogRepository, SqlEncounterRepository


PASSWORD = "Str0ng!Passw0rd"


class _MigratedDatabase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.database_url = f"sqlite+pysqlite:///{Path(self._tmp.name) / 'tracker.db'}"
        execute_migration_plan(build_migration_plan(), self.database_url)
        self.engine = create_engine(self.database_url, future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.container = build_container(
            _sql_repositories(self.SessionLocal),
            backend="sql",
            bcrypt_rounds=4,
            share_secret="test-secret",
        )

    def tearDown(self) -> None:
        self.engine.dispose()
        self._tmp.cleanup()


class SqlAccountTests(_MigratedDatabase):
    def test_register_login_and_logout_round_trip(self) -> None:
        user = self.container.auth.register(
            email="dm@example.com", username="dungeon_master", first_name="Dana", last_name="Mercer",
            password=PASSWORD,
        )

        verified = self.container.auth.verify_email(user.email_verification_token)
        result = self.container.auth.authenticate("dm@example.com", PASSWORD)

        self.assertTrue(verified.is_email_verified)
        self.assertFalse(result.requires_verification)
        self.assertEqual(user.id, self.container.auth.resolve_session(result.session_token).id)
        self.container.auth.logout(result.session_token)
        with self.assertRaises(AuthenticationError):
            self.container.auth.resolve_session(result.session_token)

    def test_system_templates_seed_once(self) -> None:
        self.assertEqual(0, self.container.npc_templates.seed_system_templates())
        self.assertEqual("Goblin", self.container.npc_templates.get_template("system-goblin").name)


class SqlEncounterTests(_MigratedDatabase):
    def setUp(self) -> None:
        super().setUp()
        self.encounter = self.container.encounters.create_encounter(
            "dm",
            {
                "name": "Ambush",
                "tags": ["goblins"],
                "participants": [
                    {"character_id": "aria", "name": "Aria", "type": "pc", "max_hit_points": 20,
                     "dexterity": 14, "initiative": 15, "is_player": True},
                    {"character_id": "gob", "name": "Goblin", "type": "monster", "max_hit_points": 7,
                     "dexterity": 16, "initiative": 15},
                ],
            },
        )

    def test_sharing_is_stored_in_join_table(self) -> None:
        self.container.encounters.share(self.encounter.id, "dm", ["player"])

        self.assertEqual(
            [self.encounter.id], [e.id for e in self.container.encounters.list_encounters("player").items]
        )
        with self.engine.begin() as conn:
            rows = conn.execute(text("SELECT user_id FROM encounter_shares")).scalars().all()
        self.assertEqual(["player"], rows)

    def test_combat_state_and_log_survive_reload(self) -> None:
        self.container.combat.start_combat(self.encounter.id, "dm", auto_roll=False)
        self.container.combat.apply_damage(self.encounter.id, "dm", "gob", 7)
        self.container.combat.next_turn(self.encounter.id, "dm")

        fresh = SqlEncounterRepository(self.SessionLocal).get(self.encounter.id)
        log = SqlCombatLogRepository(self.SessionLocal).list(self.encounter.id)

        self.assertTrue(fresh.combat_state.is_active)
        self.assertEqual(["gob", "aria"], [e.participant_id for e in fresh.combat_state.initiative_order])
        self.assertTrue(fresh.get_participant("gob").is_defeated)
        self.assertEqual(CombatActionType.COMBAT_STARTED, log[0].action)
        self.assertGreater(fresh.version, 1)

    def test_snapshot_restore_from_database(self) -> None:
        self.container.combat.start_combat(self.encounter.id, "dm", auto_roll=False)
        self.container.combat.save_snapshot(self.encounter.id, "dm", "opening")
        self.container.combat.next_turn(self.encounter.id, "dm")

        self.container.combat.restore_snapshot(self.encounter.id, "dm")

        self.assertEqual("gob", self.container.combat.turn_view(self.encounter.id, "dm").current_participant_id)

    def test_delete_removes_log_rows(self) -> None:
        self.container.combat.start_combat(self.encounter.id, "dm", auto_roll=False)
        self.container.combat.end_combat(self.encounter.id, "dm")

        self.container.encounters.delete_encounter(self.encounter.id, "dm")

        with self.engine.begin() as conn:
            remaining = conn.execute(text("SELECT COUNT(*) FROM combat_log")).scalar()
        self.assertEqual(0, remaining)

    def test_strangers_cannot_read_private_encounters(self) -> None:
        with self.assertRaises(PermissionDeniedError):
            self.container.encounters.get_encounter(self.encounter.id, "stranger")


class SqlAtomicPersistenceTests(_MigratedDatabase):
    def test_failed_operation_rolls_back_encounter_and_log(self) -> None:
        encounter = self.container.encounters.create_encounter("dm", {"name": "Ambush"})
        encounter.name = "Renamed"
        persist = create_sql_atomic_persistor(self.SessionLocal)

        def explode(session) -> None:
            raise RuntimeError("disk full")

        with self.assertRaises(RuntimeError):
            persist(encounter, operations=[explode])

        stored = SqlEncounterRepository(self.SessionLocal).get(encounter.id)
        self.assertEqual("Ambush", stored.name)
        self.assertEqual([], SqlCombatLogRepository(self.SessionLocal).list(encounter.id))


if __name__ == "__main__":
    unittest.main()
