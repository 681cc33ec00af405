import sys
import tempfile
from pathlib import Path
import unittest
from unittest import mock

from sqlalchemy import create_engine, text

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.infrastructure.db.migrate import (
    MigrationFilePlan,
    build_migration_plan,
    discover_migration_files,
    execute_migration_plan,
    migrations_dir,
    run_migrations,
    split_sql_statements,
)


class MigrationRunnerTests(unittest.TestCase):
    def test_splitter_handles_semicolons_inside_strings_and_comments(self) -> None:
        statements = split_sql_statements(
            "-- setup; not a statement\n"
            "INSERT INTO demo(txt) VALUES ('alpha;beta');\n"
            "/* block; comment */ INSERT INTO demo(txt) VALUES ('gamma');\n"
            "# trailing; comment\n"
        )

        self.assertEqual(2, len(statements))
        self.assertIn("alpha;beta", statements[0])
        self.assertIn("gamma", statements[1])
        self.assertNotIn("block", statements[1])

    def test_discover_skips_underscore_files_and_orders_by_number(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp)
            (directory / "002_second.sql").write_text("SELECT 2;", encoding="utf-8")
            (directory / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (directory / "_scratch.sql").write_text("SELECT 0;", encoding="utf-8")

            files = discover_migration_files(directory)

            self.assertEqual(["001_first.sql", "002_second.sql"], [path.name for path in files])

    def test_discover_rejects_gaps_and_bad_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp)
            (directory / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (directory / "003_third.sql").write_text("SELECT 3;", encoding="utf-8")

            with self.assertRaises(ValueError):
                discover_migration_files(directory)

            (directory / "003_third.sql").unlink()
            (directory / "two.sql").write_text("SELECT 2;", encoding="utf-8")
            with self.assertRaises(ValueError):
                discover_migration_files(directory)

    def test_shipped_migrations_are_contiguous_and_non_empty(self) -> None:
        plan = build_migration_plan(migrations_dir())

        self.assertTrue(plan)
        self.assertTrue(all(item.statements for item in plan))
        self.assertTrue(any("CREATE TABLE IF NOT EXISTS encounters" in s for s in plan[0].statements))

    def test_execute_plan_tracks_schema_migrations(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_url = f"sqlite+pysqlite:///{Path(tmp) / 'migrate_test.db'}"
            file_plans = [
                MigrationFilePlan(
                    file_path=Path(tmp) / "001_first.sql",
                    statements=["CREATE TABLE IF NOT EXISTS demo(id INTEGER PRIMARY KEY, name TEXT)"],
                ),
                MigrationFilePlan(
                    file_path=Path(tmp) / "002_second.sql",
                    statements=["INSERT INTO demo(id, name) VALUES (1, 'one')"],
                ),
            ]

            self.assertEqual((2, 2), execute_migration_plan(file_plans, db_url))
            self.assertEqual((0, 0), execute_migration_plan(file_plans, db_url))

            engine = create_engine(db_url, future=True)
            with engine.begin() as conn:
                rows = conn.execute(text("SELECT migration_name FROM schema_migrations ORDER BY migration_name")).all()
            engine.dispose()
            self.assertEqual(["001_first.sql", "002_second.sql"], [row[0] for row in rows])

    def test_dry_run_never_connects(self) -> None:
        with mock.patch("encounter_tracker.infrastructure.db.migrate.execute_migration_plan") as execute:
            self.assertEqual((0, 0), run_migrations("sqlite+pysqlite:///:memory:", dry_run=True))
        execute.assert_not_called()


if __name__ == "__main__":
    unittest.main()
