import argparse
import logging
import os
import sys

from dotenv import load_dotenv
from rich.console import Console

from encounter_tracker.bootstrap import create_container
from encounter_tracker.domain.errors import TrackerError
from encounter_tracker.domain.models.user import UserRole
from encounter_tracker.infrastructure.db.migrate import MigrationError, run_migrations
from encounter_tracker.presentation.tracker_view import render_turn_view


logger = logging.getLogger("encounter_tracker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="encounter-tracker", description="Tabletop combat encounter tracker")
    parser.add_argument("--log-level", default=os.getenv("TRACKER_LOG_LEVEL", "INFO"))
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=os.getenv("TRACKER_HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("TRACKER_PORT", "3000")))
    serve.add_argument("--reload", action="store_true")

    migrate = commands.add_parser("migrate", help="Apply pending SQL migrations")
    migrate.add_argument("--database-url", default=None)
    migrate.add_argument("--dry-run", action="store_true")

    tracker = commands.add_parser("tracker", help="Print the turn order of an encounter")
    tracker.add_argument("encounter_id")
    tracker.add_argument("--user-id", default=None, help="View as this user (shows hidden participants to the owner)")

    admin = commands.add_parser("create-admin", help="Create a verified admin account")
    admin.add_argument("--email", required=True)
    admin.add_argument("--username", required=True)
    admin.add_argument("--password", required=True)
    admin.add_argument("--first-name", default="Admin")
    admin.add_argument("--last-name", default="User")
    return parser


def _serve(args) -> int:
    import uvicorn

    uvicorn.run(
        "encounter_tracker.presentation.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def _migrate(args) -> int:
    try:
        files, statements = run_migrations(args.database_url, dry_run=args.dry_run)
    except MigrationError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        return 1
    if args.dry_run:
        print("Dry run complete. No statements executed.")
    else:
        print(f"Migrations complete: files={files}, statements={statements}.")
    return 0


def _tracker(args) -> int:
    container = create_container()
    encounter = container.encounters.get_encounter(args.encounter_id, args.user_id)
    view = container.combat.turn_view(args.encounter_id, args.user_id)
    render_turn_view(view, title=encounter.name, console=Console())
    return 0


def _create_admin(args) -> int:
    container = create_container()
    user = container.auth.register(
        email=args.email,
        username=args.username,
        first_name=args.first_name,
        last_name=args.last_name,
        password=args.password,
        role=UserRole.ADMIN,
    )
    container.auth.verify_email(user.email_verification_token)
    print(f"Admin created: {user.id} <{user.email}>")
    return 0


_COMMANDS = {
    "serve": _serve,
    "migrate": _migrate,
    "tracker": _tracker,
    "create-admin": _create_admin,
}


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return _COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nSession ended.")
        return 130
    except TrackerError as exc:
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
