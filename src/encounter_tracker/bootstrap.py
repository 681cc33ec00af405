import logging
import os
import socket
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional
from urllib.parse import urlparse

from encounter_tracker.application.services.auth_service import AuthService
from encounter_tracker.application.services.character_service import CharacterService
from encounter_tracker.application.services.combat_service import CombatService
from encounter_tracker.application.services.encounter_batch_service import EncounterBatchService
from encounter_tracker.application.services.encounter_service import EncounterService
from encounter_tracker.application.services.encounter_transfer_service import EncounterTransferService
from encounter_tracker.application.services.event_bus import EventBus
from encounter_tracker.application.services.notifications import (
    DEFAULT_OUTBOX_LIMIT,
    NotificationOutbox,
    register_notification_handlers,
)
from encounter_tracker.application.services.npc_template_service import NPCTemplateService
from encounter_tracker.application.services.party_service import PartyService
from encounter_tracker.application.services.user_service import UserService
from encounter_tracker.infrastructure.content.cached_monster_client import create_monster_client
from encounter_tracker.infrastructure.inmemory.atomic_persistence import create_inmemory_atomic_persistor
from encounter_tracker.infrastructure.inmemory.repos import (
    InMemoryCharacterRepository,
    InMemoryCombatLogRepository,
    InMemoryCombatSnapshotRepository,
    InMemoryEncounterRepository,
    InMemoryNPCTemplateRepository,
    InMemoryPartyRepository,
    InMemorySessionRepository,
    InMemoryUserRepository,
)
from encounter_tracker.infrastructure.security.passwords import BcryptPasswordHasher
from encounter_tracker.infrastructure.security.share_tokens import ShareTokenSigner


logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Every service the HTTP layer and the CLI reach for, wired to one set of repositories."""

    backend: str
    event_bus: EventBus
    outbox: NotificationOutbox
    auth: AuthService
    users: UserService
    characters: CharacterService
    parties: PartyService
    encounters: EncounterService
    transfer: EncounterTransferService
    batch: EncounterBatchService
    combat: CombatService
    npc_templates: NPCTemplateService
    health_probe: Callable[[], bool]


def _looks_like_local_mysql_unreachable(database_url: str) -> bool:
    if not database_url:
        return False

    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("mysql"):
        return False

    host = (parsed.hostname or "").strip().lower()
    if host not in {"localhost", "127.0.0.1", "::1"}:
        return False

    port = parsed.port or 3306
    timeout = float(os.getenv("TRACKER_DB_CONNECT_PROBE_TIMEOUT_S", "0.35"))

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return False
    except OSError:
        return True


def _inmemory_repositories() -> dict:
    encounter_repo = InMemoryEncounterRepository()
    log_repo = InMemoryCombatLogRepository()
    return {
        "users": InMemoryUserRepository(),
        "sessions": InMemorySessionRepository(),
        "characters": InMemoryCharacterRepository(),
        "parties": InMemoryPartyRepository(),
        "encounters": encounter_repo,
        "log": log_repo,
        "snapshots": InMemoryCombatSnapshotRepository(),
        "templates": InMemoryNPCTemplateRepository(),
        "persistor": create_inmemory_atomic_persistor(encounter_repo, log_repo),
        "probe": lambda: True,
    }


def _sql_repositories(session_factory=None) -> dict:
    from sqlalchemy import text

    from encounter_tracker.infrastructure.db.sql.atomic_persistence import create_sql_atomic_persistor
    from encounter_tracker.infrastructure.db.sql.repos import (
        SqlCharacterRepository,
        SqlCombatLogRepository,
        SqlCombatSnapshotRepository,
        SqlEncounterRepository,
        SqlNPCTemplateRepository,
        SqlPartyRepository,
        SqlSessionRepository,
        SqlUserRepository,
    )

    if session_factory is None:
        from encounter_tracker.infrastructure.db.connection import SessionLocal

        session_factory = SessionLocal

    def _probe() -> bool:
        with session_factory() as session:
            session.execute(text("SELECT 1"))
        return True

    # Fail early so the caller can fall back before serving requests.
    try:
        _probe()
    except Exception as exc:
        raise RuntimeError(f"Database bootstrap probe failed: {exc}") from exc

    return {
        "users": SqlUserRepository(session_factory),
        "sessions": SqlSessionRepository(session_factory),
        "characters": SqlCharacterRepository(session_factory),
        "parties": SqlPartyRepository(session_factory),
        "encounters": SqlEncounterRepository(session_factory),
        "log": SqlCombatLogRepository(session_factory),
        "snapshots": SqlCombatSnapshotRepository(session_factory),
        "templates": SqlNPCTemplateRepository(session_factory),
        "persistor": create_sql_atomic_persistor(session_factory),
        "probe": _probe,
    }


def build_container(
    repos: dict,
    *,
    backend: str,
    base_url: Optional[str] = None,
    share_secret: Optional[str] = None,
    bcrypt_rounds: Optional[int] = None,
    session_ttl_hours: Optional[float] = None,
    monster_client=None,
) -> Container:
    base_url = base_url or os.getenv("TRACKER_BASE_URL", "http://localhost:3000")
    event_bus = EventBus()
    outbox = NotificationOutbox(base_url, limit=int(os.getenv("TRACKER_OUTBOX_LIMIT", str(DEFAULT_OUTBOX_LIMIT))))
    register_notification_handlers(event_bus, outbox)

    hasher = BcryptPasswordHasher(rounds=bcrypt_rounds or int(os.getenv("TRACKER_BCRYPT_ROUNDS", "12")))
    ttl_hours = session_ttl_hours or float(os.getenv("TRACKER_SESSION_TTL_HOURS", "24"))
    secret = share_secret or os.getenv("TRACKER_SHARE_SECRET")
    if not secret:
        logger.warning("TRACKER_SHARE_SECRET is not set; share links will not survive a restart")

    encounters = EncounterService(repos["encounters"], repos["characters"], repos["parties"])
    transfer = EncounterTransferService(
        encounters,
        repos["characters"],
        ShareTokenSigner(secret),
        base_url=base_url,
    )
    npc_templates = NPCTemplateService(repos["templates"], monster_client=monster_client)
    npc_templates.seed_system_templates()

    return Container(
        backend=backend,
        event_bus=event_bus,
        outbox=outbox,
        auth=AuthService(
            repos["users"],
            repos["sessions"],
            hasher,
            event_bus=event_bus,
            session_ttl=timedelta(hours=ttl_hours),
        ),
        users=UserService(repos["users"]),
        characters=CharacterService(repos["characters"], encounter_repo=repos["encounters"]),
        parties=PartyService(repos["parties"], repos["characters"]),
        encounters=encounters,
        transfer=transfer,
        batch=EncounterBatchService(encounters, transfer),
        combat=CombatService(
            repos["encounters"],
            repos["log"],
            repos["snapshots"],
            repos["persistor"],
            character_repo=repos["characters"],
            event_bus=event_bus,
        ),
        npc_templates=npc_templates,
        health_probe=repos["probe"],
    )


def create_inmemory_container(**kwargs) -> Container:
    return build_container(_inmemory_repositories(), backend="memory", **kwargs)


def create_container() -> Container:
    monster_client = create_monster_client()
    database_url = os.getenv("TRACKER_DATABASE_URL")
    if database_url:
        if _looks_like_local_mysql_unreachable(database_url):
            logger.warning("MySQL appears unreachable, falling back to in-memory storage")
            return create_inmemory_container(monster_client=monster_client)
        try:
            return build_container(_sql_repositories(), backend="sql", monster_client=monster_client)
        except RuntimeError as exc:
            logger.warning("Database unavailable, falling back to in-memory storage: %s", exc)

    return create_inmemory_container(monster_client=monster_client)
