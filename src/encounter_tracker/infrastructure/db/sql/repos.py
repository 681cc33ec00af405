import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import bindparam, text

from encounter_tracker.application.mappers.document_mapper import (
    character_from_document,
    character_to_document,
    dt_to_str,
    encounter_from_document,
    encounter_to_document,
    log_entry_from_document,
    party_from_document,
    party_to_document,
    snapshot_from_document,
    snapshot_to_document,
    str_to_dt,
    template_from_document,
    template_to_document,
    user_from_document,
    user_to_document,
)
from encounter_tracker.domain.models.character import Character
from encounter_tracker.domain.models.combat import CombatLogEntry, CombatSnapshot
from encounter_tracker.domain.models.encounter import Encounter
from encounter_tracker.domain.models.npc_template import NPCTemplate
from encounter_tracker.domain.models.party import Party
from encounter_tracker.domain.models.user import User
from encounter_tracker.domain.repositories import (
    CharacterRepository,
    CombatLogRepository,
    CombatSnapshotRepository,
    EncounterRepository,
    NPCTemplateRepository,
    PartyRepository,
    SessionRepository,
    UserRepository,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def upsert_row(session, table: str, key_columns: Sequence[str], row: Dict[str, Any]) -> None:
    """Insert ``row`` or overwrite its non-key columns, in the bound dialect's syntax."""
    dialect = session.bind.dialect.name if session.bind is not None else "mysql"
    columns = list(row.keys())
    updates = [column for column in columns if column not in key_columns]
    column_sql = ", ".join(columns)
    values_sql = ", ".join(f":{column}" for column in columns)

    if dialect == "mysql":
        update_sql = ", ".join(f"{column} = VALUES({column})" for column in updates)
        statement = f"INSERT INTO {table} ({column_sql}) VALUES ({values_sql}) ON DUPLICATE KEY UPDATE {update_sql}"
    else:
        update_sql = ", ".join(f"{column} = excluded.{column}" for column in updates)
        statement = (
            f"INSERT INTO {table} ({column_sql}) VALUES ({values_sql}) "
            f"ON CONFLICT({', '.join(key_columns)}) DO UPDATE SET {update_sql}"
        )
    session.execute(text(statement), row)


def _dump(document: Dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False, sort_keys=True)


def _load(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    return json.loads(raw or "{}")


def _replace_shares(session, table: str, key_column: str, key: str, user_ids: Sequence[str]) -> None:
    session.execute(text(f"DELETE FROM {table} WHERE {key_column} = :key"), {"key": key})
    for user_id in dict.fromkeys(user_ids):
        session.execute(
            text(f"INSERT INTO {table} ({key_column}, user_id) VALUES (:key, :user_id)"),
            {"key": key, "user_id": user_id},
        )


class _SqlRepository:
    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory

    def _sessions(self):
        if self._session_factory is None:
            from encounter_tracker.infrastructure.db.connection import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory


class SqlUserRepository(_SqlRepository, UserRepository):
    def _one(self, where: str, params: Dict[str, Any]) -> Optional[User]:
        with self._sessions()() as session:
            raw = session.execute(text(f"SELECT document_json FROM users WHERE {where}"), params).scalar()
        return user_from_document(_load(raw)) if raw is not None else None

    def get(self, user_id: str) -> Optional[User]:
        return self._one("user_id = :value", {"value": user_id})

    def get_by_email(self, email: str) -> Optional[User]:
        return self._one("email = :value", {"value": str(email or "").strip().lower()})

    def get_by_username(self, username: str) -> Optional[User]:
        return self._one("LOWER(username) = :value", {"value": str(username or "").strip().lower()})

    def get_by_verification_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        return self._one("verification_token = :value", {"value": token})

    def get_by_reset_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        return self._one("reset_token = :value", {"value": token})

    def save(self, user: User) -> User:
        if user.id is None:
            user.id = _new_id()
        with self._sessions().begin() as session:
            save_user_row(session, user)
        return user

    def delete(self, user_id: str) -> bool:
        with self._sessions().begin() as session:
            result = session.execute(text("DELETE FROM users WHERE user_id = :id"), {"id": user_id})
        return result.rowcount > 0

    def list_all(self) -> List[User]:
        with self._sessions()() as session:
            rows = session.execute(text("SELECT document_json FROM users ORDER BY LOWER(username)")).scalars().all()
        return [user_from_document(_load(raw)) for raw in rows]


def save_user_row(session, user: User) -> None:
    upsert_row(
        session,
        "users",
        ("user_id",),
        {
            "user_id": user.id,
            "email": user.email,
            "username": user.username,
            "verification_token": user.email_verification_token,
            "reset_token": user.password_reset_token,
            "document_json": _dump(user_to_document(user)),
            "updated_at": dt_to_str(user.updated_at),
        },
    )


class SqlSessionRepository(_SqlRepository, SessionRepository):
    def create(self, token: str, user_id: str, expires_at: datetime) -> None:
        with self._sessions().begin() as session:
            session.execute(
                text("INSERT INTO sessions (token, user_id, expires_at) VALUES (:token, :user_id, :expires_at)"),
                {"token": token, "user_id": user_id, "expires_at": dt_to_str(expires_at)},
            )

    def get_user_id(self, token: str, now: datetime) -> Optional[str]:
        with self._sessions().begin() as session:
            row = session.execute(
                text("SELECT user_id, expires_at FROM sessions WHERE token = :token"),
                {"token": token},
            ).first()
            if row is None:
                return None
            if str_to_dt(row.expires_at) <= now:
                session.execute(text("DELETE FROM sessions WHERE token = :token"), {"token": token})
                return None
            return row.user_id

    def delete(self, token: str) -> None:
        with self._sessions().begin() as session:
            session.execute(text("DELETE FROM sessions WHERE token = :token"), {"token": token})

    def delete_for_user(self, user_id: str) -> int:
        with self._sessions().begin() as session:
            result = session.execute(text("DELETE FROM sessions WHERE user_id = :user_id"), {"user_id": user_id})
        return int(result.rowcount or 0)


class SqlCharacterRepository(_SqlRepository, CharacterRepository):
    def _select(self, where: str, params: Dict[str, Any]) -> List[Character]:
        with self._sessions()() as session:
            rows = session.execute(
                text(f"SELECT document_json FROM characters WHERE {where} ORDER BY LOWER(name)"),
                params,
            ).scalars().all()
        return [character_from_document(_load(raw)) for raw in rows]

    def get(self, character_id: str) -> Optional[Character]:
        rows = self._select("character_id = :id", {"id": character_id})
        return rows[0] if rows else None

    def get_many(self, character_ids: Sequence[str]) -> List[Character]:
        if not character_ids:
            return []
        statement = text(
            "SELECT character_id, document_json FROM characters WHERE character_id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        with self._sessions()() as session:
            rows = {row.character_id: row.document_json for row in session.execute(statement, {"ids": list(character_ids)})}
        return [character_from_document(_load(rows[cid])) for cid in character_ids if cid in rows]

    def save(self, character: Character) -> Character:
        if character.id is None:
            character.id = _new_id()
        with self._sessions().begin() as session:
            save_character_row(session, character)
        return character

    def delete(self, character_id: str) -> bool:
        with self._sessions().begin() as session:
            result = session.execute(text("DELETE FROM characters WHERE character_id = :id"), {"id": character_id})
        return result.rowcount > 0

    def list_by_owner(self, owner_id: str) -> List[Character]:
        return self._select("owner_id = :owner_id", {"owner_id": owner_id})

    def list_by_party(self, party_id: str) -> List[Character]:
        return self._select("party_id = :party_id", {"party_id": party_id})

    def list_public(self) -> List[Character]:
        return self._select("is_public = 1", {})

    def search_by_name(self, owner_id: str, query: str) -> List[Character]:
        return self._select(
            "owner_id = :owner_id AND LOWER(name) LIKE :needle",
            {"owner_id": owner_id, "needle": f"%{str(query or '').strip().lower()}%"},
        )


def save_character_row(session, character: Character) -> None:
    upsert_row(
        session,
        "characters",
        ("character_id",),
        {
            "character_id": character.id,
            "owner_id": character.owner_id,
            "party_id": character.party_id,
            "name": character.name,
            "is_public": int(character.is_public),
            "document_json": _dump(character_to_document(character)),
            "updated_at": dt_to_str(character.updated_at),
        },
    )


class SqlPartyRepository(_SqlRepository, PartyRepository):
    def _select(self, where: str, params: Dict[str, Any]) -> List[Party]:
        with self._sessions()() as session:
            rows = session.execute(
                text(f"SELECT p.document_json FROM parties p WHERE {where} ORDER BY LOWER(p.name)"),
                params,
            ).scalars().all()
        return [party_from_document(_load(raw)) for raw in rows]

    def get(self, party_id: str) -> Optional[Party]:
        rows = self._select("p.party_id = :id", {"id": party_id})
        return rows[0] if rows else None

    def save(self, party: Party) -> Party:
        if party.id is None:
            party.id = _new_id()
        with self._sessions().begin() as session:
            upsert_row(
                session,
                "parties",
                ("party_id",),
                {
                    "party_id": party.id,
                    "owner_id": party.owner_id,
                    "name": party.name,
                    "is_public": int(party.is_public),
                    "document_json": _dump(party_to_document(party)),
                    "updated_at": dt_to_str(party.updated_at),
                },
            )
            _replace_shares(session, "party_shares", "party_id", party.id, party.shared_with)
        return party

    def delete(self, party_id: str) -> bool:
        with self._sessions().begin() as session:
            session.execute(text("DELETE FROM party_shares WHERE party_id = :id"), {"id": party_id})
            result = session.execute(text("DELETE FROM parties WHERE party_id = :id"), {"id": party_id})
        return result.rowcount > 0

    def list_by_owner(self, owner_id: str) -> List[Party]:
        return self._select("p.owner_id = :owner_id", {"owner_id": owner_id})

    def list_shared_with(self, user_id: str) -> List[Party]:
        return self._select(
            "p.party_id IN (SELECT s.party_id FROM party_shares s WHERE s.user_id = :user_id)",
            {"user_id": user_id},
        )

    def list_public(self) -> List[Party]:
        return self._select("p.is_public = 1", {})


def save_encounter_row(session, encounter: Encounter) -> None:
    upsert_row(
        session,
        "encounters",
        ("encounter_id",),
        {
            "encounter_id": encounter.id,
            "owner_id": encounter.owner_id,
            "name": encounter.name,
            "status": encounter.status.value,
            "is_public": int(encounter.is_public),
            "version": encounter.version,
            "document_json": _dump(encounter_to_document(encounter)),
            "updated_at": dt_to_str(encounter.updated_at),
        },
    )
    _replace_shares(session, "encounter_shares", "encounter_id", encounter.id, encounter.shared_with)


class SqlEncounterRepository(_SqlRepository, EncounterRepository):
    def _select(self, where: str, params: Dict[str, Any]) -> List[Encounter]:
        with self._sessions()() as session:
            rows = session.execute(
                text(f"SELECT e.document_json FROM encounters e WHERE {where} ORDER BY e.updated_at DESC"),
                params,
            ).scalars().all()
        return [encounter_from_document(_load(raw)) for raw in rows]

    def get(self, encounter_id: str) -> Optional[Encounter]:
        rows = self._select("e.encounter_id = :id", {"id": encounter_id})
        return rows[0] if rows else None

    def save(self, encounter: Encounter) -> Encounter:
        if encounter.id is None:
            encounter.id = _new_id()
        with self._sessions().begin() as session:
            save_encounter_row(session, encounter)
        return encounter

    def delete(self, encounter_id: str) -> bool:
        with self._sessions().begin() as session:
            params = {"id": encounter_id}
            session.execute(text("DELETE FROM encounter_shares WHERE encounter_id = :id"), params)
            session.execute(text("DELETE FROM combat_log WHERE encounter_id = :id"), params)
            session.execute(text("DELETE FROM combat_snapshots WHERE encounter_id = :id"), params)
            result = session.execute(text("DELETE FROM encounters WHERE encounter_id = :id"), params)
        return result.rowcount > 0

    def list_by_owner(self, owner_id: str) -> List[Encounter]:
        return self._select("e.owner_id = :owner_id", {"owner_id": owner_id})

    def list_shared_with(self, user_id: str) -> List[Encounter]:
        return self._select(
            "e.encounter_id IN (SELECT s.encounter_id FROM encounter_shares s WHERE s.user_id = :user_id)",
            {"user_id": user_id},
        )

    def list_public(self) -> List[Encounter]:
        return self._select("e.is_public = 1", {})


def _next_seq(session, table: str, encounter_id: str) -> int:
    current = session.execute(
        text(f"SELECT MAX(seq) FROM {table} WHERE encounter_id = :id"),
        {"id": encounter_id},
    ).scalar()
    return int(current or 0) + 1


def append_log_rows(session, encounter_id: str, entries: Sequence[CombatLogEntry]) -> None:
    seq = _next_seq(session, "combat_log", encounter_id)
    for offset, entry in enumerate(entries):
        session.execute(
            text("INSERT INTO combat_log (encounter_id, seq, entry_json) VALUES (:id, :seq, :entry_json)"),
            {"id": encounter_id, "seq": seq + offset, "entry_json": _dump(entry.to_dict())},
        )


def clear_log_rows(session, encounter_id: str) -> None:
    session.execute(text("DELETE FROM combat_log WHERE encounter_id = :id"), {"id": encounter_id})


class SqlCombatLogRepository(_SqlRepository, CombatLogRepository):
    def append(self, encounter_id: str, entries: Sequence[CombatLogEntry]) -> None:
        with self._sessions().begin() as session:
            append_log_rows(session, encounter_id, entries)

    def list(self, encounter_id: str) -> List[CombatLogEntry]:
        with self._sessions()() as session:
            rows = session.execute(
                text("SELECT entry_json FROM combat_log WHERE encounter_id = :id ORDER BY seq"),
                {"id": encounter_id},
            ).scalars().all()
        return [log_entry_from_document(_load(raw)) for raw in rows]

    def clear(self, encounter_id: str) -> None:
        with self._sessions().begin() as session:
            clear_log_rows(session, encounter_id)


class SqlCombatSnapshotRepository(_SqlRepository, CombatSnapshotRepository):
    def save(self, snapshot: CombatSnapshot) -> None:
        with self._sessions().begin() as session:
            session.execute(
                text(
                    "INSERT INTO combat_snapshots (encounter_id, seq, snapshot_json) "
                    "VALUES (:id, :seq, :snapshot_json)"
                ),
                {
                    "id": snapshot.encounter_id,
                    "seq": _next_seq(session, "combat_snapshots", snapshot.encounter_id),
                    "snapshot_json": _dump(snapshot_to_document(snapshot)),
                },
            )

    def latest(self, encounter_id: str) -> Optional[CombatSnapshot]:
        with self._sessions()() as session:
            raw = session.execute(
                text(
                    "SELECT snapshot_json FROM combat_snapshots WHERE encounter_id = :id "
                    "ORDER BY seq DESC LIMIT 1"
                ),
                {"id": encounter_id},
            ).scalar()
        return snapshot_from_document(_load(raw)) if raw is not None else None

    def clear(self, encounter_id: str) -> None:
        with self._sessions().begin() as session:
            session.execute(text("DELETE FROM combat_snapshots WHERE encounter_id = :id"), {"id": encounter_id})


class SqlNPCTemplateRepository(_SqlRepository, NPCTemplateRepository):
    def get(self, template_id: str) -> Optional[NPCTemplate]:
        with self._sessions()() as session:
            raw = session.execute(
                text("SELECT document_json FROM npc_templates WHERE template_id = :id"),
                {"id": template_id},
            ).scalar()
        return template_from_document(_load(raw)) if raw is not None else None

    def save(self, template: NPCTemplate) -> NPCTemplate:
        if template.id is None:
            template.id = _new_id()
        with self._sessions().begin() as session:
            upsert_row(
                session,
                "npc_templates",
                ("template_id",),
                {
                    "template_id": template.id,
                    "name": template.name,
                    "is_system": int(template.is_system),
                    "created_by": template.created_by,
                    "challenge_rating": template.challenge_rating,
                    "document_json": _dump(template_to_document(template)),
                },
            )
        return template

    def delete(self, template_id: str) -> bool:
        with self._sessions().begin() as session:
            result = session.execute(text("DELETE FROM npc_templates WHERE template_id = :id"), {"id": template_id})
        return result.rowcount > 0

    def list_visible(self, user_id: Optional[str]) -> List[NPCTemplate]:
        with self._sessions()() as session:
            rows = session.execute(
                text(
                    """
                    SELECT document_json FROM npc_templates
                    WHERE is_system = 1 OR (created_by IS NOT NULL AND created_by = :user_id)
                    ORDER BY challenge_rating, LOWER(name)
                    """
                ),
                {"user_id": user_id},
            ).scalars().all()
        return [template_from_document(_load(raw)) for raw in rows]
