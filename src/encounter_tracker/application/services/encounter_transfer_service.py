from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from xml.etree import ElementTree as ET

import pydantic

from encounter_tracker.application.dtos import ExportOptions, ImportOptions, ImportResult, ShareLink
from encounter_tracker.application.mappers.document_mapper import (
    character_from_document,
    character_to_document,
    combat_state_to_document,
    dt_to_str,
    participant_to_document,
    settings_from_document,
    settings_to_document,
)
from encounter_tracker.application.services.encounter_service import EncounterService
from encounter_tracker.application.transfer_schema import APP_VERSION, EXPORT_VERSION, EncounterExportDocument
from encounter_tracker.domain.errors import NotFoundError, PermissionDeniedError, ValidationError, raise_if_invalid
from encounter_tracker.domain.models.character import validate_character
from encounter_tracker.domain.models.encounter import Encounter, ParticipantReference
from encounter_tracker.domain.repositories import CharacterRepository
from encounter_tracker.infrastructure.security.share_tokens import ShareTokenSigner


logger = logging.getLogger(__name__)

SHARE_LINK_TTL = timedelta(hours=24)
XML_ROOT = "encounter_export"

# Elements always read back as lists, even with zero or one child.
XML_ARRAY_FIELDS = frozenset(
    {
        "tags",
        "participants",
        "conditions",
        "initiative_order",
        "character_sheets",
        "classes",
        "equipment",
        "spells",
    }
)
XML_ITEM_NAMES = {
    "classes": "class_level",
    "equipment": "item",
    "initiative_order": "entry",
    "character_sheets": "character_sheet",
}

# Character fields that never leave the owner's account.
_SHEET_PRIVATE_FIELDS = ("owner_id", "party_id", "is_public", "created_at", "updated_at", "level")


def _temp_id() -> str:
    return f"temp_{uuid.uuid4().hex[:12]}"


# -- XML codec -------------------------------------------------------------


def _item_name(name: str) -> str:
    if name in XML_ITEM_NAMES:
        return XML_ITEM_NAMES[name]
    return name[:-1] if name.endswith("s") and len(name) > 1 else "item"


_XML_TYPES = {"boolean": lambda text: text == "true", "integer": int, "number": float}


def _append_xml(parent: ET.Element, name: str, value: Any) -> None:
    if value is None:
        return
    element = ET.SubElement(parent, name)
    if isinstance(value, dict):
        for key, child in value.items():
            _append_xml(element, str(key), child)
    elif isinstance(value, (list, tuple)):
        for child in value:
            _append_xml(element, _item_name(name), child)
    elif isinstance(value, bool):
        element.set("type", "boolean")
        element.text = "true" if value else "false"
    elif isinstance(value, int):
        element.set("type", "integer")
        element.text = str(value)
    elif isinstance(value, float):
        element.set("type", "number")
        element.text = repr(value)
    else:
        element.text = str(value)


def document_to_xml(document: Dict[str, Any]) -> str:
    root = ET.Element(XML_ROOT)
    for key, value in document.items():
        _append_xml(root, key, value)
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def _scalar(element: ET.Element) -> Any:
    """Untyped leaves stay text; the export schema coerces typed fields."""
    text = element.text or ""
    convert = _XML_TYPES.get(element.get("type", ""))
    if convert is None:
        return text
    try:
        return convert(text.strip())
    except ValueError as exc:
        raise ValidationError(
            "Invalid XML format", code="INVALID_IMPORT_FORMAT", details=[f"{element.tag}: {exc}"]
        ) from exc


def _xml_node(element: ET.Element) -> Any:
    children = list(element)
    if element.tag in XML_ARRAY_FIELDS:
        return [_xml_node(child) for child in children]
    if not children:
        return _scalar(element)
    return {child.tag: _xml_node(child) for child in children}


def xml_to_document(xml_data: str) -> Dict[str, Any]:
    try:
        root = ET.fromstring(xml_data)
    except ET.ParseError as exc:
        raise ValidationError("Invalid XML format", code="INVALID_IMPORT_FORMAT", details=[str(exc)]) from exc
    parsed = _xml_node(root)
    return parsed if isinstance(parsed, dict) else {}


# -- service ---------------------------------------------------------------


class EncounterTransferService:
    """Export, import, templates and signed share links for encounters."""

    def __init__(
        self,
        encounters: EncounterService,
        character_repo: CharacterRepository,
        share_signer: ShareTokenSigner,
        *,
        base_url: str = "http://localhost:3000",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.encounters = encounters
        self.character_repo = character_repo
        self.share_signer = share_signer
        self.base_url = base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _shared_or_owned(self, encounter_id: str, user_id: str, action: str) -> Encounter:
        encounter = self.encounters.get_encounter(encounter_id, user_id)
        if encounter.owner_id != user_id and user_id not in encounter.shared_with:
            raise PermissionDeniedError(f"You do not have permission to {action} this encounter")
        return encounter

    # -- export ------------------------------------------------------------

    @staticmethod
    def _participant_document(participant: ParticipantReference, options: ExportOptions, alias) -> Dict[str, Any]:
        document = participant_to_document(participant)
        document["id"] = alias(document.pop("character_id"))
        if not options.include_private_notes:
            document["notes"] = ""
        return document

    def _character_sheets(self, encounter: Encounter, options: ExportOptions, alias) -> List[Dict[str, Any]]:
        ids = [p.character_id for p in encounter.participants]
        sheets = []
        for character in self.character_repo.get_many(ids):
            sheet = character_to_document(character)
            for key in _SHEET_PRIVATE_FIELDS:
                sheet.pop(key, None)
            sheet["id"] = alias(str(character.id))
            if options.strip_personal_data:
                sheet["backstory"] = ""
            if not options.include_private_notes or options.strip_personal_data:
                sheet["notes"] = ""
            sheets.append(sheet)
        return sheets

    def build_export(self, encounter_id: str, user_id: str, options: Optional[ExportOptions] = None) -> Dict[str, Any]:
        options = options or ExportOptions()
        if options.format not in ("json", "xml"):
            raise ValidationError(f"Unsupported export format: {options.format}", code="INVALID_EXPORT_FORMAT")
        encounter = self._shared_or_owned(encounter_id, user_id, "export")
        aliases: Dict[str, str] = {}

        def alias(real_id: str) -> str:
            # Stable within one export.
            return real_id if options.include_ids else aliases.setdefault(real_id, _temp_id())

        body: Dict[str, Any] = {
            "name": encounter.name,
            "description": encounter.description,
            "tags": list(encounter.tags),
            "difficulty": encounter.difficulty.value if encounter.difficulty else None,
            "estimated_duration": encounter.estimated_duration,
            "target_level": encounter.target_level,
            "status": encounter.status.value,
            "is_public": encounter.is_public,
            "settings": settings_to_document(encounter.settings),
            "participants": [self._participant_document(p, options, alias) for p in encounter.participants],
        }
        state = encounter.combat_state
        if state.is_active:
            combat = combat_state_to_document(state)
            for key in ("turn_started_at", "paused_duration"):
                combat.pop(key, None)
            for entry in combat["initiative_order"]:
                entry["participant_id"] = alias(entry["participant_id"])
            body["combat_state"] = combat
        if options.include_character_sheets:
            body["character_sheets"] = self._character_sheets(encounter, options, alias)

        return {
            "metadata": {
                "exported_at": dt_to_str(self._clock()),
                "exported_by": "" if options.strip_personal_data else user_id,
                "format": options.format,
                "version": EXPORT_VERSION,
                "app_version": APP_VERSION,
            },
            "encounter": body,
        }

    def export_json(self, encounter_id: str, user_id: str, options: Optional[ExportOptions] = None) -> str:
        options = replace(options or ExportOptions(), format="json")
        return json.dumps(self.build_export(encounter_id, user_id, options), indent=2)

    def export_xml(self, encounter_id: str, user_id: str, options: Optional[ExportOptions] = None) -> str:
        options = replace(options or ExportOptions(), format="xml")
        return document_to_xml(self.build_export(encounter_id, user_id, options))

    def export(self, encounter_id: str, user_id: str, options: Optional[ExportOptions] = None) -> str:
        options = options or ExportOptions()
        if options.format == "xml":
            return self.export_xml(encounter_id, user_id, options)
        return self.export_json(encounter_id, user_id, options)

    # -- import ------------------------------------------------------------

    @staticmethod
    def _validated(document: Any) -> EncounterExportDocument:
        try:
            return EncounterExportDocument.model_validate(document)
        except pydantic.ValidationError as exc:
            details = [".".join(str(part) for part in err["loc"]) + f": {err['msg']}" for err in exc.errors()]
            raise ValidationError("Invalid import format", code="INVALID_IMPORT_FORMAT", details=details) from exc

    def import_json(self, json_data: str, user_id: str, options: Optional[ImportOptions] = None) -> ImportResult:
        try:
            document = json.loads(json_data)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid JSON format", code="INVALID_IMPORT_FORMAT", details=[str(exc)]) from exc
        return self.import_document(document, user_id, options)

    def import_xml(self, xml_data: str, user_id: str, options: Optional[ImportOptions] = None) -> ImportResult:
        return self.import_document(xml_to_document(xml_data), user_id, options)

    def import_document(self, document: Any, user_id: str, options: Optional[ImportOptions] = None) -> ImportResult:
        options = options or ImportOptions()
        data = self._validated(document).encounter
        warnings: List[str] = []
        created: List[str] = []
        id_map: Dict[str, str] = {}

        sheets = data.character_sheets or []
        if sheets and not options.create_missing_characters:
            warnings.append(f"Skipped {len(sheets)} character sheet(s)")
            sheets = []
        for sheet in sheets:
            character = self._import_character(sheet, user_id)
            id_map[str(sheet.get("id", ""))] = character.id
            created.append(character.id)

        participants: List[ParticipantReference] = []
        seen: set[str] = set()
        for raw in data.participants:
            document = raw.model_dump()
            exported_id = document.pop("id")
            participant_id = id_map.get(exported_id) or (exported_id if options.preserve_ids else uuid.uuid4().hex)
            if participant_id in seen:
                warnings.append(f"Duplicate participant id {participant_id} replaced")
                participant_id = uuid.uuid4().hex
            seen.add(participant_id)
            document["character_id"] = participant_id
            participants.append(ParticipantReference(**document))

        values = {
            "name": data.name,
            "description": data.description,
            "tags": list(data.tags),
            "difficulty": data.difficulty,
            "estimated_duration": data.estimated_duration,
            "target_level": data.target_level,
            "is_public": data.is_public,
        }
        existing = self._overwrite_target(user_id, data.name) if options.overwrite_existing else None
        if existing is not None:
            encounter = Encounter(
                id=existing.id,
                owner_id=user_id,
                party_id=existing.party_id,
                shared_with=existing.shared_with,
                version=existing.version,
                created_at=existing.created_at,
                **values,
            )
        else:
            encounter = Encounter(id=None, owner_id=user_id, **values)
        encounter.participants = participants
        encounter.settings = settings_from_document(data.settings.model_dump())
        saved = self.encounters.save(encounter)
        logger.info(
            "Encounter imported",
            extra={"encounter_id": saved.id, "overwritten": existing is not None, "characters": len(created)},
        )
        return ImportResult(encounter_id=saved.id, warnings=warnings, created_characters=created)

    def _overwrite_target(self, user_id: str, name: str) -> Optional[Encounter]:
        wanted = name.strip().lower()
        for encounter in self.encounters.encounter_repo.list_by_owner(user_id):
            if encounter.name.lower() == wanted and not encounter.is_active:
                return encounter
        return None

    def _import_character(self, sheet: Dict[str, Any], user_id: str):
        document = dict(sheet)
        document.update({"id": None, "owner_id": user_id, "is_public": False, "party_id": None})
        try:
            character = character_from_document(document)
        except (TypeError, ValueError, KeyError) as exc:
            raise ValidationError("Invalid character sheet", code="INVALID_IMPORT_FORMAT", details=[str(exc)]) from exc
        raise_if_invalid(validate_character(character), "Invalid character sheet")
        now = self._clock()
        character.created_at = now
        character.updated_at = now
        return self.character_repo.save(character)

    # -- templates ---------------------------------------------------------

    def create_template(self, encounter_id: str, user_id: str, template_name: str) -> Dict[str, Any]:
        """Export a reusable, combat-free copy of an encounter."""
        options = ExportOptions(
            include_character_sheets=False, include_private_notes=False, include_ids=False, strip_personal_data=True
        )
        document = self.build_export(encounter_id, user_id, options)
        body = document["encounter"]
        body["description"] = f"Template created from: {body['name']}"
        body["name"] = template_name
        body["status"] = "draft"
        body["is_public"] = False
        body.pop("combat_state", None)
        for participant in body["participants"]:
            participant["current_hit_points"] = participant["max_hit_points"]
            participant["temporary_hit_points"] = 0
            participant["initiative"] = None
            participant["conditions"] = []
            participant["notes"] = ""
        return document

    # -- share links -------------------------------------------------------

    def generate_share_link(
        self, encounter_id: str, user_id: str, expires_in: timedelta = SHARE_LINK_TTL
    ) -> ShareLink:
        encounter = self._shared_or_owned(encounter_id, user_id, "share")
        if expires_in <= timedelta(0):
            raise ValidationError("Share link lifetime must be positive")
        expires_at = self._clock() + expires_in
        token = self.share_signer.sign(str(encounter.id), expires_at)
        return ShareLink(token=token, url=f"{self.base_url}/encounters/shared/{token}", expires_at=expires_at)

    def resolve_share_link(self, token: str) -> Encounter:
        verified = self.share_signer.verify(token, self._clock())
        encounter = self.encounters.encounter_repo.get(verified[0]) if verified else None
        if encounter is None:
            raise NotFoundError("Share link is invalid or has expired", code="SHARE_LINK_INVALID")
        return encounter
