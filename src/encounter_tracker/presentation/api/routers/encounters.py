from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import Response

from encounter_tracker.application.dtos import BatchOptions, ExportOptions, ImportOptions
from encounter_tracker.application.mappers.document_mapper import encounter_to_document, participant_to_document
from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import get_container, ok, optional_user, require_user
from encounter_tracker.presentation.api.schemas import (
    AddCharactersRequest,
    ArchiveRequest,
    BatchRequest,
    ImportRequest,
    NameRequest,
    PublishRequest,
    ShareLinkRequest,
    ShareRequest,
    TemplateParticipantRequest,
    TemplateRequest,
)


router = APIRouter(prefix="/api/encounters", tags=["encounters"])


def _summaries(encounters) -> List[Dict[str, Any]]:
    return [encounter.to_summary() for encounter in encounters]


@router.get("")
def list_encounters(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    difficulty: Optional[str] = None,
    target_level: Optional[int] = Query(None, ge=1, le=20),
    tags: Optional[str] = None,
    include_shared: bool = True,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    result = container.encounters.list_encounters(
        user.id,
        page=page,
        limit=limit,
        status=status,
        difficulty=difficulty,
        target_level=target_level,
        tags=tags.split(",") if tags else None,
        include_shared=include_shared,
    )
    return ok(
        _summaries(result.items),
        pagination={"page": result.page, "limit": result.limit, "total": result.total, "total_pages": result.total_pages},
    )


@router.post("", status_code=201)
def create_encounter(
    data: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.create_encounter(user.id, data)))


@router.get("/search")
def search(q: str = Query(...), user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.encounters.search(user.id, q)))


@router.get("/public")
def public_encounters(container: Container = Depends(get_container)):
    return ok(_summaries(container.encounters.public_encounters()))


@router.get("/active")
def active_encounters(user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.encounters.active_encounters(user.id)))


@router.post("/import", status_code=201)
def import_encounter(body: ImportRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    options = ImportOptions(
        preserve_ids=body.preserve_ids,
        create_missing_characters=body.create_missing_characters,
        overwrite_existing=body.overwrite_existing,
    )
    if body.format == "xml":
        result = container.transfer.import_xml(body.data, user.id, options)
    else:
        result = container.transfer.import_json(body.data, user.id, options)
    return ok(
        {
            "encounter_id": result.encounter_id,
            "warnings": result.warnings,
            "created_characters": result.created_characters,
        }
    )


@router.post("/batch")
def batch(body: BatchRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    options = BatchOptions(**body.model_dump(exclude={"operation", "encounter_ids"}))
    return ok(container.batch.run(body.operation, body.encounter_ids, user.id, options).to_dict())


@router.get("/shared/{token}")
def shared_encounter(token: str, container: Container = Depends(get_container)):
    return ok(encounter_to_document(container.transfer.resolve_share_link(token)))


@router.get("/{encounter_id}")
def get_encounter(
    encounter_id: str,
    user: Optional[User] = Depends(optional_user),
    container: Container = Depends(get_container),
):
    encounter = container.encounters.get_encounter(encounter_id, user.id if user else None)
    return ok(encounter_to_document(encounter))


@router.put("/{encounter_id}")
def update_encounter(
    encounter_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.update_encounter(encounter_id, user.id, updates)))


@router.delete("/{encounter_id}")
def delete_encounter(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.encounters.delete_encounter(encounter_id, user.id)
    return ok(None)


@router.post("/{encounter_id}/participants", status_code=201)
def add_participant(
    encounter_id: str,
    data: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.add_participant(encounter_id, user.id, data)))


@router.put("/{encounter_id}/participants/{participant_id}")
def update_participant(
    encounter_id: str,
    participant_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    encounter = container.encounters.update_participant(encounter_id, user.id, participant_id, updates)
    return ok(encounter_to_document(encounter))


@router.delete("/{encounter_id}/participants/{participant_id}")
def remove_participant(
    encounter_id: str,
    participant_id: str,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.remove_participant(encounter_id, user.id, participant_id)))


@router.post("/{encounter_id}/characters")
def add_characters(
    encounter_id: str,
    body: AddCharactersRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    encounter = None
    if body.character_ids:
        encounter = container.encounters.add_characters(encounter_id, user.id, body.character_ids)
    if body.party_id:
        encounter = container.encounters.add_party(encounter_id, user.id, body.party_id)
    if encounter is None:
        encounter = container.encounters.get_owned(encounter_id, user.id)
    return ok(encounter_to_document(encounter))


@router.post("/{encounter_id}/monsters", status_code=201)
def add_from_template(
    encounter_id: str,
    body: TemplateParticipantRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    template = container.npc_templates.get_template(body.template_id, user.id)
    base_name = body.name or template.name
    encounter = None
    for index in range(body.count):
        name = base_name if body.count == 1 else f"{base_name} {index + 1}"
        participant = container.npc_templates.to_participant(template.id, user.id, name=name)
        encounter = container.encounters.add_participant(encounter_id, user.id, participant_to_document(participant))
    return ok(encounter_to_document(encounter))


@router.put("/{encounter_id}/settings")
def update_settings(
    encounter_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.update_settings(encounter_id, user.id, updates)))


@router.post("/{encounter_id}/duplicate", status_code=201)
def duplicate(
    encounter_id: str,
    body: NameRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.duplicate(encounter_id, user.id, body.name)))


@router.post("/{encounter_id}/archive")
def archive(
    encounter_id: str,
    body: ArchiveRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.archive(encounter_id, user.id, body.reason)))


@router.post("/{encounter_id}/publish")
def publish(
    encounter_id: str,
    body: PublishRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.publish(encounter_id, user.id, body.is_public)))


@router.post("/{encounter_id}/reset")
def reset_combat(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(encounter_to_document(container.encounters.reset_combat(encounter_id, user.id)))


@router.post("/{encounter_id}/share")
def share(
    encounter_id: str,
    body: ShareRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    encounter = container.encounters.share(encounter_id, user.id, body.user_ids, make_public=body.is_public)
    return ok(encounter_to_document(encounter))


@router.post("/{encounter_id}/unshare")
def unshare(
    encounter_id: str,
    body: ShareRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(encounter_to_document(container.encounters.unshare(encounter_id, user.id, body.user_ids)))


@router.post("/{encounter_id}/share-link")
def share_link(
    encounter_id: str,
    body: ShareLinkRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    link = container.transfer.generate_share_link(encounter_id, user.id, timedelta(hours=body.expires_in_hours))
    return ok({"token": link.token, "url": link.url, "expires_at": link.expires_at.isoformat()})


@router.get("/{encounter_id}/export")
def export_encounter(
    encounter_id: str,
    format: str = Query("json", pattern="^(json|xml)$"),
    include_character_sheets: bool = False,
    include_private_notes: bool = False,
    include_ids: bool = False,
    strip_personal_data: bool = False,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    options = ExportOptions(
        format=format,
        include_character_sheets=include_character_sheets,
        include_private_notes=include_private_notes,
        include_ids=include_ids,
        strip_personal_data=strip_personal_data,
    )
    body = container.transfer.export(encounter_id, user.id, options)
    media_type = "application/xml" if format == "xml" else "application/json"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="encounter-{encounter_id}.{format}"'},
    )


@router.post("/{encounter_id}/template", status_code=201)
def create_template(
    encounter_id: str,
    body: TemplateRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(container.transfer.create_template(encounter_id, user.id, body.name))
