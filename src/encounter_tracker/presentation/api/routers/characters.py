from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query

from encounter_tracker.application.mappers.document_mapper import character_to_document
from encounter_tracker.application.services.character_service import CharacterPreset
from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.errors import NotFoundError
from encounter_tracker.domain.models.stats import ability_scores_from_mapping
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import get_container, ok, require_user
from encounter_tracker.presentation.api.schemas import (
    BulkCreateRequest,
    BulkUpdateRequest,
    CharacterTemplateRequest,
    IdsRequest,
    NameRequest,
)


router = APIRouter(prefix="/api/characters", tags=["characters"])


def _summaries(characters):
    return [character.to_summary() for character in characters]


@router.get("")
def list_characters(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    result = container.characters.list_characters(user.id, page=page, limit=limit)
    return ok(
        _summaries(result.items),
        pagination={"page": result.page, "limit": result.limit, "total": result.total, "total_pages": result.total_pages},
    )


@router.post("", status_code=201)
def create_character(
    data: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(character_to_document(container.characters.create_character(user.id, data)))


@router.get("/search")
def search(q: str = Query(..., min_length=1), user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.characters.search(user.id, q)))


@router.get("/public")
def public_characters(container: Container = Depends(get_container)):
    return ok(_summaries(container.characters.public_characters()))


@router.get("/class/{class_name}")
def by_class(class_name: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.characters.by_class(user.id, class_name)))


@router.get("/race/{race}")
def by_race(race: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.characters.by_race(user.id, race)))


@router.get("/type/{character_type}")
def by_type(character_type: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_summaries(container.characters.by_type(user.id, character_type)))


@router.post("/from-template", status_code=201)
def create_from_template(
    body: CharacterTemplateRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    preset = CharacterPreset(
        name=body.name,
        type=body.type,
        race=body.race,
        class_name=body.class_name,
        level=body.level,
        ability_scores=ability_scores_from_mapping(body.ability_scores),
        hit_points=body.hit_points,
        armor_class=body.armor_class,
    )
    character = container.characters.create_from_template(user.id, preset, body.customizations)
    return ok(character_to_document(character))


@router.post("/bulk", status_code=201)
def bulk_create(body: BulkCreateRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(container.characters.create_many(user.id, body.items).to_dict())


@router.put("/bulk")
def bulk_update(body: BulkUpdateRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    updates = [item.model_dump() for item in body.items]
    return ok(container.characters.update_many(user.id, updates).to_dict())


@router.post("/bulk-delete")
def bulk_delete(body: IdsRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(container.characters.delete_many(user.id, body.ids).to_dict())


@router.get("/{character_id}")
def get_character(character_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(character_to_document(container.characters.get_character(character_id, user.id)))


@router.put("/{character_id}")
def update_character(
    character_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(character_to_document(container.characters.update_character(character_id, user.id, updates)))


@router.delete("/{character_id}")
def delete_character(character_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.characters.delete_character(character_id, user.id)
    return ok(None)


@router.get("/{character_id}/permissions")
def permissions(character_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(container.characters.permissions(character_id, user.id))


@router.get("/{character_id}/{aspect}")
def character_aspect(
    character_id: str,
    aspect: str,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    readers = {
        "stats": container.characters.stats,
        "summary": container.characters.summary,
        "spellcasting": container.characters.spellcasting,
        "carrying-capacity": container.characters.carrying_capacity,
        "equipment-weight": container.characters.equipment_weight,
        "experience": container.characters.experience,
    }
    reader = readers.get(aspect)
    if reader is None:
        raise NotFoundError(f"Unknown character view: {aspect}")
    return ok(reader(character_id, user.id))


@router.post("/{character_id}/clone", status_code=201)
def clone_character(
    character_id: str,
    body: NameRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    original = container.characters.get_character(character_id, user.id)
    new_name = body.name or f"{original.name} (Copy)"
    return ok(character_to_document(container.characters.clone_character(character_id, user.id, new_name)))


@router.post("/{character_id}/template")
def create_template(
    character_id: str,
    body: NameRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    original = container.characters.get_character(character_id, user.id)
    preset = container.characters.create_template(character_id, user.id, body.name or original.name)
    return ok(preset.to_dict())
