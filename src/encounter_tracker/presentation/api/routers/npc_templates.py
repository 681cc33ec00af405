from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from encounter_tracker.application.mappers.document_mapper import template_to_document
from encounter_tracker.application.services.npc_template_service import TemplateFilters
from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import get_container, ok, optional_user, require_user
from encounter_tracker.presentation.api.schemas import Open5eImportRequest, TemplateImportRequest, VariantRequest


router = APIRouter(prefix="/api/npc-templates", tags=["npc-templates"])


@router.get("")
def list_templates(
    category: Optional[str] = None,
    min_cr: Optional[float] = Query(None, ge=0, le=30),
    max_cr: Optional[float] = Query(None, ge=0, le=30),
    search: Optional[str] = None,
    size: Optional[str] = None,
    is_system: Optional[bool] = None,
    user: Optional[User] = Depends(optional_user),
    container: Container = Depends(get_container),
):
    filters = TemplateFilters(
        category=category, min_cr=min_cr, max_cr=max_cr, search=search, size=size, is_system=is_system
    )
    templates = container.npc_templates.list_templates(user.id if user else None, filters)
    return ok([template_to_document(template) for template in templates])


@router.get("/by-category")
def templates_by_category(user: Optional[User] = Depends(optional_user), container: Container = Depends(get_container)):
    grouped = container.npc_templates.templates_by_category(user.id if user else None)
    return ok({category: [template_to_document(t) for t in rows] for category, rows in grouped.items()})


@router.post("", status_code=201)
def create_template(
    data: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(template_to_document(container.npc_templates.import_template(data, "custom", user.id)))


@router.post("/import", status_code=201)
def import_template(
    body: TemplateImportRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(template_to_document(container.npc_templates.import_template(body.data, body.format, user.id)))


@router.get("/open5e")
def search_open5e(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(container.npc_templates.search_open5e_monsters(search, page))


@router.post("/open5e", status_code=201)
def import_open5e(
    body: Open5eImportRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(template_to_document(container.npc_templates.import_open5e_monster(body.slug, user.id)))


@router.get("/{template_id}")
def get_template(
    template_id: str,
    user: Optional[User] = Depends(optional_user),
    container: Container = Depends(get_container),
):
    return ok(template_to_document(container.npc_templates.get_template(template_id, user.id if user else None)))


@router.put("/{template_id}")
def update_template(
    template_id: str,
    data: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(template_to_document(container.npc_templates.update_template(template_id, user.id, data)))


@router.delete("/{template_id}")
def delete_template(template_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.npc_templates.delete_template(template_id, user.id)
    return ok(None)


@router.post("/{template_id}/variants", status_code=201)
def create_variant(
    template_id: str,
    body: VariantRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    variant = container.npc_templates.create_variant(template_id, body.variant_type, user.id)
    return ok(template_to_document(variant))
