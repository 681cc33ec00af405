from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query

from encounter_tracker.application.mappers.document_mapper import party_to_document
from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.party import PartyRoster
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import get_container, ok, require_user
from encounter_tracker.presentation.api.schemas import MemberRequest, ShareRequest


router = APIRouter(prefix="/api/parties", tags=["parties"])


def _roster_payload(roster: PartyRoster) -> dict:
    payload = party_to_document(roster.party)
    payload["members"] = [member.to_summary() for member in roster.members]
    payload["member_count"] = roster.member_count
    payload["average_level"] = roster.average_level
    return payload


@router.get("")
def list_parties(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    include_shared: bool = True,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    result = container.parties.list_parties(user.id, page=page, limit=limit, include_shared=include_shared)
    items = [container.parties.roster(party.id, user.id).to_summary() for party in result.items]
    return ok(
        items,
        pagination={"page": result.page, "limit": result.limit, "total": result.total, "total_pages": result.total_pages},
    )


@router.post("", status_code=201)
def create_party(data: Dict[str, Any] = Body(...), user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(party_to_document(container.parties.create_party(user.id, data)))


@router.get("/public")
def public_parties(container: Container = Depends(get_container)):
    return ok([party_to_document(party) for party in container.parties.public_parties()])


@router.get("/search")
def search(q: str = Query(..., min_length=1), user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok([party_to_document(party) for party in container.parties.search(user.id, q)])


@router.get("/{party_id}")
def get_party(party_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(_roster_payload(container.parties.roster(party_id, user.id)))


@router.put("/{party_id}")
def update_party(
    party_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(party_to_document(container.parties.update_party(party_id, user.id, updates)))


@router.delete("/{party_id}")
def delete_party(party_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.parties.delete_party(party_id, user.id)
    return ok(None)


@router.post("/{party_id}/members")
def add_member(
    party_id: str,
    body: MemberRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(_roster_payload(container.parties.add_member(party_id, user.id, body.character_id)))


@router.delete("/{party_id}/members/{character_id}")
def remove_member(
    party_id: str,
    character_id: str,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(_roster_payload(container.parties.remove_member(party_id, user.id, character_id)))


@router.post("/{party_id}/share")
def share(party_id: str, body: ShareRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    party = container.parties.share(party_id, user.id, body.user_ids, make_public=body.is_public)
    return ok(party_to_document(party))


@router.post("/{party_id}/unshare")
def unshare(party_id: str, body: ShareRequest, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(party_to_document(container.parties.unshare(party_id, user.id, body.user_ids)))
