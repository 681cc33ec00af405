from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import get_container, ok, require_admin, require_user
from encounter_tracker.presentation.api.schemas import SubscriptionRequest


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = None,
    subscription_tier: Optional[str] = None,
    admin: User = Depends(require_admin),
    container: Container = Depends(get_container),
):
    result = container.users.list_users(admin, page=page, limit=limit, role=role, subscription_tier=subscription_tier)
    return ok(
        [user.to_public_dict() for user in result.items],
        pagination={"page": result.page, "limit": result.limit, "total": result.total, "total_pages": result.total_pages},
    )


@router.get("/stats")
def user_stats(admin: User = Depends(require_admin), container: Container = Depends(get_container)):
    return ok(container.users.user_stats(admin))


@router.get("/{user_id}/profile")
def get_profile(user_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok(container.users.get_profile(user, user_id).to_public_dict())


@router.put("/{user_id}/profile")
def update_profile(
    user_id: str,
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    return ok(container.users.update_profile(user, user_id, updates).to_public_dict())


@router.put("/{user_id}/subscription")
def update_subscription(
    user_id: str,
    body: SubscriptionRequest,
    admin: User = Depends(require_admin),
    container: Container = Depends(get_container),
):
    return ok(container.users.update_subscription(admin, user_id, body.subscription_tier).to_public_dict())


@router.delete("/{user_id}")
def delete_user(user_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.users.delete_user(user, user_id)
    return ok(None)
