from typing import Optional

from fastapi import APIRouter, Depends

from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.user import User
from encounter_tracker.presentation.api.dependencies import bearer_token, get_container, ok, require_user
from encounter_tracker.presentation.api.schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
)


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
def register(body: RegisterRequest, container: Container = Depends(get_container)):
    user = container.auth.register(**body.model_dump())
    return ok(user.to_public_dict(), message="Registration successful. Please check your email to verify your account.")


@router.post("/login")
def login(body: LoginRequest, container: Container = Depends(get_container)):
    result = container.auth.authenticate(body.email, body.password)
    return ok(
        {
            "user": result.user.to_public_dict(),
            "token": result.session_token,
            "expires_at": result.expires_at.isoformat(),
            "requires_verification": result.requires_verification,
        }
    )


@router.post("/logout")
def logout(token: Optional[str] = Depends(bearer_token), container: Container = Depends(get_container)):
    if token:
        container.auth.logout(token)
    return ok(None)


@router.get("/me")
def me(user: User = Depends(require_user)):
    return ok(user.to_public_dict())


@router.post("/verify-email")
def verify_email(body: TokenRequest, container: Container = Depends(get_container)):
    return ok(container.auth.verify_email(body.token).to_public_dict())


@router.post("/resend-verification")
def resend_verification(body: EmailRequest, container: Container = Depends(get_container)):
    container.auth.resend_verification(body.email)
    return ok(None, message="Verification email sent")


@router.post("/reset-password-request")
def reset_password_request(body: EmailRequest, container: Container = Depends(get_container)):
    container.auth.request_password_reset(body.email)
    # Same answer whether or not the email is registered.
    return ok(None, message="If an account exists for that email, a reset link has been sent")


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest, container: Container = Depends(get_container)):
    container.auth.reset_password(body.token, body.password, body.confirm_password)
    return ok(None, message="Password has been reset")


@router.post("/change-password")
def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.auth.change_password(user.id, body.current_password, body.new_password)
    return ok(None, message="Password changed; please sign in again")
