from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from tracker.auth import PasswordParams, login as open_session, revoke_all_sessions, revoke_session
from tracker.database import get_db
from tracker.dependencies import client_ip, get_bearer_token, get_current_user_id, get_password_params
from tracker.errors import InvalidSessionError
from tracker.models import User
from tracker.schemas import LoginRequest, MessageResponse, TokenResponse, UserResponse

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    params: PasswordParams = Depends(get_password_params),
):
    """
    Authenticate user and issue a bearer token.

    Security notes:
    - Generic error message prevents username enumeration
    - Unknown usernames still pay for a hash verification
    - The token is returned once; clients send it as "Authorization: Bearer <token>"

    Error cases:
    - 400: Malformed body
    - 401: Unknown user or wrong password
    """
    token = open_session(
        db,
        payload.username,
        payload.password,
        device=request.headers.get("user-agent"),
        ip=client_ip(request),
        params=params,
    )
    return TokenResponse(token=token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    user_id: int = Depends(get_current_user_id),
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Invalidate the presenting session.

    Only the caller's own session is deleted, other devices stay logged in.
    """
    revoke_session(db, token, user_id)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout/all", response_model=MessageResponse)
def logout_everywhere(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Invalidate every session of the caller, this one included.
    """
    count = revoke_all_sessions(db, user_id)
    return MessageResponse(message=f"Logged out of {count} sessions")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Get authenticated user's information.
    """
    user = db.get(User, user_id)
    if user is None:
        # Session outlived its user; FK cascade makes this unlikely
        raise InvalidSessionError()
    return user
