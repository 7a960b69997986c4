from typing import Optional
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session
from tracker.auth import PasswordParams, authenticate, parse_bearer
from tracker.codec import SymmetricCodec
from tracker.config import Settings
from tracker.database import get_db
from tracker.sharing import AccessPolicy


def get_app_settings(request: Request) -> Settings:
    """
    Settings the application was created with.

    Resolved once in create_app() and kept on app.state.
    """
    return request.app.state.settings


def get_codec(request: Request) -> SymmetricCodec:
    return request.app.state.codec


def get_policy(settings: Settings = Depends(get_app_settings)) -> AccessPolicy:
    return AccessPolicy(viewer_write_access=settings.viewer_write_access)


def get_password_params(settings: Settings = Depends(get_app_settings)) -> PasswordParams:
    return PasswordParams.from_settings(settings)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> int:
    """
    Resolve the bearer token to the requesting user's id.

    Every protected route depends on this. Raises 401 on a missing,
    malformed or unknown token.
    """
    return authenticate(db, authorization, ip=client_ip(request))


def get_bearer_token(authorization: Optional[str] = Header(None)) -> str:
    return parse_bearer(authorization)
