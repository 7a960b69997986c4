from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from tracker import sharing
from tracker.codec import SymmetricCodec
from tracker.database import get_db
from tracker.dependencies import get_codec, get_current_user_id
from tracker.schemas import (
    ConnectionResponse, MessageResponse, SharingTokenRequest, TokenResponse, UnsubscribeRequest,
)

router = APIRouter(prefix="/api/sharing", tags=["sharing"])


@router.post("/token", response_model=TokenResponse)
def create_token(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Mint a sharing token for the caller.

    Anyone who redeems it can read the caller's transactions until they
    unsubscribe. The token has no expiry and no redemption limit.
    """
    return TokenResponse(token=sharing.create_sharing_token(db, user_id))


@router.get("/tokens", response_model=list[str])
def list_tokens(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return sharing.list_sharing_tokens(db, user_id)


@router.post("/token/revoke", response_model=MessageResponse)
def revoke_token(
    payload: SharingTokenRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Stop a token from creating new connections.

    Existing connections are kept. Revoking an unknown token is not an error.
    """
    sharing.revoke_token(db, user_id, payload.token)
    return MessageResponse(message="Sharing token revoked")


@router.post("/connections/add", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def add_connection(
    payload: SharingTokenRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Redeem a sharing token.

    Error cases:
    - 400: Own token
    - 404: Unknown or revoked token
    """
    sharing.redeem_token(db, user_id, payload.token)
    return MessageResponse(message="Connected")


@router.get("/connections", response_model=list[ConnectionResponse])
def list_connections(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    codec: SymmetricCodec = Depends(get_codec),
):
    """
    Users whose transactions the caller can see.

    Each carries an opaque id to pass back to /unsubscribe.
    """
    return sharing.list_connections(db, codec, user_id)


@router.get("/subscriptions", response_model=list[str])
def list_subscriptions(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Names of users who can see the caller's transactions.
    """
    return sharing.list_subscribers(db, user_id)


@router.post("/unsubscribe", response_model=MessageResponse)
def unsubscribe(
    payload: UnsubscribeRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    codec: SymmetricCodec = Depends(get_codec),
):
    """
    Drop the caller's connection to another user.

    Error cases:
    - 400: Missing, malformed or tampered encryptedUserId
    - 404: No such connection
    """
    sharing.unsubscribe(db, codec, user_id, payload.encrypted_user_id)
    return MessageResponse(message="Unsubscribed")
