"""
Sharing graph and the authorization gate.

An owner hands out sharing tokens. Redeeming one creates a viewer -> owner
connection, which lets the viewer read everything the owner owns. Tokens
are standing invitations: they never expire and can be redeemed any number
of times until the owner revokes them. Revoking a token does not touch
connections that already exist; only the viewer can remove those.
"""

from dataclasses import dataclass
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from tracker.auth import generate_token
from tracker.codec import SymmetricCodec
from tracker.database import atomic, upsert_insert
from tracker.errors import NotFoundError, ValidationError
from tracker.models import SharingToken, User, UserConnection


def create_sharing_token(db: Session, owner_id: int) -> str:
    token = generate_token()
    with atomic(db):
        db.add(SharingToken(token=token, user_id=owner_id))
    logger.info("User {} created a sharing token", owner_id)
    return token


def list_sharing_tokens(db: Session, owner_id: int) -> list[str]:
    return list(
        db.execute(
            select(SharingToken.token)
            .where(SharingToken.user_id == owner_id)
            .order_by(SharingToken.created_at, SharingToken.token)
        ).scalars()
    )


def revoke_token(db: Session, owner_id: int, token: str) -> bool:
    """
    Delete one of the owner's tokens.

    Idempotent. Connections created through the token stay in place.
    """
    with atomic(db):
        result = db.execute(
            delete(SharingToken).where(
                SharingToken.token == token,
                SharingToken.user_id == owner_id,
            )
        )
    if result.rowcount:
        logger.info("User {} revoked a sharing token", owner_id)
    return result.rowcount > 0


def redeem_token(db: Session, viewer_id: int, token: str) -> int:
    """
    Connect viewer to the token's owner. Returns the owner id.

    Redeeming the same token twice leaves a single connection.
    """
    with atomic(db):
        owner_id = db.execute(
            select(SharingToken.user_id).where(SharingToken.token == token)
        ).scalar_one_or_none()

        if owner_id is None:
            raise NotFoundError("Sharing token")
        if owner_id == viewer_id:
            raise ValidationError("Cannot redeem your own sharing token")

        stmt = upsert_insert(db, UserConnection.__table__).values(
            user_id=viewer_id,
            connected_user_id=owner_id,
        ).on_conflict_do_nothing()
        db.execute(stmt)

    logger.info("User {} connected to user {}", viewer_id, owner_id)
    return owner_id


def unsubscribe(db: Session, codec: SymmetricCodec, viewer_id: int, encrypted_owner_id: str):
    """
    Remove the viewer's connection to an owner.

    The owner is named by an opaque id so raw user ids never reach the client.
    """
    if not encrypted_owner_id:
        raise ValidationError("Encrypted user ID is required")

    owner_id = codec.decrypt_id(encrypted_owner_id)

    with atomic(db):
        result = db.execute(
            delete(UserConnection).where(
                UserConnection.user_id == viewer_id,
                UserConnection.connected_user_id == owner_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Subscription")

    logger.info("User {} unsubscribed from user {}", viewer_id, owner_id)


def list_connections(db: Session, codec: SymmetricCodec, viewer_id: int) -> list[dict]:
    """Owners whose transactions the viewer can see."""
    rows = db.execute(
        select(User.user_id, User.person_name)
        .join(UserConnection, UserConnection.connected_user_id == User.user_id)
        .where(UserConnection.user_id == viewer_id)
        .order_by(User.person_name, User.user_id)
    ).all()
    return [
        {"person_name": row.person_name, "encrypted_user_id": codec.encrypt_id(row.user_id)}
        for row in rows
    ]


def list_subscribers(db: Session, owner_id: int) -> list[str]:
    """Names of viewers connected to the owner."""
    return list(
        db.execute(
            select(User.person_name)
            .join(UserConnection, UserConnection.user_id == User.user_id)
            .where(UserConnection.connected_user_id == owner_id)
            .order_by(User.person_name)
        ).scalars()
    )


def is_connected(db: Session, viewer_id: int, owner_id: int, lock: bool = False) -> bool:
    stmt = select(UserConnection.user_id).where(
        UserConnection.user_id == viewer_id,
        UserConnection.connected_user_id == owner_id,
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).first() is not None


def visible_owner_ids(db: Session, requester_id: int) -> set[int]:
    """The requester plus every owner the requester is connected to."""
    owners = set(
        db.execute(
            select(UserConnection.connected_user_id).where(UserConnection.user_id == requester_id)
        ).scalars()
    )
    owners.add(requester_id)
    return owners


@dataclass(frozen=True)
class AccessPolicy:
    """
    Read and write predicates over owner-scoped data.

    Read: owner, or a viewer connected to the owner.
    Write: owner only, unless viewer_write_access is set, in which case
    connected viewers may write as well.
    """
    viewer_write_access: bool = False

    def can_read(self, db: Session, requester_id: int, owner_id: int) -> bool:
        if requester_id == owner_id:
            return True
        return is_connected(db, requester_id, owner_id)

    def can_write(self, db: Session, requester_id: int, owner_id: int, lock: bool = False) -> bool:
        """
        Call inside the same store transaction as the mutation it guards.

        With lock=True the connection row is read FOR UPDATE, so an
        unsubscribe running concurrently waits for the write to finish.
        """
        if requester_id == owner_id:
            return True
        if not self.viewer_write_access:
            return False
        return is_connected(db, requester_id, owner_id, lock=lock)
