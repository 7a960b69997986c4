"""
Transaction reads and writes behind the authorization gate.

Reads cover the requester's own rows plus the rows of every owner the
requester is connected to. Writes check AccessPolicy.can_write inside the
same store transaction as the mutation.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable

from loguru import logger
from sqlalchemy import and_, case, delete, or_, select, update
from sqlalchemy.orm import Session

from tracker.database import atomic, upsert_insert
from tracker.errors import (
    NotFoundError, PartialUpdateError, PermissionDeniedError, TrackerError, ValidationError,
)
from tracker.models import (
    Tag, Transaction, TransactionPhoto, TransactionTag, User, UserConnection,
)
from tracker.photos import photo_url
from tracker.schemas import TransactionCreate, TransactionPatch
from tracker.sharing import AccessPolicy
from tracker.tags import apply_tags, find_tag, get_or_create_tag, link_tag, tag_scope_owner, unlink_tag


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _visible_to(requester_id: int):
    """WHERE clause: own rows or rows of an owner the requester is connected to."""
    connected_owners = select(UserConnection.connected_user_id).where(
        UserConnection.user_id == requester_id
    )
    return or_(
        Transaction.user_id == requester_id,
        Transaction.user_id.in_(connected_owners),
    )


def _serialize(db: Session, rows) -> list[dict]:
    ids = [row.Transaction.transaction_id for row in rows]
    if not ids:
        return []

    tags = defaultdict(list)
    for transaction_id, name in db.execute(
        select(TransactionTag.transaction_id, Tag.tag_name)
        .join(Tag, Tag.tag_id == TransactionTag.tag_id)
        .where(TransactionTag.transaction_id.in_(ids))
        .order_by(Tag.tag_name)
    ):
        tags[transaction_id].append(name)

    photos = defaultdict(list)
    for transaction_id, file_path in db.execute(
        select(TransactionPhoto.transaction_id, TransactionPhoto.file_path)
        .where(TransactionPhoto.transaction_id.in_(ids))
        .order_by(TransactionPhoto.created_at, TransactionPhoto.file_path)
    ):
        photos[transaction_id].append(photo_url(file_path))

    result = []
    for row in rows:
        t = row.Transaction
        result.append({
            "id": t.transaction_id,
            "amount": t.amount,
            "currency": t.currency,
            "occurred_at": _utc(t.occurred_at),
            "merchant": t.merchant,
            "person_name": row.person_name,
            "card": t.card,
            "category": t.category,
            "details": t.details,
            "tags": tags[t.transaction_id],
            "photos": photos[t.transaction_id],
        })
    return result


def list_visible_transactions(db: Session, requester_id: int) -> list[dict]:
    """
    Own and shared transactions in one list, newest first.

    One query evaluates the sharing graph and the rows together, so the
    result reflects a single snapshot and contains each row once.
    """
    rows = db.execute(
        select(Transaction, User.person_name)
        .join(User, User.user_id == Transaction.user_id)
        .where(_visible_to(requester_id))
        .order_by(Transaction.occurred_at.desc(), Transaction.transaction_id.desc())
    ).all()
    return _serialize(db, rows)


def get_visible_transaction(db: Session, requester_id: int, transaction_id: int) -> dict:
    """Missing and unreadable transactions both answer 404."""
    rows = db.execute(
        select(Transaction, User.person_name)
        .join(User, User.user_id == Transaction.user_id)
        .where(Transaction.transaction_id == transaction_id, _visible_to(requester_id))
    ).all()
    if not rows:
        raise NotFoundError("Transaction")
    return _serialize(db, rows)[0]


def list_categories(db: Session, requester_id: int) -> list[str]:
    """Distinct category names across the transactions the requester can read."""
    return list(
        db.execute(
            select(Transaction.category)
            .where(_visible_to(requester_id))
            .distinct()
            .order_by(Transaction.category)
        ).scalars()
    )


def authorize_write(
    db: Session,
    policy: AccessPolicy,
    requester_id: int,
    transaction_id: int,
) -> int:
    """
    Gate a mutation of one transaction. Returns the owner id.

    Must run inside the store transaction that performs the mutation.
    The transaction row and, for viewers, the connection row are locked
    until it commits.
    """
    owner_id = db.execute(
        select(Transaction.user_id)
        .where(Transaction.transaction_id == transaction_id)
        .with_for_update()
    ).scalar_one_or_none()

    if owner_id is None or not policy.can_read(db, requester_id, owner_id):
        raise NotFoundError("Transaction")
    if not policy.can_write(db, requester_id, owner_id, lock=True):
        logger.warning("User {} denied write on transaction {}", requester_id, transaction_id)
        raise PermissionDeniedError("You do not have permission to update this transaction")
    return owner_id


def add_transactions(
    db: Session,
    owner_id: int,
    items: Iterable[TransactionCreate],
    tag_scope: str = "global",
) -> list[int]:
    """
    Insert a batch, updating rows that already exist.

    A row is the same transaction when owner, merchant, time and amount
    match. The whole batch, tags included, is one atomic unit.
    """
    table = Transaction.__table__
    ids = []

    with atomic(db):
        for item in items:
            stmt = upsert_insert(db, table).values(
                user_id=owner_id,
                amount=item.amount,
                currency=item.currency,
                occurred_at=_utc(item.occurred_at),
                merchant=item.merchant,
                card=item.card,
                category=item.category,
                details=item.details,
            )
            # Keep existing details unless the import brings new ones
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.user_id, table.c.merchant, table.c.occurred_at, table.c.amount],
                set_={
                    "category": stmt.excluded.category,
                    "card": stmt.excluded.card,
                    "details": case(
                        (and_(stmt.excluded.details.is_not(None), stmt.excluded.details != ""), stmt.excluded.details),
                        else_=table.c.details,
                    ),
                },
            ).returning(table.c.transaction_id)

            transaction_id = db.execute(stmt).scalar_one()
            for name in item.tags:
                if name:
                    link_tag(db, transaction_id, get_or_create_tag(db, name, tag_scope_owner(tag_scope, owner_id)))
            ids.append(transaction_id)

    logger.info("User {} added {} transactions", owner_id, len(ids))
    return ids


def validate_changes(model, changes: dict):
    """Reject unknown columns and NULLs for NOT NULL columns."""
    table = model.__table__
    for name, value in changes.items():
        if name not in table.c:
            raise ValidationError(f"Unknown field {name}")
        if value is None and not table.c[name].nullable:
            raise ValidationError(f"{name} cannot be empty")


def apply_patch(db: Session, model, key_column, key, owner_id: int, changes: dict) -> int:
    """
    UPDATE only the supplied columns of one owner-scoped row.

    Columns that are NOT NULL cannot be cleared. Returns the row count.
    """
    validate_changes(model, changes)

    result = db.execute(
        update(model)
        .where(key_column == key, model.user_id == owner_id)
        .values(**changes)
    )
    return result.rowcount


def update_transaction(
    db: Session,
    policy: AccessPolicy,
    requester_id: int,
    patch: TransactionPatch,
    tag_scope: str = "global",
):
    """
    Replace tags and update fields of one transaction.

    Field values are validated before anything is written. Tags and
    fields are then two separate atomic units, each re-checking the
    gate. If the field update fails after the tags committed, the tag
    change stays and PartialUpdateError tells the caller so.
    """
    changes = patch.field_changes()
    validate_changes(Transaction, changes)
    if changes.get("occurred_at") is not None:
        changes["occurred_at"] = _utc(changes["occurred_at"])

    with atomic(db):
        owner_id = authorize_write(db, policy, requester_id, patch.id)
        if patch.tags is not None:
            apply_tags(db, patch.id, patch.tags, tag_scope_owner(tag_scope, owner_id))

    if not changes:
        return

    try:
        with atomic(db):
            owner_id = authorize_write(db, policy, requester_id, patch.id)
            if apply_patch(db, Transaction, Transaction.transaction_id, patch.id, owner_id, changes) == 0:
                raise NotFoundError("Transaction")
    except Exception as exc:
        if patch.tags is None:
            raise
        logger.opt(exception=exc).warning(
            "Transaction {} tags were updated but the field update failed", patch.id,
        )
        status_code = exc.status_code if isinstance(exc, TrackerError) else 500
        raise PartialUpdateError(status_code) from exc

    logger.info("User {} updated transaction {}", requester_id, patch.id)


def delete_transaction(db: Session, requester_id: int, transaction_id: int) -> list[str]:
    """
    Delete one of the requester's own transactions.

    Viewers cannot delete. Returns the stored photo paths so the caller
    can remove the files.
    """
    with atomic(db):
        photo_paths = list(
            db.execute(
                select(TransactionPhoto.file_path)
                .join(Transaction, Transaction.transaction_id == TransactionPhoto.transaction_id)
                .where(
                    TransactionPhoto.transaction_id == transaction_id,
                    Transaction.user_id == requester_id,
                )
            ).scalars()
        )
        result = db.execute(
            delete(Transaction).where(
                Transaction.transaction_id == transaction_id,
                Transaction.user_id == requester_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Transaction")

    logger.info("User {} deleted transaction {}", requester_id, transaction_id)
    return photo_paths


def bulk_tag(
    db: Session,
    policy: AccessPolicy,
    requester_id: int,
    transaction_ids: list[int],
    tag: str,
    action: str,
    tag_scope: str = "global",
):
    """Add or remove one tag on many transactions. All or nothing."""
    with atomic(db):
        for transaction_id in transaction_ids:
            owner_id = authorize_write(db, policy, requester_id, transaction_id)
            scope_owner = tag_scope_owner(tag_scope, owner_id)
            if action == "add":
                link_tag(db, transaction_id, get_or_create_tag(db, tag, scope_owner))
            else:
                tag_id = find_tag(db, tag, scope_owner)
                if tag_id is not None:
                    unlink_tag(db, transaction_id, tag_id)


def bulk_category(
    db: Session,
    policy: AccessPolicy,
    requester_id: int,
    transaction_ids: list[int],
    category: str,
):
    """Set the category of many transactions. All or nothing."""
    with atomic(db):
        for transaction_id in transaction_ids:
            owner_id = authorize_write(db, policy, requester_id, transaction_id)
            apply_patch(db, Transaction, Transaction.transaction_id, transaction_id, owner_id, {"category": category})
