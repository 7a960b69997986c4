"""
Tag reconciliation.

Moves a transaction's tag set to a requested set with the fewest link
changes. Tag rows themselves are shared and never deleted here.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from tracker.database import atomic, upsert_insert
from tracker.models import Tag, TransactionTag


@dataclass
class TagDiff:
    to_create: set[str] = field(default_factory=set)
    to_delete: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete


def diff_tags(current: Iterable[str], desired: Iterable[str]) -> TagDiff:
    """Set difference in both directions. Empty names in desired are ignored."""
    current_set = set(current)
    desired_set = {name for name in desired if name}
    return TagDiff(
        to_create=desired_set - current_set,
        to_delete=current_set - desired_set,
    )


def tag_scope_owner(tag_scope: str, owner_id: int) -> Optional[int]:
    """Owner column value for tags created under the configured scope."""
    return owner_id if tag_scope == "user" else None


def _scope_filter(owner_id: Optional[int]):
    return Tag.user_id.is_(None) if owner_id is None else Tag.user_id == owner_id


def find_tag(db: Session, name: str, owner_id: Optional[int] = None) -> Optional[int]:
    return db.execute(
        select(Tag.tag_id).where(Tag.tag_name == name, _scope_filter(owner_id))
    ).scalar_one_or_none()


def get_or_create_tag(db: Session, name: str, owner_id: Optional[int] = None) -> int:
    """
    Resolve a tag name to its id, creating the row if needed.

    INSERT .. ON CONFLICT DO NOTHING followed by a lookup: two requests
    creating the same name end up with one row. Does not commit.
    """
    stmt = upsert_insert(db, Tag.__table__).values(tag_name=name, user_id=owner_id).on_conflict_do_nothing()
    db.execute(stmt)
    return db.execute(
        select(Tag.tag_id).where(Tag.tag_name == name, _scope_filter(owner_id))
    ).scalar_one()


def current_tags(db: Session, transaction_id: int) -> dict[str, int]:
    rows = db.execute(
        select(Tag.tag_name, Tag.tag_id)
        .join(TransactionTag, TransactionTag.tag_id == Tag.tag_id)
        .where(TransactionTag.transaction_id == transaction_id)
    ).all()
    return {row.tag_name: row.tag_id for row in rows}


def link_tag(db: Session, transaction_id: int, tag_id: int):
    stmt = upsert_insert(db, TransactionTag.__table__).values(
        transaction_id=transaction_id, tag_id=tag_id,
    ).on_conflict_do_nothing()
    db.execute(stmt)


def unlink_tag(db: Session, transaction_id: int, tag_id: int):
    db.execute(
        delete(TransactionTag).where(
            TransactionTag.transaction_id == transaction_id,
            TransactionTag.tag_id == tag_id,
        )
    )


def apply_tags(db: Session, transaction_id: int, desired: Iterable[str], owner_id: Optional[int]) -> TagDiff:
    """Reconcile inside the caller's store transaction. Does not commit."""
    existing = current_tags(db, transaction_id)
    diff = diff_tags(existing.keys(), desired)

    for name in diff.to_delete:
        unlink_tag(db, transaction_id, existing[name])

    for name in diff.to_create:
        link_tag(db, transaction_id, get_or_create_tag(db, name, owner_id))

    return diff


def reconcile_tags(db: Session, transaction_id: int, desired: Iterable[str], owner_id: Optional[int] = None) -> TagDiff:
    """
    Move the transaction's links to exactly the desired names, atomically.

    Either every link change is committed or none is.
    """
    with atomic(db):
        diff = apply_tags(db, transaction_id, desired, owner_id)

    if not diff.is_empty:
        logger.debug(
            "Transaction {} tags: +{} -{}",
            transaction_id, sorted(diff.to_create), sorted(diff.to_delete),
        )
    return diff
