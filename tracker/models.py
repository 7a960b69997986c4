from sqlalchemy import (
    Column, Integer, String, Float, Text, DateTime, ForeignKey, Index,
    UniqueConstraint, text,
)
from sqlalchemy.sql import func
from tracker.database import Base


class User(Base):
    """
    Root of ownership for every transaction, tag, photo and sharing token.

    Design notes:
    - username is unique and indexed for login lookup
    - hash_password is a self-describing Argon2 string and never leaves the database layer
    - person_name is the display name other users see through sharing
    """
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    hash_password = Column(String(255), nullable=False)
    person_name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(user_id={self.user_id}, username={self.username})>"


class Session(Base):
    """
    Server-side bearer session.

    Design notes:
    - session_code is the raw bearer token (32 random bytes, hex encoded)
    - one user may hold many sessions, one per device
    - last_used is refreshed on every authenticated request, never enforced

    Session lifecycle:
    1. Created on login
    2. Refreshed on each request
    3. Deleted on logout
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_code = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    device = Column(String(512), nullable=True)
    last_ip = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_used = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Session(id={self.id}, user_id={self.user_id})>"


class SharingToken(Base):
    """
    Standing invitation to read an owner's transactions.

    No expiry and no usage limit. Deleting it stops future redemptions only.
    """
    __tablename__ = "sharing_tokens"

    token = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserConnection(Base):
    """
    Viewer -> owner edge. user_id is the viewer, connected_user_id the owner.
    """
    __tablename__ = "user_connections"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    connected_user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, default="CAD")
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)
    merchant = Column(String(255), nullable=False)
    card = Column(String(64), nullable=False, default="")
    category = Column(String(100), nullable=False, default="Unknown")
    details = Column(Text, nullable=True)

    # Re-importing the same statement line updates instead of duplicating
    __table_args__ = (
        UniqueConstraint("user_id", "merchant", "occurred_at", "amount", name="uq_transaction_identity"),
    )

    def __repr__(self):
        return f"<Transaction(transaction_id={self.transaction_id}, user_id={self.user_id})>"


class Tag(Base):
    """
    Reusable tag name.

    user_id is NULL for globally shared tags and set to the owner when
    tags are scoped per user. Both scopes are unique on name.
    """
    __tablename__ = "tags"

    tag_id = Column(Integer, primary_key=True, index=True)
    tag_name = Column(String(100), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tag_name", "user_id", name="uq_tag_owner_name"),
        # NULLs never collide in a unique constraint, so global names need their own index
        Index(
            "uq_tag_global_name", "tag_name", unique=True,
            sqlite_where=text("user_id IS NULL"),
            postgresql_where=text("user_id IS NULL"),
        ),
    )


class TransactionTag(Base):
    __tablename__ = "transaction_tags"

    transaction_id = Column(Integer, ForeignKey("transactions.transaction_id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.tag_id", ondelete="CASCADE"), primary_key=True, index=True)


class TransactionPhoto(Base):
    """
    file_path is relative to the upload directory and already contains
    the encrypted owner and transaction ids as directory names.
    """
    __tablename__ = "transaction_photos"

    file_path = Column(String(512), primary_key=True)
    transaction_id = Column(Integer, ForeignKey("transactions.transaction_id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
