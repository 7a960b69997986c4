"""
Photo attachments.

Files are stored under directories named by the encrypted owner id and
the encrypted transaction id:

    <upload_dir>/<enc(owner)>/<enc(transaction)>/photo-<hex><ext>

The path relative to upload_dir is what transaction_photos records, and
the public URL is that same path below URL_PREFIX. Raw ids never show up.
"""

import os
import secrets
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from tracker.codec import SymmetricCodec
from tracker.database import atomic
from tracker.errors import (
    NotFoundError, PayloadTooLargeError, PermissionDeniedError, ValidationError,
)
from tracker.models import Transaction, TransactionPhoto

URL_PREFIX = "/uploads/transaction/"
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png"}
CHUNK_SIZE = 64 * 1024


def photo_url(file_path: str) -> str:
    return URL_PREFIX + file_path


def _relative_path(path_or_url: str) -> str:
    if path_or_url.startswith(URL_PREFIX):
        return path_or_url[len(URL_PREFIX):]
    return path_or_url


def _is_bare_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and PurePosixPath(name).name == name and "\\" not in name


def _transaction_owner(db: Session, transaction_id: int):
    return db.execute(
        select(Transaction.user_id).where(Transaction.transaction_id == transaction_id)
    ).scalar_one_or_none()


def _copy_limited(source: BinaryIO, target: Path, max_bytes: int):
    written = 0
    with open(target, "wb") as out:
        while True:
            chunk = source.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise PayloadTooLargeError(max_bytes)
            out.write(chunk)


def attach_photo(
    db: Session,
    codec: SymmetricCodec,
    policy,
    upload_dir: str,
    max_bytes: int,
    requester_id: int,
    transaction_id: int,
    filename: str,
    source: BinaryIO,
) -> str:
    """
    Store an uploaded photo for one of the requester's transactions.

    Only the owner may attach. Returns the public URL.
    """
    owner_id = _transaction_owner(db, transaction_id)
    if owner_id is None or not policy.can_read(db, requester_id, owner_id):
        raise NotFoundError("Transaction")
    if owner_id != requester_id:
        raise PermissionDeniedError()

    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"File extension {ext or '(none)'} is not allowed")

    relative = PurePosixPath(
        codec.encrypt_id(owner_id),
        codec.encrypt_id(transaction_id),
        f"photo-{secrets.token_hex(16)}{ext}",
    )
    target = Path(upload_dir, *relative.parts)
    target.parent.mkdir(parents=True, exist_ok=True)

    try:
        _copy_limited(source, target, max_bytes)
        with atomic(db):
            db.add(TransactionPhoto(transaction_id=transaction_id, file_path=str(relative)))
    except Exception:
        target.unlink(missing_ok=True)
        raise

    logger.info("User {} attached a photo to transaction {}", requester_id, transaction_id)
    return photo_url(str(relative))


def resolve_photo(
    db: Session,
    codec: SymmetricCodec,
    policy,
    upload_dir: str,
    requester_id: int,
    encrypted_user_id: str,
    encrypted_transaction_id: str,
    filename: str,
) -> Path:
    """
    Map a public photo URL to a file the requester may read.

    Bad identifiers are 400. Everything that would confirm or deny the
    existence of someone else's photo is 404.
    """
    owner_id = codec.decrypt_id(encrypted_user_id)
    transaction_id = codec.decrypt_id(encrypted_transaction_id)
    if not _is_bare_name(filename):
        raise ValidationError("Invalid file name")

    if _transaction_owner(db, transaction_id) != owner_id:
        raise NotFoundError("Photo")
    if not policy.can_read(db, requester_id, owner_id):
        logger.warning("User {} denied photo of transaction {}", requester_id, transaction_id)
        raise NotFoundError("Photo")

    relative = str(PurePosixPath(encrypted_user_id, encrypted_transaction_id, filename))
    recorded = db.execute(
        select(TransactionPhoto.file_path).where(
            TransactionPhoto.file_path == relative,
            TransactionPhoto.transaction_id == transaction_id,
        )
    ).scalar_one_or_none()
    if recorded is None:
        raise NotFoundError("Photo")

    path = Path(upload_dir, encrypted_user_id, encrypted_transaction_id, filename)
    if not path.is_file():
        logger.warning("Photo record {} has no file on disk", relative)
        raise NotFoundError("Photo")
    return path


def delete_photo(db: Session, policy, upload_dir: str, requester_id: int, path_or_url: str):
    """Remove a photo record and its file. Only the owner may delete."""
    relative = _relative_path(path_or_url)

    with atomic(db):
        transaction_id = db.execute(
            select(TransactionPhoto.transaction_id).where(TransactionPhoto.file_path == relative)
        ).scalar_one_or_none()
        if transaction_id is None:
            raise NotFoundError("Photo")

        owner_id = _transaction_owner(db, transaction_id)
        if not policy.can_read(db, requester_id, owner_id):
            raise NotFoundError("Photo")
        if owner_id != requester_id:
            raise PermissionDeniedError()

        db.execute(delete(TransactionPhoto).where(TransactionPhoto.file_path == relative))

    remove_photo_files(upload_dir, [relative])
    logger.info("User {} deleted a photo of transaction {}", requester_id, transaction_id)


def remove_photo_files(upload_dir: str, relative_paths: list[str]):
    """Best-effort unlink; a file already gone is only logged."""
    for relative in relative_paths:
        path = Path(upload_dir, *PurePosixPath(relative).parts)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Photo file {} was already missing", relative)
