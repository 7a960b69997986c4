import hashlib
from typing import Optional
from fastapi import APIRouter, Depends, Header, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from tracker import transactions
from tracker.config import Settings
from tracker.database import get_db
from tracker.dependencies import get_app_settings, get_current_user_id, get_policy
from tracker.photos import remove_photo_files
from tracker.schemas import (
    BulkCategoryRequest, BulkTagRequest, MessageResponse, TransactionCreate,
    TransactionDelete, TransactionPatch, TransactionResponse,
)
from tracker.sharing import AccessPolicy

router = APIRouter(prefix="/api", tags=["transactions"])


@router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    if_none_match: Optional[str] = Header(None),
):
    """
    The caller's transactions merged with those shared with the caller,
    newest first.

    The body hash is sent as ETag; a matching If-None-Match gets 304.
    """
    items = [
        TransactionResponse.model_validate(item).model_dump(mode="json", by_alias=True)
        for item in transactions.list_visible_transactions(db, user_id)
    ]
    response = JSONResponse(content=items)
    etag = '"%s"' % hashlib.md5(response.body).hexdigest()

    if if_none_match == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})

    response.headers["ETag"] = etag
    return response


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    One transaction the caller can read. 404 otherwise, whether or not it exists.
    """
    return transactions.get_visible_transaction(db, user_id, transaction_id)


@router.get("/categories", response_model=list[str])
def list_categories(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Category names in use on the caller's own and shared transactions.
    """
    return transactions.list_categories(db, user_id)


@router.post("/transactions/add", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def add_transactions(
    payload: list[TransactionCreate],
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """
    Add a batch of transactions owned by the caller.

    Rows matching an existing (merchant, time, amount) are updated.
    Nothing is written if any row fails.
    """
    ids = transactions.add_transactions(db, user_id, payload, settings.tag_scope)
    return MessageResponse(message=f"Stored {len(ids)} transactions")


@router.post("/transaction/update", response_model=MessageResponse)
def update_transaction(
    payload: TransactionPatch,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    policy: AccessPolicy = Depends(get_policy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Update fields and replace tags of a transaction.

    Error cases:
    - 403: Caller can read but not write the transaction
    - 404: Unknown or unreadable transaction

    Tags are committed before fields. A failing field update leaves
    the new tags in place.
    """
    transactions.update_transaction(db, policy, user_id, payload, settings.tag_scope)
    return MessageResponse(message="Transaction updated")


@router.post("/transaction/delete", response_model=MessageResponse)
def delete_transaction(
    payload: TransactionDelete,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """
    Delete one of the caller's own transactions with its photos.
    """
    photo_paths = transactions.delete_transaction(db, user_id, payload.id)
    remove_photo_files(settings.upload_dir, photo_paths)
    return MessageResponse(message="Transaction deleted")


@router.post("/transactions/tags", response_model=MessageResponse)
def manage_tags(
    payload: BulkTagRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    policy: AccessPolicy = Depends(get_policy),
    settings: Settings = Depends(get_app_settings),
):
    transactions.bulk_tag(
        db, policy, user_id, payload.transaction_ids, payload.tag, payload.action, settings.tag_scope,
    )
    return MessageResponse(message="Tags updated")


@router.post("/transactions/category", response_model=MessageResponse)
def manage_category(
    payload: BulkCategoryRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    policy: AccessPolicy = Depends(get_policy),
):
    transactions.bulk_category(db, policy, user_id, payload.transaction_ids, payload.category)
    return MessageResponse(message="Category updated")
