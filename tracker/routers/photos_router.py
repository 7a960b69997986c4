from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from tracker import photos
from tracker.codec import SymmetricCodec
from tracker.config import Settings
from tracker.database import get_db
from tracker.dependencies import get_app_settings, get_codec, get_current_user_id, get_policy
from tracker.schemas import MessageResponse, PhotoDeleteRequest, PhotoResponse
from tracker.sharing import AccessPolicy

router = APIRouter(tags=["photos"])


@router.post("/api/transaction/{transaction_id}/photo", response_model=PhotoResponse)
def attach_photo(
    transaction_id: int,
    photo: UploadFile = File(...),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    codec: SymmetricCodec = Depends(get_codec),
    policy: AccessPolicy = Depends(get_policy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Attach a .jpg/.jpeg/.png photo to one of the caller's transactions.

    Error cases:
    - 400: Disallowed extension
    - 403: Transaction belongs to someone else
    - 404: Unknown or unreadable transaction
    - 413: Larger than max_upload_bytes
    """
    url = photos.attach_photo(
        db, codec, policy,
        settings.upload_dir, settings.max_upload_bytes,
        user_id, transaction_id, photo.filename, photo.file,
    )
    return PhotoResponse(photo_url=url)


@router.delete("/api/photo", response_model=MessageResponse)
def delete_photo(
    payload: PhotoDeleteRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    policy: AccessPolicy = Depends(get_policy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Delete a photo by its URL or stored path. Owner only.
    """
    photos.delete_photo(db, policy, settings.upload_dir, user_id, payload.file_path)
    return MessageResponse(message="Photo deleted")


@router.get("/uploads/transaction/{encrypted_user_id}/{encrypted_transaction_id}/{filename}")
def get_photo(
    encrypted_user_id: str,
    encrypted_transaction_id: str,
    filename: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    codec: SymmetricCodec = Depends(get_codec),
    policy: AccessPolicy = Depends(get_policy),
    settings: Settings = Depends(get_app_settings),
):
    """
    Serve a photo to its owner or a connected viewer.

    Error cases:
    - 400: Identifier does not decrypt
    - 404: Not found, or not readable by the caller
    """
    path = photos.resolve_photo(
        db, codec, policy, settings.upload_dir,
        user_id, encrypted_user_id, encrypted_transaction_id, filename,
    )
    return FileResponse(path)
