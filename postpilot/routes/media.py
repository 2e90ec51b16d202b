import os
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from postpilot.config import settings
from postpilot.db import get_db
from postpilot.logging_setup import log_event
from postpilot.models import MediaAsset, User
from postpilot.schemas import CropRequest, MediaAssetOut
from postpilot.security.auth import require_user
from postpilot.services.image_tools import crop_image, probe_image
from postpilot.services.media_rules import IG_MAX_VIDEO_BYTES, detect_media_kind, format_file_size

router = APIRouter(prefix="/api/posts/media", tags=["media"])

MAX_UPLOAD_BYTES = IG_MAX_VIDEO_BYTES
COPY_CHUNK_BYTES = 1024 * 1024

def _utcnow():
    return datetime.now(timezone.utc)

def _ensure_uploads_dir():
    os.makedirs(settings.uploads_dir, exist_ok=True)

def _stored_name(prefix: str, original: str | None) -> str:
    ext = os.path.splitext(original or "")[1].lower()
    return f"{prefix}_{int(_utcnow().timestamp())}_{uuid.uuid4().hex[:8]}{ext}"

def _public_url(filename: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/uploads/{filename}"

def _get_owned_asset(db: Session, user: User, asset_id: int) -> MediaAsset:
    asset = db.query(MediaAsset).filter(MediaAsset.id == asset_id, MediaAsset.owner_id == user.id).first()
    if not asset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    return asset

def _remove_file(path: str | None):
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            log_event("media_remove_fail", level="warning", path=path, error=str(e))

@router.get("", response_model=list[MediaAssetOut])
def list_media(db: Session = Depends(get_db), user: User = Depends(require_user)):
    return (
        db.query(MediaAsset)
        .filter(MediaAsset.owner_id == user.id)
        .order_by(MediaAsset.created_at.desc(), MediaAsset.id.desc())
        .all()
    )

@router.post("", response_model=MediaAssetOut, status_code=status.HTTP_201_CREATED)
def upload_media(
    file: UploadFile = File(...),
    duration_seconds: float | None = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    kind = detect_media_kind(file.content_type, file.filename)
    if kind not in ("image", "video"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Unsupported file type. Only images and videos are allowed.")

    _ensure_uploads_dir()
    filename = _stored_name("media", file.filename)
    local_path = os.path.join(settings.uploads_dir, filename)
    size = 0
    with open(local_path, "wb") as f:
        while True:
            chunk = file.file.read(COPY_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > MAX_UPLOAD_BYTES:
                break
            f.write(chunk)

    if size > MAX_UPLOAD_BYTES:
        _remove_file(local_path)
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            detail=f"File exceeds the {format_file_size(MAX_UPLOAD_BYTES)} limit")

    width = height = None
    if kind == "image":
        dims = probe_image(local_path)
        if dims is None:
            _remove_file(local_path)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image file could not be read")
        width, height = dims

    asset = MediaAsset(
        owner_id=user.id,
        url=_public_url(filename),
        storage_path=local_path,
        original_filename=file.filename,
        kind=kind,
        mime_type=file.content_type,
        size_bytes=size,
        width=width,
        height=height,
        duration_seconds=duration_seconds if kind == "video" else None,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    log_event("media_upload", asset_id=asset.id, kind=kind, size_bytes=size)
    return asset

@router.post("/{asset_id}/crop", response_model=MediaAssetOut, status_code=status.HTTP_201_CREATED)
def crop_media(asset_id: int, payload: CropRequest, db: Session = Depends(get_db),
               user: User = Depends(require_user)):
    asset = _get_owned_asset(db, user, asset_id)
    if asset.kind != "image":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only images can be cropped")
    if not os.path.exists(asset.storage_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media file is missing")

    filename = _stored_name("crop", asset.storage_path)
    dest = os.path.join(settings.uploads_dir, filename)
    try:
        width, height = crop_image(asset.storage_path, dest, box=payload.box(), ratio=payload.aspect_ratio)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    cropped = MediaAsset(
        owner_id=user.id,
        url=_public_url(filename),
        storage_path=dest,
        original_filename=asset.original_filename,
        kind="image",
        mime_type=asset.mime_type,
        size_bytes=os.path.getsize(dest),
        width=width,
        height=height,
    )
    db.add(cropped)
    db.commit()
    db.refresh(cropped)
    log_event("media_crop", source_asset_id=asset.id, asset_id=cropped.id, width=width, height=height)
    return cropped

@router.delete("/{asset_id}")
def delete_media(asset_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    asset = _get_owned_asset(db, user, asset_id)
    _remove_file(asset.storage_path)
    db.delete(asset)
    db.commit()
    return {"ok": True}
