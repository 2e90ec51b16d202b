from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.errors import ValidationFailed
from postpilot.logging_setup import log_event
from postpilot.models import Client, Post, User, DEFAULT_TAG_COLOR
from postpilot.schemas import HashtagRequest, PostCreate, PostListOut, PostOut, PostUpdate, ValidateRequest
from postpilot.security.auth import require_user
from postpilot.services.capabilities import (
    available_platforms,
    available_post_types,
    client_permissions,
    connection_status,
    recommendations,
    validate_selection,
)
from postpilot.services.hashtags import suggest_hashtags
from postpilot.services.media_rules import derive_post_format
from postpilot.services.post_workflow import media_infos, require_valid_post, validate_composer
from postpilot.services.publisher import publish_and_record
from postpilot.services.scheduling import as_utc, suggested_times, time_until, validate_scheduled_time
from .clients import get_owned_client

router = APIRouter(prefix="/api/posts", tags=["posts"])

MAX_PAGE_SIZE = 200
PUBLISHED_EDITABLE_FIELDS = ("tags", "location")

def _utcnow():
    return datetime.now(timezone.utc)

def _normalize_tags(tags) -> list[dict]:
    out = []
    for tag in tags or []:
        name = (tag.get("name") if isinstance(tag, dict) else tag.name).strip()
        color = (tag.get("color") if isinstance(tag, dict) else tag.color) or DEFAULT_TAG_COLOR
        if name:
            out.append({"name": name, "color": color})
    return out

def _get_owned_post(db: Session, user: User, post_id: int) -> Post:
    post = db.query(Post).filter(Post.id == post_id, Post.owner_id == user.id).first()
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post

def _check_schedule(when: datetime, post_type: str, platform: str) -> str | None:
    result = validate_scheduled_time(when, post_type, platform)
    if not result["is_valid"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result["error"])
    return result.get("warning")

def _format_for(db: Session, user: User, media_urls: list[str]) -> str:
    return derive_post_format(media_infos(db, user.id, media_urls))

def _ensure_valid(data: dict, client: Client | None, is_draft: bool = False):
    try:
        require_valid_post(data, client, is_draft=is_draft)
    except ValidationFailed as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": str(e), "errors": e.errors},
        )

@router.get("", response_model=PostListOut)
def list_posts(
    status_filter: str | None = Query(None, alias="status"),
    client_id: int | None = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    skip: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    q = db.query(Post).filter(Post.owner_id == user.id)
    if status_filter:
        q = q.filter(Post.status == status_filter)
    if client_id is not None:
        q = q.filter(Post.client_id == client_id)

    total = q.count()
    posts = q.order_by(Post.created_at.desc(), Post.id.desc()).offset(skip).limit(limit).all()
    return {"posts": posts, "total": total}

@router.get("/stats/count")
def post_stats(db: Session = Depends(get_db), user: User = Depends(require_user)):
    posts = db.query(Post.status).filter(Post.owner_id == user.id).all()
    statuses = [row[0] for row in posts]
    return {
        "total": len(statuses),
        "scheduled": statuses.count("scheduled"),
        "published": statuses.count("published"),
        "draft": statuses.count("draft"),
        "failed": statuses.count("failed"),
    }

@router.get("/clients/{client_id}/permissions")
def get_permissions(client_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, client_id)
    permissions = client_permissions(client)
    permissions["recommendations"] = recommendations(permissions)
    return permissions

@router.get("/clients/{client_id}/capabilities")
def get_capabilities(
    client_id: int,
    platform: str | None = None,
    post_type: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    client = get_owned_client(db, user, client_id)
    permissions = client_permissions(client)
    platforms = available_platforms(client, permissions)
    selected = platform or platforms[0]
    return {
        "permissions": permissions,
        "available_platforms": platforms,
        "available_post_types": available_post_types(selected, permissions),
        "validation": validate_selection(client, selected, post_type or "post"),
        "connection_status": connection_status(client),
    }

@router.post("/validate")
def validate_post(payload: ValidateRequest, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, payload.client_id)
    return validate_composer(db, user.id, client, payload.model_dump())

@router.post("/hashtags/suggest")
def hashtag_suggestions(payload: HashtagRequest, user: User = Depends(require_user)):
    return suggest_hashtags(payload.caption, payload.existing, payload.category)

@router.get("/scheduling/suggestions")
def scheduling_suggestions(tz: str | None = None, user: User = Depends(require_user)):
    return {"suggestions": suggested_times(tz_name=tz)}

@router.post("", response_model=PostOut, status_code=status.HTTP_201_CREATED)
def create_post(payload: PostCreate, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, payload.client_id)
    content = (payload.content or payload.caption or "").strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Content is required")

    is_draft = payload.is_draft or (not payload.publish_immediately and payload.scheduled_time is None)
    _ensure_valid(payload.model_dump(), client, is_draft=is_draft)

    scheduled_time = None
    if payload.scheduled_time is not None and not payload.publish_immediately and not payload.is_draft:
        _check_schedule(payload.scheduled_time, payload.post_type, payload.platform)
        scheduled_time = as_utc(payload.scheduled_time)

    post = Post(
        owner_id=user.id,
        client_id=client.id,
        platform=payload.platform,
        post_type=payload.post_type,
        format=_format_for(db, user, payload.media_urls),
        content=content,
        caption=payload.caption if payload.caption is not None else content,
        hashtags=[h.lstrip("#") for h in payload.hashtags if h.strip()],
        tags=_normalize_tags(payload.tags),
        location=payload.location,
        media_urls=payload.media_urls,
        scheduled_time=scheduled_time,
        status="scheduled" if scheduled_time else "draft",
        publishing_errors=[],
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    log_event("post_create", post_id=post.id, client_id=client.id, status=post.status,
              platform=post.platform, post_type=post.post_type)

    if payload.publish_immediately and not payload.is_draft:
        post = publish_and_record(db, post)
    return post

@router.get("/{post_id}", response_model=PostOut)
def get_post(post_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    return _get_owned_post(db, user, post_id)

@router.put("/{post_id}", response_model=PostOut)
def update_post(post_id: int, payload: PostUpdate, db: Session = Depends(get_db),
                user: User = Depends(require_user)):
    post = _get_owned_post(db, user, post_id)
    changes = payload.model_dump(exclude_unset=True)
    if "content" in changes:
        changes["content"] = changes["content"].strip()
        if not changes["content"]:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Content is required")

    if post.status == "published":
        changes = {k: v for k, v in changes.items() if k in PUBLISHED_EDITABLE_FIELDS}
        if not changes:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Published posts can only have metadata updated")
    else:
        client_id = changes.get("client_id", post.client_id)
        client = get_owned_client(db, user, client_id) if client_id else None
        merged = {
            "platform": changes.get("platform", post.platform),
            "post_type": changes.get("post_type", post.post_type),
            "media_urls": changes.get("media_urls", post.media_urls),
            "scheduled_time": changes.get("scheduled_time", post.scheduled_time),
        }
        _ensure_valid(merged, client, is_draft=merged["scheduled_time"] is None)

        if "scheduled_time" in changes:
            when = changes.pop("scheduled_time")
            if when is None:
                post.scheduled_time = None
                if post.status == "scheduled":
                    post.status = "draft"
            else:
                _check_schedule(when, merged["post_type"], merged["platform"])
                post.scheduled_time = as_utc(when)
                post.status = "scheduled"
                post.error_message = None

        if "media_urls" in changes:
            post.format = _format_for(db, user, changes["media_urls"] or [])

    if "tags" in changes:
        changes["tags"] = _normalize_tags(changes["tags"])
    if "hashtags" in changes:
        changes["hashtags"] = [h.lstrip("#") for h in changes["hashtags"] or [] if h.strip()]

    for field, value in changes.items():
        setattr(post, field, value)
    db.commit()
    db.refresh(post)
    log_event("post_update", post_id=post.id, status=post.status)
    return post

@router.delete("/{post_id}")
def delete_post(post_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    post = _get_owned_post(db, user, post_id)
    if post.status == "published":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete published posts")
    db.delete(post)
    db.commit()
    log_event("post_delete", post_id=post_id)
    return {"ok": True}

@router.post("/{post_id}/publish", response_model=PostOut)
def publish_now(post_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    post = _get_owned_post(db, user, post_id)
    if post.status == "published":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Post is already published")

    client = db.get(Client, post.client_id) if post.client_id else None
    _ensure_valid({"platform": post.platform, "post_type": post.post_type, "media_urls": post.media_urls}, client)

    post = publish_and_record(db, post)
    if post.status == "failed":
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": post.error_message, "errors": post.publishing_errors or []},
        )
    return post

@router.get("/{post_id}/countdown")
def post_countdown(post_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    post = _get_owned_post(db, user, post_id)
    return {"status": post.status, "time_until": time_until(post.scheduled_time)}
