from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.models import Post, User, DEFAULT_TAG_COLOR
from postpilot.schemas import PostOut
from postpilot.security.auth import require_user
from postpilot.services.analytics import created_sort_key

router = APIRouter(prefix="/api/tags", tags=["tags"])

def _tag_names(post: Post):
    for tag in post.tags or []:
        name = (tag.get("name") or "").strip() if isinstance(tag, dict) else ""
        if name:
            yield name, tag.get("color") or DEFAULT_TAG_COLOR

def _user_posts(db: Session, user: User) -> list[Post]:
    return db.query(Post).filter(Post.owner_id == user.id).all()

@router.get("")
def list_tags(db: Session = Depends(get_db), user: User = Depends(require_user)):
    tags: dict[str, dict] = {}
    for post in _user_posts(db, user):
        for name, color in _tag_names(post):
            tags.setdefault(name.lower(), {"name": name, "color": color})

    data = sorted(tags.values(), key=lambda t: t["name"].lower())
    return {"tags": data, "count": len(data)}

@router.get("/stats")
def tag_stats(db: Session = Depends(get_db), user: User = Depends(require_user)):
    counts: dict[str, int] = {}
    for post in _user_posts(db, user):
        for name, _ in _tag_names(post):
            counts[name.lower()] = counts.get(name.lower(), 0) + 1

    stats = sorted(({"name": k, "count": v} for k, v in counts.items()), key=lambda s: s["count"], reverse=True)
    return {"stats": stats, "count": len(stats)}

@router.get("/{tag_name}/posts")
def posts_by_tag(
    tag_name: str,
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    needle = tag_name.strip().lower()
    # Tags live in a JSON column, so matching happens in Python
    matching = [
        p for p in _user_posts(db, user)
        if any(needle in name.lower() for name, _ in _tag_names(p))
    ]
    matching.sort(key=created_sort_key, reverse=True)
    page = matching[skip:skip + limit]
    return {
        "posts": [PostOut.model_validate(p) for p in page],
        "count": len(page),
        "total": len(matching),
        "limit": limit,
        "skip": skip,
    }
