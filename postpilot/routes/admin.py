from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.models import Client, Post, User
from postpilot.security.rbac import require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"])

@router.get("/users")
def list_users(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    client_counts = dict(db.query(Client.owner_id, func.count(Client.id)).group_by(Client.owner_id).all())
    post_counts = dict(db.query(Post.owner_id, func.count(Post.id)).group_by(Post.owner_id).all())

    users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return {
        "users": [
            {
                "id": u.id,
                "name": u.name,
                "email": u.email,
                "role": u.role,
                "is_active": u.is_active,
                "client_count": client_counts.get(u.id, 0),
                "post_count": post_counts.get(u.id, 0),
                "created_at": u.created_at,
            }
            for u in users
        ],
        "total": len(users),
    }
