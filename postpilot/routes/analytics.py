from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.models import Client, Post, User
from postpilot.security.auth import require_user
from postpilot.services.analytics import (
    REFRESH_CLIENT_POST_LIMIT,
    build_client_overview,
    build_overview,
    refresh_followers,
    refresh_post_metrics,
)
from .clients import get_owned_client

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

def _posts_query(db: Session, user: User, start_date: datetime | None, end_date: datetime | None):
    q = db.query(Post).filter(Post.owner_id == user.id)
    if start_date:
        q = q.filter(Post.created_at >= start_date)
    if end_date:
        q = q.filter(Post.created_at <= end_date)
    return q

@router.get("")
def overview(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    refresh: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    clients = db.query(Client).filter(Client.owner_id == user.id).order_by(Client.id).all()
    posts = _posts_query(db, user, start_date, end_date).all()

    if refresh:
        refresh_followers(db, clients)
        refresh_post_metrics(db, sorted(posts, key=lambda p: p.id, reverse=True))

    return build_overview(clients, posts)

@router.get("/client/{client_id}")
def client_overview(
    client_id: int,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    refresh: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    client = get_owned_client(db, user, client_id)
    posts = _posts_query(db, user, start_date, end_date).filter(Post.client_id == client.id).all()

    if refresh:
        refresh_followers(db, [client], limit=1)
        refresh_post_metrics(db, sorted(posts, key=lambda p: p.id, reverse=True), limit=REFRESH_CLIENT_POST_LIMIT)

    return build_client_overview(client, posts)
