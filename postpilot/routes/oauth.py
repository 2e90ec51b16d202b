from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from requests import RequestException
from sqlalchemy.orm import Session

from postpilot.config import settings
from postpilot.db import get_db
from postpilot.errors import GraphAPIError
from postpilot.logging_setup import log_event
from postpilot.models import Client, OAuthState, User
from postpilot.schemas import ClientOut, OAuthClientCreate
from postpilot.security.auth import require_user
from postpilot.security.crypto import encrypt_token, generate_state_token
from postpilot.services import meta_oauth
from postpilot.services.scheduling import as_utc
from .clients import client_email_taken

router = APIRouter(prefix="/api/oauth", tags=["oauth"])

STATE_LIFETIME = timedelta(minutes=10)

def _utcnow():
    return datetime.now(timezone.utc)

def _frontend(query: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url.rstrip('/')}/clients?{query}", status_code=status.HTTP_302_FOUND)

def _consume_state(db: Session, state: str | None, provider: str) -> OAuthState | None:
    if not state:
        return None
    record = db.query(OAuthState).filter(OAuthState.state == state, OAuthState.provider == provider).first()
    if record is None:
        return None
    db.delete(record)
    db.commit()
    if as_utc(record.expires_at) < _utcnow():
        return None
    return record

def _connected_email(db: Session, user: User, page_id: str) -> str:
    """Owner's address for the first connected page, plus-addressed by page id after that."""
    if not client_email_taken(db, user, user.email):
        return user.email
    local, _, domain = user.email.partition("@")
    candidate = f"{local}+{page_id}@{domain}"
    n = 2
    while client_email_taken(db, user, candidate):
        candidate = f"{local}+{page_id}-{n}@{domain}"
        n += 1
    return candidate

def upsert_connected_client(db: Session, user: User, provider: str, page: dict, token: str,
                            expires_in: int | None = None) -> Client:
    ig = page.get("instagram_business_account") or {}
    client = (
        db.query(Client)
        .filter(Client.owner_id == user.id, Client.page_id == page["id"])
        .first()
    )
    if client is None:
        client = Client(owner_id=user.id, email=_connected_email(db, user, page["id"]))
        db.add(client)

    client.name = (ig.get("username") if provider == "instagram" else None) or page.get("name") or client.name or "Connected account"
    client.platform = provider
    client.page_id = page["id"]
    client.social_media_id = ig.get("id") if provider == "instagram" else page["id"]
    client.ig_user_id = ig.get("id") or client.ig_user_id
    client.page_access_token = encrypt_token(page.get("access_token") or token)
    client.social_media_link = (
        f"https://instagram.com/{ig['username']}" if provider == "instagram" and ig.get("username")
        else page.get("link") or client.social_media_link
    )
    follower_count = ig.get("followers_count") if provider == "instagram" else page.get("fan_count")
    if follower_count is not None:
        client.follower_count = follower_count
        client.follower_count_updated_at = _utcnow()
    client.token_expires_at = _utcnow() + timedelta(seconds=expires_in) if expires_in else None
    db.commit()
    db.refresh(client)
    return client

@router.get("/authorize")
def authorize(platform: str = Query(...), db: Session = Depends(get_db), user: User = Depends(require_user)):
    if platform not in meta_oauth.PROVIDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported platform: {platform}")

    state = generate_state_token()
    try:
        url = meta_oauth.authorize_url(platform, state)
    except GraphAPIError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)

    db.add(OAuthState(state=state, user_id=user.id, provider=platform, expires_at=_utcnow() + STATE_LIFETIME))
    db.commit()
    log_event("oauth_authorize", provider=platform, user_id=user.id)
    return {"url": url}

@router.get("/callback/{provider}")
def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    if provider not in meta_oauth.PROVIDERS:
        return _frontend("error=oauth_invalid_provider")
    if error or not code:
        return _frontend("error=oauth_cancelled")

    record = _consume_state(db, state, provider)
    if record is None:
        log_event("oauth_state_invalid", level="warning", provider=provider)
        return _frontend(f"error={provider}_auth_failed")

    user = db.get(User, record.user_id)
    if user is None:
        return _frontend(f"error={provider}_auth_failed")

    try:
        short_token = meta_oauth.exchange_code(provider, code)
        long_lived = meta_oauth.long_lived_token(short_token)
        user_token = long_lived.get("access_token") or short_token
        page = meta_oauth.pick_page(meta_oauth.list_pages(user_token), provider)
        client = upsert_connected_client(db, user, provider, page, user_token, long_lived.get("expires_in"))
    except (GraphAPIError, RequestException, ValueError) as e:
        db.rollback()
        log_event("oauth_callback_fail", level="error", provider=provider, error=str(e))
        return _frontend(f"error={provider}_auth_failed")

    log_event("oauth_connected", provider=provider, client_id=client.id, user_id=user.id)
    return _frontend(f"connected={provider}")

@router.post("/create-client", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client_from_oauth(payload: OAuthClientCreate, db: Session = Depends(get_db),
                             user: User = Depends(require_user)):
    if payload.platform == "instagram" and not payload.ig_user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Instagram clients need an ig_user_id")
    if payload.platform == "facebook" and not payload.page_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Facebook clients need a page_id")
    if client_email_taken(db, user, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")

    client = Client(
        owner_id=user.id,
        name=payload.name,
        email=payload.email.strip().lower(),
        platform=payload.platform,
        page_id=payload.page_id,
        ig_user_id=payload.ig_user_id,
        social_media_id=payload.ig_user_id if payload.platform == "instagram" else payload.page_id,
        social_media_link=payload.social_media_link,
        page_access_token=encrypt_token(payload.page_access_token),
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    log_event("client_create", client_id=client.id, platform=client.platform, source="oauth")
    return ClientOut.from_client(client)
