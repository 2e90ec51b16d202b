from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.errors import GraphAPIError
from postpilot.logging_setup import log_event
from postpilot.models import Client, User
from postpilot.schemas import AccountRef, ClientOut
from postpilot.security.auth import require_user
from postpilot.security.crypto import decrypt_token
from postpilot.services.analytics import fetch_follower_count
from postpilot.services.capabilities import connection_status
from postpilot.services.meta_oauth import instagram_account
from .clients import get_owned_client

router = APIRouter(prefix="/api/accounts", tags=["accounts"])

def _utcnow():
    return datetime.now(timezone.utc)

@router.get("/list")
def list_accounts(db: Session = Depends(get_db), user: User = Depends(require_user)):
    clients = db.query(Client).filter(Client.owner_id == user.id).order_by(Client.id).all()
    return {
        "accounts": [
            {
                **ClientOut.from_client(c).model_dump(),
                "connection_status": connection_status(c),
                "token_expires_at": c.token_expires_at,
            }
            for c in clients
        ]
    }

@router.post("/refresh")
def refresh_account(payload: AccountRef, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, payload.client_id)
    token = decrypt_token(client.page_access_token)
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Client has no access token to refresh with")

    if client.ig_user_id:
        try:
            info = instagram_account(client.ig_user_id, token)
        except GraphAPIError as e:
            log_event("account_refresh_fail", level="warning", client_id=client.id, meta_error_code=e.code)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
        if info.get("username"):
            client.social_media_link = f"https://instagram.com/{info['username']}"

    count = fetch_follower_count(client)
    if count is not None:
        client.follower_count = count
        client.follower_count_updated_at = _utcnow()
    db.commit()
    db.refresh(client)

    log_event("account_refresh", client_id=client.id, follower_count=client.follower_count)
    return {"account": ClientOut.from_client(client), "connection_status": connection_status(client)}

@router.post("/disconnect")
def disconnect_account(payload: AccountRef, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, payload.client_id)
    client.page_access_token = None
    client.ig_user_id = None
    client.page_id = None
    client.social_media_id = None
    client.token_expires_at = None
    client.platform = "manual"
    db.commit()
    db.refresh(client)
    log_event("account_disconnect", client_id=client.id)
    return {"account": ClientOut.from_client(client)}
