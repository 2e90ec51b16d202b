from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.logging_setup import log_event
from postpilot.models import Client, User
from postpilot.schemas import ClientCreate, ClientOut, ClientUpdate
from postpilot.security.auth import require_user
from postpilot.security.crypto import encrypt_token

router = APIRouter(prefix="/api/clients", tags=["clients"])

def get_owned_client(db: Session, user: User, client_id: int) -> Client:
    """Every client lookup is scoped to the owner; someone else's client is a plain 404."""
    client = db.query(Client).filter(Client.id == client_id, Client.owner_id == user.id).first()
    if not client:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return client

def client_email_taken(db: Session, user: User, email: str, exclude_id: int | None = None) -> bool:
    q = db.query(Client).filter(Client.owner_id == user.id, func.lower(Client.email) == email.strip().lower())
    if exclude_id is not None:
        q = q.filter(Client.id != exclude_id)
    return db.query(q.exists()).scalar()

@router.get("", response_model=list[ClientOut])
def list_clients(db: Session = Depends(get_db), user: User = Depends(require_user)):
    clients = db.query(Client).filter(Client.owner_id == user.id).order_by(Client.created_at.desc(), Client.id.desc()).all()
    return [ClientOut.from_client(c) for c in clients]

@router.get("/count")
def count_clients(db: Session = Depends(get_db), user: User = Depends(require_user)):
    return {"count": db.query(Client).filter(Client.owner_id == user.id).count()}

@router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(payload: ClientCreate, db: Session = Depends(get_db), user: User = Depends(require_user)):
    if client_email_taken(db, user, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")

    data = payload.model_dump()
    token = data.pop("page_access_token", None)
    client = Client(owner_id=user.id, **data)
    client.email = payload.email.strip().lower()
    client.page_access_token = encrypt_token(token)
    db.add(client)
    db.commit()
    db.refresh(client)

    log_event("client_create", client_id=client.id, platform=client.platform)
    return ClientOut.from_client(client)

@router.get("/{client_id}", response_model=ClientOut)
def get_client(client_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    return ClientOut.from_client(get_owned_client(db, user, client_id))

@router.put("/{client_id}", response_model=ClientOut)
def update_client(client_id: int, payload: ClientUpdate, db: Session = Depends(get_db),
                  user: User = Depends(require_user)):
    client = get_owned_client(db, user, client_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("email"):
        if client_email_taken(db, user, changes["email"], exclude_id=client.id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")
        changes["email"] = changes["email"].strip().lower()

    if "page_access_token" in changes:
        client.page_access_token = encrypt_token(changes.pop("page_access_token"))

    for field, value in changes.items():
        setattr(client, field, value)
    db.commit()
    db.refresh(client)
    log_event("client_update", client_id=client.id, fields=sorted(changes))
    return ClientOut.from_client(client)

@router.delete("/{client_id}")
def delete_client(client_id: int, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, client_id)
    # Posts keep their history; the FK is nulled
    for post in client.posts:
        post.client_id = None
    db.delete(client)
    db.commit()
    log_event("client_delete", client_id=client_id)
    return {"ok": True}
