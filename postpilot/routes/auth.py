import secrets
from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Any

from postpilot.db import get_db
from postpilot.logging_setup import log_event
from postpilot.models import PasswordReset, User, VerificationCode, ROLE_ADMIN, ROLE_MANAGER
from postpilot.schemas import ForgotPasswordIn, LoginIn, ResetPasswordIn, UserCreate, UserOut, VerifyCodeIn
from postpilot.security.auth import (
    get_password_hash,
    landing_route_for_token,
    require_user,
    token_for_user,
    verify_password,
)
from postpilot.security.crypto import generate_state_token, hash_token
from postpilot.services.mailer import send_password_reset, send_verification_code
from postpilot.services.scheduling import as_utc

router = APIRouter(prefix="/api/auth", tags=["auth"])

CODE_LIFETIME = timedelta(minutes=10)
RESET_LIFETIME = timedelta(hours=1)
COOKIE_MAX_AGE = 7 * 24 * 60 * 60

def _utcnow():
    return datetime.now(timezone.utc)

def _find_user(db: Session, email: str) -> User | None:
    return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

def _session_response(response: Response, user: User) -> dict[str, Any]:
    token = token_for_user(user)
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=True,
        max_age=COOKIE_MAX_AGE,
    )
    return {"token": token, "user": UserOut.model_validate(user).model_dump()}

@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(user_in: UserCreate, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    if _find_user(db, user_in.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User with this email already exists")

    # Self-service signups never get the admin role
    user = User(
        name=user_in.name,
        email=user_in.email.strip().lower(),
        password_hash=get_password_hash(user_in.password),
        role=ROLE_MANAGER,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    log_event("user_signup", user_id=user.id)
    return _session_response(response, user)

@router.post("/login")
def login(payload: LoginIn, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    user = _find_user(db, payload.email)
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        log_event("login_fail", level="warning")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.role == ROLE_ADMIN:
        # Previous unused codes are invalidated so only the latest one works
        db.query(VerificationCode).filter(
            VerificationCode.user_id == user.id, VerificationCode.used == False  # noqa: E712
        ).update({"used": True})
        code = f"{secrets.randbelow(10**6):06d}"
        db.add(VerificationCode(user_id=user.id, code=code, expires_at=_utcnow() + CODE_LIFETIME))
        db.commit()
        send_verification_code(user.email, code)
        log_event("login_code_sent", user_id=user.id)
        return {"requires_verification": True, "email": user.email, "message": "Verification code sent to your email"}

    log_event("login_success", user_id=user.id)
    return _session_response(response, user)

@router.post("/verify-code")
def verify_code(payload: VerifyCodeIn, response: Response, db: Session = Depends(get_db)) -> dict[str, Any]:
    user = _find_user(db, payload.email)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid verification code")

    record = (
        db.query(VerificationCode)
        .filter(VerificationCode.user_id == user.id, VerificationCode.code == payload.code,
                VerificationCode.used == False)  # noqa: E712
        .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
        .first()
    )
    if not record or as_utc(record.expires_at) < _utcnow():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired verification code")

    record.used = True
    db.commit()
    log_event("login_success", user_id=user.id, verified=True)
    return _session_response(response, user)

@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordIn, db: Session = Depends(get_db)) -> dict[str, str]:
    user = _find_user(db, payload.email)
    if user:
        raw = generate_state_token()
        db.add(PasswordReset(user_id=user.id, token_hash=hash_token(raw), expires_at=_utcnow() + RESET_LIFETIME))
        db.commit()
        send_password_reset(user.email, raw)
        log_event("password_reset_requested", user_id=user.id)
    # Same answer either way so emails cannot be enumerated
    return {"message": "If an account exists for that email, a reset link has been sent"}

@router.post("/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)) -> dict[str, str]:
    record = db.query(PasswordReset).filter(PasswordReset.token_hash == hash_token(payload.token)).first()
    if not record or record.used or as_utc(record.expires_at) < _utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    user = db.get(User, record.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    user.password_hash = get_password_hash(payload.password)
    record.used = True
    db.commit()
    log_event("password_reset_done", user_id=user.id)
    return {"message": "Password has been reset"}

@router.get("/me")
def me(current_user: User = Depends(require_user)) -> dict[str, Any]:
    data = UserOut.model_validate(current_user).model_dump()
    data["report_schedule"] = {
        "enabled": bool(current_user.report_enabled),
        "day_of_month": current_user.report_day_of_month or 1,
        "email": current_user.report_email,
    }
    return data

@router.get("/landing")
def landing(request: Request, token: str | None = None) -> dict[str, str]:
    if token is None:
        header = request.headers.get("Authorization") or ""
        token = header.split("Bearer ", 1)[1].strip() if header.startswith("Bearer ") else request.cookies.get("access_token")
    return {"route": landing_route_for_token(token)}

@router.post("/logout")
def logout(response: Response) -> dict[str, str]:
    response.delete_cookie(key="access_token", httponly=True, samesite="lax", secure=True)
    return {"message": "Logged out successfully"}
