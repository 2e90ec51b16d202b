from datetime import datetime, timedelta, timezone as dt_timezone
import jwt
import bcrypt
from fastapi import Request, HTTPException, Depends, status
from sqlalchemy.orm import Session
from postpilot.db import get_db
from postpilot.models import User, ROLE_ADMIN
from postpilot.config import settings

ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(days=7)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8')[:72], hashed_password.encode('utf-8'))
    except ValueError:
        return False

def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8')[:72], bcrypt.gensalt()).decode('utf-8')

def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(dt_timezone.utc) + (expires_delta or TOKEN_LIFETIME)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)

def token_for_user(user: User) -> str:
    return create_access_token(data={"sub": str(user.id), "email": user.email, "role": user.role})

def landing_route_for_token(token: str | None) -> str:
    """
    Picks the dashboard entry page from the token's role claim.
    The payload is read without signature verification; this only drives navigation,
    every API call is still authenticated by require_user.
    """
    if not token:
        return "/login"
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return "/login"

    exp = payload.get("exp")
    if isinstance(exp, (int, float)) and exp < datetime.now(dt_timezone.utc).timestamp():
        return "/login"

    role = payload.get("role")
    if role == ROLE_ADMIN:
        return "/admin"
    if role:
        return "/dashboard"
    return "/login"

def _auth_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": message, "code": code},
        headers={"WWW-Authenticate": "Bearer"},
    )

def _token_from_request(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split("Bearer ", 1)[1].strip() or None
    return request.cookies.get("access_token")

def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _token_from_request(request)
    if not token:
        raise _auth_error("NO_TOKEN", "Authentication required")

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _auth_error("TOKEN_EXPIRED", "Token has expired")
    except jwt.PyJWTError:
        raise _auth_error("INVALID_TOKEN", "Invalid token")

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise _auth_error("INVALID_TOKEN", "Invalid token")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise _auth_error("AUTH_FAILED", "User no longer exists")

    request.state.user_id = user.id
    return user
