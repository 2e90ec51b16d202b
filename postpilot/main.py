import os
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import func, text
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import settings
from .db import engine, SessionLocal
from .logging_setup import setup_logging, request_id_middleware, log_event
from .models import Base, User, ROLE_ADMIN
from .routes import accounts, admin, analytics, auth, clients, media, oauth, posts, reports, tags
from .security.auth import get_password_hash
from .services.scheduler import start_scheduler

setup_logging()
logger = logging.getLogger(__name__)

DEFAULT_SECRET = "change-me-in-production-for-jwt"

def startup_warnings() -> list[str]:
    warnings = []
    if settings.secret_key == DEFAULT_SECRET:
        warnings.append("SECRET_KEY (using default insecure key)")
    if not settings.token_encryption_key:
        warnings.append("TOKEN_ENCRYPTION_KEY (client tokens encrypted with a key derived from SECRET_KEY)")
    if not settings.facebook_app_id or not settings.facebook_app_secret:
        warnings.append("FACEBOOK_APP_ID/FACEBOOK_APP_SECRET (OAuth connect disabled)")
    if not settings.smtp_host:
        warnings.append("SMTP_HOST (emails are logged, not sent)")
    return warnings

app = FastAPI(title="PostPilot - Social Media Scheduling & Analytics")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")
app.middleware("http")(request_id_middleware)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal Server Error: {str(exc)}", "type": type(exc).__name__},
    )

@app.get("/health")
def health_check():
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "ok",
        "scheduler": "running" if scheduler and scheduler.running else "stopped",
        "now": datetime.now(timezone.utc).isoformat(),
    }

@app.get("/ready")
def readiness_check():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT id FROM users LIMIT 1"))
        return {"status": "ready"}
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not_ready", "detail": "Database unreachable or tables missing."})

# Serve uploads
os.makedirs(settings.uploads_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")

# Media must come before posts so /api/posts/media is not read as a post id
app.include_router(auth.router)
app.include_router(clients.router)
app.include_router(media.router)
app.include_router(posts.router)
app.include_router(analytics.router)
app.include_router(reports.router)
app.include_router(oauth.router)
app.include_router(accounts.router)
app.include_router(tags.router)
app.include_router(admin.router)

def bootstrap_admin():
    """Seeds the admin account from ADMIN_EMAIL / ADMIN_PASSWORD when no admin exists yet."""
    if not settings.admin_email or not settings.admin_password:
        return
    db = SessionLocal()
    try:
        if db.query(User).filter(User.role == ROLE_ADMIN).first():
            return
        email = settings.admin_email.strip().lower()
        user = db.query(User).filter(func.lower(User.email) == email).first()
        if user:
            user.role = ROLE_ADMIN
        else:
            db.add(User(
                name="Administrator",
                email=email,
                password_hash=get_password_hash(settings.admin_password),
                role=ROLE_ADMIN,
                is_active=True,
            ))
        db.commit()
        log_event("admin_bootstrap", admin_email=email)
    except Exception:
        db.rollback()
        logger.exception("admin_bootstrap_failed")
    finally:
        db.close()

@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)

    missing = startup_warnings()
    if missing:
        logger.warning(f"STARTUP WARNING: missing or unsafe settings: {', '.join(missing)}")

    bootstrap_admin()

    app.state.scheduler = None
    if settings.scheduler_enabled:
        try:
            app.state.scheduler = start_scheduler(SessionLocal)
        except Exception:
            logger.exception("scheduler_start_failed")

@app.on_event("shutdown")
def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
