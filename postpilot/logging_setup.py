# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

import logging
import sys
import uuid
import contextvars
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger
from .config import settings

request_id_var = contextvars.ContextVar("request_id", default=None)

# Secrets to redact
SECRETS = ("token", "secret", "password", "key", "authorization", "cookie")
REDACTED = "***REDACTED***"

SERVICE_NAME = "postpilot"

# extra= keys that would clobber LogRecord attributes get a prefix instead
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

def _is_secret(key: str) -> bool:
    key = key.lower()
    return any(s in key for s in SECRETS)

class RedactingJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with UTC timestamp, level, request id and service name; secret-looking keys are masked."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        log_record["level"] = (log_record.get("level") or record.levelname).upper()

        req_id = request_id_var.get()
        if req_id:
            log_record["request_id"] = req_id
        log_record["service_name"] = SERVICE_NAME

        for key, value in list(log_record.items()):
            if isinstance(value, str) and _is_secret(key):
                log_record[key] = REDACTED

def setup_logging():
    logger = logging.getLogger()
    logger.setLevel(settings.log_level.upper())

    # Clean up any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = RedactingJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Tone down noisy uvicorn access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

async def request_id_middleware(request, call_next):
    """Tags every log line emitted while handling a request with its X-Request-ID."""
    req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(req_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = req_id
    return response

def log_event(event: str, level: str = "info", **fields):
    """
    Logs one structured event, e.g. log_event("post_publish_fail", level="warning", post_id=7).
    None values are dropped.
    """
    extra = {"event": event}
    for key, value in fields.items():
        if value is None:
            continue
        extra[f"field_{key}" if key in _RESERVED else key] = value

    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int):
        levelno = logging.INFO
    logging.getLogger(SERVICE_NAME).log(levelno, event, extra=extra)
