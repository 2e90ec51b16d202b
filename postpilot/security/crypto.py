import base64
import hashlib
import secrets
from functools import lru_cache
from cryptography.fernet import Fernet, InvalidToken
from postpilot.config import settings
from postpilot.logging_setup import log_event

@lru_cache(maxsize=1)
def _fernet() -> Fernet:
    key = settings.token_encryption_key
    if not key:
        # Derived key keeps local setups working; production sets TOKEN_ENCRYPTION_KEY
        digest = hashlib.sha256(settings.secret_key.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest).decode("utf-8")
    return Fernet(key.encode("utf-8"))

def encrypt_token(plain: str | None) -> str | None:
    if not plain:
        return None
    return _fernet().encrypt(plain.encode("utf-8")).decode("utf-8")

def decrypt_token(cipher: str | None) -> str | None:
    """Returns the plaintext token, or None when it is absent or unreadable with the current key."""
    if not cipher:
        return None
    try:
        return _fernet().decrypt(cipher.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        log_event("token_decrypt_fail", level="warning")
        return None

def generate_state_token() -> str:
    return secrets.token_urlsafe(32)

def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
