"""
Re-encrypts every client page access token under a new Fernet key.

    OLD_TOKEN_ENCRYPTION_KEY=<current key> TOKEN_ENCRYPTION_KEY=<new key> python scripts/rotate_token_key.py

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""
import os
from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

def rotate_token_key():
    load_dotenv()

    old_key = os.environ.get("OLD_TOKEN_ENCRYPTION_KEY")
    new_key = os.environ.get("TOKEN_ENCRYPTION_KEY")
    if not old_key or not new_key:
        print("ERROR: both OLD_TOKEN_ENCRYPTION_KEY and TOKEN_ENCRYPTION_KEY must be set.")
        return

    try:
        old_f = Fernet(old_key.encode("utf-8"))
        new_f = Fernet(new_key.encode("utf-8"))
    except ValueError as e:
        print(f"ERROR: Invalid key formatting. Must be valid Fernet base64 keys: {e}")
        return

    # Imported late so DATABASE_URL from .env is picked up
    from postpilot.db import SessionLocal
    from postpilot.models import Client

    db = SessionLocal()
    rotated = skipped = 0
    try:
        for client in db.query(Client).filter(Client.page_access_token.isnot(None)).all():
            try:
                plain = old_f.decrypt(client.page_access_token.encode("utf-8"))
            except InvalidToken:
                print(f"SKIP: client {client.id} token is not readable with the old key")
                skipped += 1
                continue
            client.page_access_token = new_f.encrypt(plain).decode("utf-8")
            rotated += 1
        db.commit()
    finally:
        db.close()

    print(f"SUCCESS: rotated {rotated} token(s), skipped {skipped}")

if __name__ == "__main__":
    rotate_token_key()
