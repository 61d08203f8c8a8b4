"""
Crypto utilities — bcrypt password hashing & Fernet secret storage.

Password hashing:
  bcrypt ($2b$) for new hashes; werkzeug (scrypt/pbkdf2) hashes are still
  accepted so users imported from other tools keep working.

Secret storage:
  AI provider API keys saved through the settings endpoint are encrypted
  with Fernet keyed by ENCRYPTION_KEY. Generate one with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import os

import bcrypt
from cryptography.fernet import Fernet
from werkzeug.security import check_password_hash


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against a bcrypt or werkzeug hash."""
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


# ── Fernet symmetric encryption ──────────────────────────────────────────────


def _get_fernet() -> Fernet:
    """Return a Fernet instance keyed by the ENCRYPTION_KEY env var.

    Raises RuntimeError if ENCRYPTION_KEY is not set rather than silently
    storing plaintext secrets.
    """
    raw_key = os.getenv("ENCRYPTION_KEY")
    if not raw_key:
        raise RuntimeError(
            "ENCRYPTION_KEY environment variable is not set; "
            "cannot store provider API keys"
        )
    return Fernet(raw_key.encode() if isinstance(raw_key, str) else raw_key)


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a secret and return URL-safe base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a value produced by encrypt_secret().

    Raises:
        RuntimeError: If ENCRYPTION_KEY is not set.
        cryptography.fernet.InvalidToken: wrong key or tampered value.
    """
    return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")


def mask_secret(value: str | None) -> str | None:
    """Show only the last four characters of a secret."""
    if not value:
        return None
    return "****" + value[-4:] if len(value) > 4 else "****"
