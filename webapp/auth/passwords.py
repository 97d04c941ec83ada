from __future__ import annotations

import hashlib
import hmac
import os
import re
import secrets


def _pbkdf2_hash(password: str, salt: bytes | None = None, iterations: int = 260_000) -> str:
    """Hash a password using PBKDF2-HMAC-SHA256.

    Returns a string in the format: pbkdf2:iterations:hex_salt:hex_hash
    """
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=32)
    return f"pbkdf2:{iterations}:{salt.hex()}:{dk.hex()}"


def hash_password(password: str) -> str:
    """Create a secure password hash."""
    return _pbkdf2_hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a password against a stored hash."""
    parts = (stored_hash or "").split(":")
    if parts[0] != "pbkdf2" or len(parts) != 4:
        return False
    try:
        iterations = int(parts[1])
        salt = bytes.fromhex(parts[2])
    except ValueError:
        return False
    expected = _pbkdf2_hash(password, salt=salt, iterations=iterations)
    return hmac.compare_digest(expected, stored_hash)


def generate_token() -> str:
    """Generate a cryptographically secure session token."""
    return secrets.token_urlsafe(32)


def generate_invitation_token() -> str:
    """Unguessable invitation token (32 random bytes, hex encoded)."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Registration input validation
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def validate_registration(name: str, email: str, password: str) -> str | None:
    """Return None if the registration payload is acceptable, else an error message."""
    if not 2 <= len(name) <= 50:
        return "Name must be between 2 and 50 characters"
    if not is_valid_email(email):
        return "Please provide a valid email"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    return None
