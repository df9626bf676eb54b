"""Authentication utilities: password hashing and identifier generation."""

import secrets
import time

from passlib.context import CryptContext

from exam_proctor.config import BCRYPT_ROUNDS

# Use "2b" ident to stay compatible with bcrypt 4.0+
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=BCRYPT_ROUNDS,
)


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password for storage."""
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plaintext password against its hash."""
    return PWD_CONTEXT.verify(plain_password, password_hash)


def generate_session_id() -> str:
    """Generate a unique exam session id, e.g. ``session_1718000000000_k3j9x0a2b``."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def generate_device_id() -> str:
    """Generate an identifier for a paired mobile device."""
    return f"device_{secrets.token_urlsafe(8)}"
