"""
Password hashing helpers.

New secrets are stored as salted scrypt digests. Records written before salts
were introduced hold a bare SHA-256 hex digest and no salt; they still verify.
"""

import hashlib
import hmac
import secrets
from typing import Optional, Tuple


def generate_salt() -> str:
    """Generate random salt for password hashing"""
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Hash password with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def hash_password_legacy(password: str) -> str:
    """Unsalted SHA-256 digest used by documents from the previous admin server"""
    return hashlib.sha256(password.encode()).hexdigest()


def make_password(password: str) -> Tuple[str, str]:
    """Return a fresh ``(hash, salt)`` pair for ``password``"""
    salt = generate_salt()
    return hash_password(password, salt), salt


def verify_password(password: str, password_hash: Optional[str], salt: Optional[str]) -> bool:
    """Check ``password`` against a stored hash, salted or legacy"""
    if not password_hash:
        return False
    if salt:
        expected = hash_password(password, salt)
    else:
        expected = hash_password_legacy(password)
    return hmac.compare_digest(expected, password_hash)


def needs_rehash(salt: Optional[str]) -> bool:
    """Legacy records are upgraded on their next successful login"""
    return not salt
