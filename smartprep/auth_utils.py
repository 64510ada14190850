"""Password hashes for student accounts created through the admin import.

bcrypt reads at most 72 bytes of a password; longer ones are rejected.
"""

from typing import Optional

from passlib.context import CryptContext

from smartprep.errors import PayloadValidationError

BCRYPT_MAX_BYTES = 72

# "2b" ident keeps passlib working against bcrypt 4.x
PASSWORD_CONTEXT = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__ident="2b")


def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise PayloadValidationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    return PASSWORD_CONTEXT.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """False for students that have no stored hash."""
    if not password_hash:
        return False
    return PASSWORD_CONTEXT.verify(password, password_hash)
