"""Password hashing and role gates for sensitive back-office actions."""

from collections.abc import Iterable

from passlib.context import CryptContext

from backoffice_kernel.exceptions import PermissionDeniedError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def require_role(operator, allowed: Iterable[str], action: str) -> None:
    """
    Raise PermissionDeniedError unless the operator's role is in ``allowed``.

    Role names compare case-insensitively ("Admin" == "admin").
    """
    role = str(getattr(operator.role, "value", operator.role)).lower()
    if role not in {str(getattr(r, "value", r)).lower() for r in allowed}:
        raise PermissionDeniedError(str(operator.id), role, action)
