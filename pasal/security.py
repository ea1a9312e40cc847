import secrets
from functools import wraps

import bcrypt
from flask import current_app
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from .errors import PermissionDeniedError


class PasswordHasher:
    """One-way salted password digests backed by bcrypt."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, secret: str) -> bytes:
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(self.rounds))

    def verify(self, secret: str, digest) -> bool:
        if not secret or not digest:
            return False
        if isinstance(digest, str):
            digest = digest.encode("utf-8")
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), bytes(digest))
        except ValueError:
            # stored value is not a bcrypt digest
            return False


def generate_token(nbytes: int = 20) -> str:
    return secrets.token_hex(nbytes)


def admin_required(view):
    """Reject the request unless the JWT belongs to a current admin."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        user_service = current_app.extensions["pasal"].users
        user_document = user_service.find_by_id(get_jwt_identity(), required=False)
        if not user_document or user_document.get("role") != "admin":
            raise PermissionDeniedError(
                "You need additional permissions to perform this action."
            )
        return view(*args, **kwargs)

    return wrapper
