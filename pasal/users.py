"""Accounts: registration, activation, login, password reset, admin actions."""
import logging
from datetime import timedelta
from typing import Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .errors import (
    AuthenticationError,
    DeliveryError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .helpers import (
    clean_text,
    is_valid_email,
    isoformat,
    maybe_object_id,
    normalize_email,
    parse_bool,
    pick,
    to_object_id,
    utcnow,
)
from .security import generate_token

logger = logging.getLogger(__name__)

ALLOWED_USER_ROLES = {"user", "admin"}


def serialize_user(user_document) -> Optional[Dict]:
    if not user_document:
        return None
    return {
        "id": str(user_document.get("_id")),
        "username": user_document.get("username", ""),
        "phone_number": user_document.get("phone_number", ""),
        "address": user_document.get("address", ""),
        "email": user_document.get("email", ""),
        "role": user_document.get("role", "user"),
        "is_active": bool(user_document.get("is_active")),
        "created_at": isoformat(user_document.get("created_at")),
    }


class UserService:
    def __init__(
        self,
        store,
        hasher,
        mailer,
        activation_ttl_minutes: int = 60,
        reset_ttl_minutes: int = 60,
    ):
        self.store = store
        self.hasher = hasher
        self.mailer = mailer
        self.activation_ttl = timedelta(minutes=activation_ttl_minutes)
        self.reset_ttl = timedelta(minutes=reset_ttl_minutes)

    def register(self, payload: Dict) -> Dict:
        username = clean_text(payload.get("username"))
        phone_number = clean_text(pick(payload, "phonenumber", "phoneNumber", "phone_number"))
        address = clean_text(payload.get("address"))
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not username or not phone_number or not email or not password:
            raise ValidationError(
                "Username, phone number, email, and password are required to create an account."
            )
        if not is_valid_email(email):
            raise ValidationError("Please provide a valid email address.")

        existing_user = self.store.users.find_one(
            {"$or": [{"email": email}, {"phone_number": phone_number}]}
        )
        if existing_user:
            raise ValidationError("Email or Phone Number already exists")
        if self.store.users.find_one({"username": username}):
            raise ValidationError("Username already exists")

        activation_token = generate_token()
        user_document = {
            "username": username,
            "phone_number": phone_number,
            "address": address,
            "email": email,
            "password": self.hasher.hash(password),
            "role": "user",
            "activation_token": activation_token,
            "activation_token_expiry": utcnow() + self.activation_ttl,
            "reset_token": None,
            "reset_token_expiry": None,
            "is_active": False,
            "created_at": utcnow(),
        }
        try:
            insert_result = self.store.users.insert_one(user_document)
        except DuplicateKeyError:
            raise ValidationError("Email or Phone Number already exists")
        user_document["_id"] = insert_result.inserted_id

        sent, error_details = self.mailer.send_activation_email(email, activation_token)
        if not sent:
            self.store.users.delete_one({"_id": insert_result.inserted_id})
            raise DeliveryError(
                "Account creation failed while sending the activation email. Please try again."
                + (f" ({error_details})" if error_details else "")
            )

        logger.info("Registered user %s", insert_result.inserted_id)
        return user_document

    def activate(self, token: str) -> Dict:
        if not token:
            raise ValidationError("Invalid or expired activation token")
        user_document = self.store.users.find_one_and_update(
            {"activation_token": token, "activation_token_expiry": {"$gt": utcnow()}},
            {
                "$set": {"is_active": True},
                "$unset": {"activation_token": "", "activation_token_expiry": ""},
            },
            return_document=ReturnDocument.AFTER,
        )
        if not user_document:
            raise ValidationError("Invalid or expired activation token")
        logger.info("Activated user %s", user_document["_id"])
        return user_document

    def authenticate(self, username: str, password: str) -> Dict:
        username = clean_text(username)
        if not username or not password:
            raise ValidationError("Username and password are required.")

        user_document = self.store.users.find_one({"username": username})
        if not user_document or not self.hasher.verify(password, user_document.get("password")):
            raise AuthenticationError("Invalid Username or Password")
        if not user_document.get("is_active"):
            raise PermissionDeniedError("Account is not active")
        return user_document

    def begin_password_reset(self, email) -> bool:
        """Store a reset token and email it. Returns whether a user matched."""
        normalized_email = normalize_email(email)
        if not is_valid_email(normalized_email):
            return False

        reset_token = generate_token()
        user_document = self.store.users.find_one_and_update(
            {"email": normalized_email},
            {
                "$set": {
                    "reset_token": reset_token,
                    "reset_token_expiry": utcnow() + self.reset_ttl,
                }
            },
        )
        if not user_document:
            return False

        self.mailer.send_password_reset_email(normalized_email, reset_token)
        return True

    def reset_password(self, token: str, new_password) -> Dict:
        new_password = str(new_password or "")
        if not new_password:
            raise ValidationError("New password is required")

        user_document = None
        if token:
            user_document = self.store.users.find_one(
                {"reset_token": token, "reset_token_expiry": {"$gt": utcnow()}}
            )
        if not user_document:
            raise ValidationError("Invalid or expired token")

        if self.hasher.verify(new_password, user_document.get("password")):
            raise ValidationError("New password should be different than old password")

        self.store.users.update_one(
            {"_id": user_document["_id"]},
            {
                "$set": {"password": self.hasher.hash(new_password)},
                "$unset": {"reset_token": "", "reset_token_expiry": ""},
            },
        )
        logger.info("Password reset for user %s", user_document["_id"])
        return user_document

    def find_by_id(self, user_id, required: bool = True) -> Optional[Dict]:
        if not required:
            object_id = maybe_object_id(user_id)
            return self.store.users.find_one({"_id": object_id}) if object_id else None

        user_document = self.store.users.find_one({"_id": to_object_id(user_id, "user")})
        if not user_document:
            raise NotFoundError("User not found")
        return user_document

    def list_by_role(self, admins: bool):
        query = {"role": "admin"} if admins else {"role": {"$ne": "admin"}}
        return list(self.store.users.find(query).sort("created_at", -1))

    def set_role(self, user_id, role) -> Dict:
        desired_role = clean_text(role).lower()
        if desired_role not in ALLOWED_USER_ROLES:
            raise ValidationError("Role must be 'admin' or 'user'.")
        return self._update(user_id, {"role": desired_role})

    def set_active(self, user_id, is_active) -> Dict:
        if is_active is None:
            raise ValidationError("is_active is required.")
        active = parse_bool(is_active, None)
        if active is None:
            raise ValidationError("is_active must be true or false.")
        return self._update(user_id, {"is_active": active})

    def delete(self, user_id) -> Dict:
        object_id = to_object_id(user_id, "user")
        deleted = self.store.users.find_one_and_delete({"_id": object_id})
        if not deleted:
            raise NotFoundError("User not found")
        logger.info("Deleted user %s", object_id)
        return deleted

    def _update(self, user_id, fields: Dict) -> Dict:
        object_id = to_object_id(user_id, "user")
        updated = self.store.users.find_one_and_update(
            {"_id": object_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise NotFoundError("User not found")
        return updated
