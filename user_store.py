"""
User accounts: registration, credential checks, self-service profile and
admin management.
"""
import logging
import re
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import hash_password, verify_password
from database import USERS, create_document, to_object_id, utcnow
from errors import AccessDenied, NotFound, ValidationFailed
from schemas import (
    PasswordChange, Principal, ProfileUpdate, RegisterRequest, Role, User, page_meta,
)

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = {"name": 1, "email": 1, "role": 1, "contact": 1, "created_at": 1, "updated_at": 1}


def user_view(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Client-facing user; the password hash never leaves this module"""
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "role": doc.get("role", Role.USER.value),
        "contact": doc.get("contact"),
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }


class UserStore:
    def __init__(self, db: Database):
        self.db = db
        self.users = db[USERS]

    def exists(self, user_id: Any) -> bool:
        oid = to_object_id(user_id)
        return oid is not None and self.users.find_one({"_id": oid}, {"_id": 1}) is not None

    def _load(self, user_id: str, projection: Optional[Dict[str, int]] = PUBLIC_FIELDS) -> Dict[str, Any]:
        oid = to_object_id(user_id)
        doc = self.users.find_one({"_id": oid}, projection) if oid else None
        if not doc:
            raise NotFound("User not found")
        return doc

    def _email_taken(self, email: str, exclude_id=None) -> bool:
        query: Dict[str, Any] = {"email": email}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return self.users.find_one(query, {"_id": 1}) is not None

    def register(self, payload: RegisterRequest) -> Dict[str, Any]:
        email = payload.email.lower()
        if self._email_taken(email):
            raise ValidationFailed("Email already registered")
        user = User(
            name=payload.name.strip(),
            email=email,
            password_hash=hash_password(payload.password),
            role=Role.USER,
            contact=payload.contact,
        )
        try:
            user_id = create_document(self.db, USERS, user)
        except DuplicateKeyError:
            raise ValidationFailed("Email already registered")
        logger.info("Registered user %s", user_id)
        return self.get(user_id)

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        doc = self.users.find_one({"email": email.lower()})
        # Same error for unknown email and wrong password.
        if not doc or not verify_password(password, doc.get("password_hash", "")):
            raise ValidationFailed("Invalid credentials")
        return user_view(doc)

    def get(self, user_id: str) -> Dict[str, Any]:
        return user_view(self._load(user_id))

    def list_users(self, page: int = 1, limit: int = 10, role: Optional[Role] = None,
                   search: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if role:
            query["role"] = Role(role).value
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"email": {"$regex": pattern, "$options": "i"}},
            ]
        total = self.users.count_documents(query)
        docs = list(
            self.users.find(query, PUBLIC_FIELDS)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        pagination = page_meta(page, limit, total, len(docs))
        pagination["totalUsers"] = total
        return {"users": [user_view(d) for d in docs], "pagination": pagination}

    def update_profile(self, user_id: str, payload: ProfileUpdate) -> Dict[str, Any]:
        doc = self._load(user_id)
        updates: Dict[str, Any] = {}
        fields = payload.model_dump(exclude_unset=True)
        if fields.get("name"):
            updates["name"] = fields["name"].strip()
        if fields.get("email"):
            email = fields["email"].lower()
            if email != doc.get("email") and self._email_taken(email, exclude_id=doc["_id"]):
                raise ValidationFailed("Email already in use")
            updates["email"] = email
        if "contact" in fields:
            updates["contact"] = fields["contact"] or None
        if updates:
            updates["updated_at"] = utcnow()
            try:
                self.users.update_one({"_id": doc["_id"]}, {"$set": updates})
            except DuplicateKeyError:
                raise ValidationFailed("Email already in use")
        return self.get(user_id)

    def change_password(self, user_id: str, payload: PasswordChange) -> None:
        doc = self._load(user_id, projection=None)
        if not verify_password(payload.current_password, doc.get("password_hash", "")):
            raise ValidationFailed("Current password is incorrect")
        self.users.update_one(
            {"_id": doc["_id"]},
            {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
        )
        logger.info("Password changed for user %s", user_id)

    def set_role(self, actor: Principal, user_id: str, role: Role) -> Dict[str, Any]:
        doc = self._load(user_id)
        if str(doc["_id"]) == actor.id:
            raise AccessDenied("You cannot change your own role")
        self.users.update_one({"_id": doc["_id"]}, {"$set": {"role": Role(role).value, "updated_at": utcnow()}})
        logger.info("User %s set role of %s to %s", actor.id, user_id, Role(role).value)
        return self.get(user_id)

    def delete(self, actor: Principal, user_id: str) -> None:
        doc = self._load(user_id)
        if str(doc["_id"]) == actor.id:
            raise AccessDenied("You cannot delete your own account")
        self.users.delete_one({"_id": doc["_id"]})
        logger.info("User %s deleted user %s", actor.id, user_id)
