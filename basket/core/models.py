"""Entity value objects.

Entities are never mutated in place: every change builds a new value with
``dataclasses.replace``. Each entity reads from a Firestore document
(camelCase fields, native timestamps) and serializes to the same field names
with millisecond timestamps for the on-device snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from basket.constants import TEMP_ID_PREFIX
from basket.core.timeutil import to_millis


def is_temporary_id(entity_id: str) -> bool:
    """Return True for client-generated ids of not-yet-confirmed entities."""
    return entity_id.startswith(TEMP_ID_PREFIX)


@dataclass(frozen=True)
class UserProfile:
    """A user document."""

    uid: str
    email: str = ""
    display_name: str | None = None
    photo_url: str | None = None
    push_token: str | None = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> UserProfile:
        return cls(
            uid=data.get("uid") or doc_id,
            email=data.get("email") or "",
            display_name=data.get("displayName"),
            photo_url=data.get("photoURL"),
            push_token=data.get("pushToken"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        return cls.from_document(data.get("uid", ""), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "pushToken": self.push_token,
        }


@dataclass(frozen=True)
class Group:
    """A shopping group. The owner is always one of the members."""

    id: str
    name: str
    owner_id: str
    members: tuple[str, ...] = ()
    created_at: int = 0

    def __post_init__(self) -> None:
        members = tuple(dict.fromkeys(self.members))
        if self.owner_id and self.owner_id not in members:
            members = (self.owner_id, *members)
        object.__setattr__(self, "members", members)

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Group:
        return cls(
            id=doc_id,
            name=data.get("name") or "",
            owner_id=data.get("ownerId") or "",
            members=tuple(data.get("members") or ()),
            created_at=to_millis(data.get("createdAt")),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Group:
        return cls.from_document(data.get("id", ""), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ownerId": self.owner_id,
            "members": list(self.members),
            "createdAt": self.created_at,
        }

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members


@dataclass(frozen=True)
class ShoppingList:
    """A shopping list. ``is_complete`` is derived from its items."""

    id: str
    group_id: str
    name: str
    created_by: str
    created_at: int = 0
    is_complete: bool = False
    updated_at: int | None = None
    last_updated_by: str | None = None
    pending: bool = False

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> ShoppingList:
        updated_at = data.get("updatedAt")
        return cls(
            id=doc_id,
            group_id=data.get("groupId") or "",
            name=data.get("name") or "",
            created_by=data.get("createdBy") or "",
            created_at=to_millis(data.get("createdAt")),
            is_complete=bool(data.get("isComplete", False)),
            updated_at=to_millis(updated_at) if updated_at is not None else None,
            last_updated_by=data.get("lastUpdatedBy"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShoppingList:
        return cls.from_document(data.get("id", ""), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "name": self.name,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "isComplete": self.is_complete,
            "updatedAt": self.updated_at,
            "lastUpdatedBy": self.last_updated_by,
        }

    @property
    def activity_time(self) -> int:
        """Last update time, falling back to creation time."""
        return self.updated_at or self.created_at

    @property
    def activity_by(self) -> str:
        return self.last_updated_by or self.created_by

    @property
    def author_id(self) -> str:
        return self.created_by

    @property
    def content(self) -> str:
        return self.name


@dataclass(frozen=True)
class ShoppingItem:
    """An item on a shopping list."""

    id: str
    list_id: str
    text: str
    added_by: str
    is_done: bool = False
    created_at: int = 0
    photo_url: str | None = None
    pending: bool = False

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> ShoppingItem:
        return cls(
            id=doc_id,
            list_id=data.get("shoppingListId") or "",
            text=data.get("text") or "",
            added_by=data.get("addedBy") or "",
            is_done=bool(data.get("isDone", False)),
            created_at=to_millis(data.get("createdAt")),
            photo_url=data.get("photoURL"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShoppingItem:
        return cls.from_document(data.get("id", ""), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shoppingListId": self.list_id,
            "text": self.text,
            "addedBy": self.added_by,
            "isDone": self.is_done,
            "createdAt": self.created_at,
            "photoURL": self.photo_url,
        }

    @property
    def author_id(self) -> str:
        return self.added_by

    @property
    def content(self) -> str:
        return self.text


@dataclass(frozen=True)
class ChatMessage:
    """A group chat message. Messages are append-only."""

    id: str
    group_id: str
    text: str
    user_id: str
    user_name: str = ""
    created_at: int = 0
    image_urls: tuple[str, ...] = ()
    pending: bool = False

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> ChatMessage:
        image_urls = data.get("imageUrls") or ()
        if not image_urls and data.get("imageUrl"):
            image_urls = (data["imageUrl"],)
        return cls(
            id=doc_id,
            group_id=data.get("groupId") or "",
            text=data.get("text") or "",
            user_id=data.get("userId") or "",
            user_name=data.get("userName") or "",
            created_at=to_millis(data.get("createdAt")),
            image_urls=tuple(image_urls),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls.from_document(data.get("id", ""), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "text": self.text,
            "userId": self.user_id,
            "userName": self.user_name,
            "createdAt": self.created_at,
            "imageUrls": list(self.image_urls) or None,
        }

    @property
    def author_id(self) -> str:
        return self.user_id

    @property
    def content(self) -> str:
        return self.text
