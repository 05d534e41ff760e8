"""Local snapshot store: a full on-device copy of what the user can see."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from basket.constants import BACKUP_FILE, SNAPSHOT_VERSION
from basket.core.models import (
    ChatMessage,
    Group,
    ShoppingItem,
    ShoppingList,
    UserProfile,
)
from .files import atomic_write_text, ensure_dir

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """A versioned, point-in-time bundle of every entity visible to one user."""

    user_id: str
    timestamp: int
    user_profile: UserProfile | None = None
    groups: tuple[Group, ...] = ()
    lists: tuple[ShoppingList, ...] = ()
    items: tuple[ShoppingItem, ...] = ()
    chat_messages: dict[str, tuple[ChatMessage, ...]] = field(default_factory=dict)
    version: str = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "userProfile": self.user_profile.to_dict() if self.user_profile else None,
            "groups": [g.to_dict() for g in self.groups],
            "lists": [lst.to_dict() for lst in self.lists],
            "items": [item.to_dict() for item in self.items],
            "chatMessages": {
                group_id: [m.to_dict() for m in messages]
                for group_id, messages in self.chat_messages.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        profile = data.get("userProfile")
        chats = data.get("chatMessages") or {}
        return cls(
            version=str(data.get("version") or SNAPSHOT_VERSION),
            timestamp=int(data.get("timestamp") or 0),
            user_id=str(data["userId"]),
            user_profile=UserProfile.from_dict(profile) if profile else None,
            groups=tuple(Group.from_dict(g) for g in data.get("groups") or ()),
            lists=tuple(ShoppingList.from_dict(x) for x in data.get("lists") or ()),
            items=tuple(ShoppingItem.from_dict(x) for x in data.get("items") or ()),
            chat_messages={
                group_id: tuple(
                    ChatMessage.from_dict({**m, "groupId": group_id}) for m in messages
                )
                for group_id, messages in chats.items()
            },
        )

    def visible_to(self, user_id: str) -> Snapshot:
        """Drop every entity outside the groups ``user_id`` belongs to."""
        groups = tuple(g for g in self.groups if g.is_member(user_id))
        group_ids = {g.id for g in groups}
        lists = tuple(lst for lst in self.lists if lst.group_id in group_ids)
        list_ids = {lst.id for lst in lists}
        return Snapshot(
            version=self.version,
            timestamp=self.timestamp,
            user_id=self.user_id,
            user_profile=self.user_profile,
            groups=groups,
            lists=lists,
            items=tuple(item for item in self.items if item.list_id in list_ids),
            chat_messages={
                gid: msgs for gid, msgs in self.chat_messages.items() if gid in group_ids
            },
        )

    def group(self, group_id: str) -> Group | None:
        return next((g for g in self.groups if g.id == group_id), None)

    def shopping_list(self, list_id: str) -> ShoppingList | None:
        return next((lst for lst in self.lists if lst.id == list_id), None)

    def lists_for_group(self, group_id: str) -> list[ShoppingList]:
        return [lst for lst in self.lists if lst.group_id == group_id]

    def items_for_list(self, list_id: str) -> list[ShoppingItem]:
        return [item for item in self.items if item.list_id == list_id]

    def messages_for_group(self, group_id: str) -> list[ChatMessage]:
        return list(self.chat_messages.get(group_id, ()))


class SnapshotStore:
    """Reads and writes the single snapshot file under ``directory``."""

    def __init__(self, directory: Path, filename: str = BACKUP_FILE) -> None:
        self.directory = Path(directory)
        self.path = self.directory / filename

    def write(self, snapshot: Snapshot) -> Path:
        """Replace the stored snapshot. Raises ``OSError`` on storage failure."""
        ensure_dir(self.directory)
        atomic_write_text(self.path, json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2))
        return self.path

    def read(self) -> Snapshot | None:
        """Return the stored snapshot, or None when missing or unreadable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            logger.warning(f"Ignoring corrupt snapshot at {self.path}: {e}")
            return None
        except OSError as e:
            logger.error(f"Error loading snapshot: {e}")
            return None
        try:
            return Snapshot.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring corrupt snapshot at {self.path}: {e}")
            return None

    def info(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"exists": False}
        stat = self.path.stat()
        return {"exists": True, "size": stat.st_size, "modificationTime": stat.st_mtime}

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)
