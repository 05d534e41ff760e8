"""Input validation shared by mutations and request handlers.

Every validator returns the cleaned value or raises
:class:`basket.errors.ValidationError`.
"""

from __future__ import annotations

import logging
import re

from basket import constants
from basket.errors import SyncError, ValidationError
from basket.store.base import DocumentStore
from basket.sync import queries

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
WHITESPACE_RE = re.compile(r"\s+")


def sanitize_input(text: str) -> str:
    """Trim and collapse runs of whitespace into single spaces."""
    return WHITESPACE_RE.sub(" ", (text or "").strip())


def validate_name(name: str, field: str = "Name") -> str:
    """Validate a group name (or any short name)."""
    name = sanitize_input(name)
    if len(name) < constants.MIN_NAME_LENGTH:
        raise ValidationError(f"{field} cannot be empty.")
    if len(name) > constants.MAX_NAME_LENGTH:
        raise ValidationError(
            f"{field} is too long (maximum {constants.MAX_NAME_LENGTH} characters)."
        )
    return name


def validate_item_name(name: str) -> str:
    """Validate an item or list name."""
    name = sanitize_input(name)
    if not name:
        raise ValidationError("Item name cannot be empty.")
    if len(name) > constants.MAX_ITEM_NAME_LENGTH:
        raise ValidationError(
            f"Name is too long (maximum {constants.MAX_ITEM_NAME_LENGTH} characters)."
        )
    return name


def validate_message(text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty.")
    if len(text) > constants.MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message is too long (maximum {constants.MAX_MESSAGE_LENGTH} characters)."
        )
    return text


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username cannot be empty.")
    if len(username) < constants.MIN_USERNAME_LENGTH:
        raise ValidationError(
            f"Username must be at least {constants.MIN_USERNAME_LENGTH} characters."
        )
    if len(username) > constants.MAX_USERNAME_LENGTH:
        raise ValidationError(
            f"Username is too long (maximum {constants.MAX_USERNAME_LENGTH} characters)."
        )
    if not USERNAME_RE.match(username):
        raise ValidationError(
            "Username may only contain letters, digits, underscores and hyphens."
        )
    return username


class UserDirectory:
    """Lookups against the users collection by display name."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def find_by_display_name(self, display_name: str) -> list:
        """Return user documents whose stored (lower-cased) name matches."""
        return self.store.query(queries.users_by_display_name(display_name))

    def username_exists(self, username: str, exclude_uid: str | None = None) -> bool:
        """Return True if another user already holds ``username``.

        Lookups that fail are logged and reported as not taken.
        """
        try:
            docs = self.find_by_display_name(username)
        except SyncError as e:
            logger.error(f"Error checking username existence: {e.message}")
            return False
        if exclude_uid:
            return any(doc.id != exclude_uid for doc in docs)
        return bool(docs)
