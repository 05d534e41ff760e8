"""Unread activity derived from entity streams and local visit times."""

from __future__ import annotations

from collections.abc import Iterable

from basket.core.models import ChatMessage, ShoppingItem, ShoppingList
from basket.storage.visits import Scope, VisitTracker


def list_is_unread(shopping_list: ShoppingList, last_visit: int, viewer_id: str) -> bool:
    return (
        shopping_list.activity_time > last_visit
        and shopping_list.activity_by != viewer_id
    )


def item_is_unread(item: ShoppingItem, last_visit: int, viewer_id: str) -> bool:
    return item.created_at > last_visit and item.added_by != viewer_id


def chat_is_unread(
    messages: Iterable[ChatMessage], last_visit: int, viewer_id: str
) -> bool:
    return any(
        m.created_at > last_visit and m.user_id != viewer_id and not m.pending
        for m in messages
    )


def group_is_unread(chat_unread: bool, lists_unread: Iterable[bool]) -> bool:
    return chat_unread or any(lists_unread)


class UnreadTracker:
    """Evaluates unread status for one viewer against their visit times."""

    def __init__(self, visits: VisitTracker, viewer_id: str) -> None:
        self.visits = visits
        self.viewer_id = viewer_id

    def list_unread(self, shopping_list: ShoppingList) -> bool:
        last_visit = self.visits.last_visit(Scope.LIST, shopping_list.id)
        return list_is_unread(shopping_list, last_visit, self.viewer_id)

    def chat_unread(self, group_id: str, messages: Iterable[ChatMessage]) -> bool:
        last_visit = self.visits.last_visit(Scope.CHAT, group_id)
        return chat_is_unread(messages, last_visit, self.viewer_id)

    def group_unread(
        self,
        group_id: str,
        lists: Iterable[ShoppingList],
        messages: Iterable[ChatMessage],
    ) -> bool:
        return group_is_unread(
            self.chat_unread(group_id, messages),
            (self.list_unread(lst) for lst in lists),
        )

    def unread_item_ids(self, list_id: str, items: Iterable[ShoppingItem]) -> set[str]:
        last_visit = self.visits.last_visit(Scope.LIST, list_id)
        return {i.id for i in items if item_is_unread(i, last_visit, self.viewer_id)}
