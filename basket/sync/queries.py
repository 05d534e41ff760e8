"""Collection queries used by views, the snapshot builder and mutations."""

from __future__ import annotations

from basket import constants
from basket.store.base import CollectionQuery, Filter, Order


def groups_for_user(user_id: str) -> CollectionQuery:
    return CollectionQuery(
        path=(constants.GROUPS,),
        filters=(Filter("members", "array_contains", user_id),),
    )


def lists_for_group(group_id: str) -> CollectionQuery:
    return CollectionQuery(
        path=(constants.SHOPPING_LISTS,),
        filters=(Filter("groupId", "==", group_id),),
        order=(Order("isComplete"), Order("createdAt", descending=True)),
    )


def items_for_list(list_id: str) -> CollectionQuery:
    return CollectionQuery(
        path=(constants.ITEMS,),
        filters=(Filter("shoppingListId", "==", list_id),),
        order=(Order("isDone"), Order("createdAt", descending=True)),
    )


def chat_messages(group_id: str) -> CollectionQuery:
    return CollectionQuery(
        path=(constants.CHATS, group_id, constants.MESSAGES),
        order=(Order("createdAt", descending=True),),
    )


def users_by_display_name(display_name: str) -> CollectionQuery:
    return CollectionQuery(
        path=(constants.USERS,),
        filters=(Filter("displayName", "==", display_name.strip().lower()),),
    )


def messages_collection(group_id: str) -> str:
    return "/".join((constants.CHATS, group_id, constants.MESSAGES))
