"""List completion derivation."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence

from basket import constants
from basket.core.models import ShoppingItem, ShoppingList
from basket.store.base import DocumentStore

from . import queries


def is_complete(items: Sequence[ShoppingItem]) -> bool:
    """A list is complete when it has items and every one is done."""
    return len(items) > 0 and all(item.is_done for item in items)


def with_completion(
    shopping_list: ShoppingList, items: Sequence[ShoppingItem]
) -> ShoppingList:
    done = is_complete(items)
    if shopping_list.is_complete == done:
        return shopping_list
    return dataclasses.replace(shopping_list, is_complete=done)


def recompute_list_completion(store: DocumentStore, list_id: str) -> bool:
    """Recompute ``isComplete`` from the stored items and write it back.

    Runs after a successful item write so concurrent toggles from several
    devices converge on the same flag.
    """
    items = [
        ShoppingItem.from_document(doc.id, doc.data)
        for doc in store.query(queries.items_for_list(list_id))
    ]
    done = is_complete(items)
    store.update(constants.SHOPPING_LISTS, list_id, {"isComplete": done})
    return done


def touch_list(store: DocumentStore, list_id: str, user_id: str) -> None:
    """Stamp the list as updated by ``user_id`` so other members see activity."""
    store.update(
        constants.SHOPPING_LISTS,
        list_id,
        {"updatedAt": store.server_timestamp(), "lastUpdatedBy": user_id},
    )
