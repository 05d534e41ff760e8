"""Adapters for the hosted document store."""

from .base import (
    ArrayRemove,
    ArrayUnion,
    CollectionQuery,
    Document,
    DocumentEmission,
    DocumentStore,
    Emission,
    Filter,
    Order,
    Subscription,
)

__all__ = [
    "ArrayRemove",
    "ArrayUnion",
    "CollectionQuery",
    "Document",
    "DocumentEmission",
    "DocumentStore",
    "Emission",
    "Filter",
    "Order",
    "Subscription",
]
