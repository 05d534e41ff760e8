"""Core module for the basket application."""

from .models import ChatMessage, Group, ShoppingItem, ShoppingList, UserProfile

__all__ = ["ChatMessage", "Group", "ShoppingItem", "ShoppingList", "UserProfile"]
