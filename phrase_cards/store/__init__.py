"""Local persistent store for cards and their audio payloads."""

from .manager import StoreManager, StoreHandle
from .repository import CardRepository

__all__ = [
    'StoreManager',
    'StoreHandle',
    'CardRepository'
]
