"""
Key/value storage for persisted client state.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class StateStorage(ABC):
    """String key/value storage (localStorage / sessionStorage semantics)."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...


class MemoryStorage(StateStorage):
    """In-process storage. Share one instance between pages to simulate a returning visitor."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = str(value)

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)
