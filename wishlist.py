from __future__ import annotations
import copy
from typing import Any, Mapping

from storage import KeyValueStorage


def _pid(product: Mapping[str, Any]) -> str:
    return str(product.get("id", product.get("_id")))


class WishlistStore:
    def __init__(self, storage: KeyValueStorage, key: str = "wishlist-storage"):
        self.storage = storage
        self.key = key
        saved = storage.get(key) or {}
        self.items: list[dict[str, Any]] = list(saved.get("items", []))

    def _persist(self) -> None:
        self.storage.set(self.key, {"items": self.items})

    def add_to_wishlist(self, product: Mapping[str, Any]) -> None:
        if self.is_in_wishlist(_pid(product)):
            return
        self.items = [*self.items, copy.deepcopy(dict(product))]
        self._persist()

    def remove_from_wishlist(self, product_id: str) -> None:
        self.items = [p for p in self.items if _pid(p) != str(product_id)]
        self._persist()

    def clear_wishlist(self) -> None:
        self.items = []
        self._persist()

    def is_in_wishlist(self, product_id: str) -> bool:
        return any(_pid(p) == str(product_id) for p in self.items)

    def get_total_items(self) -> int:
        return len(self.items)
