"""
Shopping cart state.

The cart is a value (``CartState``) plus pure transition functions; ``CartStore``
binds a state to a key-value storage and persists after every mutation so a
cart survives reloads. Stock ceilings are not enforced here; checkout
re-validates quantities against live stock.
"""
from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Optional

import pricing
from storage import KeyValueStorage

logger = logging.getLogger(__name__)

LineType = Literal["product", "pack"]

PACK_SNAPSHOT_FIELDS = (
    "id", "name", "description", "image", "discount_price", "original_price", "discount_percentage",
)


def _doc_id(doc: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not doc:
        return None
    value = doc.get("id", doc.get("_id"))
    return str(value) if value is not None else None


def _attributes(variant: Optional[Mapping[str, Any]]) -> Optional[dict[str, str]]:
    if variant is None:
        return None
    return dict(variant.get("attributes") or {})


@dataclass(frozen=True)
class CartLine:
    type: LineType
    quantity: int
    product: Optional[dict] = None
    selected_variant: Optional[dict] = None
    pack: Optional[dict] = None

    @property
    def item_id(self) -> Optional[str]:
        return _doc_id(self.product if self.type == "product" else self.pack)

    @property
    def variant_attributes(self) -> Optional[dict[str, str]]:
        return _attributes(self.selected_variant)

    def matches(self, item_id: str, type: LineType, variant_attributes: Optional[Mapping[str, Any]] = None,
                any_variant: bool = False) -> bool:
        if self.type != type or self.item_id != str(item_id):
            return False
        if type == "pack" or any_variant:
            return True
        mine = self.variant_attributes
        if mine is None or variant_attributes is None:
            # variant-less lines only ever match other variant-less lines
            return mine is None and variant_attributes is None
        return pricing.same_attributes(mine, variant_attributes)

    @property
    def unit_price(self) -> float:
        if self.type == "pack":
            return float((self.pack or {}).get("discount_price") or 0)
        return pricing.unit_price(self.product or {}, self.selected_variant)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "quantity": self.quantity}
        if self.type == "product":
            data["product"] = self.product
            if self.selected_variant is not None:
                data["selected_variant"] = self.selected_variant
        else:
            data["pack"] = self.pack
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartLine":
        return cls(
            type=data.get("type", "product"),
            quantity=int(data.get("quantity", 1)),
            product=data.get("product"),
            selected_variant=data.get("selected_variant"),
            pack=data.get("pack"),
        )


@dataclass(frozen=True)
class CartState:
    items: tuple[CartLine, ...] = field(default_factory=tuple)


def snapshot_pack(pack: Mapping[str, Any]) -> dict[str, Any]:
    snap = {k: copy.deepcopy(pack.get(k)) for k in PACK_SNAPSHOT_FIELDS if k in pack}
    if "id" not in snap and "_id" in pack:
        snap["id"] = str(pack["_id"])
    snap["products"] = [
        {"product": copy.deepcopy(entry.get("product")), "quantity": int(entry.get("quantity", 1))}
        for entry in pack.get("products") or []
    ]
    return snap


def _merge_or_append(state: CartState, new_line: CartLine, key_attrs: Optional[dict]) -> CartState:
    items = list(state.items)
    for i, line in enumerate(items):
        if line.matches(new_line.item_id, new_line.type, key_attrs):
            items[i] = replace(line, quantity=line.quantity + new_line.quantity)
            return CartState(tuple(items))
    return CartState((*items, new_line))


def add_product(state: CartState, product: Mapping[str, Any], quantity: int = 1,
                variant: Optional[Mapping[str, Any]] = None) -> CartState:
    line = CartLine(
        type="product",
        quantity=quantity,
        product=copy.deepcopy(dict(product)),
        selected_variant=copy.deepcopy(dict(variant)) if variant is not None else None,
    )
    return _merge_or_append(state, line, _attributes(variant))


def add_pack(state: CartState, pack: Mapping[str, Any], quantity: int = 1) -> CartState:
    line = CartLine(type="pack", quantity=quantity, pack=snapshot_pack(pack))
    return _merge_or_append(state, line, None)


def remove(state: CartState, item_id: str, type: LineType,
           variant_attributes: Optional[Mapping[str, Any]] = None) -> CartState:
    """Drop matching lines. Without ``variant_attributes`` every line of the product goes."""
    any_variant = variant_attributes is None
    return CartState(tuple(
        line for line in state.items
        if not line.matches(item_id, type, variant_attributes, any_variant=any_variant)
    ))


def update_quantity(state: CartState, item_id: str, quantity: int, type: LineType,
                    variant_attributes: Optional[Mapping[str, Any]] = None) -> CartState:
    if quantity <= 0:
        return remove(state, item_id, type, variant_attributes)
    any_variant = variant_attributes is None
    return CartState(tuple(
        replace(line, quantity=quantity)
        if line.matches(item_id, type, variant_attributes, any_variant=any_variant) else line
        for line in state.items
    ))


def clear(state: CartState) -> CartState:
    return CartState()


def total_items(state: CartState) -> int:
    return sum(line.quantity for line in state.items)


def total_price(state: CartState) -> float:
    return round(sum(line.unit_price * line.quantity for line in state.items), 2)


def order_items(state: CartState) -> list[dict[str, Any]]:
    """Lines in the shape ``POST /orders`` expects."""
    out = []
    for line in state.items:
        if line.type == "pack":
            out.append({"pack": line.item_id, "quantity": line.quantity})
            continue
        entry: dict[str, Any] = {"product": line.item_id, "quantity": line.quantity}
        if line.variant_attributes:
            entry["variant_attributes"] = line.variant_attributes
        out.append(entry)
    return out


class CartStore:
    def __init__(self, storage: KeyValueStorage, key: str = "cart-storage"):
        self.storage = storage
        self.key = key
        self.state = self._rehydrate()

    def _rehydrate(self) -> CartState:
        saved = self.storage.get(self.key) or {}
        try:
            return CartState(tuple(CartLine.from_dict(d) for d in saved.get("items", [])))
        except (AttributeError, TypeError, ValueError):
            logger.warning("Discarding malformed cart snapshot under %r", self.key)
            return CartState()

    def _commit(self, state: CartState) -> None:
        self.state = state
        self.storage.set(self.key, {"items": [line.to_dict() for line in state.items]})

    @property
    def items(self) -> tuple[CartLine, ...]:
        return self.state.items

    def add_to_cart(self, product: Mapping[str, Any], quantity: int = 1,
                    variant: Optional[Mapping[str, Any]] = None) -> None:
        self._commit(add_product(self.state, product, quantity, variant))

    def add_pack_to_cart(self, pack: Mapping[str, Any], quantity: int = 1) -> None:
        self._commit(add_pack(self.state, pack, quantity))

    def remove_from_cart(self, item_id: str, type: LineType,
                         variant_attributes: Optional[Mapping[str, Any]] = None) -> None:
        self._commit(remove(self.state, item_id, type, variant_attributes))

    def update_quantity(self, item_id: str, quantity: int, type: LineType,
                        variant_attributes: Optional[Mapping[str, Any]] = None) -> None:
        self._commit(update_quantity(self.state, item_id, quantity, type, variant_attributes))

    def clear_cart(self) -> None:
        self._commit(clear(self.state))

    def get_total_items(self) -> int:
        return total_items(self.state)

    def get_total_price(self) -> float:
        return total_price(self.state)

    def to_order_items(self) -> list[dict[str, Any]]:
        return order_items(self.state)
