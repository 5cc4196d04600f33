"""
Price resolution shared by the cart, the catalog read paths and checkout.

Everything here is pure: products, variants and packs are plain mappings
shaped like the stored documents.
"""
from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Mapping, Optional

from config import settings


@dataclass(frozen=True)
class PriceInfo:
    display_price: float
    regular_price: float
    discount_percent: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def has_promo(promo_price: Optional[float]) -> bool:
    return promo_price is not None and promo_price > 0


def effective_price(price: Optional[float], promo_price: Optional[float]) -> float:
    if has_promo(promo_price):
        return float(promo_price)
    return float(price or 0)


def discount_percent(regular: float, display: float) -> int:
    if regular <= 0 or display >= regular:
        return 0
    return round((regular - display) / regular * 100)


def same_attributes(a: Optional[Mapping[str, Any]], b: Optional[Mapping[str, Any]]) -> bool:
    a = a or {}
    b = b or {}
    return len(a) == len(b) and all(k in b and b[k] == v for k, v in a.items())


def find_variant(product: Mapping[str, Any], attributes: Optional[Mapping[str, Any]]) -> Optional[tuple[int, dict]]:
    """Return ``(index, variant)`` for the variant whose attributes match exactly."""
    if not attributes:
        return None
    for i, variant in enumerate(product.get("variants") or []):
        if variant.get("attributes") and same_attributes(variant["attributes"], attributes):
            return i, variant
    return None


def uses_variants(product: Mapping[str, Any]) -> bool:
    return bool(product.get("has_variants") and product.get("variants"))


def unit_price(product: Mapping[str, Any], variant: Optional[Mapping[str, Any]] = None) -> float:
    if variant is not None:
        return effective_price(variant.get("price"), variant.get("promo_price"))
    return effective_price(product.get("price"), product.get("promo_price"))


def price_info(product: Mapping[str, Any], variant: Optional[Mapping[str, Any]] = None) -> PriceInfo:
    if variant is None and uses_variants(product):
        variants = product["variants"]
        display = min(unit_price(product, v) for v in variants)
        regular = min(float(v.get("price") or 0) for v in variants)
        return PriceInfo(display, regular, discount_percent(regular, display))

    source = variant if variant is not None else product
    regular = float(source.get("price") or 0)
    promo = source.get("promo_price")
    if has_promo(promo) and promo < regular:
        return PriceInfo(float(promo), regular, discount_percent(regular, float(promo)))
    return PriceInfo(regular, regular, 0)


def pack_price_info(pack: Mapping[str, Any]) -> PriceInfo:
    return PriceInfo(
        float(pack.get("discount_price") or 0),
        float(pack.get("original_price") or 0),
        round(pack.get("discount_percentage") or 0),
    )


def pack_reference_price(components: Iterable[tuple[Mapping[str, Any], int]]) -> float:
    """Sum of the component products' effective prices, used when a pack omits original_price."""
    return round(sum(price_info(p).display_price * qty for p, qty in components), 2)


def shipping_cost(subtotal: float) -> float:
    if subtotal > settings.FREE_SHIPPING_THRESHOLD:
        return 0.0
    return float(settings.SHIPPING_FEE)


def order_totals(lines: Iterable[tuple[float, int]]) -> tuple[float, float, float]:
    """``(subtotal, shipping, total)`` for ``(unit_price, quantity)`` lines."""
    subtotal = round(sum(price * qty for price, qty in lines), 2)
    shipping = shipping_cost(subtotal)
    return subtotal, shipping, round(subtotal + shipping, 2)
