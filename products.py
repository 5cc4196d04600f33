from __future__ import annotations
import logging
import math
import re
from typing import Any, Optional

import pricing
from database import get_db, serialize, to_object_id, utcnow
from errors import BadRequest, NotFound
from localized import normalize
from schemas import Product, ProductUpdate

logger = logging.getLogger(__name__)

SORTS = {
    "price-asc": [("list_price", 1)],
    "price-desc": [("list_price", -1)],
    "rating": [("rating", -1)],
    "newest": [("created_at", -1)],
}

RELATED_LIMIT = 4


def list_price(doc: dict[str, Any]) -> float:
    """Price shown in listings; the cheapest variant for variant products. Stored for filtering and sorting."""
    return pricing.price_info(doc).display_price


def to_client(doc: dict[str, Any], category: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    out = dict(doc)
    if category is not None:
        out["category"] = {"_id": category["_id"], "name": category.get("name"), "slug": category.get("slug")}
    out["price_info"] = pricing.price_info(doc).to_dict()
    return serialize(out)


async def _categories_for(db, products: list[dict[str, Any]]) -> dict[Any, dict[str, Any]]:
    ids = list({p["category"] for p in products if p.get("category")})
    found = {}
    if ids:
        async for c in db["category"].find({"_id": {"$in": ids}}, {"name": 1, "slug": 1}):
            found[c["_id"]] = c
    return found


async def _require_category(db, category_id: Any):
    _id = to_object_id(category_id)
    if not await db["category"].find_one({"_id": _id}):
        raise NotFound("Category not found")
    return _id


async def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_rating: Optional[float] = None,
    featured: bool = False,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
) -> dict[str, Any]:
    db = await get_db()
    query: dict[str, Any] = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"name": pattern}, {"name.fr": pattern}, {"name.ar": pattern},
            {"tags": pattern},
        ]
    if category:
        query["category"] = to_object_id(category)
    if min_price is not None or max_price is not None:
        query["list_price"] = {}
        if min_price is not None:
            query["list_price"]["$gte"] = min_price
        if max_price is not None:
            query["list_price"]["$lte"] = max_price
    if min_rating is not None:
        query["rating"] = {"$gte": min_rating}
    if featured:
        query["featured"] = True

    page = max(page, 1)
    limit = max(limit, 1)
    cursor = db["product"].find(query).sort(SORTS.get(sort or "", SORTS["newest"]))
    docs = [d async for d in cursor.skip((page - 1) * limit).limit(limit)]
    total = await db["product"].count_documents(query)
    categories = await _categories_for(db, docs)

    return {
        "products": [to_client(d, categories.get(d.get("category"))) for d in docs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


async def get_product(product_id: str) -> dict[str, Any]:
    db = await get_db()
    doc = await db["product"].find_one({"_id": to_object_id(product_id)})
    if not doc:
        raise NotFound("Product not found")
    categories = await _categories_for(db, [doc])
    return to_client(doc, categories.get(doc.get("category")))


async def related_products(product_id: str) -> list[dict[str, Any]]:
    db = await get_db()
    doc = await db["product"].find_one({"_id": to_object_id(product_id)})
    if not doc:
        raise NotFound("Product not found")
    if not doc.get("category"):
        return []
    query = {"category": doc["category"], "_id": {"$ne": doc["_id"]}}
    related = [d async for d in db["product"].find(query).limit(RELATED_LIMIT)]
    categories = await _categories_for(db, related)
    return [to_client(d, categories.get(d.get("category"))) for d in related]


async def create_product(payload: Product) -> dict[str, Any]:
    db = await get_db()
    doc = payload.model_dump()
    doc["name"] = normalize(payload.name)
    doc["description"] = normalize(payload.description)
    if payload.category:
        doc["category"] = await _require_category(db, payload.category)
    now = utcnow()
    doc.update(list_price=list_price(doc), created_at=now, updated_at=now)
    result = await db["product"].insert_one(doc)
    logger.info("Product %s created", result.inserted_id)
    return await get_product(str(result.inserted_id))


async def update_product(product_id: str, payload: ProductUpdate) -> dict[str, Any]:
    db = await get_db()
    _id = to_object_id(product_id)
    current = await db["product"].find_one({"_id": _id})
    if not current:
        raise NotFound("Product not found")

    changes = payload.model_dump(exclude_unset=True)
    for key in ("name", "description"):
        if key in changes:
            changes[key] = normalize(getattr(payload, key))
    if changes.get("category"):
        changes["category"] = await _require_category(db, changes["category"])

    merged = {**current, **changes}
    if merged.get("has_variants"):
        if not merged.get("variants"):
            raise BadRequest("Products with variants need at least one variant")
    elif merged.get("price") is None:
        raise BadRequest("Valid price is required")

    changes["list_price"] = list_price(merged)
    changes["updated_at"] = utcnow()
    await db["product"].update_one({"_id": _id}, {"$set": changes})
    return await get_product(product_id)


async def delete_product(product_id: str) -> None:
    db = await get_db()
    res = await db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
