from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Optional

import pricing
from database import as_utc, get_db, serialize, to_object_id, update_document, utcnow
from errors import BadRequest, NotFound
from localized import normalize
from schemas import Pack, PackEntry, PackUpdate

logger = logging.getLogger(__name__)

PRODUCT_SUMMARY = {"name": 1, "price": 1, "promo_price": 1, "images": 1, "stock": 1, "has_variants": 1}


def is_live(pack: dict[str, Any], now: datetime) -> bool:
    """Active and inside its validity window (an open end date never expires)."""
    if not pack.get("active", True):
        return False
    start = as_utc(pack.get("start_date"))
    end = as_utc(pack.get("end_date"))
    if start is not None and start > now:
        return False
    return end is None or end >= now


async def _populate(db, packs: list[dict[str, Any]], projection: Optional[dict] = PRODUCT_SUMMARY) -> list[dict[str, Any]]:
    ids = list({e["product"] for p in packs for e in p.get("products") or []})
    found = {}
    if ids:
        async for prod in db["product"].find({"_id": {"$in": ids}}, projection):
            found[prod["_id"]] = prod
    out = []
    for p in packs:
        p = dict(p)
        p["products"] = [
            {"product": found.get(e["product"], e["product"]), "quantity": e.get("quantity", 1)}
            for e in p.get("products") or []
        ]
        p["price_info"] = pricing.pack_price_info(p).to_dict()
        out.append(p)
    return serialize(out)


async def _resolve_entries(db, entries: list[PackEntry]) -> list[tuple[dict[str, Any], int]]:
    resolved = []
    for entry in entries:
        product = await db["product"].find_one({"_id": to_object_id(entry.product)})
        if not product:
            raise BadRequest(f"Product {entry.product} not found")
        resolved.append((product, entry.quantity))
    return resolved


def _fill_prices(doc: dict[str, Any], components: list[tuple[dict[str, Any], int]]) -> None:
    if doc.get("original_price") is None:
        doc["original_price"] = pricing.pack_reference_price(components)
    if doc.get("discount_percentage") is None:
        doc["discount_percentage"] = pricing.discount_percent(doc["original_price"], doc["discount_price"])


async def list_packs(featured: bool = False) -> list[dict[str, Any]]:
    db = await get_db()
    now = utcnow()
    query: dict[str, Any] = {
        "active": True,
        "start_date": {"$lte": now},
        "$or": [{"end_date": None}, {"end_date": {"$gte": now}}],
    }
    if featured:
        query["featured"] = True
    packs = [p async for p in db["pack"].find(query).sort([("featured", -1), ("created_at", -1)])]
    return await _populate(db, packs)


async def list_all_packs() -> list[dict[str, Any]]:
    db = await get_db()
    packs = [p async for p in db["pack"].find({}).sort([("created_at", -1)])]
    return await _populate(db, packs)


async def get_pack(pack_id: str, include_inactive: bool = False) -> dict[str, Any]:
    db = await get_db()
    pack = await db["pack"].find_one({"_id": to_object_id(pack_id)})
    if not pack or (not include_inactive and not is_live(pack, utcnow())):
        raise NotFound("Pack not found")
    return (await _populate(db, [pack], projection=None))[0]


async def create_pack(payload: Pack) -> dict[str, Any]:
    db = await get_db()
    components = await _resolve_entries(db, payload.products)
    now = utcnow()
    doc = payload.model_dump()
    doc.update(
        name=normalize(payload.name),
        description=normalize(payload.description),
        products=[{"product": p["_id"], "quantity": qty} for p, qty in components],
        start_date=as_utc(payload.start_date) or now,
        end_date=as_utc(payload.end_date),
        created_at=now,
        updated_at=now,
    )
    _fill_prices(doc, components)
    result = await db["pack"].insert_one(doc)
    logger.info("Pack %s created with %d product(s)", result.inserted_id, len(components))
    return await get_pack(str(result.inserted_id), include_inactive=True)


async def update_pack(pack_id: str, payload: PackUpdate) -> dict[str, Any]:
    db = await get_db()
    _id = to_object_id(pack_id)
    pack = await db["pack"].find_one({"_id": _id})
    if not pack:
        raise NotFound("Pack not found")

    changes = payload.model_dump(exclude_unset=True)
    if "products" in changes:
        components = await _resolve_entries(db, payload.products or [])
        changes["products"] = [{"product": p["_id"], "quantity": qty} for p, qty in components]
        if changes.get("original_price") is None:
            changes["original_price"] = pricing.pack_reference_price(components)
    repriced = any(changes.get(key) is not None for key in ("products", "original_price", "discount_price"))
    if repriced and changes.get("discount_percentage") is None:
        merged = {**pack, **changes}
        changes["discount_percentage"] = pricing.discount_percent(
            float(merged.get("original_price") or 0), float(merged.get("discount_price") or 0)
        )
    for key in ("name", "description"):
        if key in changes:
            changes[key] = normalize(getattr(payload, key))
    for key in ("start_date", "end_date"):
        if key in changes:
            changes[key] = as_utc(changes[key])
    if changes.get("start_date") is None:
        changes.pop("start_date", None)
    changes["updated_at"] = utcnow()

    await db["pack"].update_one({"_id": _id}, {"$set": changes})
    return await get_pack(pack_id, include_inactive=True)


async def delete_pack(pack_id: str) -> None:
    db = await get_db()
    res = await db["pack"].delete_one({"_id": to_object_id(pack_id)})
    if res.deleted_count == 0:
        raise NotFound("Pack not found")


async def toggle_active(pack_id: str) -> dict[str, Any]:
    db = await get_db()
    _id = to_object_id(pack_id)
    pack = await db["pack"].find_one({"_id": _id})
    if not pack:
        raise NotFound("Pack not found")
    return serialize(await update_document("pack", _id, {"active": not pack.get("active", True)}))
