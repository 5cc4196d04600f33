from __future__ import annotations
import logging

from database import get_db, utcnow
from products import list_price

logger = logging.getLogger(__name__)

# Sample kitchenware catalog: two top-level categories, one subcategory
SEED_CATEGORIES: list[dict] = [
    {"key": "cookware", "name": {"fr": "Batterie de cuisine", "ar": "أواني الطبخ"}, "slug": "cookware"},
    {"key": "pans", "name": {"fr": "Poêles", "ar": "مقالي"}, "slug": "pans", "parent": "cookware"},
    {"key": "tableware", "name": {"fr": "Art de la table", "ar": "أدوات المائدة"}, "slug": "tableware"},
]

SEED_PRODUCTS: list[dict] = [
    {"key": "pan", "name": {"fr": "Poêle en fonte 28 cm", "ar": "مقلاة حديد 28 سم"}, "category": "pans",
     "price": 89.0, "promo_price": 74.0, "stock": 20, "tags": ["fonte", "poêle"], "featured": True},
    {"key": "pot", "name": {"fr": "Cocotte émaillée", "ar": "قدر مطلي"}, "category": "cookware",
     "price": 140.0, "stock": 8, "tags": ["cocotte"]},
    {"key": "knife", "name": {"fr": "Couteau de chef", "ar": "سكين الطاهي"}, "category": "cookware",
     "price": 45.0, "stock": 35, "tags": ["couteau"]},
    {"key": "plates", "name": {"fr": "Assiettes en grès", "ar": "صحون فخارية"}, "category": "tableware",
     "has_variants": True, "stock": 0,
     "variant_attributes": [{"name": "Couleur", "values": ["Blanc", "Vert"]}, {"name": "Lot", "values": ["4", "6"]}],
     "variants": [
         {"attributes": {"Couleur": "Blanc", "Lot": "4"}, "price": 32.0, "stock": 12},
         {"attributes": {"Couleur": "Blanc", "Lot": "6"}, "price": 46.0, "promo_price": 39.0, "stock": 6},
         {"attributes": {"Couleur": "Vert", "Lot": "4"}, "price": 34.0, "stock": 0},
     ]},
]

SEED_PACKS: list[dict] = [
    {"name": {"fr": "Pack cuisine essentielle", "ar": "حزمة المطبخ الأساسية"},
     "products": [("pan", 1), ("knife", 1)], "original_price": 119.0, "discount_price": 99.0,
     "discount_percentage": 17, "featured": True},
]


async def seed_catalog() -> dict[str, int]:
    """Insert the sample catalog when the product collection is empty."""
    db = await get_db()
    if await db["product"].count_documents({}) > 0:
        return {"categories": 0, "products": 0, "packs": 0}

    now = utcnow()
    meta = {"created_at": now, "updated_at": now}
    cat_ids: dict[str, object] = {}
    for c in SEED_CATEGORIES:
        parent = cat_ids.get(c.get("parent"))
        doc = {"name": c["name"], "slug": c["slug"], "description": "", "image": "",
               "parent": parent, "is_sub_category": parent is not None, **meta}
        cat_ids[c["key"]] = (await db["category"].insert_one(doc)).inserted_id

    prod_ids: dict[str, object] = {}
    for p in SEED_PRODUCTS:
        doc = {k: v for k, v in p.items() if k != "key"}
        doc.setdefault("description", "")
        doc.setdefault("images", [])
        doc["category"] = cat_ids[p["category"]]
        doc["list_price"] = list_price(doc)
        prod_ids[p["key"]] = (await db["product"].insert_one({**doc, **meta})).inserted_id

    for pk in SEED_PACKS:
        doc = {**pk, "description": "", "image": None, "active": True, "start_date": now, "end_date": None,
               "products": [{"product": prod_ids[key], "quantity": qty} for key, qty in pk["products"]]}
        await db["pack"].insert_one({**doc, **meta})

    logger.info("Seeded %d categories, %d products, %d packs", len(cat_ids), len(prod_ids), len(SEED_PACKS))
    return {"categories": len(cat_ids), "products": len(prod_ids), "packs": len(SEED_PACKS)}
