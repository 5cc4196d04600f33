from __future__ import annotations
import logging
import re
import unicodedata
from typing import Any, Optional

from database import create_document, get_db, get_documents, serialize, to_object_id, update_document
from errors import BadRequest, NotFound
from localized import normalize, plain_name
from schemas import Category, CategoryUpdate

logger = logging.getLogger(__name__)


def slugify(name: Any) -> str:
    """Lowercase, accents folded, runs of anything but letters and digits become one dash.

    Letters outside Latin (Arabic names) are kept as they are.
    """
    text = unicodedata.normalize("NFKD", plain_name(name).lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return re.sub(r"[\W_]+", "-", text).strip("-")


async def _unique_slug(db, name: Any, exclude: Any = None) -> str:
    slug = slugify(name)
    if not slug:
        raise BadRequest("Category name is required")
    query: dict[str, Any] = {"slug": slug}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if await db["category"].find_one(query):
        raise BadRequest("slug already exists")
    return slug


async def list_categories(parent: Optional[str] = None, top_level: bool = False) -> list[dict[str, Any]]:
    query: dict[str, Any] = {}
    if parent:
        query["parent"] = to_object_id(parent)
    elif top_level:
        query["parent"] = None
    return await get_documents("category", query, limit=0, sort=[("slug", 1)])


async def get_category(category_id: str) -> dict[str, Any]:
    db = await get_db()
    doc = await db["category"].find_one({"_id": to_object_id(category_id)})
    if not doc:
        raise NotFound("Category not found")
    return serialize(doc)


async def create_category(payload: Category) -> dict[str, Any]:
    db = await get_db()
    parent_id = None
    if payload.parent:
        parent = await db["category"].find_one({"_id": to_object_id(payload.parent)})
        if not parent:
            raise NotFound("Parent category not found")
        if parent.get("parent"):
            raise BadRequest("Subcategories cannot have children")
        parent_id = parent["_id"]

    return await create_document("category", {
        "name": normalize(payload.name),
        "slug": await _unique_slug(db, payload.name),
        "description": payload.description,
        "image": payload.image,
        "parent": parent_id,
        "is_sub_category": parent_id is not None,
    })


async def update_category(category_id: str, payload: CategoryUpdate) -> dict[str, Any]:
    db = await get_db()
    _id = to_object_id(category_id)
    if not await db["category"].find_one({"_id": _id}):
        raise NotFound("Category not found")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if payload.name:
        changes["name"] = normalize(payload.name)
        changes["slug"] = await _unique_slug(db, payload.name, exclude=_id)
    return serialize(await update_document("category", _id, changes))


async def delete_category(category_id: str) -> dict[str, int]:
    """Delete a category with its subcategories.

    Products filed under the removed subtree move to the removed category's
    parent when it has one; otherwise their category is unset.
    """
    db = await get_db()
    _id = to_object_id(category_id)
    category = await db["category"].find_one({"_id": _id})
    if not category:
        raise NotFound("Category not found")

    children = [c["_id"] async for c in db["category"].find({"parent": _id}, {"_id": 1})]
    subtree = [_id, *children]

    target = category.get("parent")
    update = {"$set": {"category": target}} if target else {"$unset": {"category": ""}}
    moved = await db["product"].update_many({"category": {"$in": subtree}}, update)
    removed = await db["category"].delete_many({"_id": {"$in": subtree}})

    logger.info(
        "Deleted category %s with %d subcategor(ies); %d product(s) %s",
        _id, len(children), moved.modified_count, "reassigned" if target else "uncategorized",
    )
    return {"deleted_categories": removed.deleted_count, "updated_products": moved.modified_count}
