from __future__ import annotations
import os
from typing import Optional

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

import categories
import orders
import packs
import pricing
import products
from auth import admin_user, current_user, optional_user
from config import settings
from database import get_db, to_object_id
from errors import NotFound, install_error_handlers
from logging_setup import configure_logging
from schemas import (
    Category, CategoryUpdate, CreateOrderRequest, Pack, PackUpdate, Product, ProductUpdate,
    QuoteRequest, StatusUpdate,
)
from seed import seed_catalog

configure_logging()

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)


@app.get("/")
async def root():
    return {"message": "Storefront Backend Running"}


@app.get("/test")
async def test():
    db = await get_db()
    colls, connected, error = [], False, ""
    try:
        colls = await db.list_collection_names()
        connected = True
    except Exception as e:
        error = str(e)[:80]
    return {
        "backend": "✅ Running",
        "database": "✅ Connected & Working" if connected else f"⚠️ Connected but Error: {error}",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Connected" if connected else "Not Connected",
        "collections": colls[:20],
    }


@app.post("/seed")
async def seed():
    inserted = await seed_catalog()
    return {"success": True, "seeded": any(inserted.values()), "inserted": inserted}


# Products

@app.get("/products")
async def get_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    min_rating: Optional[float] = Query(None, alias="minRating"),
    featured: bool = False,
    sort: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    result = await products.list_products(search, category, min_price, max_price, min_rating, featured, sort, page, limit)
    return {"success": True, **result}


@app.get("/products/{product_id}")
async def get_product(product_id: str):
    return {"success": True, "product": await products.get_product(product_id)}


@app.get("/products/{product_id}/related")
async def get_related_products(product_id: str):
    return {"success": True, "products": await products.related_products(product_id)}


@app.post("/products", status_code=201)
async def create_product(payload: Product, _admin: dict = Depends(admin_user)):
    product = await products.create_product(payload)
    return {"success": True, "message": "Product created successfully", "product": product}


@app.put("/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, _admin: dict = Depends(admin_user)):
    product = await products.update_product(product_id, payload)
    return {"success": True, "message": "Product updated successfully", "product": product}


@app.delete("/products/{product_id}")
async def delete_product(product_id: str, _admin: dict = Depends(admin_user)):
    await products.delete_product(product_id)
    return {"success": True, "message": "Product deleted successfully"}


@app.post("/pricing/quote")
async def quote(payload: QuoteRequest):
    db = await get_db()
    product = await db["product"].find_one({"_id": to_object_id(payload.product)})
    if not product:
        raise NotFound("Product not found")
    variant = None
    if payload.variant_attributes:
        match = pricing.find_variant(product, payload.variant_attributes)
        if match is None:
            raise NotFound("Variant not found")
        variant = match[1]
    return {"success": True, "price_info": pricing.price_info(product, variant).to_dict()}


# Categories

@app.get("/categories")
async def get_categories(parent: Optional[str] = None, top_level: bool = Query(False, alias="topLevel")):
    cats = await categories.list_categories(parent, top_level)
    return {"success": True, "count": len(cats), "categories": cats}


@app.get("/categories/{category_id}")
async def get_category(category_id: str):
    return {"success": True, "category": await categories.get_category(category_id)}


@app.post("/categories", status_code=201)
async def create_category(payload: Category, _admin: dict = Depends(admin_user)):
    category = await categories.create_category(payload)
    return {"success": True, "message": "Category created successfully", "category": category}


@app.put("/categories/{category_id}")
async def update_category(category_id: str, payload: CategoryUpdate, _admin: dict = Depends(admin_user)):
    category = await categories.update_category(category_id, payload)
    return {"success": True, "message": "Category updated successfully", "category": category}


@app.delete("/categories/{category_id}")
async def delete_category(category_id: str, _admin: dict = Depends(admin_user)):
    result = await categories.delete_category(category_id)
    return {"success": True, "message": "Category deleted successfully", **result}


# Packs

@app.get("/packs")
async def get_packs(featured: bool = False):
    return {"success": True, "packs": await packs.list_packs(featured)}


@app.get("/packs/admin/all")
async def get_all_packs(_admin: dict = Depends(admin_user)):
    return {"success": True, "packs": await packs.list_all_packs()}


@app.get("/packs/{pack_id}")
async def get_pack(pack_id: str):
    return {"success": True, "pack": await packs.get_pack(pack_id)}


@app.post("/packs", status_code=201)
async def create_pack(payload: Pack, _admin: dict = Depends(admin_user)):
    pack = await packs.create_pack(payload)
    return {"success": True, "message": "Pack created successfully", "pack": pack}


@app.put("/packs/{pack_id}")
async def update_pack(pack_id: str, payload: PackUpdate, _admin: dict = Depends(admin_user)):
    pack = await packs.update_pack(pack_id, payload)
    return {"success": True, "message": "Pack updated successfully", "pack": pack}


@app.delete("/packs/{pack_id}")
async def delete_pack(pack_id: str, _admin: dict = Depends(admin_user)):
    await packs.delete_pack(pack_id)
    return {"success": True, "message": "Pack deleted successfully"}


@app.put("/packs/{pack_id}/toggle-active")
async def toggle_pack(pack_id: str, _admin: dict = Depends(admin_user)):
    pack = await packs.toggle_active(pack_id)
    state = "activated" if pack["active"] else "deactivated"
    return {"success": True, "message": f"Pack {state} successfully", "pack": pack}


# Orders

@app.post("/orders", status_code=201)
async def create_order(payload: CreateOrderRequest, user: Optional[dict] = Depends(optional_user)):
    order = await orders.create_order(payload, user)
    return {"success": True, "message": "Order placed successfully", "order": order}


@app.get("/orders")
async def get_orders(
    status: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: dict = Depends(current_user),
):
    found = await orders.list_orders(user, status, start_date, end_date)
    return {"success": True, "count": len(found), "orders": found}


@app.get("/orders/stats/overview")
async def get_order_stats(_admin: dict = Depends(admin_user)):
    return {"success": True, "stats": await orders.order_stats()}


@app.get("/orders/{order_id}")
async def get_order(order_id: str, user: dict = Depends(current_user)):
    return {"success": True, "order": await orders.get_order(order_id, user)}


@app.put("/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: StatusUpdate, _admin: dict = Depends(admin_user)):
    order = await orders.update_status(order_id, payload.status)
    return {"success": True, "message": "Order status updated successfully", "order": order}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
