"""
Checkout and order administration.

Order creation reads authoritative prices and stock, then reserves stock with
one conditional ``$inc`` per line (the filter requires ``stock >= quantity``),
so concurrent checkouts can never drive stock negative. When a reservation or
the order insert fails, every reservation already taken is handed back.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

import pricing
from database import as_utc, get_db, serialize, to_object_id, transaction, utcnow
from errors import BadRequest, Forbidden, InsufficientStock, NotFound
from localized import plain_name
from packs import is_live
from schemas import CreateOrderRequest, GuestInfo, OrderLineIn, OrderStatus

logger = logging.getLogger(__name__)

STATUS_FLOW = [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED]
TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


@dataclass
class Reservation:
    product_id: ObjectId
    field: str
    quantity: int
    name: str


@dataclass
class PlannedLine:
    item: dict[str, Any]
    unit_price: float
    reservations: list[Reservation]


# -----------------------------
# Validation
# -----------------------------
def validate_guest_info(guest_info: Optional[GuestInfo]) -> None:
    if guest_info is None:
        raise BadRequest("Guest information is required when not logged in")
    errors = [
        {"field": f"guestInfo.{name}", "message": f"{name.capitalize()} is required"}
        for name in ("name", "email", "phone")
        if not (getattr(guest_info, name) or "").strip()
    ]
    if guest_info.address is None:
        errors.append({"field": "guestInfo.address", "message": "Address is required"})
    if errors:
        raise BadRequest("Guest information is incomplete", errors)
    address = guest_info.address
    if not all(getattr(address, f).strip() for f in ("street", "city", "postal_code", "country")):
        raise BadRequest("Address information is incomplete")


def _first_image(doc: dict[str, Any]) -> str:
    images = doc.get("images") or []
    return images[0] if images else (doc.get("image") or "")


def _available(product: dict[str, Any], field: str) -> int:
    if field == "stock":
        return int(product.get("stock") or 0)
    index = int(field.split(".")[1])
    return int(product["variants"][index].get("stock") or 0)


# -----------------------------
# Planning (reads only)
# -----------------------------
async def _load_product(db, product_id: Any, session=None) -> dict[str, Any]:
    product = await db["product"].find_one({"_id": to_object_id(product_id)}, session=session)
    if not product:
        raise NotFound(f"Product not found: {product_id}")
    return product


async def _plan_product_line(db, line: OrderLineIn, session=None) -> PlannedLine:
    product = await _load_product(db, line.product, session)
    name = plain_name(product.get("name"), "Product")

    if pricing.uses_variants(product):
        if not line.variant_attributes:
            raise BadRequest(f"Variant selection is required for product: {name}")
        match = pricing.find_variant(product, line.variant_attributes)
        if match is None:
            raise BadRequest(f"Variant not found for product: {name}")
        index, variant = match
        price = pricing.unit_price(product, variant)
        field = f"variants.{index}.stock"
    else:
        if product.get("price") is None:
            raise BadRequest(f"Product {name} does not have a price")
        price = pricing.unit_price(product)
        field = "stock"

    available = _available(product, field)
    if available < line.quantity:
        raise InsufficientStock(f"Insufficient stock for {name}. Available: {available}")

    item = {
        "product": product["_id"],
        "name": name,
        "quantity": line.quantity,
        "price": price,
        "image": _first_image(product),
    }
    return PlannedLine(item, price, [Reservation(product["_id"], field, line.quantity, name)])


async def _plan_pack_line(db, line: OrderLineIn, session=None) -> PlannedLine:
    pack = await db["pack"].find_one({"_id": to_object_id(line.pack)}, session=session)
    if not pack or not is_live(pack, utcnow()):
        raise NotFound("Pack not found")
    name = plain_name(pack.get("name"), "Pack")

    reservations = []
    for entry in pack.get("products") or []:
        product = await _load_product(db, entry["product"], session)
        product_name = plain_name(product.get("name"), "Product")
        if pricing.uses_variants(product):
            raise BadRequest(f"Pack {name} contains a product that requires a variant: {product_name}")
        needed = int(entry.get("quantity", 1)) * line.quantity
        available = _available(product, "stock")
        if available < needed:
            raise InsufficientStock(f"Insufficient stock for {product_name}. Available: {available}")
        reservations.append(Reservation(product["_id"], "stock", needed, product_name))

    price = float(pack.get("discount_price") or 0)
    first = (pack.get("products") or [{}])[0].get("product")
    item = {
        "product": first,
        "pack": pack["_id"],
        "name": name,
        "quantity": line.quantity,
        "price": price,
        "image": pack.get("image") or "",
    }
    return PlannedLine(item, price, reservations)


async def plan_order(items: list[OrderLineIn], session=None) -> list[PlannedLine]:
    db = await get_db()
    planned = []
    for line in items:
        if line.pack:
            planned.append(await _plan_pack_line(db, line, session))
        else:
            planned.append(await _plan_product_line(db, line, session))
    return planned


# -----------------------------
# Stock reservation
# -----------------------------
async def reserve(db, reservation: Reservation, session=None) -> bool:
    res = await db["product"].update_one(
        {"_id": reservation.product_id, reservation.field: {"$gte": reservation.quantity}},
        {"$inc": {reservation.field: -reservation.quantity}, "$set": {"updated_at": utcnow()}},
        session=session,
    )
    return res.modified_count == 1


async def release(db, reservations: list[Reservation]) -> None:
    for r in reversed(reservations):
        logger.warning("Restoring %s unit(s) of %s (%s)", r.quantity, r.product_id, r.field)
        await db["product"].update_one({"_id": r.product_id}, {"$inc": {r.field: r.quantity}})


async def _current_stock(db, reservation: Reservation, session=None) -> int:
    product = await db["product"].find_one({"_id": reservation.product_id}, session=session)
    if not product:
        return 0
    try:
        return _available(product, reservation.field)
    except (IndexError, KeyError):
        return 0


# -----------------------------
# Operations
# -----------------------------
async def create_order(request: CreateOrderRequest, user: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    if not request.items:
        raise BadRequest("Order must contain at least one item")
    if user is None:
        validate_guest_info(request.guest_info)

    db = await get_db()
    async with transaction() as session:
        planned = await plan_order(request.items, session)
        subtotal, shipping, total = pricing.order_totals((p.unit_price, p.item["quantity"]) for p in planned)

        taken: list[Reservation] = []
        try:
            for line in planned:
                for r in line.reservations:
                    if not await reserve(db, r, session):
                        available = await _current_stock(db, r, session)
                        raise InsufficientStock(f"Insufficient stock for {r.name}. Available: {available}")
                    taken.append(r)

            now = utcnow()
            order_doc = {
                "user": user["_id"] if user else None,
                "items": [p.item for p in planned],
                "subtotal": subtotal,
                "shipping_cost": shipping,
                "total": total,
                "notes": request.notes or "",
                "status": OrderStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
            }
            if user is None:
                order_doc["guest_info"] = request.guest_info.model_dump()
            result = await db["order"].insert_one(order_doc, session=session)
        except Exception:
            # inside a transaction the abort already undoes the decrements
            if session is None and taken:
                await release(db, taken)
            raise

    order_doc["_id"] = result.inserted_id
    logger.info("Order %s created: %d line(s), total %.2f", result.inserted_id, len(planned), total)
    return serialize(order_doc)


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise BadRequest(f"Invalid {field}")
    return as_utc(parsed)


async def _attach_users(db, orders: list[dict[str, Any]]) -> None:
    ids = list({o["user"] for o in orders if o.get("user")})
    if not ids:
        return
    users = {}
    async for u in db["user"].find({"_id": {"$in": ids}}, {"name": 1, "email": 1}):
        users[u["_id"]] = {"_id": u["_id"], "name": u.get("name"), "email": u.get("email")}
    for o in orders:
        if o.get("user") in users:
            o["user"] = users[o["user"]]


async def list_orders(
    user: dict[str, Any],
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> list[dict[str, Any]]:
    db = await get_db()
    query: dict[str, Any] = {}
    if user.get("role") != "admin":
        query["user"] = user["_id"]
    else:
        if status:
            query["status"] = status
        start, end = _parse_date(start_date, "startDate"), _parse_date(end_date, "endDate")
        if start or end:
            query["created_at"] = {}
            if start:
                query["created_at"]["$gte"] = start
            if end:
                query["created_at"]["$lte"] = end

    orders = [o async for o in db["order"].find(query).sort([("created_at", -1)])]
    await _attach_users(db, orders)
    return serialize(orders)


async def get_order(order_id: str, user: dict[str, Any]) -> dict[str, Any]:
    db = await get_db()
    order = await db["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise NotFound("Order not found")
    if user.get("role") != "admin" and order.get("user") != user["_id"]:
        raise Forbidden("Not authorized to view this order")
    return serialize(order)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current == new:
        return True
    if current in TERMINAL:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return STATUS_FLOW.index(new) > STATUS_FLOW.index(current)


async def update_status(order_id: str, status: str) -> dict[str, Any]:
    try:
        new = OrderStatus(status)
    except ValueError:
        raise BadRequest("Invalid status")

    db = await get_db()
    _id = to_object_id(order_id)
    order = await db["order"].find_one({"_id": _id})
    if not order:
        raise NotFound("Order not found")

    current = OrderStatus(order.get("status", OrderStatus.PENDING.value))
    if not can_transition(current, new):
        raise BadRequest(f"Cannot change status from {current.value} to {new.value}")

    await db["order"].update_one({"_id": _id}, {"$set": {"status": new.value, "updated_at": utcnow()}})
    order["status"] = new.value
    logger.info("Order %s moved from %s to %s", _id, current.value, new.value)
    return serialize(order)


async def order_stats() -> dict[str, Any]:
    db = await get_db()
    total_orders = await db["order"].count_documents({})
    pending = await db["order"].count_documents({"status": OrderStatus.PENDING.value})

    revenue = 0.0
    by_status: dict[str, int] = {}
    async for o in db["order"].find({}, {"status": 1, "total": 1}):
        st = o.get("status", OrderStatus.PENDING.value)
        by_status[st] = by_status.get(st, 0) + 1
        if st != OrderStatus.CANCELLED.value:
            revenue += float(o.get("total") or 0)

    return {
        "total_orders": total_orders,
        "pending_orders": pending,
        "total_revenue": round(revenue, 2),
        "orders_by_status": [{"status": k, "count": v} for k, v in sorted(by_status.items())],
    }
