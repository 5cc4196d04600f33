"""Cookie token resolution used to attribute orders and gate admin routes."""
from __future__ import annotations
import logging
from datetime import timedelta
from typing import Any, Optional

import jwt
from fastapi import Depends, Request, Response

from config import settings
from database import get_db, to_object_id, utcnow
from errors import BadRequest, Forbidden, Unauthorized

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def create_access_token(user_id: str) -> str:
    exp = utcnow() + timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES)
    return jwt.encode({"userId": str(user_id), "exp": exp}, settings.JWT_ACCESS_SECRET, algorithm="HS256")


def create_refresh_token(user_id: str, days: int = 7) -> str:
    exp = utcnow() + timedelta(days=days)
    return jwt.encode({"userId": str(user_id), "exp": exp}, settings.JWT_REFRESH_SECRET, algorithm="HS256")


def decode_token(token: str, secret: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None


async def _load_user(user_id: Any) -> Optional[dict[str, Any]]:
    db = await get_db()
    try:
        _id = to_object_id(user_id)
    except BadRequest:
        return None
    user = await db["user"].find_one({"_id": _id}, {"password": 0})
    return user


async def optional_user(request: Request, response: Response) -> Optional[dict[str, Any]]:
    """Anonymous when no token cookie is sent; otherwise the token must resolve."""
    access = request.cookies.get(ACCESS_COOKIE)
    refresh = request.cookies.get(REFRESH_COOKIE)
    if not access and not refresh:
        return None

    if not access and refresh:
        claims = decode_token(refresh, settings.JWT_REFRESH_SECRET)
        if claims:
            access = create_access_token(claims["userId"])
            response.set_cookie(
                ACCESS_COOKIE, access, httponly=True, samesite="lax",
                secure=settings.is_production, max_age=settings.JWT_ACCESS_EXPIRE_MINUTES * 60,
            )
    if not access:
        raise Unauthorized("Not authorized, no token")

    claims = decode_token(access, settings.JWT_ACCESS_SECRET)
    if not claims:
        raise Unauthorized("Not authorized, token invalid")
    user = await _load_user(claims.get("userId"))
    if not user:
        raise Unauthorized("User not found")
    return user


async def current_user(user: Optional[dict] = Depends(optional_user)) -> dict[str, Any]:
    if user is None:
        raise Unauthorized("Not authorized, no token")
    return user


async def admin_user(user: dict = Depends(current_user)) -> dict[str, Any]:
    if user.get("role") != "admin":
        raise Forbidden("Access denied. Admin only.")
    return user


def is_admin(user: Optional[dict[str, Any]]) -> bool:
    return bool(user) and user.get("role") == "admin"
