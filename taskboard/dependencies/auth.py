import logging
from datetime import datetime, timedelta, timezone

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Header, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from taskboard.config.config import settings
from taskboard.dependencies.board_store import get_board_store
from taskboard.dependencies.mongodb import get_database
from taskboard.models.board import (
    USER_COLLECTION_NAME,
    USER_PRIVATE_FIELDS,
    BoardRole,
    BoardStore,
)

logger = logging.getLogger(__name__)


def create_access_token(user_id: str) -> str:
    """JWT 액세스 토큰을 생성합니다. sub에는 user의 ObjectId 문자열이 들어갑니다."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt.expire_minutes),
    }
    return jwt.encode(
        payload, settings.jwt.secret_key, algorithm=settings.jwt.algorithm
    )


async def get_current_user(
    authorization: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> dict:
    """Authorization 헤더에서 JWT 토큰을 추출하여 현재 사용자를 반환합니다."""
    try:
        scheme, token = authorization.split(" ", 1)
        if scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Invalid authentication scheme")
    except ValueError as e:
        raise HTTPException(
            status_code=401, detail="Invalid authorization header format"
        ) from e

    try:
        payload = jwt.decode(
            token,
            settings.jwt.secret_key,
            algorithms=[settings.jwt.algorithm],
        )
        sub: str | None = payload.get("sub")
        if sub is None:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        user_id = ObjectId(sub)
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(status_code=401, detail="Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail="Invalid token") from e
    except (InvalidId, TypeError) as e:
        raise HTTPException(status_code=401, detail="Invalid token payload") from e

    user = await db[USER_COLLECTION_NAME].find_one(
        {"_id": user_id}, projection=USER_PRIVATE_FIELDS
    )
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    return user


async def _raise_for_missing_role(store: BoardStore, board_id: str, detail: str):
    """권한이 없을 때 board 자체가 없으면 404, 있으면 403"""
    if await store.find_one_by_id(board_id) is None:
        raise HTTPException(status_code=404, detail="Board not found")
    raise HTTPException(status_code=403, detail=detail)


async def require_board_member(
    board_id: str,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> BoardRole:
    """board의 owner 또는 member만 통과합니다."""
    role = await store.get_member_role(board_id, current_user["_id"])
    if role is None:
        logger.info(
            "board 접근 거부: board=%s user=%s", board_id, current_user["_id"]
        )
        await _raise_for_missing_role(
            store, board_id, "You are not a member of this board"
        )
    return role


async def require_board_admin(
    board_id: str,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> BoardRole:
    """board의 owner(admin)만 통과합니다."""
    if not await store.is_user_board_admin(board_id, current_user["_id"]):
        logger.info(
            "board 관리 거부: board=%s user=%s", board_id, current_user["_id"]
        )
        await _raise_for_missing_role(
            store, board_id, "Only board admins can perform this action"
        )
    return BoardRole.admin
