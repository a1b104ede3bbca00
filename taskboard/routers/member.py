import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from taskboard.dependencies.auth import (
    get_current_user,
    require_board_admin,
    require_board_member,
)
from taskboard.dependencies.board_store import get_board_store
from taskboard.models.board import BoardStore, validate_nickname
from taskboard.utils import to_jsonable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/members", tags=["Members"])


class SetNicknameRequest(BaseModel):
    nickname: Optional[str] = None


@router.get("/{board_id}", dependencies=[Depends(require_board_member)])
async def get_board_members(
    board_id: str,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """board의 owner/member 목록과 nickname 목록 (멤버 누구나 조회 가능)"""
    board = await store.get_details(current_user["_id"], board_id)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")

    return to_jsonable(
        {
            "owners": board.get("owners", []),
            "members": board.get("members", []),
            "memberNicknames": board.get("memberNicknames") or [],
        }
    )


@router.delete("/{board_id}/{member_id}", dependencies=[Depends(require_board_admin)])
async def remove_member(
    board_id: str,
    member_id: str,
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """board에서 멤버를 제거합니다 (admin 전용). 해당 멤버의 nickname도 같이 지워집니다."""
    board = await store.remove_member_from_board(board_id, member_id)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")

    return {"message": "Member removed successfully", "board": to_jsonable(board)}


@router.post(
    "/{board_id}/{member_id}/nickname",
    dependencies=[Depends(require_board_admin)],
)
async def set_member_nickname(
    board_id: str,
    member_id: str,
    body: SetNicknameRequest,
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """멤버 nickname 설정 (admin 전용). 비어 있거나 50자를 넘으면 400."""
    nickname = validate_nickname(body.nickname)
    board = await store.set_member_nickname(board_id, member_id, nickname)
    return {
        "message": "Member nickname set successfully",
        "memberNicknames": to_jsonable(board.get("memberNicknames") or []),
    }


@router.delete(
    "/{board_id}/{member_id}/nickname",
    dependencies=[Depends(require_board_admin)],
)
async def remove_member_nickname(
    board_id: str,
    member_id: str,
    store: BoardStore = Depends(get_board_store),
) -> dict:
    board = await store.remove_member_nickname(board_id, member_id)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")

    return {
        "message": "Member nickname removed successfully",
        "memberNicknames": to_jsonable(board.get("memberNicknames") or []),
    }


@router.get(
    "/{board_id}/{member_id}/nickname",
    dependencies=[Depends(require_board_member)],
)
async def get_member_nickname(
    board_id: str,
    member_id: str,
    store: BoardStore = Depends(get_board_store),
) -> dict:
    nickname = await store.get_member_nickname(board_id, member_id)
    return {"nickname": nickname}
