import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskboard.config.config import settings
from taskboard.dependencies.auth import get_current_user, require_board_member
from taskboard.dependencies.board_store import get_board_store
from taskboard.models.board import (
    BACKGROUND_COLOR_RULE,
    BackgroundType,
    BoardStore,
    BoardType,
    Label,
    check_uri,
)
from taskboard.utils import to_jsonable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/boards", tags=["Boards"])

# 쿼리스트링 q[title]=abc 형태의 검색 조건
_FILTER_PARAM = re.compile(r"^q\[(\w+)\]$")


class CreateBoardRequest(BaseModel):
    """
    클라이언트가 보낼 수 있는 필드만 받습니다.
    owner/member, nickname, 생성/삭제 상태는 서버가 채웁니다.
    길이와 형식 검사는 BoardStore.create_new에서 한 번에 모아서 합니다.
    """

    model_config = ConfigDict(extra="forbid")

    title: str
    slug: Optional[str] = None
    description: str
    type: BoardType
    backgroundType: Optional[BackgroundType] = None
    backgroundColor: Optional[str] = None
    backgroundImage: Optional[str] = None
    backgroundUrl: Optional[str] = None
    backgroundUpload: Optional[str] = None


class EditBoardRequest(BaseModel):
    # null은 "변경 없음"으로 취급합니다.
    title: Optional[str] = Field(default=None, min_length=3, max_length=50)
    description: Optional[str] = Field(default=None, min_length=3, max_length=255)
    type: Optional[BoardType] = None
    backgroundType: Optional[BackgroundType] = None
    backgroundColor: Optional[str] = Field(default=None, pattern=BACKGROUND_COLOR_RULE)
    backgroundImage: Optional[str] = None
    backgroundUrl: Optional[str] = None
    backgroundUpload: Optional[str] = None
    columnOrderIds: Optional[list[str]] = None
    labels: Optional[list[Label]] = None

    @field_validator("backgroundImage", "backgroundUrl")
    @classmethod
    def _check_uri(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return check_uri(value)


def slugify(value: str) -> str:
    value = re.sub(r"[^\w\s-]", "", value.lower()).strip()
    return re.sub(r"[\s_-]+", "-", value)


def _query_filters(request: Request) -> dict[str, str]:
    filters = {}
    for key, value in request.query_params.items():
        m = _FILTER_PARAM.match(key)
        if m:
            filters[m.group(1)] = value
    return filters


@router.post("", status_code=201)
async def create_board(
    body: CreateBoardRequest,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """board 생성. 요청한 사용자가 유일한 owner(admin)가 됩니다."""
    data = body.model_dump(exclude_none=True, mode="json")
    if "slug" not in data:
        data["slug"] = slugify(body.title)

    board_id = await store.create_new(current_user["_id"], data)
    board = await store.find_one_by_id(board_id)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")
    return to_jsonable(board)


@router.get("")
async def get_boards(
    request: Request,
    page: int = Query(default=settings.paging.default_page, ge=1),
    items_per_page: int = Query(
        default=settings.paging.default_items_per_page, ge=1, alias="itemsPerPage"
    ),
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """내가 owner/member인 board 목록. `q[title]=...`로 검색할 수 있습니다."""
    result = await store.get_boards(
        current_user["_id"], page, items_per_page, _query_filters(request)
    )
    return to_jsonable(result)


@router.get("/{board_id}")
async def get_board_details(
    board_id: str,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> dict:
    board = await store.get_details(current_user["_id"], board_id)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")
    return to_jsonable(board)


@router.put("/{board_id}", dependencies=[Depends(require_board_member)])
async def edit_board(
    board_id: str,
    body: EditBoardRequest,
    store: BoardStore = Depends(get_board_store),
) -> dict:
    update_data = body.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    update_data["updatedAt"] = datetime.now(timezone.utc)

    board = await store.update(board_id, update_data)
    if board is None:
        raise HTTPException(status_code=404, detail="Board not found")
    return to_jsonable(board)


@router.delete("/{board_id}")
async def delete_board(
    board_id: str,
    current_user: dict = Depends(get_current_user),
    store: BoardStore = Depends(get_board_store),
) -> dict:
    """board soft delete. owner가 아니면 board가 없는 것과 똑같이 404를 반환합니다."""
    board = await store.delete_board(current_user["_id"], board_id)
    return {"message": "Board deleted successfully", "board": to_jsonable(board)}
