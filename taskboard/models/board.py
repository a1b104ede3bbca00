import functools
import logging
import re
from datetime import datetime, timezone
from enum import StrEnum, auto
from typing import Annotated, Any, Callable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pymongo import ReturnDocument
from pymongo.collation import Collation
from pymongo.errors import PyMongoError

from taskboard.exceptions import (
    BoardNotFoundError,
    BoardValidationError,
    NotAMemberError,
    PersistenceError,
)
from taskboard.utils import paging_skip_value, to_object_id

logger = logging.getLogger(__name__)

BOARD_COLLECTION_NAME = "boards"
COLUMN_COLLECTION_NAME = "columns"
CARD_COLLECTION_NAME = "cards"
USER_COLLECTION_NAME = "users"

# update()에서 변경을 허용하지 않는 필드
INVALID_UPDATE_FIELDS = ("_id", "id", "createdAt")

# users 컬렉션을 join할 때 절대 내보내지 않는 필드
USER_PRIVATE_FIELDS = {"password": 0, "verifyToken": 0}

NICKNAME_MAX_LENGTH = 50

OBJECT_ID_RULE = r"^[0-9a-fA-F]{24}$"

ObjectIdStr = Annotated[str, Field(pattern=OBJECT_ID_RULE)]

_url_adapter = TypeAdapter(AnyUrl)

# 배경색은 비어 있거나 #RGB, #RRGGBB
BACKGROUND_COLOR_RULE = r"^$|^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BoardType(StrEnum):
    public = auto()
    private = auto()


class BackgroundType(StrEnum):
    color = auto()
    image = auto()
    url = auto()
    upload = auto()


class BoardRole(StrEnum):
    admin = auto()
    member = auto()


class Label(BaseModel):
    id: str
    name: str
    color: str


class MemberNickname(BaseModel):
    userId: ObjectIdStr
    nickname: str = Field(min_length=1, max_length=NICKNAME_MAX_LENGTH)
    updatedAt: datetime = Field(default_factory=_now)


class BoardCreate(BaseModel):
    """boards 컬렉션 스키마. 정의되지 않은 필드는 허용하지 않습니다."""

    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, use_enum_values=True
    )

    title: str = Field(min_length=3, max_length=50)
    slug: str = Field(min_length=3)
    description: str = Field(min_length=3, max_length=255)

    backgroundType: BackgroundType = BackgroundType.color
    backgroundColor: str = Field(default="", pattern=BACKGROUND_COLOR_RULE)
    backgroundImage: str = ""
    backgroundUrl: str = ""
    backgroundUpload: str = ""

    type: BoardType

    columnOrderIds: list[ObjectIdStr] = []
    # board의 Admin 목록
    ownerIds: list[ObjectIdStr] = []
    # board의 일반 멤버 목록
    memberIds: list[ObjectIdStr] = []
    labels: list[Label] = []
    memberNicknames: list[MemberNickname] = []

    createdAt: datetime = Field(default_factory=_now)
    updatedAt: datetime | None = None
    destroy: bool = Field(default=False, alias="_destroy")

    @field_validator("backgroundImage", "backgroundUrl")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        return check_uri(value)


def check_uri(value: str) -> str:
    """빈 문자열 또는 올바른 URI만 통과합니다. field_validator 안에서 사용합니다."""
    if value == "":
        return value
    try:
        _url_adapter.validate_python(value)
    except ValidationError as e:
        raise ValueError("must be a valid uri") from e
    return value


def validate_nickname(nickname: str | None) -> str:
    """nickname을 앞뒤 공백 제거 후 반환합니다. 비었거나 50자를 넘으면 400."""
    nickname = nickname.strip() if isinstance(nickname, str) else ""
    if not nickname:
        raise BoardValidationError("Nickname is required", status_code=400)
    if len(nickname) > NICKNAME_MAX_LENGTH:
        raise BoardValidationError(
            f"Nickname cannot exceed {NICKNAME_MAX_LENGTH} characters",
            status_code=400,
        )
    return nickname


def _contains(value: str) -> dict:
    # 사용자 입력을 정규식으로 해석하지 않도록 escape 후 대소문자 무시 부분일치
    return {"$regex": re.escape(value), "$options": "i"}


def _equals(value: str) -> str:
    return value


# getBoards에서 검색을 허용하는 필드와 조건 생성 함수
FILTER_BUILDERS: dict[str, Callable[[str], Any]] = {
    "title": _contains,
    "slug": _contains,
    "description": _contains,
    "type": _equals,
    "backgroundType": _equals,
}


def build_filter_conditions(filters: dict[str, str] | None) -> list[dict]:
    conditions = []
    for key, value in (filters or {}).items():
        builder = FILTER_BUILDERS.get(key)
        if builder is None:
            raise BoardValidationError(
                f"'{key}' is not a filterable field",
                errors=[{"loc": ["q", key], "msg": "unsupported filter"}],
            )
        if not isinstance(value, str):
            raise BoardValidationError(
                f"filter value for '{key}' must be a string",
                errors=[{"loc": ["q", key], "msg": "must be a string"}],
            )
        conditions.append({key: builder(value)})
    return conditions


def _member_condition(user_id: ObjectId) -> dict:
    return {"$or": [{"ownerIds": user_id}, {"memberIds": user_id}]}


def _persistence_guard(func):
    """pymongo 예외를 PersistenceError로 통일해서 올려보냅니다 (재시도는 하지 않음)."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.exception("MongoDB 호출 실패: %s", func.__name__)
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


class BoardStore:
    """
    boards 컬렉션에 대한 모든 읽기/쓰기를 담당합니다.

    `store: BoardStore = Depends(get_board_store)`로 사용합니다.
    soft delete(`_destroy=True`)된 board는 `find_one_by_id_internal`을 제외한
    모든 조회와 변경 대상에서 빠집니다.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._boards = db[BOARD_COLLECTION_NAME]

    @_persistence_guard
    async def create_new(self, creator_id: str | ObjectId, data: dict) -> ObjectId:
        creator = to_object_id(creator_id, "creatorId")
        try:
            valid = BoardCreate.model_validate(data)
        except ValidationError as e:
            raise BoardValidationError(
                "Board data is invalid",
                errors=e.errors(
                    include_url=False, include_context=False, include_input=False
                ),
            ) from e

        document = valid.model_dump(by_alias=True)
        document["columnOrderIds"] = [ObjectId(i) for i in valid.columnOrderIds]
        document["memberIds"] = [ObjectId(i) for i in valid.memberIds]
        document["ownerIds"] = [creator]

        result = await self._boards.insert_one(document)
        logger.info("board 생성: id=%s creator=%s", result.inserted_id, creator)
        return result.inserted_id

    @_persistence_guard
    async def find_one_by_id(self, board_id: str | ObjectId) -> dict | None:
        return await self._boards.find_one(
            {"_id": to_object_id(board_id, "boardId"), "_destroy": False}
        )

    @_persistence_guard
    async def find_one_by_id_internal(self, board_id: str | ObjectId) -> dict | None:
        """삭제 여부와 관계없이 조회합니다. 관리/감사 용도로만 사용하세요."""
        return await self._boards.find_one({"_id": to_object_id(board_id, "boardId")})

    @_persistence_guard
    async def get_details(
        self, user_id: str | ObjectId, board_id: str | ObjectId
    ) -> dict | None:
        """board + columns + cards + owners + members를 한 번의 aggregate로 조회합니다."""
        user = to_object_id(user_id, "userId")
        query_conditions = [
            {"_id": to_object_id(board_id, "boardId")},
            {"_destroy": False},
            _member_condition(user),
        ]
        pipeline = [
            {"$match": {"$and": query_conditions}},
            {
                "$lookup": {
                    "from": COLUMN_COLLECTION_NAME,
                    "localField": "_id",
                    "foreignField": "boardId",
                    "as": "columns",
                    "pipeline": [
                        {"$match": {"_destroy": False}},
                        {"$sort": {"createdAt": 1}},
                    ],
                }
            },
            {
                "$lookup": {
                    "from": CARD_COLLECTION_NAME,
                    "localField": "_id",
                    "foreignField": "boardId",
                    "as": "cards",
                    "pipeline": [
                        {"$match": {"_destroy": False}},
                        {"$sort": {"createdAt": 1}},
                    ],
                }
            },
            {
                "$lookup": {
                    "from": USER_COLLECTION_NAME,
                    "localField": "ownerIds",
                    "foreignField": "_id",
                    "as": "owners",
                    "pipeline": [{"$project": USER_PRIVATE_FIELDS}],
                }
            },
            {
                "$lookup": {
                    "from": USER_COLLECTION_NAME,
                    "localField": "memberIds",
                    "foreignField": "_id",
                    "as": "members",
                    "pipeline": [{"$project": USER_PRIVATE_FIELDS}],
                }
            },
        ]
        result = await self._boards.aggregate(pipeline).to_list(None)
        return result[0] if result else None

    @_persistence_guard
    async def get_boards(
        self,
        user_id: str | ObjectId,
        page: int,
        items_per_page: int,
        filters: dict[str, str] | None = None,
    ) -> dict:
        if items_per_page <= 0:
            raise BoardValidationError(
                "itemsPerPage must be a positive integer",
                errors=[{"loc": ["itemsPerPage"], "msg": "must be >= 1"}],
            )
        query_conditions = [
            {"_destroy": False},
            _member_condition(to_object_id(user_id, "userId")),
            *build_filter_conditions(filters),
        ]
        pipeline = [
            {"$match": {"$and": query_conditions}},
            # collation이 없으면 대문자 B가 소문자 a보다 앞에 정렬됩니다.
            {"$sort": {"title": 1}},
            {
                "$facet": {
                    "queryBoards": [
                        {"$skip": paging_skip_value(page, items_per_page)},
                        {"$limit": items_per_page},
                    ],
                    "queryTotalBoards": [{"$count": "countedAllBoards"}],
                }
            },
        ]
        result = await self._boards.aggregate(
            pipeline, collation=Collation(locale="en")
        ).to_list(None)

        res = result[0] if result else {}
        total = res.get("queryTotalBoards") or []
        return {
            "boards": res.get("queryBoards") or [],
            "totalBoards": total[0]["countedAllBoards"] if total else 0,
        }

    @_persistence_guard
    async def update(self, board_id: str | ObjectId, update_data: dict) -> dict | None:
        data = {k: v for k, v in update_data.items() if k not in INVALID_UPDATE_FIELDS}
        if "columnOrderIds" in data:
            data["columnOrderIds"] = [
                to_object_id(i, "columnOrderIds") for i in data["columnOrderIds"]
            ]
        board_oid = to_object_id(board_id, "boardId")
        if not data:
            return await self._boards.find_one({"_id": board_oid, "_destroy": False})

        return await self._boards.find_one_and_update(
            {"_id": board_oid, "_destroy": False},
            {"$set": data},
            return_document=ReturnDocument.AFTER,
        )

    @_persistence_guard
    async def push_column_order_ids(self, column: dict) -> dict | None:
        """columnOrderIds 배열 끝에 column의 _id를 추가합니다."""
        return await self._boards.find_one_and_update(
            {"_id": to_object_id(column["boardId"], "boardId"), "_destroy": False},
            {"$push": {"columnOrderIds": to_object_id(column["_id"], "columnId")}},
            return_document=ReturnDocument.AFTER,
        )

    @_persistence_guard
    async def pull_column_order_ids(self, column: dict) -> dict | None:
        """columnOrderIds 배열에서 column의 _id를 제거합니다."""
        return await self._boards.find_one_and_update(
            {"_id": to_object_id(column["boardId"], "boardId"), "_destroy": False},
            {"$pull": {"columnOrderIds": to_object_id(column["_id"], "columnId")}},
            return_document=ReturnDocument.AFTER,
        )

    @_persistence_guard
    async def push_member_ids(
        self, board_id: str | ObjectId, user_id: str | ObjectId
    ) -> dict | None:
        # 중복 검사는 하지 않습니다. 같은 user를 두 번 넣으면 두 번 들어갑니다.
        return await self._boards.find_one_and_update(
            {"_id": to_object_id(board_id, "boardId"), "_destroy": False},
            {"$push": {"memberIds": to_object_id(user_id, "userId")}},
            return_document=ReturnDocument.AFTER,
        )

    @_persistence_guard
    async def delete_board(
        self, requester_id: str | ObjectId, board_id: str | ObjectId
    ) -> dict:
        board_oid = to_object_id(board_id, "boardId")
        requester = to_object_id(requester_id, "userId")

        board = await self._boards.find_one(
            {"_id": board_oid, "_destroy": False, "ownerIds": requester}
        )
        if board is None:
            raise BoardNotFoundError(
                "Board not found or you do not have permission to delete this board"
            )

        # 확인과 변경 사이에 다른 요청이 끼어들 수 있음 (단일 문서 원자성만 보장)
        result = await self._boards.find_one_and_update(
            {"_id": board_oid},
            {"$set": {"_destroy": True, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("board soft delete: id=%s by=%s", board_oid, requester)
        return result

    @_persistence_guard
    async def is_user_board_admin(
        self, board_id: str | ObjectId, user_id: str | ObjectId
    ) -> bool:
        board = await self._boards.find_one(
            {
                "_id": to_object_id(board_id, "boardId"),
                "_destroy": False,
                "ownerIds": to_object_id(user_id, "userId"),
            }
        )
        return board is not None

    @_persistence_guard
    async def get_member_role(
        self, board_id: str | ObjectId, user_id: str | ObjectId
    ) -> BoardRole | None:
        user = to_object_id(user_id, "userId")
        board = await self._boards.find_one(
            {
                "_id": to_object_id(board_id, "boardId"),
                "_destroy": False,
                **_member_condition(user),
            }
        )
        if board is None:
            return None

        if user in board.get("ownerIds", []):
            return BoardRole.admin
        return BoardRole.member

    @_persistence_guard
    async def remove_member_from_board(
        self, board_id: str | ObjectId, member_id: str | ObjectId
    ) -> dict | None:
        """memberIds와 memberNicknames에서 한 번의 update로 같이 제거합니다."""
        member = to_object_id(member_id, "memberId")
        result = await self._boards.find_one_and_update(
            {"_id": to_object_id(board_id, "boardId"), "_destroy": False},
            {
                "$pull": {
                    "memberIds": member,
                    "memberNicknames": {"userId": str(member)},
                },
                "$set": {"updatedAt": _now()},
            },
            return_document=ReturnDocument.AFTER,
        )
        if result is not None:
            logger.info("board member 제거: board=%s member=%s", board_id, member)
        return result

    @_persistence_guard
    async def set_member_nickname(
        self, board_id: str | ObjectId, user_id: str | ObjectId, nickname: str
    ) -> dict:
        """
        user의 nickname을 교체합니다.

        멤버십 확인, 기존 항목 제거, 새 항목 추가를 하나의 pipeline update로
        처리하므로 user당 항목은 항상 하나이고, 멤버가 아니면 아무것도 바뀌지 않습니다.
        """
        nickname = validate_nickname(nickname)
        user = to_object_id(user_id, "userId")
        user_key = str(user)
        now = _now()

        result = await self._boards.find_one_and_update(
            {
                "_id": to_object_id(board_id, "boardId"),
                "_destroy": False,
                **_member_condition(user),
            },
            [
                {
                    "$set": {
                        "memberNicknames": {
                            "$concatArrays": [
                                {
                                    "$filter": {
                                        "input": {"$ifNull": ["$memberNicknames", []]},
                                        "as": "entry",
                                        "cond": {"$ne": ["$$entry.userId", user_key]},
                                    }
                                },
                                [
                                    {
                                        "userId": user_key,
                                        # "$"로 시작하는 nickname이 필드 경로로 해석되지 않도록
                                        "nickname": {"$literal": nickname},
                                        "updatedAt": now,
                                    }
                                ],
                            ]
                        },
                        "updatedAt": now,
                    }
                }
            ],
            return_document=ReturnDocument.AFTER,
        )
        if result is None:
            raise NotAMemberError("Board not found or user is not a member")

        logger.info("nickname 변경: board=%s user=%s", board_id, user_key)
        return result

    @_persistence_guard
    async def remove_member_nickname(
        self, board_id: str | ObjectId, user_id: str | ObjectId
    ) -> dict | None:
        user_key = str(to_object_id(user_id, "userId"))
        return await self._boards.find_one_and_update(
            {"_id": to_object_id(board_id, "boardId"), "_destroy": False},
            {
                "$pull": {"memberNicknames": {"userId": user_key}},
                "$set": {"updatedAt": _now()},
            },
            return_document=ReturnDocument.AFTER,
        )

    @_persistence_guard
    async def get_member_nickname(
        self, board_id: str | ObjectId, user_id: str | ObjectId
    ) -> str | None:
        user_key = str(to_object_id(user_id, "userId"))
        board = await self._boards.find_one(
            {"_id": to_object_id(board_id, "boardId"), "_destroy": False},
            projection={"memberNicknames": 1},
        )
        if not board or not board.get("memberNicknames"):
            return None

        for entry in board["memberNicknames"]:
            if entry.get("userId") == user_key:
                return entry.get("nickname")
        return None
