from datetime import datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from taskboard.exceptions import BoardValidationError


def to_object_id(value: str | ObjectId, field: str = "id") -> ObjectId:
    """문자열 식별자를 ObjectId로 변환합니다. 형식이 틀리면 BoardValidationError."""
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None)은 새 id를 만들어버리므로 문자열만 받습니다.
    if isinstance(value, str):
        try:
            return ObjectId(value)
        except InvalidId:
            pass
    raise BoardValidationError(
        f"{field} is not a valid ObjectId",
        errors=[{"loc": [field], "msg": "Your string fails to match the Object Id pattern!"}],
    )


def paging_skip_value(page: int | None, items_per_page: int | None) -> int:
    if not page or not items_per_page:
        return 0
    if page <= 0 or items_per_page <= 0:
        return 0
    return (page - 1) * items_per_page


def to_jsonable(value: Any) -> Any:
    """MongoDB 문서를 JSON 응답으로 내보낼 수 있게 ObjectId/datetime을 문자열로 바꿉니다."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
