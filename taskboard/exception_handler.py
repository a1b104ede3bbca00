import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from taskboard.exceptions import BoardStoreError, BoardValidationError

logger = logging.getLogger(__name__)


# fastapi.HTTPException과 라우팅 실패(404/405)를 모두 받습니다.
def custom_exception_handler(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"statusCode": exc.status_code, "message": exc.detail},
        headers=exc.headers,
    )


def request_validation_exception_handler(
    _request: Request, exc: RequestValidationError
):
    return JSONResponse(
        status_code=422,
        content={
            "statusCode": 422,
            "message": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def board_store_exception_handler(_request: Request, exc: BoardStoreError):
    content = {"statusCode": exc.status_code, "message": exc.message}
    if isinstance(exc, BoardValidationError):
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("Board Store 오류: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


def unexpected_exception_handler(_request: Request, exc: Exception):
    logger.exception("처리되지 않은 예외", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"statusCode": 500, "message": "Internal Server Error"},
    )
