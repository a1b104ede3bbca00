import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from taskboard.config.config import BuildMode, settings
from taskboard.dependencies import mongodb
from taskboard.exception_handler import (
    board_store_exception_handler,
    custom_exception_handler,
    request_validation_exception_handler,
    unexpected_exception_handler,
)
from taskboard.exceptions import BoardStoreError
from taskboard.routers import board as board_router
from taskboard.routers import member as member_router

# logger 전역 설정
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


def cors_allow_origins() -> list[str]:
    """dev 모드면 모든 origin 허용, 그 외에는 whitelist만 허용"""
    if settings.cors.build_mode == BuildMode.dev:
        return ["*"]
    return settings.cors.whitelist_domains


def is_origin_allowed(origin: str | None) -> bool:
    # Origin 헤더가 없는 요청(서버 간 호출, curl 등)은 CORS 대상이 아닙니다.
    if origin is None or settings.cors.build_mode == BuildMode.dev:
        return True
    return origin in settings.cors.whitelist_domains


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await mongodb.startup()
    yield
    await mongodb.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_exception_handler(HTTPException, custom_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(BoardStoreError, board_store_exception_handler)
app.add_exception_handler(Exception, unexpected_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# CORSMiddleware는 허용되지 않은 origin에 헤더만 빼고 응답하므로, 여기서 먼저 403으로 막습니다.
@app.middleware("http")
async def reject_disallowed_origin(request: Request, call_next):
    origin = request.headers.get("origin")
    if not is_origin_allowed(origin):
        logger.info("CORS 거부: origin=%s path=%s", origin, request.url.path)
        return JSONResponse(
            status_code=403,
            content={
                "statusCode": 403,
                "message": f"{origin} not allowed by our CORS Policy.",
            },
        )
    return await call_next(request)


app.include_router(member_router.router)
app.include_router(board_router.router)


@app.get(
    "/health",
    tags=["Health Check"],
    summary="Health Check용 API. 서버가 정상적으로 동작하는지 확인할 수 있습니다.",
)
async def health_check() -> str:
    return "ok"
