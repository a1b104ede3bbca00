import logging
from urllib.parse import quote_plus

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from taskboard.config.config import MongoDBConfig, settings
from taskboard.models.board import (
    BOARD_COLLECTION_NAME,
    CARD_COLLECTION_NAME,
    COLUMN_COLLECTION_NAME,
)

logger = logging.getLogger(__name__)

# board 목록/권한 조회는 ownerIds, memberIds로, 상세 조회의 join은 boardId로 찾습니다.
BOARD_STORE_INDEXES: dict[str, list[str]] = {
    BOARD_COLLECTION_NAME: ["ownerIds", "memberIds"],
    COLUMN_COLLECTION_NAME: ["boardId"],
    CARD_COLLECTION_NAME: ["boardId"],
}


def mongodb_uri(config: MongoDBConfig) -> str:
    """계정 정보에 특수문자가 있어도 되도록 escape해서 접속 URI를 만듭니다."""
    return "mongodb://{user}:{passwd}@{host}:{port}".format(
        user=quote_plus(config.user),
        passwd=quote_plus(config.passwd),
        host=config.host,
        port=config.port,
    )


# 클라이언트 생성만으로는 접속하지 않습니다. 첫 명령(startup의 ping)에서 pool이 채워집니다.
# tz_aware: createdAt/updatedAt을 UTC aware datetime으로 돌려받습니다.
_client = AsyncIOMotorClient(
    mongodb_uri(settings.mongodb),
    maxPoolSize=settings.mongodb.max_pool_size,
    minPoolSize=settings.mongodb.min_pool_size,
    serverSelectionTimeoutMS=settings.mongodb.server_selection_timeout_ms,
    tz_aware=True,
)

_database: AsyncIOMotorDatabase = _client[settings.mongodb.db]


def get_database() -> AsyncIOMotorDatabase:
    """BoardStore와 인증 dependency가 공유하는 taskboard DB 핸들"""
    return _database


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # create_index는 이미 있는 index면 아무 것도 하지 않습니다.
    for collection_name, fields in BOARD_STORE_INDEXES.items():
        for field in fields:
            name = await db[collection_name].create_index([(field, ASCENDING)])
            logger.info("MongoDB index 확인: %s.%s", collection_name, name)


async def startup() -> None:
    result = await _database.command("ping")
    logger.info("MongoDB 연결 완료: db=%s ping=%s", _database.name, result.get("ok"))
    await ensure_indexes(_database)


async def shutdown() -> None:
    _client.close()
    logger.info("MongoDB 연결 종료")
