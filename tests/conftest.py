from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from taskboard.models.board import (
    BOARD_COLLECTION_NAME,
    CARD_COLLECTION_NAME,
    COLUMN_COLLECTION_NAME,
    USER_COLLECTION_NAME,
    BoardRole,
    BoardStore,
)


# ── Board Store 단위 테스트용 (MongoDB 없이 호출 형태 검증) ─────────────────────


@pytest.fixture
def collection() -> MagicMock:
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value=None)
    coll.find_one_and_update = AsyncMock(return_value=None)
    coll.insert_one = AsyncMock()
    # motor의 aggregate()는 cursor를 바로 반환하고 to_list만 await 합니다.
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[])
    coll.aggregate = MagicMock(return_value=cursor)
    return coll


@pytest.fixture
def mock_store(collection: MagicMock) -> BoardStore:
    db = MagicMock()
    db.__getitem__.return_value = collection
    return BoardStore(db)


# ── HTTP 테스트용 (store / 인증 dependency override) ───────────────────────────


@pytest.fixture
async def test_client():
    """
    DB 연결 없이 API 테스트를 위한 클라이언트.
    lifespan을 mock하여 실제 DB 연결을 하지 않습니다.
    """
    with patch("taskboard.main.lifespan") as mock_lifespan:
        mock_lifespan.return_value.__aenter__ = AsyncMock(return_value=None)
        mock_lifespan.return_value.__aexit__ = AsyncMock(return_value=None)

        from taskboard.main import app

        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            yield client


@pytest.fixture
def current_user() -> dict:
    return {"_id": ObjectId(), "email": "tester@test.com", "displayName": "tester"}


@pytest.fixture
def store() -> AsyncMock:
    """라우터 테스트용 BoardStore mock. 기본값은 '요청자가 admin'"""
    fake = AsyncMock(spec=BoardStore)
    fake.get_member_role.return_value = BoardRole.admin
    fake.is_user_board_admin.return_value = True
    return fake


@pytest.fixture
async def api_client(test_client: httpx.AsyncClient, store: AsyncMock, current_user: dict):
    """BoardStore와 현재 사용자를 override한 테스트용 HTTP 클라이언트."""
    from taskboard.dependencies.auth import get_current_user
    from taskboard.dependencies.board_store import get_board_store
    from taskboard.main import app

    app.dependency_overrides[get_board_store] = lambda: store
    app.dependency_overrides[get_current_user] = lambda: current_user
    try:
        yield test_client
    finally:
        app.dependency_overrides.pop(get_board_store, None)
        app.dependency_overrides.pop(get_current_user, None)


# ── 실제 MongoDB 연동 테스트용 ─────────────────────────────────────────────────


@pytest.fixture(scope="session")
async def mongo_db():
    """
    설정된 MongoDB에 테스트 전용 database를 만듭니다.
    MongoDB가 떠 있지 않으면 (docker compose up -d) 연동 테스트는 skip 됩니다.
    """
    from motor.motor_asyncio import AsyncIOMotorClient

    from taskboard.config.config import settings
    from taskboard.dependencies.mongodb import mongodb_uri

    client = AsyncIOMotorClient(
        mongodb_uri(settings.mongodb),
        serverSelectionTimeoutMS=1000,
        tz_aware=True,
    )
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip("MongoDB is not reachable")

    db_name = f"{settings.mongodb.db}_test"
    yield client[db_name]

    await client.drop_database(db_name)
    client.close()


@pytest.fixture
async def board_store(mongo_db):
    yield BoardStore(mongo_db)
    for name in (
        BOARD_COLLECTION_NAME,
        COLUMN_COLLECTION_NAME,
        CARD_COLLECTION_NAME,
        USER_COLLECTION_NAME,
    ):
        await mongo_db[name].delete_many({})


@pytest.fixture
def board_data() -> dict:
    return {
        "title": "Sprint Board",
        "slug": "sprint-board",
        "description": "Board for the current sprint",
        "type": "private",
    }
