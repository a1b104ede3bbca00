from enum import StrEnum, auto
from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class BuildMode(StrEnum):
    dev = auto()
    production = auto()


class MongoDBConfig(BaseModel):
    host: str = "localhost"
    user: str = "root"
    passwd: str = "root"
    port: int = 27017
    db: str = "taskboard"
    max_pool_size: int = 10
    min_pool_size: int = 10
    # 서버를 찾지 못할 때 드라이버가 기다리는 시간
    server_selection_timeout_ms: int = 5000


class JwtConfig(BaseModel):
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    expire_minutes: int = 60


class CorsConfig(BaseModel):
    build_mode: BuildMode = BuildMode.dev
    # production 모드에서만 사용하는 허용 도메인 목록
    whitelist_domains: list[str] = []


class PagingConfig(BaseModel):
    default_page: int = 1
    default_items_per_page: int = 12


class Settings(BaseSettings):
    """
    기본 Configuration. `MONGODB__HOST=...` 처럼 `__`로 중첩 필드를 지정합니다.
    """

    mongodb: MongoDBConfig = MongoDBConfig()
    jwt: JwtConfig = JwtConfig()
    cors: CorsConfig = CorsConfig()
    paging: PagingConfig = PagingConfig()

    model_config = SettingsConfigDict(
        env_file="taskboard/config/.env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache
def get_settings():
    return Settings()


settings: Settings = get_settings()
