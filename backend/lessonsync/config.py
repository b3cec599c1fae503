import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


DEFAULT_LOCAL_STORE_PATH = Path.home() / ".lessonsync" / "local_store.json"


class Settings(BaseSettings):
    remote_url: Optional[str] = Field(None, alias="LESSONSYNC_REMOTE_URL")
    remote_api_key: Optional[str] = Field(None, alias="LESSONSYNC_REMOTE_API_KEY")
    remote_access_token: Optional[str] = Field(None, alias="LESSONSYNC_REMOTE_ACCESS_TOKEN")
    local_store_mode: Literal["memory", "file", "database"] = Field("file", alias="LESSONSYNC_LOCAL_STORE_MODE")
    local_store_path: Path = Field(DEFAULT_LOCAL_STORE_PATH, alias="LESSONSYNC_LOCAL_STORE_PATH")
    database_url: Optional[str] = Field(None, alias="LESSONSYNC_DATABASE_URL")
    database_pool_size: int = Field(5, alias="LESSONSYNC_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(5, alias="LESSONSYNC_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LESSONSYNC_DATABASE_ECHO")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid lessonsync configuration: {exc}") from exc
