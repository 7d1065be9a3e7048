import os
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

PersistenceMode = Literal["database", "memory"]


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="SKILLROADS_DATABASE_URL")
    database_pool_size: int = Field(10, ge=1, alias="SKILLROADS_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, ge=0, alias="SKILLROADS_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="SKILLROADS_DATABASE_ECHO")
    persistence_mode: PersistenceMode = Field("database", alias="SKILLROADS_PERSISTENCE_MODE")
    quiz_passing_threshold: float = Field(70.0, ge=0.0, le=100.0, alias="SKILLROADS_QUIZ_PASSING_THRESHOLD")
    completion_retry_limit: int = Field(3, ge=1, le=10, alias="SKILLROADS_COMPLETION_RETRY_LIMIT")
    debug_endpoints: bool = Field(False, alias="SKILLROADS_DEBUG_ENDPOINTS")
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"], alias="SKILLROADS_CORS_ALLOW_ORIGINS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("persistence_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def uses_database(self) -> bool:
        return self.persistence_mode == "database"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
