import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    supabase_url: str = Field("http://127.0.0.1:54321", alias="NOXUS_SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(None, alias="NOXUS_SUPABASE_ANON_KEY")
    app_scheme: str = Field("com.ascennoxus.app", alias="NOXUS_APP_SCHEME")
    recovery_callback_path: str = Field("reset-callback", alias="NOXUS_RECOVERY_CALLBACK_PATH")
    oauth_callback_path: str = Field("google-auth", alias="NOXUS_OAUTH_CALLBACK_PATH")
    oauth_provider: str = Field("google", alias="NOXUS_OAUTH_PROVIDER")
    profiles_table: str = Field("profiles", alias="NOXUS_PROFILES_TABLE")
    profile_backend: Literal["rest", "database"] = Field("rest", alias="NOXUS_PROFILE_BACKEND")
    request_timeout_seconds: Optional[float] = Field(None, alias="NOXUS_REQUEST_TIMEOUT_SECONDS")
    timezone: str = Field("UTC", alias="NOXUS_TIMEZONE")
    database_url: Optional[str] = Field(None, alias="NOXUS_DATABASE_URL")
    database_pool_size: int = Field(5, alias="NOXUS_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(5, alias="NOXUS_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="NOXUS_DATABASE_ECHO")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid client configuration: {exc}") from exc
