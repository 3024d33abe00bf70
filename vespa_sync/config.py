import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

DEFAULT_ACTIVITIES_URL = (
    "https://cdn.jsdelivr.net/gh/4Sighteducation/FlashcardLoader@main/integrations/tutor_activities1p.json"
)


class Settings(BaseSettings):
    knack_api_url: str = Field("https://api.knack.com/v1", alias="VESPA_KNACK_API_URL")
    knack_app_id: Optional[str] = Field(None, alias="VESPA_KNACK_APP_ID")
    knack_api_key: Optional[str] = Field(None, alias="VESPA_KNACK_API_KEY")
    shared_cache_url: Optional[str] = Field(None, alias="VESPA_SHARED_CACHE_URL")
    local_store_url: Optional[str] = Field(None, alias="VESPA_LOCAL_STORE_URL")
    local_store_echo: bool = Field(False, alias="VESPA_LOCAL_STORE_ECHO")
    cache_prefix: str = Field("vespa-homepage-cache", alias="VESPA_CACHE_PREFIX")
    cache_ttl_minutes: float = Field(30, alias="VESPA_CACHE_TTL_MINUTES", gt=0)
    request_max_attempts: int = Field(3, alias="VESPA_REQUEST_MAX_ATTEMPTS", ge=1)
    request_base_delay_ms: int = Field(1000, alias="VESPA_REQUEST_BASE_DELAY_MS", ge=0)
    request_timeout_seconds: float = Field(30, alias="VESPA_REQUEST_TIMEOUT_SECONDS", gt=0)
    session_idle_minutes: float = Field(30, alias="VESPA_SESSION_IDLE_MINUTES", gt=0)
    activities_url: Optional[str] = Field(DEFAULT_ACTIVITIES_URL, alias="VESPA_ACTIVITIES_URL")

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
        raise RuntimeError(f"Invalid sync configuration: {exc}") from exc
