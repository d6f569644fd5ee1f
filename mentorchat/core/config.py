"""Runtime settings for the messaging service."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (prefix ``MENTORCHAT_``)."""

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "mentorchat"
    redis_url: Optional[str] = None
    # multi-document transactions need a replica set
    use_transactions: bool = False
    public_base_url: str = "http://localhost:8000"
    attachment_bucket: str = "attachments"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="MENTORCHAT_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
