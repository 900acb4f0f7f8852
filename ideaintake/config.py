from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List

class Settings(BaseSettings):
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    OPENAI_CHECK_MODEL: str = "gpt-4.1-mini"
    OPENAI_EXTRACT_MODEL: str = "gpt-4.1"
    CHAT_TEMPERATURE: float = 0.7
    CHAT_MAX_TOKENS: int = 2048
    CHECK_MAX_TOKENS: int = 500
    EXTRACTION_TIMEOUT_SECONDS: float = 90.0
    DB_URL: str = "sqlite:///./data/intake.db"
    DATA_DIR: str = "./data"
    DEFAULT_LANGUAGE: str = "en"
    DRAFT_RETENTION_SECONDS: int = 2 * 60 * 60
    EMPTY_DRAFT_MAX_MESSAGES: int = 3
    STORE_MAX_BATCH_SIZE: int = 500
    HISTORY_DEFAULT_LIMIT: int = 20
    PROFILE_CACHE_TTL_SECONDS: float = 300.0
    API_TOKENS: Dict[str, str] = {}
    LOG_LEVEL: str = "INFO"
    cors_allow_origins: List[str] = ["*"]
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
