from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "ResumeDrop"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8788
    log_level: str = "INFO"
    redact_log_pii: bool = True

    database_url: str = "sqlite:///./data/resumedrop.db"
    data_dir: Path = Path("./data")
    upload_dir: Path = Path("./data/uploads")
    extraction_tmp_dir: Path = Path("./data/tmp")

    pii_encryption_key: str = ""

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model_parser: str = "gpt-4o-mini"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = False
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "qwen2.5:14b-instruct"
    local_llm_timeout_sec: int = 90

    affinda_enabled: bool = False
    affinda_api_token: str = ""
    affinda_base_url: str = "https://api.affinda.com/v3"
    affinda_workspace: str = ""
    affinda_collection: str = ""
    affinda_timeout_sec: int = 60

    automation_enabled: bool = True
    automation_interval_minutes: int = 15
    automation_initial_delay_sec: float = 5.0
    batch_size: int = 5
    message_timeout_sec: float = 60.0
    batch_delay_sec: float = 2.0
    max_messages_per_check: int = 50
    imap_timeout_sec: int = 30

    min_extracted_chars: int = 50
    pdf_fallback_timeout_sec: float = 30.0
    max_video_mb: float = 100.0

    circuit_failure_threshold: int = 5
    circuit_reset_sec: float = 60.0
    ai_call_timeout_sec: float = 45.0
    storage_timeout_sec: float = 20.0

    validation_min_score: int = 50
    match_latest_active_job: bool = False

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("batch_size", "automation_interval_minutes", "circuit_failure_threshold")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value

    @field_validator("message_timeout_sec", "pdf_fallback_timeout_sec", "ai_call_timeout_sec", "storage_timeout_sec")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be greater than zero")
        return value

    @field_validator("validation_min_score")
    @classmethod
    def validate_score(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("validation_min_score must be between 0 and 100")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
