from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Jobflow"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/jobflow.db"
    data_dir: Path = Path("./data")
    upload_dir: Path = Path("./data/uploads")
    outbox_dir: Path = Path("./data/outbox")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model_extractor: str = "gpt-5-mini"
    openai_model_writer: str = "gpt-5-mini"
    openai_model_scorer: str = "gpt-5-mini"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = False
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "mistral"
    local_llm_timeout_sec: int = 90

    llm_router_default: str = "openai"
    llm_router_extract_provider: str = "openai"
    llm_router_writer_provider: str = "openai"
    llm_router_scorer_provider: str = "openai"
    ai_scoring_enabled: bool = True

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_sec: int = 30
    mail_from: str = ""
    mail_sandbox: bool = False
    fallback_contact_email: str = ""

    queue_lease_ms: int = 30_000
    queue_stalled_interval_ms: int = 30_000
    queue_max_stalled_count: int = 1
    queue_poll_interval_sec: float = 1.0

    pipeline_timeout_sec: int = 30 * 60
    pipeline_pacing_sec: float = 1.0
    pipeline_min_score: int = 70
    pipeline_max_postings: int = 5

    search_location: str = ""
    preferred_locations: str = ""
    job_feed_urls: str = ""
    job_source_file: Path | None = None
    job_feed_timeout_sec: int = 10

    scrape_cron: str = "0 * * * *"
    scrape_keywords: str = ""

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @property
    def preferred_location_list(self) -> list[str]:
        return [item.strip().lower() for item in self.preferred_locations.split(",") if item.strip()]

    @property
    def job_feed_url_list(self) -> list[str]:
        return [url.strip() for url in self.job_feed_urls.split(",") if url.strip()]

    @property
    def scrape_keyword_list(self) -> list[str]:
        return [item.strip() for item in self.scrape_keywords.split(",") if item.strip()]

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
