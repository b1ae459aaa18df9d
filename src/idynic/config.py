from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Idynic"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/idynic.db"
    data_dir: Path = Path("./data")
    upload_dir: Path = Path("./data/uploads")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = False
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "qwen2.5:14b-instruct"
    local_llm_timeout_sec: int = 90

    model_extract_evidence: str = "gpt-4o-mini"
    model_extract_work_history: str = "gpt-4o-mini"
    model_extract_resume: str = "gpt-4o-mini"
    model_extract_opportunity: str = "gpt-4o-mini"
    model_synthesize_claims: str = "gpt-4o-mini"
    model_reflect_identity: str = "gpt-4o-mini"
    model_talking_points: str = "gpt-4o-mini"
    model_narrative: str = "gpt-4o-mini"
    model_resume: str = "gpt-4o-mini"
    model_evaluate: str = "gpt-4o-mini"
    model_research_company: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    llm_router_default: str = "openai"
    llm_router_extract_provider: str = "openai"
    llm_router_synthesis_provider: str = "openai"
    llm_router_writer_provider: str = "openai"
    llm_router_eval_provider: str = "openai"

    ingestion_max_attempts: int = 3
    tailor_max_attempts: int = 2
    highlight_limit: int = 20
    synthesis_batch_size: int = 10
    synthesis_similarity_threshold: float = 0.5
    synthesis_max_candidates: int = 25
    reflection_claim_limit: int = 50
    claim_eval_sample_size: int = 5
    duplicate_label_threshold: float = 0.85
    story_min_chars: int = 200
    story_max_chars: int = 10000
    job_fetch_timeout_sec: int = 30
    dispatch_mode: str = "background"

    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("dispatch_mode")
    @classmethod
    def validate_dispatch_mode(cls, value: str) -> str:
        allowed = {"inline", "background"}
        if value not in allowed:
            raise ValueError(f"dispatch_mode must be one of {sorted(allowed)}")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
