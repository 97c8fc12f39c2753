"""Application settings using Pydantic."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ollama LLM Configuration
    llm_enabled: bool = True
    llm_ollama_base_url: str = "http://localhost:11434"
    llm_model_name: str = "gpt-oss:20b"
    llm_fallback_model_name: str | None = None
    llm_temperature: float = 0.0
    llm_request_timeout: int = 180
    llm_num_ctx: int = 16384
    llm_num_predict: int = 8192

    # Concurrency
    max_concurrent_llm_calls: int = 2
    max_concurrent_documents: int = 2

    # Chunking Configuration
    chunk_target_tokens: int = 3000
    chunk_overlap_tokens: int = 200
    chunk_min_tokens: int = 500
    chunk_max_tokens: int = 4000

    # Structuring
    structuring_strategy: Literal["auto", "regex", "llm"] = "auto"
    llm_extraction_mode: Literal["chunked", "paginated"] = "chunked"
    llm_page_size: int = 25
    llm_max_questions: int = 150
    segmenter_min_questions: int = 3
    segmenter_min_alternatives: int = 4

    # Quality gate
    gate_min_stem_length: int = 30
    gate_similarity_ratio: float = 0.8
    gate_similarity_min_length: int = 10
    answer_key_policy: Literal["normalize", "reject"] = "normalize"
    default_answer_key: str = "A"

    # Deduplication (None disables fuzzy matching)
    dedup_fuzzy_threshold: float | None = None

    # Audit / repair
    auto_fix_enabled: bool = True
    repair_batch_size: int = 3
    repair_context_chars: int = 6000

    # Answer-key resolution for keys the gate defaulted (opt-in)
    answer_key_resolution_enabled: bool = False
    answer_key_batch_size: int = 10

    # Processing Configuration
    max_retries: int = 3
    retry_wait_min_seconds: float = 2.0
    retry_wait_max_seconds: float = 30.0

    # Storage
    database_url: str = "sqlite:///data/qbank.db"

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
