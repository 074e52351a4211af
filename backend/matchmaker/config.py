from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/matchmaker.db"
    log_level: str = "INFO"

    # Redis configuration (embedding cache)
    redis_url: str = "redis://localhost:6379"
    embedding_cache_enabled: bool = False

    # Vector store: "chroma" or "memory" (linear scan)
    vector_store: str = "chroma"
    chroma_persist_directory: str = "./data/chroma_db"

    # Embedding provider: "huggingface", "openai" or "hashing"
    embedding_provider: str = "huggingface"
    huggingface_api_key: str = ""
    embedding_api_url: str = (
        "https://api-inference.huggingface.co/models/BAAI/bge-base-en-v1.5"
    )
    openai_api_key: str = ""
    embedding_model: str = "BAAI/bge-base-en-v1.5"
    embedding_dimensions: int = 768
    embedding_max_chars: int = 512  # BGE token limit
    embedding_timeout_seconds: float = 30.0

    # Retry policy for the embedding service
    embedding_max_attempts: int = 4
    embedding_base_delay: float = 1.0
    embedding_max_delay: float = 30.0
    embedding_jitter: float = 0.1
    # Pause between sequential batch items (provider rate limits)
    embedding_batch_delay: float = 0.1

    # Allocation settings
    weekly_match_cap: int = 3
    exploration_fraction: float = 0.15
    candidate_pool_limit: int = 100
    pipeline_batch_size: int = 10
    match_expiry_days: int = 7

    # Weekly allocation schedule (APScheduler cron fields)
    allocation_day_of_week: str = "mon"
    allocation_hour: int = 9

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
