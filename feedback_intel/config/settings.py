# feedback_intel/config/settings.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str
    openai_embedding_model: str = "text-embedding-3-small"
    openai_llm_model: str = "gpt-4o-mini"

    # SQL Server (record store)
    sql_server_host: str
    sql_server_port: int = 1433
    sql_server_database: str
    sql_server_username: str
    sql_server_password: str

    # PostgreSQL + pgvector (embedding index)
    postgres_host: str
    postgres_port: int = 5432
    postgres_database: str
    postgres_username: str
    postgres_password: str
    postgres_sslmode: str = "require"

    # Pipeline config
    embedding_dimension: int = 1536
    request_timeout_seconds: int = 30
    search_top_k: int = 5
    # When False, an embedder failure skips the index write instead of failing ingestion
    embedding_required: bool = True
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process (used by the API dependencies)."""
    return Settings()
