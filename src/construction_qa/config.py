"""
Runtime configuration, read from environment variables and ``.env``.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    DATABASE_URL: str = "sqlite:///construction_qa.db"

    # Providers
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: Optional[str] = None
    ANTHROPIC_API_KEY: str = ""

    # Embeddings
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    # Tier 1 budget (200k TPM): ~1500 tokens per page, 2 pages per batch,
    # one batch every 2 seconds stays near 90k TPM
    EMBEDDING_BATCH_SIZE: int = 2
    FINDINGS_BATCH_SIZE: int = 10
    EMBEDDING_BATCH_DELAY: float = 2.0
    RATE_LIMIT_BACKOFF: float = 60.0

    # Ingestion
    MAX_CHUNK_LENGTH: int = 6000

    # Answering
    DEFAULT_MODEL: str = "gpt-4o"
    EXPANSION_MODEL: str = "gpt-4o-mini"
    TITLE_MODEL: str = "gpt-4o-mini"
    RELEVANT_CONTENT_LIMIT: int = 15
    MAX_VISUAL_FINDINGS: int = 5
    MAX_CALLOUT_CHUNKS: int = 6
    USE_MULTI_QUERY: bool = True
    USE_QUERY_DECOMPOSITION: bool = True
    USE_CALLOUT_GRAPH: bool = True

    # Housekeeping
    CHAT_RETENTION_DAYS: int = 30
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"
