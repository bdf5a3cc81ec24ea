from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    DATABASE_PATH: str = Field("data/mnemos.db", description="SQLite file holding the memories table")

    EMBEDDING_PROVIDER: Literal["openai", "ollama", "none"] = Field(
        "ollama",
        description="Backend used to embed memory content; 'none' disables semantic search"
    )
    OPENAI_API_KEY: SecretStr | None = Field(None, description="OpenAI API Key")
    OPENAI_EMBEDDING_MODEL: str = Field(
        "text-embedding-3-small",
        description="Model for embeddings"
    )
    OPENAI_MODEL_CLASSIFIER: str = Field(
        "gpt-4o-mini",
        description="Small model used to categorize and compare memories (JSON output)"
    )
    OLLAMA_HOST: str = Field("http://localhost:11434", description="Ollama server URL")
    OLLAMA_EMBEDDING_MODEL: str = Field("nomic-embed-text", description="Ollama embedding model")
    PROVIDER_TIMEOUT: float = Field(30.0, description="Seconds before an embedding request is abandoned")

    SEARCH_THRESHOLD: float = Field(
        0.5,
        ge=0.0, le=1.0,
        description="Minimum similarity for memories injected into prompts"
    )
    SEARCH_LIMIT: int = Field(10, ge=1, description="Maximum memories returned by a search")
    FORMATION_DUPLICATE_THRESHOLD: float = Field(
        0.85,
        ge=0.0, le=1.0,
        description="Similarity above which a candidate is compared against an existing memory"
    )
    FORMATION_EXACT_THRESHOLD: float = Field(
        0.95,
        ge=0.0, le=1.0,
        description="Similarity above which a candidate is treated as already remembered"
    )

    QUEUE_BUFFER_SIZE: int = Field(100, ge=1, description="Capacity of the formation queue")
    QUEUE_STOP_TIMEOUT: float = Field(5.0, description="Seconds to wait for queued formations on exit")

# Singleton instance
settings = Settings()
