"""Configuration management for the notebook assist engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    NBASSIST_ENV: str = Field(default="dev", description="Environment: dev, test, prod")

    # Provider selection
    AI_SERVICE: str = Field(
        default="openai", description="Completion provider: openai, azure, anthropic"
    )

    # OpenAI configuration
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    OPENAI_BASE_URL: str | None = Field(default=None, description="Optional OpenAI base URL")

    # Azure OpenAI configuration
    AZURE_OPENAI_ENDPOINT: str = Field(default="", description="Azure OpenAI endpoint URL")
    AZURE_OPENAI_API_KEY: str = Field(default="", description="Azure OpenAI API key")
    AZURE_OPENAI_DEPLOYMENT: str = Field(default="", description="Azure chat deployment name")
    AZURE_OPENAI_API_VERSION: str = Field(default="2024-06-01", description="Azure API version")
    AZURE_EMBEDDING_DEPLOYMENT: str = Field(
        default="", description="Azure embedding deployment name"
    )

    # Anthropic configuration
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    ANTHROPIC_MODEL: str = Field(
        default="claude-3-5-sonnet-20241022", description="Anthropic completion model"
    )

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-large", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=3072, description="Embedding vector dimension")

    # Completion configuration
    COMPLETION_MODEL: str = Field(default="gpt-4o", description="OpenAI completion model")
    COMPLETION_TEMPERATURE: float = Field(default=0.0, description="Completion temperature")
    COMPLETION_MAX_TOKENS: int = Field(default=4096, description="Max tokens per completion")

    # Retrieval
    NUMBER_OF_SIMILAR_CELLS: int = Field(
        default=3, description="Cells retrieved as context for each interaction"
    )
    EMBEDDING_REFRESH_INTERVAL: float = Field(
        default=1.0, description="Seconds between embedding refreshes of an open document"
    )

    # Embedding persistence
    EMBEDDING_STORE_BACKEND: str = Field(
        default="file", description="Store backend: file, supabase"
    )
    EMBEDDINGS_DIR: str = Field(default=".embeddings", description="Root for embedding JSON files")
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="", description="Supabase service role key")
    EMBEDDINGS_TABLE: str = Field(
        default="notebook_embeddings", description="Supabase table for embedding stores"
    )

    def is_configured(self) -> bool:
        """Whether the selected AI service has the credentials it needs."""
        if self.AI_SERVICE == "azure":
            return bool(
                self.AZURE_OPENAI_ENDPOINT
                and self.AZURE_OPENAI_API_KEY
                and self.AZURE_OPENAI_DEPLOYMENT
            )
        if self.AI_SERVICE == "anthropic":
            return bool(self.ANTHROPIC_API_KEY and self.OPENAI_API_KEY)
        return bool(self.OPENAI_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables fail validation
    """
    return Settings()
