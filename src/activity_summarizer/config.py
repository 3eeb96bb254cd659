"""Configuration management for activity segmentation."""

from pathlib import Path

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_EMBEDDING_PROVIDERS = {"openai", "jina"}


class Settings(BaseSettings):
    """Runtime settings, loaded from env vars and optionally overridden by a YAML config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API keys
    openai_api_key: str = ""
    jina_api_key: str = ""

    # Embedding provider
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, gt=0)
    openai_base_url: str = ""
    embedding_timeout_seconds: float | None = 60.0
    embedding_max_concurrency: int = Field(default=8, ge=1)
    client_max_retries: int = 4
    client_backoff_seconds: float = 1.0

    # Segmentation
    gap_threshold_seconds: float = Field(default=1800.0, ge=0.0)
    similarity_threshold: float = Field(default=0.6, ge=-1.0, le=1.0)
    min_messages_for_semantic: int = Field(default=2, ge=2)
    semantic_enabled: bool = True
    channel_max_concurrency: int = Field(default=4, ge=1)
    tracked_user_id: str = ""

    # Consolidation
    consolidation_enabled: bool = False
    consolidation_use_embeddings: bool = True
    consolidation_adjacent_window_minutes: float = Field(default=15.0, ge=0.0)
    consolidation_similarity_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    consolidation_max_gap_minutes: float = Field(default=240.0, ge=0.0)

    # Paths
    embedding_cache_path: Path = Field(default=Path("cache/embeddings.db"))
    input_messages_path: Path = Field(default=Path("data/mock/messages.jsonl"))
    output_dir: Path = Field(default=Path("output"))

    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides) -> "Settings":
        """Load settings from a YAML config file, with env vars and overrides applied on top."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}
        merged = {**yaml_config, **overrides}
        return cls(**merged)

    def resolved_embedding_provider(self) -> str:
        """Return the normalized embedding provider name."""

        provider = self.embedding_provider.strip().lower()
        if provider not in SUPPORTED_EMBEDDING_PROVIDERS:
            raise ValueError(
                f"Unsupported embedding_provider '{self.embedding_provider}'. "
                f"Expected one of: {', '.join(sorted(SUPPORTED_EMBEDDING_PROVIDERS))}."
            )
        return provider

    def resolved_embedding_api_key(self) -> str:
        """Return the API key for the configured embedding provider."""

        if self.resolved_embedding_provider() == "jina":
            return self.jina_api_key.strip()
        return self.openai_api_key.strip()

    def resolved_embedding_key_source(self) -> str:
        """Return non-secret key source label for diagnostics."""

        if self.resolved_embedding_provider() == "jina":
            return "JINA_API_KEY" if self.jina_api_key.strip() else "JINA_API_KEY (missing)"
        return "OPENAI_API_KEY" if self.openai_api_key.strip() else "OPENAI_API_KEY (missing)"
