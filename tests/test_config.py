"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from activity_summarizer.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(openai_api_key="test", jina_api_key="test")
        assert settings.embedding_provider == "openai"
        assert settings.embedding_model == "text-embedding-3-small"
        assert settings.embedding_dimensions == 1536
        assert settings.embedding_timeout_seconds == 60.0
        assert settings.embedding_max_concurrency == 8
        assert settings.client_max_retries == 4
        assert settings.client_backoff_seconds == 1.0
        assert settings.gap_threshold_seconds == 1800.0
        assert settings.similarity_threshold == 0.6
        assert settings.min_messages_for_semantic == 2
        assert settings.semantic_enabled is True
        assert settings.channel_max_concurrency == 4
        assert settings.log_level == "INFO"

    def test_from_yaml(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text(
            "gap_threshold_seconds: 900\nsimilarity_threshold: 0.75\nsemantic_enabled: false\n"
        )
        settings = Settings.from_yaml(config_file, openai_api_key="test")
        assert settings.gap_threshold_seconds == 900
        assert settings.similarity_threshold == 0.75
        assert settings.semantic_enabled is False

    def test_from_yaml_overrides_win(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("gap_threshold_seconds: 900\n")
        settings = Settings.from_yaml(config_file, gap_threshold_seconds=60)
        assert settings.gap_threshold_seconds == 60

    def test_missing_yaml_uses_defaults(self, tmp_path):
        settings = Settings.from_yaml(tmp_path / "missing.yaml")
        assert settings.gap_threshold_seconds == 1800.0

    def test_empty_yaml_uses_defaults(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert Settings.from_yaml(config_file).similarity_threshold == 0.6

    @pytest.mark.parametrize(
        "field, value",
        [
            ("gap_threshold_seconds", -1),
            ("similarity_threshold", 1.5),
            ("min_messages_for_semantic", 1),
            ("embedding_dimensions", 0),
            ("channel_max_concurrency", 0),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_provider_resolution(self):
        settings = Settings(embedding_provider=" Jina ", jina_api_key=" key ", openai_api_key="")
        assert settings.resolved_embedding_provider() == "jina"
        assert settings.resolved_embedding_api_key() == "key"
        assert settings.resolved_embedding_key_source() == "JINA_API_KEY"

    def test_missing_key_source_label(self):
        settings = Settings(openai_api_key="")
        assert settings.resolved_embedding_key_source() == "OPENAI_API_KEY (missing)"

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported embedding_provider"):
            Settings(embedding_provider="cohere").resolved_embedding_provider()
