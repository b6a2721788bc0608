"""Tests for engine configuration."""

import pytest

from rmm.config import ConfigurationError, ReflectionMode, RMMConfig


class TestRMMConfigValidate:
    """Tests for RMMConfig.validate."""

    def test_defaults_are_valid(self):
        """Paper defaults validate unchanged."""
        config = RMMConfig().validate()
        assert (config.top_k, config.top_m, config.batch_size) == (20, 5, 4)
        assert config.temperature == 0.5
        assert config.learning_rate == 0.001

    def test_top_m_capped(self):
        """top_m above top_k is capped rather than rejected."""
        config = RMMConfig(top_k=3, top_m=5).validate()
        assert config.top_m == 3

    @pytest.mark.parametrize(
        "overrides",
        [
            {"top_k": 0},
            {"top_m": 0},
            {"temperature": 0},
            {"learning_rate": -1e-3},
            {"batch_size": 0},
            {"clip_threshold": 0},
            {"embedding_dimension": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        """Out-of-range values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            RMMConfig(**overrides).validate()

    def test_dimension_fallback(self):
        """Without embedding_dimension the default size is used."""
        assert RMMConfig().dimension == 1536
        assert RMMConfig(embedding_dimension=8).dimension == 8


class TestConfigHash:
    """Tests for RMMConfig.config_hash."""

    def test_stable(self):
        """Equal configs hash equally."""
        assert RMMConfig().config_hash() == RMMConfig().config_hash()

    def test_changes_with_hyperparameters(self):
        """Weight-shaping parameters change the hash."""
        assert RMMConfig().config_hash() != RMMConfig(temperature=1.0).config_hash()

    def test_ignores_session_fields(self):
        """Session id and namespace do not affect the hash."""
        assert RMMConfig().config_hash() == RMMConfig(session_id="s", namespace_root="x").config_hash()


class TestRMMConfigFromDict:
    """Tests for RMMConfig.from_dict."""

    def test_camel_case_keys(self):
        """camelCase keys map to fields, including nested reflection."""
        config = RMMConfig.from_dict(
            {
                "topK": 10,
                "topM": 3,
                "learningRate": 0.01,
                "embeddingDimension": 256,
                "reflection": {"mode": "relaxed", "maxRetries": 1},
            }
        )

        assert config.top_k == 10
        assert config.top_m == 3
        assert config.learning_rate == 0.01
        assert config.embedding_dimension == 256
        assert config.reflection.mode == ReflectionMode.RELAXED
        assert config.reflection.max_retries == 1

    def test_snake_case_wins(self):
        """snake_case takes precedence when both are given."""
        assert RMMConfig.from_dict({"top_k": 7, "topK": 9}).top_k == 7

    def test_round_trip(self):
        """to_dict output loads back to an equal config."""
        config = RMMConfig(top_k=8, top_m=2, embedding_dimension=64)
        assert RMMConfig.from_dict(config.to_dict()) == config

    def test_validates(self):
        """Loaded configs are validated."""
        with pytest.raises(ConfigurationError):
            RMMConfig.from_dict({"batchSize": 0})
