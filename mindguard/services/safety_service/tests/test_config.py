"""Tests for keyword policy loading and safety configuration."""
import json
import pytest
from unittest.mock import patch

from mindguard.shared.errors import ValidationError
from mindguard.services.safety_service.config import (
    ContentSafetyConfig,
    KeywordPolicy,
    SafetyConfig,
    load_policy,
)


def policy_dict(**tier_overrides):
    tiers = {"critical": ["suicide"], "high": ["cutting"], "medium": ["alone"]}
    tiers.update(tier_overrides)
    return {
        "version": "test-1",
        "tiers": tiers,
        "signals": {
            "suicidal_ideation": ["suicide"],
            "self_harm": ["hurt myself"],
            "severe_distress": ["unbearable"],
            "hopelessness": ["no hope"],
            "immediacy": ["tonight"],
        },
        "activity": {
            "negative": ["awful"],
            "isolation": ["alone"],
            "help_seeking": ["help"],
        },
    }


class TestKeywordPolicy:

    def test_bundled_policy_loads(self):
        policy = load_policy()

        assert policy.version
        assert "kill myself" in policy.critical
        assert "can't go on" in policy.critical

    def test_bundled_tiers_are_disjoint(self):
        policy = load_policy()

        assert not set(policy.critical) & set(policy.high)
        assert not set(policy.high) & set(policy.medium)
        assert not set(policy.critical) & set(policy.medium)

    def test_rejects_overlapping_tiers(self):
        with pytest.raises(ValidationError):
            KeywordPolicy.from_dict(policy_dict(medium=["suicide"]))

    def test_rejects_missing_section(self):
        data = policy_dict()
        del data["signals"]

        with pytest.raises(ValidationError):
            KeywordPolicy.from_dict(data)

    def test_phrases_are_lowercased(self):
        policy = KeywordPolicy.from_dict(policy_dict(high=["Cutting"]))

        assert policy.high == ("cutting",)

    def test_custom_policy_from_environment(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps(policy_dict()))

        with patch.dict("os.environ", {"MINDGUARD_POLICY_PATH": str(path)}):
            policy = load_policy()

        assert policy.version == "test-1"

    def test_unreadable_policy_raises_validation_error(self, tmp_path):
        with pytest.raises(ValidationError):
            load_policy(str(tmp_path / "missing.json"))


class TestSafetyConfig:

    def test_defaults(self):
        config = SafetyConfig()

        assert config.sentiment_timeout_seconds == 3.0
        assert config.max_retries == 2
        assert config.event_log_capacity == 50
        assert config.flag_window_hours == 24

    def test_from_env(self):
        with patch.dict("os.environ", {
            "MINDGUARD_SENTIMENT_TIMEOUT_SECONDS": "1.5",
            "MINDGUARD_MAX_RETRIES": "0",
        }):
            config = SafetyConfig.from_env()

        assert config.sentiment_timeout_seconds == 1.5
        assert config.max_retries == 0

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            SafetyConfig(sentiment_timeout_seconds=0)


class TestContentSafetyConfig:

    def test_none_without_credentials(self):
        with patch.dict("os.environ", {}, clear=True):
            assert ContentSafetyConfig.from_env() is None

    def test_from_env_strips_trailing_slash(self):
        with patch.dict("os.environ", {
            "AZURE_CONTENT_SAFETY_ENDPOINT": "https://cs.example.com/",
            "AZURE_CONTENT_SAFETY_KEY": "key",
        }):
            config = ContentSafetyConfig.from_env()

        assert config.endpoint == "https://cs.example.com"
        assert config.api_version == "2023-10-01"
