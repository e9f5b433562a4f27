"""
Test configuration classes and YAML overlay.
"""
import os
from unittest.mock import patch

import pytest
import yaml

from insight_core.config import Config, ExtractionConfig, RefineConfig


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run each test in an empty directory so no YAML or .env is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestDefaults:
    """Test default values."""

    def test_defaults(self):
        config = Config()
        assert config.extraction.max_messages == 200
        assert config.extraction.confidence_threshold == 0.5
        assert config.extraction.global_conversation_limit == 50
        assert config.priority.days_back == 7
        assert config.priority.window_limit == 100
        assert config.cache.prefix == "insights"
        assert config.refine.enabled is False
        assert config.source.placeholder_name == "Unknown"


class TestRefineConfig:
    """Test refinement env handling."""

    def test_enable_flag_from_env(self):
        with patch.dict(os.environ, {"INSIGHT_ENABLE_LLM": "true", "REFINE_ENDPOINT": "http://refine.test"}):
            config = RefineConfig()
        assert config.enabled is True
        assert config.endpoint == "http://refine.test"

    def test_explicit_value_wins(self):
        with patch.dict(os.environ, {"INSIGHT_ENABLE_LLM": "true"}):
            assert RefineConfig(enabled=False).enabled is False

    def test_get_token(self):
        with patch.dict(os.environ, {"REFINE_TOKEN": "abc"}):
            assert RefineConfig().get_token() == "abc"
        assert RefineConfig().get_token() is None


class TestEnvironment:
    """Test nested environment overrides."""

    def test_nested_env(self):
        with patch.dict(os.environ, {"INSIGHT_EXTRACTION__MAX_MESSAGES": "50", "INSIGHT_CACHE__BACKEND": "memory"}):
            config = Config()
        assert config.extraction.max_messages == 50
        assert config.cache.backend == "memory"


class TestYamlOverlay:
    """Test YAML layering."""

    def test_config_yaml_applied(self, workdir):
        _write_yaml(workdir / "configs" / "config.yaml", {"priority": {"days_back": 3}})
        config = Config()
        assert config.priority.days_back == 3
        assert config.priority.window_limit == 100

    def test_custom_path_has_highest_precedence(self, workdir):
        _write_yaml(workdir / "configs" / "config.yaml", {"cache": {"prefix": "from-config"}})
        custom = workdir / "custom.yaml"
        _write_yaml(custom, {"cache": {"prefix": "from-custom"}})

        with patch.dict(os.environ, {"INSIGHT_CONFIG_PATH": str(custom)}):
            config = Config()

        assert config.cache.prefix == "from-custom"

    def test_explicit_section_wins(self, workdir):
        _write_yaml(workdir / "configs" / "config.yaml", {"extraction": {"max_messages": 20}})
        config = Config(extraction=ExtractionConfig(max_messages=10))
        assert config.extraction.max_messages == 10

    def test_broken_yaml_ignored(self, workdir):
        path = workdir / "configs" / "config.yaml"
        path.parent.mkdir(parents=True)
        path.write_text("extraction: [unclosed", encoding="utf-8")

        assert Config().extraction.max_messages == 200

    def test_invalid_value_rejected(self, workdir):
        _write_yaml(workdir / "configs" / "config.yaml", {"priority": {"days_back": "soon"}})
        with pytest.raises(ValueError):
            Config()
