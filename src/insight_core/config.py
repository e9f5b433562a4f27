"""
Configuration management using pydantic-settings.
"""
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Dict, Optional
import os
import yaml
import structlog
from pathlib import Path

logger = structlog.get_logger()

_TRUE_VALUES = ("1", "true", "yes", "on")


class ExtractionConfig(BaseModel):
    """Message window and filtering configuration."""
    max_messages: int = Field(default=200, description="Messages fetched per conversation window")
    confidence_threshold: float = Field(default=0.5, description="Insights at or below this confidence are dropped")
    global_conversation_limit: int = Field(default=50, description="Conversations scanned for global extraction")


class PriorityConfig(BaseModel):
    """Priority message scan configuration."""
    days_back: int = Field(default=7, description="Only messages newer than this many days are scored")
    window_limit: int = Field(default=100, description="Messages fetched per conversation for priority scan")


class CacheConfig(BaseModel):
    """Day-scoped insight cache configuration."""
    prefix: str = Field(default="insights", description="Key prefix for all cache entries")
    backend: str = Field(default="file", description="Cache backend: file | memory")
    path: str = Field(default=".state/insights-cache.json", description="Cache file for the file backend")
    timezone: str = Field(default="UTC", description="Timezone used to compute the cache day")


class RefineConfig(BaseModel):
    """Optional refinement service configuration."""
    enabled: bool = Field(default=False, description="Send extracted insights to the refinement service")
    endpoint: str = Field(default="", description="Refinement service base URL")
    actions_path: str = Field(default="/refine/actions", description="Path for action refinement")
    decisions_path: str = Field(default="/refine/decisions", description="Path for decision refinement")
    timeout_s: int = Field(default=30, description="Request timeout in seconds")
    token_env: str = Field(default="REFINE_TOKEN", description="Environment variable holding the bearer token")
    headers: Dict[str, str] = Field(default_factory=dict, description="Additional headers")

    def __init__(self, **kwargs):
        # Environment wins only when the value is not given explicitly
        env_values = {
            'enabled': os.getenv('INSIGHT_ENABLE_LLM'),
            'endpoint': os.getenv('REFINE_ENDPOINT', ''),
        }

        for key, env_value in env_values.items():
            if key not in kwargs and env_value:
                if key == 'enabled':
                    kwargs[key] = env_value.strip().lower() in _TRUE_VALUES
                else:
                    kwargs[key] = env_value

        super().__init__(**kwargs)

    def get_token(self) -> Optional[str]:
        """Get refinement token from environment (None when unset)."""
        return os.getenv(self.token_env) or None


class SourceConfig(BaseModel):
    """Message source configuration."""
    data_path: Optional[str] = Field(default=None, description="JSON document with conversations and users")
    base_url: str = Field(default="", description="Base URL of the message REST API")
    timeout_s: int = Field(default=15, description="Request timeout in seconds")
    lookup_concurrency: int = Field(default=8, description="Concurrent sender lookups")
    placeholder_name: str = Field(default="Unknown", description="Sender name used when lookup fails")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""
    prometheus_port: int = Field(default=9108, description="Prometheus metrics port")
    log_level: str = Field(default="INFO", description="Log level")


class Config(BaseSettings):
    """Main configuration class."""

    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    priority: PriorityConfig = Field(default_factory=PriorityConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    refine: RefineConfig = Field(default_factory=RefineConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="INSIGHT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        # First, load defaults and environment
        super().__init__(**kwargs)

        # Then overlay YAML files (lower precedence first); explicit kwargs win
        for yaml_config in self._load_yaml_configs():
            self._apply_yaml_config(yaml_config, explicit=set(kwargs))

    def _load_yaml_configs(self) -> List[Dict]:
        """Load YAML configuration files in order of precedence."""
        candidates = [
            Path("configs/config.example.yaml"),
            Path("configs/config.yaml"),
        ]
        custom_path = os.getenv("INSIGHT_CONFIG_PATH")
        if custom_path:
            candidates.append(Path(custom_path))

        configs = []
        for path in candidates:
            if not path.exists():
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    config = yaml.safe_load(f)
                if config:
                    configs.append(config)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load config file", path=str(path), error=str(e))

        return configs

    def _apply_yaml_config(self, yaml_config: Dict, explicit: set = frozenset()) -> None:
        """Apply YAML configuration to current config."""
        for section, model in _CONFIG_SECTIONS.items():
            if section in explicit or section not in yaml_config:
                continue
            values = yaml_config[section] or {}
            current = getattr(self, section).model_dump()
            current.update(values)
            setattr(self, section, model(**current))


_CONFIG_SECTIONS = {
    'extraction': ExtractionConfig,
    'priority': PriorityConfig,
    'cache': CacheConfig,
    'refine': RefineConfig,
    'source': SourceConfig,
    'observability': ObservabilityConfig,
}
