"""
Configuration management for portwarden

Pydantic-based settings with PORTWARDEN_* environment variable support and
YAML file loading.
"""

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .observability.config import TelemetryConfig

DEFAULT_CONFIG_FILE = "portwarden.yml"


class LLMRouterConfig(BaseModel):
    """Single LLM router configuration"""

    provider: Literal["openai", "azure", "local", "mock"] = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    # Azure OpenAI
    api_version: Optional[str] = None
    deployment: Optional[str] = None
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    timeout: float = Field(default=60.0, gt=0)
    # Mock provider only
    mock_responses_path: Optional[str] = None


class LLMConfig(BaseModel):
    """LLM configuration"""

    default: str = "openai_default"
    routers: dict[str, LLMRouterConfig] = Field(
        default_factory=lambda: {"openai_default": LLMRouterConfig()}
    )


class StorageConfig(BaseModel):
    """Where tracker and validator state lives"""

    data_dir: Path = Path(".portwarden-data")


class TrackerConfig(BaseModel):
    retention_days: int = Field(default=30, gt=0)
    effectiveness_window: int = Field(default=10, gt=0)


class ValidationConfig(BaseModel):
    pass_threshold: int = Field(default=70, ge=0, le=100)
    # Scores below this are logged at warning level by the pipeline
    low_score_threshold: int = Field(default=50, ge=0, le=100)


class PromptsConfig(BaseModel):
    """Prompt template location (packaged templates when unset)"""

    prompts_dir: Optional[Path] = None
    max_kb_articles: int = Field(default=2, gt=0)


class PortwardenConfig(BaseSettings):
    """Main portwarden configuration"""

    model_config = SettingsConfigDict(
        env_prefix="PORTWARDEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    log_level: str = "INFO"

    @classmethod
    def load_from_file(cls, config_path: str = DEFAULT_CONFIG_FILE) -> "PortwardenConfig":
        """Load configuration from a YAML file; a missing file yields defaults"""
        config_file = Path(config_path)
        config_data = {}

        if config_file.exists():
            with open(config_file, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def get_llm_router_config(self, router_name: Optional[str] = None) -> LLMRouterConfig:
        """Get LLM router configuration"""
        router_name = router_name or self.llm.default
        if router_name not in self.llm.routers:
            raise ValueError(f"LLM router '{router_name}' not found in configuration")
        return self.llm.routers[router_name]


_config: Optional[PortwardenConfig] = None


def get_config() -> PortwardenConfig:
    """Get the process-wide configuration (CLI entry points only)"""
    global _config
    if _config is None:
        _config = PortwardenConfig.load_from_file()
    return _config


def set_config(config: Optional[PortwardenConfig]) -> None:
    """Set or clear the process-wide configuration"""
    global _config
    _config = config
