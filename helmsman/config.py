"""Configuration management for Helmsman."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.helmsman/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Remote chat-completions endpoint configuration."""

    base_url: str = ""
    api_key: str = ""
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    total_timeout: float = 300.0
    max_request_bytes: int = 1024 * 1024

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"


class ContextConfig(BaseModel):
    """Context window and memory configuration."""

    size: int = 128000
    compact_percentage: int = 0
    compact_protect_rounds: int = 2
    prune_percentage: int = 50
    min_summary_length: int = 50

    @property
    def auto_compact_threshold(self) -> int:
        """Token count at which auto-compaction triggers (0 when disabled)."""
        if self.compact_percentage <= 0:
            return 0
        capped = min(self.compact_percentage, 100)
        return int(self.size * capped // 100)

    @property
    def auto_compact_enabled(self) -> bool:
        return self.auto_compact_threshold > 0


class RetryConfig(BaseModel):
    """Outbound request retry configuration."""

    max_retries: int = 3
    max_wait: int = 64


class ToolsConfig(BaseModel):
    """Tools configuration."""

    shell_timeout: int = 30
    shell_blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]
    max_tool_result_size: int = 300000
    read_max_bytes: int = 1_000_000
    sandbox: bool = True


class UIConfig(BaseModel):
    """UI configuration."""

    detail: bool = False
    yolo: bool = False
    streaming: bool = True


class MemoryConfig(BaseModel):
    """Behavioral memory files configuration."""

    dir: str = ".helmsman/memory"
    auto_load: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"
    file: str = ""


class Config(BaseSettings):
    """Main configuration for Helmsman."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HELMSMAN_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration, environment variables fill what YAML leaves unset."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def validate_endpoint(self) -> None:
        """Raise when the remote endpoint is not configured."""
        from helmsman.exceptions import ConfigurationError

        if not self.model.base_url.strip():
            raise ConfigurationError(
                "Missing model.base_url (set HELMSMAN_MODEL__BASE_URL or add it to config.yaml)"
            )


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
