"""Configuration management for Tether."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tether.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.tether/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "ollama"
    model: str = "qwen2.5-coder:3b"
    temperature: float = 0.7
    max_tokens: int = 4000
    api_key: str = ""
    base_url: str = "http://localhost:11434"
    request_timeout: float = 120.0


class ContextConfig(BaseModel):
    """Conversation context budget."""

    max_tokens: int = 4000
    truncate_oldest: bool = True


class AgentConfig(BaseModel):
    """Orchestration loop limits."""

    max_iterations: int = 10
    max_response_chars: int = 32000
    system_prompt: str = ""


class PermissionsConfig(BaseModel):
    """Per-tool permission levels (always_ask, ask_once, never_ask)."""

    tools: dict[str, str] = Field(
        default_factory=lambda: {
            "fileRead": "never_ask",
            "listFiles": "never_ask",
            "fileWrite": "always_ask",
            "execute": "always_ask",
        }
    )


class ExecuteToolConfig(BaseModel):
    """Shell execution tool configuration."""

    timeout: int = 30
    blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]
    max_output_chars: int = 10000


class FileToolsConfig(BaseModel):
    """File read/write/list tool configuration."""

    max_read_bytes: int = 1024 * 1024
    max_write_bytes: int = 1024 * 1024
    max_list_results: int = 500


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = ["execute", "fileRead", "fileWrite", "listFiles"]
    execute: ExecuteToolConfig = Field(default_factory=ExecuteToolConfig)
    files: FileToolsConfig = Field(default_factory=FileToolsConfig)


class UIConfig(BaseModel):
    """UI configuration."""

    colors: bool = True
    show_tool_calls: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Tether."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="TETHER_",
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

        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML; env vars are layered by pydantic-settings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


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
