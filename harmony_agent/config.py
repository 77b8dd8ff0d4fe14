"""Configuration management for Harmony Agent."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from harmony_agent.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.harmony-agent/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class UpstreamConfig(BaseModel):
    """Upstream completion provider configuration."""

    base_url: str = "http://localhost:8000/v1"
    responses_url: str = ""
    api_key: str = ""
    model: str = "gpt-oss-120b"
    streaming_mode: Literal["buffered", "native"] = "buffered"
    timeout: float = 600.0
    temperature: float = 1.0
    max_output_tokens: int = 128000
    top_p: float = 1.0
    top_k: int = 100
    user_agent: str = "harmony-agent"

    @property
    def use_responses_api(self) -> bool:
        """Whether the responses protocol is configured for this deployment."""
        return bool(self.responses_url.strip())

    @property
    def endpoint(self) -> str:
        """Base URL requests are sent to."""
        raw = self.responses_url if self.use_responses_api else self.base_url
        return raw.rstrip("/")


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    max_turns: int = 4
    chunk_size: int = 80
    chunk_delay_ms: int = 8
    max_tool_result_length: int = 8000
    default_reasoning_level: str = "high"
    knowledge_cutoff: str = "2024-06"


class MCPConfig(BaseModel):
    """MCP tool registry configuration."""

    enable_stdio: bool = False
    default_servers: list[dict[str, Any]] = Field(default_factory=list)
    init_wait_ms: int = 2000
    server_wait_ms: int = 7000
    server_wait_interval_ms: int = 500
    list_tools_timeout_ms: int = 8000
    list_tools_retries: int = 2
    list_tools_retry_delay_ms: int = 500


class ServerConfig(BaseModel):
    """HTTP transport configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    verbose: bool = False


class Config(BaseSettings):
    """Main configuration for Harmony Agent."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HARMONY_",
        env_file=".env",
        env_nested_delimiter="__",
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
            try:
                data: Any = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Config file {config_path} is not valid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration; YAML values take precedence over HARMONY_* env vars."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


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
