"""Configuration model for the tunnel supervisor."""

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_SSH_OPTIONS = ["-o", "ExitOnForwardFailure=yes", "-o", "BatchMode=yes"]


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SupervisorConfig(BaseModel):
    """Settings shared by the session loop and every tunnel process."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    ssh_binary: str = Field(default="ssh", min_length=1, description="SSH client executable")
    forward_host: str = Field(
        default="127.0.0.1",
        min_length=1,
        description="Destination host, as seen from the SSH server, of every forward",
    )
    ssh_options: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SSH_OPTIONS),
        description="Extra arguments placed before the host on the ssh command line",
    )
    ssh_config_path: Path | None = Field(
        default=None, description="OpenSSH client config used for the host list"
    )
    poll_interval: float = Field(
        default=0.016, ge=0.001, le=1.0, description="Key polling interval in seconds"
    )
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_file: Path | None = Field(default=None, description="Write logs to this file")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept log levels in any case."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("forward_host")
    @classmethod
    def validate_forward_host(cls, v: str) -> str:
        """Reject values ssh would split or read as an option."""
        if any(char.isspace() for char in v) or v.startswith("-"):
            raise ValueError("forward_host must be a single host name or address")
        return v


def load_config(path: str | Path, **overrides: Any) -> SupervisorConfig:
    """Load supervisor settings from a TOML file.

    Args:
        path: TOML file whose top-level keys are ``SupervisorConfig`` fields
        **overrides: Values that take precedence over the file (``None`` is ignored)

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file cannot be read, is not valid TOML, or fails validation
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        config = SupervisorConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.debug("Configuration loaded", path=str(path))
    return config
