"""Tunnel models shared by the supervisor, the registry and the screens."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_PORT = 0
MAX_PORT = 65535


class TunnelState(str, Enum):
    """Lifecycle of a supervised tunnel process."""

    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


class TunnelSpec(BaseModel):
    """Immutable description of one requested local forward."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1, description="SSH host the forward goes through")
    local_port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Local port to listen on")
    remote_port: int = Field(
        ge=MIN_PORT, le=MAX_PORT, description="Port on the remote side to forward to"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Validate the host is a single ssh argument and not an option."""
        if any(char.isspace() for char in v):
            raise ValueError("Host cannot contain whitespace")
        if v.startswith("-"):
            raise ValueError("Host cannot start with '-'")
        return v

    @property
    def label(self) -> str:
        """Text form accepted by the input box."""
        return f"{self.host} {self.local_port}:{self.remote_port}"


class TunnelRow(BaseModel):
    """Display row for one tunnel."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    host: str
    local_port: int
    remote_port: int
    state: TunnelState = TunnelState.STARTING

    def with_state(self, state: TunnelState) -> "TunnelRow":
        """Create new row with updated state (immutable pattern)."""
        return self.model_copy(update={"state": state})


class TunnelEvent(BaseModel):
    """State change reported by a tunnel task to the session loop."""

    model_config = ConfigDict(frozen=True)

    tunnel_id: str
    state: TunnelState
    returncode: int | None = None
    detail: str | None = None


class Frame(BaseModel):
    """Everything a screen needs to draw one frame."""

    model_config = ConfigDict(frozen=True)

    rows: list[TunnelRow] = Field(default_factory=list)
    hosts: list[str] = Field(default_factory=list)
    selected: int | None = None
    input_text: str | None = Field(
        default=None, description="Draft in the input box, None when the box is closed"
    )
    input_error: str | None = None
    status: str | None = None
    shutting_down: bool = False
