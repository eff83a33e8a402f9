"""Modal editor for the "new tunnel" input box.

Key events drive an explicit state machine over ``Idle``, ``Editing`` and
``Terminal``. Each key produces at most one effect for the session loop to act
on; the machine itself never touches tunnels or the registry.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import ParseError
from .models import MAX_PORT, TunnelSpec

NEW_TUNNEL_KEY = "n"
QUIT_KEY = "q"
REMOVE_KEY = "d"
PLACEHOLDER = "host local:remote"


class KeyKind(str, Enum):
    """Decoded key categories."""

    CHAR = "char"
    ENTER = "enter"
    BACKSPACE = "backspace"
    ESCAPE = "escape"
    UP = "up"
    DOWN = "down"
    DELETE = "delete"


@dataclass(frozen=True)
class KeyEvent:
    """A decoded key press."""

    kind: KeyKind
    char: str | None = None

    @classmethod
    def of(cls, char: str) -> "KeyEvent":
        return cls(KeyKind.CHAR, char)


class Idle(BaseModel):
    """No input box open."""

    model_config = ConfigDict(frozen=True)


class Editing(BaseModel):
    """Input box open with a draft and, after a failed Enter, its error."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    error: str | None = None


class Terminal(BaseModel):
    """Session exit requested; all further keys are ignored."""

    model_config = ConfigDict(frozen=True)


InputState = Idle | Editing | Terminal


@dataclass(frozen=True)
class AdmitTunnel:
    spec: TunnelSpec


@dataclass(frozen=True)
class InputRejected:
    error: ParseError


@dataclass(frozen=True)
class QuitRequested:
    pass


@dataclass(frozen=True)
class MoveSelection:
    delta: int


@dataclass(frozen=True)
class RemoveSelected:
    pass


Effect = AdmitTunnel | InputRejected | QuitRequested | MoveSelection | RemoveSelected


def _parse_port(text: str, segment: str) -> int:
    if not text:
        raise ParseError(segment, f"{segment} is empty")
    if not (text.isascii() and text.isdigit()):
        raise ParseError(segment, f"{segment} '{text}' is not a number")
    port = int(text)
    if port > MAX_PORT:
        raise ParseError(segment, f"{segment} {port} is out of range (0-{MAX_PORT})")
    return port


def parse_tunnel_spec(text: str) -> TunnelSpec:
    """Parse ``<host> <local>:<remote>`` into a tunnel spec.

    Args:
        text: Raw input box contents

    Returns:
        Parsed tunnel specification

    Raises:
        ParseError: Naming the segment that failed
    """
    host, space, ports = text.partition(" ")
    if not space:
        raise ParseError("space", f"Expected '{PLACEHOLDER}': missing space")
    if not host:
        raise ParseError("host", "Host is empty")
    if " " in ports:
        raise ParseError("space", f"Expected '{PLACEHOLDER}': too many spaces")

    local_text, colon, remote_text = ports.partition(":")
    if not colon:
        raise ParseError("colon", f"Expected '{PLACEHOLDER}': missing colon")
    if ":" in remote_text:
        raise ParseError("colon", f"Expected '{PLACEHOLDER}': too many colons")

    local_port = _parse_port(local_text, "local port")
    remote_port = _parse_port(remote_text, "remote port")

    try:
        return TunnelSpec(host=host, local_port=local_port, remote_port=remote_port)
    except ValidationError as e:
        message = e.errors()[0]["msg"]
        raise ParseError("host", f"Invalid host '{host}': {message}") from e


class InputMachine:
    """Feeds key events through the input states."""

    def __init__(self) -> None:
        self.state: InputState = Idle()

    @property
    def editing(self) -> bool:
        return isinstance(self.state, Editing)

    @property
    def terminal(self) -> bool:
        return isinstance(self.state, Terminal)

    def feed(self, key: KeyEvent) -> Effect | None:
        """Apply one key event.

        Returns:
            The effect the session loop should carry out, if any
        """
        if isinstance(self.state, Idle):
            return self._feed_idle(key)
        if isinstance(self.state, Editing):
            return self._feed_editing(self.state, key)
        return None

    def _feed_idle(self, key: KeyEvent) -> Effect | None:
        if key.kind == KeyKind.CHAR and key.char == NEW_TUNNEL_KEY:
            self.state = Editing()
            return None
        if key.kind == KeyKind.ESCAPE or (
            key.kind == KeyKind.CHAR and key.char == QUIT_KEY
        ):
            self.state = Terminal()
            return QuitRequested()
        if key.kind == KeyKind.UP:
            return MoveSelection(-1)
        if key.kind == KeyKind.DOWN:
            return MoveSelection(1)
        if key.kind == KeyKind.DELETE or (
            key.kind == KeyKind.CHAR and key.char == REMOVE_KEY
        ):
            return RemoveSelected()
        return None

    def _feed_editing(self, state: Editing, key: KeyEvent) -> Effect | None:
        if key.kind == KeyKind.CHAR and key.char:
            self.state = Editing(text=state.text + key.char)
        elif key.kind == KeyKind.BACKSPACE and state.text:
            self.state = Editing(text=state.text[:-1])
        elif key.kind == KeyKind.ESCAPE:
            self.state = Idle()
        elif key.kind == KeyKind.ENTER:
            try:
                spec = parse_tunnel_spec(state.text)
            except ParseError as e:
                self.state = Editing(text=state.text, error=str(e))
                return InputRejected(e)
            self.state = Idle()
            return AdmitTunnel(spec)
        return None
