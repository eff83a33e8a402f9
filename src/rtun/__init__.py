"""Rtun - supervise local-forward SSH tunnels."""

__version__ = "1.0.0"

from .config import SupervisorConfig, load_config
from .exceptions import (
    ConfigError,
    ParseError,
    RegistryError,
    RtunError,
    SignalSetupError,
    SpawnError,
)
from .hosts import HostCatalog
from .input import InputMachine, KeyEvent, KeyKind, parse_tunnel_spec
from .logging import get_logger, setup_logging
from .models import Frame, TunnelEvent, TunnelRow, TunnelSpec, TunnelState
from .process import Tunnel, build_command
from .registry import TunnelRegistry
from .session import Session, supervise
from .shutdown import ShutdownBroadcaster, Subscription
from .signals import SignalBridge

__all__ = [
    # Session
    "Session",
    "supervise",
    # Tunnels
    "Tunnel",
    "TunnelSpec",
    "TunnelState",
    "TunnelRow",
    "TunnelEvent",
    "TunnelRegistry",
    "build_command",
    # Shutdown coordination
    "ShutdownBroadcaster",
    "Subscription",
    "SignalBridge",
    # Input
    "InputMachine",
    "KeyEvent",
    "KeyKind",
    "parse_tunnel_spec",
    # Collaborators
    "Frame",
    "HostCatalog",
    # Configuration
    "SupervisorConfig",
    "load_config",
    # Exceptions
    "RtunError",
    "SpawnError",
    "ParseError",
    "ConfigError",
    "SignalSetupError",
    "RegistryError",
    # Logging
    "get_logger",
    "setup_logging",
]
