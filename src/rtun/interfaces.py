"""Protocol interfaces for the session loop's collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .input import KeyEvent
    from .models import Frame


class Screen(Protocol):
    """Draws frames and decodes key presses."""

    def render(self, frame: Frame) -> None:
        """Draw one frame."""
        ...

    async def read_key(self, timeout: float) -> KeyEvent | None:
        """Wait up to ``timeout`` seconds for a key press."""
        ...


class HostSource(Protocol):
    """Read-only list of known host names."""

    def hosts(self) -> list[str]:
        """Host names for the current frame."""
        ...
