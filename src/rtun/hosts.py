"""Known SSH hosts read from an OpenSSH client configuration file."""

import re
from pathlib import Path

from .exceptions import ConfigError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_SSH_CONFIG = Path("~/.ssh/config")

_KEYWORD_RE = re.compile(r"^\s*(\w+)\s*(?:=\s*|\s+|$)(.*)$")


def parse_ssh_config(text: str, source: str = "<string>") -> list[str]:
    """Extract concrete host aliases from ``Host`` lines.

    Wildcard (``*``, ``?``) and negated (``!``) patterns are skipped and
    duplicates are dropped, keeping first-seen order.

    Args:
        text: Contents of an ssh_config file
        source: Name used in error messages

    Returns:
        Host aliases in file order

    Raises:
        ConfigError: If a ``Host`` line has no patterns
    """
    hosts: list[str] = []
    seen: set[str] = set()

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        match = _KEYWORD_RE.match(line)
        if match is None or match.group(1).lower() != "host":
            continue

        patterns = match.group(2).split()
        if not patterns:
            raise ConfigError(f"{source}:{lineno}: 'Host' without a pattern")

        for pattern in patterns:
            pattern = pattern.strip('"')
            if not pattern or pattern.startswith("!") or any(c in pattern for c in "*?"):
                continue
            if pattern not in seen:
                seen.add(pattern)
                hosts.append(pattern)

    return hosts


class HostCatalog:
    """Read-only host list, re-read only when the file changes."""

    def __init__(self, path: str | Path | None = None, required: bool = False):
        """Initialize the catalog.

        Args:
            path: ssh_config file (defaults to ``~/.ssh/config``)
            required: If True a missing file is a ``ConfigError``; otherwise
                it yields an empty host list
        """
        self.path = Path(path or DEFAULT_SSH_CONFIG).expanduser()
        self.required = required
        self._mtime_ns: int | None = None
        self._hosts: list[str] = []
        self._failing = False

    def load(self) -> list[str]:
        """Read the host list, failing loudly.

        Raises:
            ConfigError: If the file is missing (when required), unreadable or malformed
        """
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except FileNotFoundError as e:
            if self.required:
                raise ConfigError(f"SSH config not found: {self.path}") from e
            self._mtime_ns = None
            self._hosts = []
            return []
        except OSError as e:
            raise ConfigError(f"Cannot read SSH config {self.path}: {e}") from e

        if mtime_ns == self._mtime_ns:
            return list(self._hosts)

        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot read SSH config {self.path}: {e}") from e

        self._hosts = parse_ssh_config(text, source=str(self.path))
        self._mtime_ns = mtime_ns
        logger.debug("Loaded SSH hosts", path=str(self.path), count=len(self._hosts))
        return list(self._hosts)

    def hosts(self) -> list[str]:
        """Host list for the current frame.

        Keeps the last good list if the file cannot be read mid-session.
        """
        try:
            hosts = self.load()
        except ConfigError as e:
            if not self._failing:
                logger.warning("Keeping previous host list", error=str(e))
            self._failing = True
            return list(self._hosts)

        self._failing = False
        return hosts
