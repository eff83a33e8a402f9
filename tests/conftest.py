"""Shared pytest fixtures for rtun tests."""

import asyncio
import sys
from pathlib import Path

import pytest

from rtun.config import SupervisorConfig
from rtun.input import KeyEvent, KeyKind
from rtun.models import TunnelSpec

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="uses POSIX shell scripts and signals"
)


def make_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_ssh(tmp_path):
    """Stand-in for ssh that stays up until it is terminated.

    Returns:
        Path: Executable script
    """
    return make_script(tmp_path / "ssh", "exec sleep 30\n")


@pytest.fixture
def failing_ssh(tmp_path):
    """Stand-in for ssh that fails the way a refused forward does.

    Returns:
        Path: Executable script
    """
    return make_script(
        tmp_path / "ssh-fail",
        'echo "bind [127.0.0.1]:2222: Address already in use" >&2\nexit 255\n',
    )


@pytest.fixture
def config(fake_ssh):
    """Supervisor config pointing at the fake ssh with a fast poll interval."""
    return SupervisorConfig(ssh_binary=str(fake_ssh), poll_interval=0.01)


@pytest.fixture
def spec():
    return TunnelSpec(host="example.com", local_port=8080, remote_port=8080)


def type_text(text: str) -> list[KeyEvent]:
    """Key events for typing ``text``."""
    return [KeyEvent.of(char) for char in text]


ENTER = KeyEvent(KeyKind.ENTER)
ESCAPE = KeyEvent(KeyKind.ESCAPE)
BACKSPACE = KeyEvent(KeyKind.BACKSPACE)


class FakeScreen:
    """Screen that records frames and replays scripted keys.

    ``None`` entries in ``keys`` are polls that time out.
    """

    def __init__(self, keys=()):
        self.keys = list(keys)
        self.frames = []

    def render(self, frame):
        self.frames.append(frame)

    async def read_key(self, timeout):
        await asyncio.sleep(timeout)
        if self.keys:
            return self.keys.pop(0)
        return None


@pytest.fixture
def screen():
    return FakeScreen()
