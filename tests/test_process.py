"""Tests for tunnel process management."""

import asyncio
import signal
from unittest.mock import Mock, patch

import pytest
from conftest import make_script, posix_only

from rtun.config import SupervisorConfig
from rtun.exceptions import SpawnError
from rtun.models import TunnelSpec, TunnelState
from rtun.process import STDERR_TAIL_LINES, Tunnel, build_command
from rtun.shutdown import ShutdownBroadcaster


class TestBuildCommand:
    def test_default_command(self, spec):
        command = build_command(spec, SupervisorConfig())

        assert command == [
            "ssh",
            "-N",
            "-T",
            "-L",
            "8080:127.0.0.1:8080",
            "-o",
            "ExitOnForwardFailure=yes",
            "-o",
            "BatchMode=yes",
            "example.com",
        ]

    def test_custom_binary_forward_host_and_options(self):
        spec = TunnelSpec(host="myhost", local_port=2222, remote_port=22)
        config = SupervisorConfig(
            ssh_binary="/usr/local/bin/ssh", forward_host="localhost", ssh_options=[]
        )

        command = build_command(spec, config)

        assert command == ["/usr/local/bin/ssh", "-N", "-T", "-L", "2222:localhost:22", "myhost"]

    def test_tunnel_keeps_command(self, spec):
        tunnel = Tunnel(spec, SupervisorConfig())

        assert tunnel.command == build_command(spec, SupervisorConfig())
        assert tunnel.state == TunnelState.STARTING
        assert tunnel.pid is None
        assert len(tunnel.id) == 12


@posix_only
class TestTunnelStart:
    @pytest.mark.asyncio
    async def test_start_spawns_process(self, spec, config):
        events = []

        tunnel = await Tunnel.start(spec, config, on_event=events.append)
        try:
            assert tunnel.state == TunnelState.RUNNING
            assert tunnel.pid is not None
            assert [event.state for event in events] == [TunnelState.RUNNING]
            assert events[0].tunnel_id == tunnel.id
        finally:
            tunnel._process.kill()
            await tunnel._process.wait()

    @pytest.mark.asyncio
    async def test_missing_binary_raises_spawn_error(self, spec, tmp_path):
        config = SupervisorConfig(ssh_binary=str(tmp_path / "no-such-ssh"))

        with pytest.raises(SpawnError, match="Failed to start"):
            await Tunnel.start(spec, config)

    @pytest.mark.asyncio
    async def test_non_executable_binary_raises_spawn_error(self, spec, tmp_path):
        binary = tmp_path / "ssh"
        binary.write_text("#!/bin/sh\nexit 0\n")
        binary.chmod(0o644)
        config = SupervisorConfig(ssh_binary=str(binary))

        with pytest.raises(SpawnError):
            await Tunnel.start(spec, config)

    @pytest.mark.asyncio
    async def test_spawn_error_reports_no_event(self, spec, tmp_path):
        events = []
        config = SupervisorConfig(ssh_binary=str(tmp_path / "no-such-ssh"))

        with pytest.raises(SpawnError):
            await Tunnel.start(spec, config, on_event=events.append)

        assert events == []


@posix_only
class TestTunnelRun:
    @pytest.mark.asyncio
    async def test_shutdown_terminates_process(self, spec, config):
        events = []
        broadcaster = ShutdownBroadcaster()
        tunnel = await Tunnel.start(spec, config, on_event=events.append)
        subscription = broadcaster.subscribe()
        task = asyncio.create_task(tunnel.run(subscription))
        await asyncio.sleep(0.05)

        broadcaster.fire()
        await asyncio.wait_for(task, timeout=5)

        assert tunnel.state == TunnelState.EXITED
        assert tunnel.termination_sent is True
        assert tunnel.returncode == -signal.SIGTERM
        assert subscription.observed is True
        assert [event.state for event in events] == [
            TunnelState.RUNNING,
            TunnelState.TERMINATING,
            TunnelState.EXITED,
        ]
        assert events[-1].returncode == -signal.SIGTERM
        assert events[-1].detail is None

    @pytest.mark.asyncio
    async def test_stop_terminates_only_that_tunnel(self, config):
        broadcaster = ShutdownBroadcaster()
        first = await Tunnel.start(
            TunnelSpec(host="example.com", local_port=8080, remote_port=8080), config
        )
        second = await Tunnel.start(
            TunnelSpec(host="example.com", local_port=9090, remote_port=9090), config
        )
        first_task = asyncio.create_task(first.run(broadcaster.subscribe()))
        second_task = asyncio.create_task(second.run(broadcaster.subscribe()))
        await asyncio.sleep(0.05)

        first.stop()
        await asyncio.wait_for(first_task, timeout=5)

        assert first.state == TunnelState.EXITED
        assert second.state == TunnelState.RUNNING
        assert not second_task.done()

        broadcaster.fire()
        await asyncio.wait_for(second_task, timeout=5)
        assert second.state == TunnelState.EXITED

    @pytest.mark.asyncio
    async def test_premature_exit_is_contained(self, spec, failing_ssh):
        events = []
        broadcaster = ShutdownBroadcaster()
        config = SupervisorConfig(ssh_binary=str(failing_ssh))
        tunnel = await Tunnel.start(spec, config, on_event=events.append)
        subscription = broadcaster.subscribe()

        await asyncio.wait_for(tunnel.run(subscription), timeout=5)

        assert tunnel.state == TunnelState.EXITED
        assert tunnel.returncode == 255
        assert tunnel.termination_sent is False
        assert subscription.observed is False
        assert broadcaster.fired is False
        assert events[-1].state == TunnelState.EXITED
        assert "Address already in use" in events[-1].detail

    @pytest.mark.asyncio
    async def test_premature_exit_without_stderr(self, spec, tmp_path):
        events = []
        silent = make_script(tmp_path / "ssh-silent", "exit 1\n")
        config = SupervisorConfig(ssh_binary=str(silent))
        tunnel = await Tunnel.start(spec, config, on_event=events.append)

        await asyncio.wait_for(tunnel.run(ShutdownBroadcaster().subscribe()), timeout=5)

        assert events[-1].detail == "exited unexpectedly"
        assert events[-1].returncode == 1

    @pytest.mark.asyncio
    async def test_only_stderr_tail_is_kept(self, spec, tmp_path):
        events = []
        noisy = make_script(
            tmp_path / "ssh-noisy",
            'i=0\nwhile [ $i -lt 200 ]; do echo "debug1: line $i" >&2; i=$((i+1)); done\n'
            'echo "" >&2\nexit 255\n',
        )
        tunnel = await Tunnel.start(spec, SupervisorConfig(ssh_binary=str(noisy)), events.append)

        await asyncio.wait_for(tunnel.run(ShutdownBroadcaster().subscribe()), timeout=5)

        assert len(tunnel._stderr_tail) == STDERR_TAIL_LINES
        assert tunnel.last_stderr_line == "debug1: line 199"
        assert events[-1].detail == "debug1: line 199"

    @pytest.mark.asyncio
    async def test_exit_during_shutdown_is_not_premature(self, spec, tmp_path):
        events = []
        quick = make_script(tmp_path / "ssh-quick", "exit 0\n")
        tunnel = await Tunnel.start(spec, SupervisorConfig(ssh_binary=str(quick)), events.append)
        await asyncio.wait_for(tunnel._process.wait(), timeout=5)
        broadcaster = ShutdownBroadcaster()
        subscription = broadcaster.subscribe()
        broadcaster.fire()

        with patch("rtun.process.logger") as mock_logger:
            await asyncio.wait_for(tunnel.run(subscription), timeout=5)

        mock_logger.warning.assert_not_called()
        assert tunnel.state == TunnelState.EXITED
        assert tunnel.termination_sent is False
        assert subscription.observed is True
        assert events[-1].detail is None

    @pytest.mark.asyncio
    async def test_cancel_terminates_process(self, spec, config):
        tunnel = await Tunnel.start(spec, config)
        task = asyncio.create_task(tunnel.run(ShutdownBroadcaster().subscribe()))
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert tunnel.termination_sent is True
        assert await asyncio.wait_for(tunnel._process.wait(), timeout=5) == -signal.SIGTERM


class TestTermination:
    def test_termination_sent_at_most_once(self, spec):
        tunnel = Tunnel(spec, SupervisorConfig())
        tunnel._process = Mock(returncode=None)

        tunnel._terminate()
        tunnel._terminate()

        tunnel._process.send_signal.assert_called_once_with(signal.SIGTERM)
        assert tunnel.termination_sent is True

    def test_no_termination_after_exit(self, spec):
        tunnel = Tunnel(spec, SupervisorConfig())
        tunnel._process = Mock(returncode=0)

        tunnel._terminate()

        tunnel._process.send_signal.assert_not_called()
        assert tunnel.termination_sent is False

    def test_process_already_gone(self, spec):
        tunnel = Tunnel(spec, SupervisorConfig())
        tunnel._process = Mock(returncode=None)
        tunnel._process.send_signal.side_effect = ProcessLookupError

        with patch("rtun.process.logger") as mock_logger:
            tunnel._terminate()

        mock_logger.debug.assert_called_once()
        assert tunnel.termination_sent is True

    @pytest.mark.asyncio
    async def test_run_requires_start(self, spec):
        tunnel = Tunnel(spec, SupervisorConfig())

        with pytest.raises(RuntimeError, match="never started"):
            await tunnel.run(ShutdownBroadcaster().subscribe())
