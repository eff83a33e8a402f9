"""Process management for a single SSH tunnel."""

import asyncio
import signal
import uuid
from collections import deque
from collections.abc import Callable

from .config import SupervisorConfig
from .exceptions import SpawnError
from .logging import get_logger
from .models import TunnelEvent, TunnelSpec, TunnelState
from .shutdown import Subscription

logger = get_logger(__name__)

STDERR_TAIL_LINES = 20


def build_command(spec: TunnelSpec, config: SupervisorConfig) -> list[str]:
    """Build the ssh invocation for a local forward.

    Args:
        spec: Tunnel to forward
        config: Supervisor settings (binary, forward host, extra options)

    Returns:
        Argument vector for ``create_subprocess_exec``
    """
    forward = f"{spec.local_port}:{config.forward_host}:{spec.remote_port}"
    return [
        config.ssh_binary,
        "-N",
        "-T",
        "-L",
        forward,
        *config.ssh_options,
        spec.host,
    ]


class Tunnel:
    """Owns one ssh process for the lifetime of a tunnel."""

    def __init__(
        self,
        spec: TunnelSpec,
        config: SupervisorConfig,
        on_event: Callable[[TunnelEvent], None] | None = None,
    ):
        """Initialize a tunnel in the STARTING state.

        Args:
            spec: Tunnel to forward
            config: Supervisor settings
            on_event: Called with a ``TunnelEvent`` on every state change
        """
        self.id = uuid.uuid4().hex[:12]
        self.spec = spec
        self.command = build_command(spec, config)
        self.state = TunnelState.STARTING
        self.returncode: int | None = None
        self.detail: str | None = None
        self._on_event = on_event
        self._process: asyncio.subprocess.Process | None = None
        self._stop_requested = asyncio.Event()
        self._termination_sent = False
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    @classmethod
    async def start(
        cls,
        spec: TunnelSpec,
        config: SupervisorConfig,
        on_event: Callable[[TunnelEvent], None] | None = None,
    ) -> "Tunnel":
        """Spawn the ssh process for ``spec``.

        Returns:
            Tunnel in the RUNNING state

        Raises:
            SpawnError: If the ssh binary cannot be launched
        """
        tunnel = cls(spec, config, on_event)
        await tunnel._spawn()
        return tunnel

    @property
    def pid(self) -> int | None:
        """Get process ID if spawned."""
        if self._process is None:
            return None
        return self._process.pid

    @property
    def termination_sent(self) -> bool:
        return self._termination_sent

    async def _spawn(self) -> None:
        logger.info("Running tunnel", tunnel_id=self.id, command=" ".join(self.command))
        try:
            # New session: a Ctrl-C on the terminal reaches only the supervisor,
            # which then terminates every tunnel itself
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Failed to start tunnel", tunnel_id=self.id, error=str(e))
            self.state = TunnelState.EXITED
            self.detail = str(e)
            raise SpawnError(f"Failed to start {self.command[0]}: {e}") from e

        logger.debug("Tunnel process started", tunnel_id=self.id, pid=self._process.pid)
        self._set_state(TunnelState.RUNNING)

    def stop(self) -> None:
        """Request termination of this tunnel only."""
        self._stop_requested.set()

    async def run(self, subscription: Subscription) -> None:
        """Supervise the process until shutdown, ``stop()`` or its own exit.

        Args:
            subscription: Shutdown subscription for this tunnel
        """
        if self._process is None:
            raise RuntimeError(f"Tunnel {self.id} was never started")

        exited = asyncio.create_task(self._wait_exit())
        shutdown = asyncio.create_task(subscription.wait())
        stopped = asyncio.create_task(self._stop_requested.wait())
        try:
            await asyncio.wait(
                {exited, shutdown, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
            # A process that dies as shutdown fires was still asked to stop
            if not (shutdown.done() or stopped.done()):
                self._finish(self.last_stderr_line, premature=True)
                return

            reason = "shutdown" if shutdown.done() else "removed"
            logger.info("Terminating tunnel", tunnel_id=self.id, reason=reason)
            self._set_state(TunnelState.TERMINATING)
            self._terminate()
            await exited
            self._finish(self.last_stderr_line, premature=False)
        except asyncio.CancelledError:
            self._terminate()
            raise
        finally:
            for task in (shutdown, stopped):
                task.cancel()

    async def _wait_exit(self) -> None:
        """Keep the last few stderr lines until EOF, then reap the process."""
        assert self._process is not None and self._process.stderr is not None
        while True:
            try:
                line = await self._process.stderr.readline()
            except ValueError:
                continue  # over-long line, dropped by the reader
            if not line:
                break
            text = line.decode(errors="replace").strip()
            if text:
                self._stderr_tail.append(text)
        await self._process.wait()

    @property
    def last_stderr_line(self) -> str | None:
        return self._stderr_tail[-1] if self._stderr_tail else None

    def _terminate(self) -> None:
        if self._termination_sent or self._process is None:
            return
        if self._process.returncode is not None:
            return

        self._termination_sent = True
        try:
            self._process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Tunnel process already gone", tunnel_id=self.id)

    def _finish(self, detail: str | None, premature: bool) -> None:
        self.returncode = self._process.returncode if self._process else None
        if premature:
            logger.warning(
                "Tunnel process exited on its own",
                tunnel_id=self.id,
                host=self.spec.host,
                local_port=self.spec.local_port,
                returncode=self.returncode,
                stderr=detail,
            )
            self._set_state(TunnelState.EXITED, detail=detail or "exited unexpectedly")
            return

        logger.info("Tunnel terminated", tunnel_id=self.id, returncode=self.returncode)
        self._set_state(TunnelState.EXITED)

    def _set_state(self, state: TunnelState, detail: str | None = None) -> None:
        if self.state == TunnelState.EXITED:
            return

        self.state = state
        self.detail = detail
        if self._on_event is not None:
            self._on_event(
                TunnelEvent(
                    tunnel_id=self.id,
                    state=state,
                    returncode=self.returncode,
                    detail=detail,
                )
            )
