"""Session loop: admits tunnels, drives the input box and coordinates shutdown."""

import asyncio
from collections import deque
from collections.abc import Iterable

from .config import SupervisorConfig
from .exceptions import RegistryError, SpawnError
from .input import (
    AdmitTunnel,
    Editing,
    Effect,
    InputMachine,
    InputRejected,
    MoveSelection,
    QuitRequested,
    RemoveSelected,
)
from .interfaces import HostSource, Screen
from .logging import get_logger
from .models import Frame, TunnelEvent, TunnelSpec, TunnelState
from .process import Tunnel
from .registry import TunnelRegistry
from .shutdown import ShutdownBroadcaster
from .signals import SignalBridge

logger = get_logger(__name__)

FINISHED_HISTORY = 32


class Session:
    """Single-writer control loop over the registry and the input state.

    Tunnel tasks never touch the registry; they post ``TunnelEvent`` messages
    which the loop applies once per frame.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        screen: Screen,
        broadcaster: ShutdownBroadcaster,
        hosts: HostSource | None = None,
    ):
        self.config = config
        self.screen = screen
        self.broadcaster = broadcaster
        self.host_source = hosts
        self.registry = TunnelRegistry()
        self.machine = InputMachine()
        self.selected = 0
        self.status: str | None = None
        self.shutting_down = False
        self._events: asyncio.Queue[TunnelEvent] = asyncio.Queue()
        self._tunnels: dict[str, Tunnel] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self.finished: deque[Tunnel] = deque(maxlen=FINISHED_HISTORY)

    @property
    def tunnels(self) -> dict[str, Tunnel]:
        """Tunnels that have not exited yet."""
        return dict(self._tunnels)

    @property
    def pending(self) -> list[asyncio.Task[None]]:
        return [task for task in self._tasks.values() if not task.done()]

    async def admit(self, spec: TunnelSpec) -> Tunnel | None:
        """Spawn a tunnel for ``spec`` and add it to the registry.

        Spawn failures and port clashes are reported in the status line; the
        session keeps running.

        Returns:
            The running tunnel, or None if it could not be admitted
        """
        if self.broadcaster.fired:
            logger.warning("Not admitting tunnel during shutdown", tunnel=spec.label)
            return None

        try:
            self.registry.check_available(spec)
            tunnel = await Tunnel.start(spec, self.config, on_event=self._events.put_nowait)
        except (RegistryError, SpawnError) as e:
            logger.error("Tunnel not admitted", tunnel=spec.label, error=str(e))
            self.status = f"{spec.label}: {e}"
            return None

        self.registry.add(tunnel.id, spec)
        subscription = self.broadcaster.subscribe()
        self._tunnels[tunnel.id] = tunnel
        self._tasks[tunnel.id] = asyncio.create_task(
            tunnel.run(subscription), name=f"tunnel-{tunnel.id}"
        )
        self.status = None
        return tunnel

    def remove(self, tunnel_id: str) -> None:
        """Ask one tunnel to terminate; its row goes once it has exited."""
        tunnel = self._tunnels.get(tunnel_id)
        if tunnel is None:
            return
        logger.info("Removing tunnel", tunnel_id=tunnel_id, tunnel=tunnel.spec.label)
        tunnel.stop()

    def drain_events(self) -> None:
        """Apply queued tunnel state changes to the registry."""
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                break

            if self.registry.get(event.tunnel_id) is None:
                continue

            if event.state != TunnelState.EXITED:
                self.registry.update_state(event.tunnel_id, event.state)
                continue

            row = self.registry.remove(event.tunnel_id)
            self._forget(event.tunnel_id)
            # detail is only set when the process died on its own
            if event.detail is not None and not self.shutting_down:
                self.status = (
                    f"{row.host} {row.local_port}:{row.remote_port} exited "
                    f"(code {event.returncode}): {event.detail}"
                )

        self._reap()
        if len(self.registry) == 0:
            self.selected = 0
        else:
            self.selected = min(self.selected, len(self.registry) - 1)

    def _forget(self, tunnel_id: str) -> None:
        tunnel = self._tunnels.pop(tunnel_id, None)
        if tunnel is not None:
            self.finished.append(tunnel)

    def _reap(self) -> None:
        """Collect finished tasks of tunnels that are no longer tracked."""
        done = [
            tunnel_id
            for tunnel_id, task in self._tasks.items()
            if task.done() and tunnel_id not in self._tunnels
        ]
        for tunnel_id in done:
            task = self._tasks.pop(tunnel_id)
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Tunnel task failed", tunnel_id=tunnel_id, error=repr(task.exception())
                )

    def frame(self) -> Frame:
        """Build the render model for the current state."""
        state = self.machine.state
        rows = self.registry.list_rows()
        return Frame(
            rows=rows,
            hosts=self.host_source.hosts() if self.host_source is not None else [],
            selected=self.selected if rows else None,
            input_text=state.text if isinstance(state, Editing) else None,
            input_error=state.error if isinstance(state, Editing) else None,
            status=self.status,
            shutting_down=self.shutting_down,
        )

    async def handle(self, effect: Effect | None) -> bool:
        """Carry out an input effect.

        Returns:
            False when the session should stop
        """
        if isinstance(effect, AdmitTunnel):
            await self.admit(effect.spec)
        elif isinstance(effect, InputRejected):
            logger.debug("Rejected input", segment=effect.error.segment, error=str(effect.error))
        elif isinstance(effect, MoveSelection):
            if len(self.registry) > 0:
                self.selected = max(0, min(self.selected + effect.delta, len(self.registry) - 1))
        elif isinstance(effect, RemoveSelected):
            rows = self.registry.list_rows()
            if rows:
                self.remove(rows[self.selected].id)
        elif isinstance(effect, QuitRequested):
            logger.info("Quit requested")
            return False
        return True

    async def run(self, specs: Iterable[TunnelSpec] = ()) -> None:
        """Admit the initial tunnels and loop until quit or shutdown.

        Args:
            specs: Tunnels to start before the first frame
        """
        for spec in specs:
            await self.admit(spec)

        running = True
        while running:
            self.drain_events()
            self.screen.render(self.frame())
            if self.broadcaster.fired:
                break

            key = await self.screen.read_key(self.config.poll_interval)
            if key is None:
                continue
            running = await self.handle(self.machine.feed(key))

        await self.shutdown()

    async def shutdown(self) -> None:
        """Fire the broadcaster and wait for every tunnel to exit."""
        self.shutting_down = True
        self.broadcaster.fire()

        while self.pending:
            self.drain_events()
            self.screen.render(self.frame())
            await asyncio.wait(self.pending, timeout=self.config.poll_interval)

        results = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for tunnel_id, result in zip(self._tasks, results):
            if isinstance(result, BaseException):
                logger.error("Tunnel task failed", tunnel_id=tunnel_id, error=repr(result))

        self.drain_events()
        self.screen.render(self.frame())
        logger.info("All tunnels exited", finished=len(self.finished))


async def supervise(
    config: SupervisorConfig,
    screen: Screen,
    specs: Iterable[TunnelSpec] = (),
    hosts: HostSource | None = None,
) -> Session:
    """Run a full session with OS signals wired to shutdown.

    Raises:
        SignalSetupError: If the signal handlers cannot be installed
    """
    broadcaster = ShutdownBroadcaster()
    bridge = SignalBridge(broadcaster)
    bridge.install()
    try:
        session = Session(config, screen, broadcaster, hosts)
        await session.run(specs)
    finally:
        bridge.uninstall()
    return session
