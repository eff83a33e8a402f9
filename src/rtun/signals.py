"""Bridge SIGINT/SIGTERM into the shutdown broadcaster."""

import asyncio
import signal

from .exceptions import SignalSetupError
from .logging import get_logger
from .shutdown import ShutdownBroadcaster

logger = get_logger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalBridge:
    """Fires the shutdown broadcaster on the first termination signal."""

    def __init__(self, broadcaster: ShutdownBroadcaster):
        self.broadcaster = broadcaster
        self.received: signal.Signals | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def install(self) -> None:
        """Install handlers on the running event loop.

        Raises:
            SignalSetupError: If the handlers cannot be installed
        """
        try:
            loop = asyncio.get_running_loop()
            for sig in HANDLED_SIGNALS:
                loop.add_signal_handler(sig, self._handle, sig)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            raise SignalSetupError(f"Cannot install signal handlers: {e}") from e

        self._loop = loop
        logger.debug("Signal handlers installed", signals=[s.name for s in HANDLED_SIGNALS])

    def uninstall(self) -> None:
        """Remove the handlers installed by ``install()``."""
        if self._loop is None:
            return

        for sig in HANDLED_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None
        logger.debug("Signal handlers removed")

    def _handle(self, sig: signal.Signals) -> None:
        if self.received is not None:
            logger.debug("Ignoring repeated signal", signal=sig.name)
            return

        self.received = sig
        logger.info("Received termination signal", signal=sig.name)
        self.broadcaster.fire()
