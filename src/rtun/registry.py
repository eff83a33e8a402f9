"""Tunnel registry for rendering active tunnels."""

import logging

from pydantic import BaseModel, Field

from .exceptions import RegistryError
from .models import TunnelRow, TunnelSpec, TunnelState

logger = logging.getLogger(__name__)


class TunnelRegistry(BaseModel):
    """Insertion-ordered display rows, written only by the session loop."""

    rows: dict[str, TunnelRow] = Field(
        default_factory=dict, description="Display rows by tunnel ID"
    )

    def add(self, tunnel_id: str, spec: TunnelSpec) -> TunnelRow:
        """Add a row for a newly admitted tunnel.

        Args:
            tunnel_id: ID of the tunnel
            spec: Tunnel specification

        Returns:
            The new row

        Raises:
            RegistryError: If the ID exists or the local port is already forwarded
        """
        if tunnel_id in self.rows:
            raise RegistryError(f"Tunnel with ID '{tunnel_id}' already exists")

        self.check_available(spec)

        row = TunnelRow(
            id=tunnel_id,
            host=spec.host,
            local_port=spec.local_port,
            remote_port=spec.remote_port,
        )
        self.rows[tunnel_id] = row
        logger.info(f"Added tunnel {tunnel_id} to registry")
        return row

    def check_available(self, spec: TunnelSpec) -> None:
        """Raise ``RegistryError`` if ``spec`` would clash with an existing row."""
        for existing in self.rows.values():
            if existing.local_port == spec.local_port:
                raise RegistryError(f"Local port {spec.local_port} already in use")

    def remove(self, tunnel_id: str) -> TunnelRow:
        """Remove a row.

        Args:
            tunnel_id: ID of tunnel to remove

        Returns:
            Removed row

        Raises:
            RegistryError: If tunnel not found
        """
        if tunnel_id not in self.rows:
            raise RegistryError(f"Tunnel '{tunnel_id}' not found")

        row = self.rows.pop(tunnel_id)
        logger.info(f"Removed tunnel {tunnel_id} from registry")
        return row

    def get(self, tunnel_id: str) -> TunnelRow | None:
        return self.rows.get(tunnel_id)

    def update_state(self, tunnel_id: str, state: TunnelState) -> None:
        """Update the state shown for a tunnel.

        Raises:
            RegistryError: If tunnel not found
        """
        if tunnel_id not in self.rows:
            raise RegistryError(f"Tunnel '{tunnel_id}' not found")

        self.rows[tunnel_id] = self.rows[tunnel_id].with_state(state)
        logger.debug(f"Updated tunnel {tunnel_id} state to {state.value}")

    def list_rows(self) -> list[TunnelRow]:
        """Rows in insertion order."""
        return list(self.rows.values())

    def __len__(self) -> int:
        return len(self.rows)
