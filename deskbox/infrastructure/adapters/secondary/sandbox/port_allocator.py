"""Port Allocator - Random-offset host port selection for sandbox services.

Each session gets three host ports, one from each of three disjoint ranges:
- control API (default 8080 + offset)
- screen share / noVNC (default 6080 + offset)
- debug protocol / CDP (default 9222 + offset)

No reservation table is consulted: two sessions may draw the same offset.
The collision probability per pair of sessions is 1/spread.
"""

import logging
import random
from typing import Optional

from deskbox.configuration.config import Settings
from deskbox.domain.model.session.session import PortAllocation

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    Picks host ports by adding a bounded random offset to fixed bases.

    Usage:
        allocator = PortAllocator()
        ports = allocator.allocate_ports("session-123")
    """

    def __init__(
        self,
        api_port_base: int = 8080,
        vnc_port_base: int = 6080,
        cdp_port_base: int = 9222,
        spread: int = 100,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the port allocator.

        Args:
            api_port_base: First port of the control API range
            vnc_port_base: First port of the screen-share range
            cdp_port_base: First port of the debug-protocol range
            spread: Width of every range; offsets are drawn from [0, spread)
            rng: Random source (for deterministic tests)

        Raises:
            ValueError: If the three ranges overlap
        """
        if spread < 1:
            raise ValueError(f"Port spread must be positive, got {spread}")

        self._ranges = {
            "api": (api_port_base, api_port_base + spread),
            "vnc": (vnc_port_base, vnc_port_base + spread),
            "cdp": (cdp_port_base, cdp_port_base + spread),
        }
        self._check_disjoint()
        self._spread = spread
        self._rng = rng or random.Random()

        logger.info(
            f"PortAllocator initialized: API={self._ranges['api']}, "
            f"VNC={self._ranges['vnc']}, CDP={self._ranges['cdp']}"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PortAllocator":
        return cls(
            api_port_base=settings.sandbox_api_port_base,
            vnc_port_base=settings.sandbox_vnc_port_base,
            cdp_port_base=settings.sandbox_cdp_port_base,
            spread=settings.sandbox_port_spread,
        )

    def allocate_ports(self, session_id: str) -> PortAllocation:
        """
        Allocate the port triple for a session.

        Args:
            session_id: The session requesting ports (for logging)

        Returns:
            PortAllocation with one port from each range
        """
        allocation = PortAllocation(
            api_port=self._ranges["api"][0] + self._rng.randrange(self._spread),
            vnc_port=self._ranges["vnc"][0] + self._rng.randrange(self._spread),
            cdp_port=self._ranges["cdp"][0] + self._rng.randrange(self._spread),
        )
        logger.debug(
            f"Allocated ports for {session_id}: "
            f"API={allocation.api_port}, VNC={allocation.vnc_port}, CDP={allocation.cdp_port}"
        )
        return allocation

    def get_stats(self) -> dict:
        """Get port allocator configuration."""
        return {
            name: {"range": port_range, "total": port_range[1] - port_range[0]}
            for name, port_range in self._ranges.items()
        }

    def _check_disjoint(self) -> None:
        ordered = sorted(self._ranges.items(), key=lambda item: item[1][0])
        for (name_a, (_, end_a)), (name_b, (start_b, _)) in zip(ordered, ordered[1:]):
            if start_b < end_a:
                raise ValueError(f"Port ranges for {name_a} and {name_b} overlap")
