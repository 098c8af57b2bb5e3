"""
Transport registry — central dispatch for running fragments.

The registry handles registration, lookup, mock mode and fragment
execution.  The engine never talks to transports directly.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from converge.adapters.base import ExecutionContext, Node, Transport
from converge.core.models.action import ExecResult
from converge.core.models.fragment import Fragment

logger = logging.getLogger(__name__)


class TransportRegistry:
    """Central registry and dispatcher for transports.

    Features:
        - Register/unregister transports by name
        - Mock mode: swap every transport for a mock that always succeeds
        - Run fragments through the named transport
        - Query transport availability
    """

    def __init__(self, mock_mode: bool = False):
        self._transports: dict[str, Transport] = {}
        self._mock_mode = mock_mode
        self._mock_transport: Transport | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_transport: Transport | None = None) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_transport: Optional custom mock. If None, fragments just succeed.
        """
        self._mock_mode = enabled
        self._mock_transport = mock_transport

    def register(self, transport: Transport) -> None:
        name = transport.name
        if name in self._transports:
            logger.warning("Overwriting existing transport: %s", name)
        self._transports[name] = transport
        logger.debug("Registered transport: %s", name)

    def unregister(self, name: str) -> None:
        self._transports.pop(name, None)

    def get(self, name: str) -> Transport | None:
        return self._transports.get(name)

    def list_transports(self) -> list[str]:
        return list(self._transports.keys())

    def transport_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered transports."""
        status = {}
        for name, transport in self._transports.items():
            try:
                available = transport.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": transport.__class__.__name__,
            }
        return status

    def run(
        self,
        fragment: Fragment,
        transport: str,
        node: Node | None = None,
        dry_run: bool = False,
        timeout: int = 300,
    ) -> ExecResult:
        """Run one fragment through the named transport.

        1. Resolve the transport (or mock)
        2. Validate
        3. Execute (or dry-run)
        4. Return an ExecResult (never raises)
        """
        start_time = time.monotonic()
        context = ExecutionContext(fragment=fragment, node=node, dry_run=dry_run, timeout=timeout)

        resolved: Transport | None
        if self._mock_mode and self._mock_transport:
            resolved = self._mock_transport
        elif self._mock_mode:
            return ExecResult.success(
                label=fragment.label,
                transport=transport,
                stdout=f"[mock] {fragment.label}",
                metadata={"mock": True, "dry_run": dry_run},
            )
        else:
            resolved = self._transports.get(transport)

        if resolved is None:
            return ExecResult.failure(
                label=fragment.label,
                transport=transport,
                error=f"No transport registered for '{transport}'",
            )

        try:
            is_valid, error_msg = resolved.validate(context)
        except Exception as e:
            return ExecResult.failure(
                label=fragment.label, transport=transport, error=f"Validation error: {e}",
            )
        if not is_valid:
            return ExecResult.failure(
                label=fragment.label, transport=transport, error=f"Validation failed: {error_msg}",
            )

        if dry_run:
            return ExecResult.skip(
                label=fragment.label,
                transport=transport,
                reason=f"[dry-run] Would run {fragment.label}",
                metadata={"dry_run": True},
            )

        try:
            result = resolved.execute(context)
        except Exception as e:
            logger.error("Transport %s raised while running %r: %s", transport, fragment.label, e)
            result = ExecResult.failure(
                label=fragment.label, transport=transport, error=f"Unexpected error: {e}",
            )

        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        return result
