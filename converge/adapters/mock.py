"""
Test doubles — a transport that records fragments and a fixed-inventory
compute provider.

MockTransport is what mock mode runs: it never touches a shell and
succeeds unless told otherwise for a given fragment label.
"""

from __future__ import annotations

from typing import Any

from converge.adapters.base import ComputeProvider, ExecutionContext, Node, Transport
from converge.core.models.action import ExecResult


class MockTransport(Transport):
    """Universal mock transport for testing.

    By default, returns success for everything.  Can be configured with
    custom results per fragment label.
    """

    def __init__(
        self,
        transport_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = transport_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, ExecResult] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def labels(self) -> list[str]:
        """Labels of the fragments run so far, in order."""
        return [c.fragment.label for c in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, label: str, result: ExecResult) -> None:
        """Set a custom result for fragments with this label."""
        self._responses[label] = result

    def set_failure(self, label: str, error: str = "Mock failure", exit_status: int = 1) -> None:
        """Configure fragments with this label to fail."""
        self._responses[label] = ExecResult.failure(
            label=label,
            transport=self._name,
            error=error,
            exit_status=exit_status,
            stderr=f"#> {label} : FAIL (mock)",
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecResult:
        self._call_log.append(context)

        label = context.fragment.label
        if label in self._responses:
            return self._responses[label].model_copy()

        return ExecResult.success(
            label=label,
            transport=self._name,
            stdout=f"{self._default_output}\n#> {label} : SUCCESS",
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()


class StaticProvider(ComputeProvider):
    """A provider over a fixed inventory of already-running nodes.

    ``provision`` hands out inventory nodes not yet in use; nothing is
    ever actually created or destroyed.
    """

    def __init__(self, nodes: list[Node] | None = None, provider_name: str = "static"):
        self._name = provider_name
        self._nodes: dict[str, Node] = {n.name: n for n in nodes or []}
        self._in_use: set[str] = set()
        self._powered_down: set[str] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def node(self, name: str) -> Node | None:
        return self._nodes.get(name)

    def is_running(self, node: Node) -> bool:
        return node.name in self._nodes and node.name not in self._powered_down

    def provision(self, spec: dict[str, Any], count: int) -> list[Node]:
        os_family = spec.get("os_family") or spec.get("os-family")
        free = [
            n for name, n in self._nodes.items()
            if name not in self._in_use and (os_family is None or n.os_family == os_family)
        ]
        if len(free) < count:
            raise RuntimeError(
                f"Static inventory has {len(free)} free nodes matching {spec}, {count} requested"
            )
        chosen = free[:count]
        self._in_use.update(n.name for n in chosen)
        return chosen

    def await_address(self, node: Node, timeout: float = 300.0) -> str:
        return self.address(node)

    def power_down(self, node: Node) -> None:
        self._powered_down.add(node.name)

    def destroy(self, node: Node) -> None:
        self._in_use.discard(node.name)
        self._powered_down.discard(node.name)
        self._nodes.pop(node.name, None)

    def address(self, node: Node) -> str:
        return node.host

    def ssh_port(self, node: Node) -> int:
        return node.port
