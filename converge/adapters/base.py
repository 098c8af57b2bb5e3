"""
Adapter base — the contracts between the engine and the outside world.

Two collaborators live outside the compilation core:

    Transport        runs one compiled Fragment on a node and hands back
                     an ExecResult.  Transports NEVER raise; failures
                     are captured in the result.
    ComputeProvider  creates, addresses and destroys nodes.  The core
                     only ever calls ``address`` and ``ssh_port``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from converge.core.models.action import ExecResult
from converge.core.models.fragment import Fragment


class Node(BaseModel):
    """One target machine as the inventory knows it."""

    model_config = ConfigDict(frozen=True)

    name: str
    host: str = "localhost"
    port: int = 22
    user: str | None = None
    os_family: str = "ubuntu"
    packager: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def destination(self) -> str:
        """``user@host`` (or just ``host``) for ssh/scp."""
        return f"{self.user}@{self.host}" if self.user else self.host


class ExecutionContext(BaseModel):
    """Everything a transport needs to run a fragment."""

    fragment: Fragment
    node: Node | None = None
    dry_run: bool = False
    timeout: int = 300


class Transport(ABC):
    """Abstract base class for all transports.

    To add a transport:
        1. Subclass Transport
        2. Implement name, is_available, validate, execute
        3. Register it in the TransportRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The transport identifier (e.g., 'local', 'ssh')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists.  Fast, never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the fragment can be run here.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> ExecResult:
        """Run the fragment and return its result.

        MUST never raise. All failures are captured in the ExecResult
        with status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class ComputeProvider(ABC):
    """Node lifecycle and addressing for one provider backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The provider identifier."""

    @abstractmethod
    def provision(self, spec: dict[str, Any], count: int) -> list[Node]:
        """Create ``count`` nodes matching ``spec``."""

    @abstractmethod
    def await_address(self, node: Node, timeout: float = 300.0) -> str:
        """Block until the node has an address, then return it."""

    @abstractmethod
    def power_down(self, node: Node) -> None:
        """Stop the node without destroying it."""

    @abstractmethod
    def destroy(self, node: Node) -> None:
        """Destroy the node."""

    @abstractmethod
    def address(self, node: Node) -> str:
        """The address the node is reachable at."""

    @abstractmethod
    def ssh_port(self, node: Node) -> int:
        """The port the node's ssh daemon listens on."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
