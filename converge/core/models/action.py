"""
Action and ExecResult models — the compilation contract.

Actions are declarative descriptions of desired machine state.  They
are validated eagerly: an Action with an unknown kind, an unknown
option key, or an ill-typed option value cannot be constructed, so a
bad plan fails before any script text exists.

ExecResults are what a transport hands back after running a compiled
fragment on a node.  Transports never raise — failures are captured here.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from converge.core.errors import ConfigurationError
from converge.core.models.options import (
    ActionOptions,
    DebconfOptions,
    DebOptions,
    DirectoryOptions,
    ExecOptions,
    FifoOptions,
    FileOptions,
    GroupOptions,
    PackageManagerOptions,
    PackageOptions,
    PackageSourceOptions,
    RemoteDirectoryOptions,
    RemoteFileOptions,
    RpmOptions,
    RsyncOptions,
    SedOptions,
    ServiceOptions,
    SymlinkOptions,
    UserOptions,
    WaitForFileOptions,
)


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionKind(str, Enum):
    """The closed catalog of action kinds."""

    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"
    FIFO = "fifo"
    USER = "user"
    GROUP = "group"
    SERVICE = "service"
    PACKAGE = "package"
    PACKAGE_SOURCE = "package-source"
    PACKAGE_MANAGER = "package-manager"
    REMOTE_FILE = "remote-file"
    REMOTE_DIRECTORY = "remote-directory"
    RPM = "rpm"
    DEB = "deb"
    RSYNC = "rsync"
    DEBCONF = "debconf"
    SED = "sed"
    WAIT_FOR_FILE = "wait-for-file"
    EXEC = "exec"


OPTION_MODELS: dict[ActionKind, type[ActionOptions]] = {
    ActionKind.DIRECTORY: DirectoryOptions,
    ActionKind.FILE: FileOptions,
    ActionKind.SYMLINK: SymlinkOptions,
    ActionKind.FIFO: FifoOptions,
    ActionKind.USER: UserOptions,
    ActionKind.GROUP: GroupOptions,
    ActionKind.SERVICE: ServiceOptions,
    ActionKind.PACKAGE: PackageOptions,
    ActionKind.PACKAGE_SOURCE: PackageSourceOptions,
    ActionKind.PACKAGE_MANAGER: PackageManagerOptions,
    ActionKind.REMOTE_FILE: RemoteFileOptions,
    ActionKind.REMOTE_DIRECTORY: RemoteDirectoryOptions,
    ActionKind.RPM: RpmOptions,
    ActionKind.DEB: DebOptions,
    ActionKind.RSYNC: RsyncOptions,
    ActionKind.DEBCONF: DebconfOptions,
    ActionKind.SED: SedOptions,
    ActionKind.WAIT_FOR_FILE: WaitForFileOptions,
    ActionKind.EXEC: ExecOptions,
}


def parse_options(kind: ActionKind, target: str, options: dict[str, Any]) -> ActionOptions:
    """Validate an option map against the kind's option model.

    Raises:
        ConfigurationError: On an unknown key or an invalid value.
    """
    model = OPTION_MODELS[kind]
    unknown = sorted(set(options) - model.recognised_keys())
    if unknown:
        raise ConfigurationError(
            f"Unknown option {unknown[0]!r} for {kind.value} {target!r}",
            key=unknown[0],
            kind=kind.value,
            target=target,
        )
    try:
        return model.model_validate(options)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"]) or None
        raise ConfigurationError(
            f"Invalid options for {kind.value} {target!r}: {first['msg']}"
            + (f" (at {key!r})" if key else ""),
            key=key,
            kind=kind.value,
            target=target,
        ) from e


class Action(BaseModel):
    """A requested machine-state effect: kind + target + options.

    ``target`` is a path for filesystem kinds, a name for users, groups,
    services and packages, and the manager operation for
    ``package-manager`` (``update``, ``upgrade``, ``list-installed``,
    ``add-scope``).
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    target: str
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind", mode="before")
    @classmethod
    def _known_kind(cls, value: Any) -> ActionKind:
        if isinstance(value, ActionKind):
            return value
        try:
            return ActionKind(value)
        except ValueError:
            raise ConfigurationError(
                f"Unknown action kind: {value!r}", kind=str(value),
            ) from None

    @model_validator(mode="after")
    def _validate_options(self) -> Action:
        if not self.target:
            raise ConfigurationError(
                f"{self.kind.value} action needs a target", kind=self.kind.value,
            )
        parse_options(self.kind, self.target, self.options)
        return self

    @property
    def opts(self) -> ActionOptions:
        """The validated options model, with defaults filled in."""
        return parse_options(self.kind, self.target, self.options)

    def describe(self) -> str:
        return f"{self.kind.value} {self.target}"


class ExecResult(BaseModel):
    """Outcome of running one fragment through a transport.

    Consumed for error reporting only; the compiler never branches on it.
    """

    label: str
    transport: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    exit_status: int = 0
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the fragment succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the fragment failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        label: str,
        transport: str,
        stdout: str = "",
        **kwargs: Any,
    ) -> ExecResult:
        """Create a success result."""
        return cls(label=label, transport=transport, status="ok", stdout=stdout, **kwargs)

    @classmethod
    def failure(
        cls,
        label: str,
        transport: str,
        error: str,
        exit_status: int = 1,
        **kwargs: Any,
    ) -> ExecResult:
        """Create a failure result."""
        return cls(
            label=label,
            transport=transport,
            status="failed",
            error=error,
            exit_status=exit_status,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        label: str,
        transport: str,
        reason: str = "",
        **kwargs: Any,
    ) -> ExecResult:
        """Create a skip result."""
        return cls(label=label, transport=transport, status="skipped", stdout=reason, **kwargs)
