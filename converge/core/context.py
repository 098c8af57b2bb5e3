"""
Compilation context — per-target scoping state, threaded explicitly.

A Session is built once per target compilation.  It owns a stack of
immutable Context values; ``session.scope(**overrides)`` pushes a merged
Context for the dynamic extent of a ``with`` block and pops it on every
exit path, failures included.  Restoration is strictly LIFO, so scopes
nest to any depth.

Design notes:
    - Nothing here is module-level state.  Two targets compiled in
      parallel each own their own Session.
    - Process-wide toggles (force-overwrite, install-new-files) are plain
      Session fields passed in by whoever builds the Session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from converge.core.errors import ConfigurationError

if TYPE_CHECKING:
    from converge.adapters.base import ComputeProvider, Node

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SCRATCH_DIR = "/var/lib/converge"

# OS family → native packager, used when a target doesn't state its packager
PACKAGER_FOR_OS_FAMILY: dict[str, str] = {
    "ubuntu": "apt",
    "debian": "apt",
    "centos": "yum",
    "rhel": "yum",
    "amzn-linux": "yum",
    "fedora": "dnf",
    "suse": "zypper",
    "opensuse": "zypper",
    "arch": "pacman",
    "alpine": "apk",
    "darwin": "brew",
    "macos": "brew",
}

APT_PACKAGERS = frozenset({"apt", "aptitude"})
RPM_PACKAGERS = frozenset({"yum", "dnf", "zypper"})


class ExecMode(str, Enum):
    PRIVILEGED = "privileged"
    UNPRIVILEGED = "unprivileged"


class TargetFacts(BaseModel):
    """What the compiler needs to know about the target machine."""

    model_config = ConfigDict(frozen=True)

    os_family: str = "ubuntu"
    packager: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_packager(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("packager"):
            family = data.get("os_family") or "ubuntu"
            packager = PACKAGER_FOR_OS_FAMILY.get(family)
            if packager is None:
                raise ValueError(f"No packager known for os-family {family!r}; set 'packager'")
            data = {**data, "packager": packager}
        return data

    @property
    def apt_family(self) -> bool:
        return self.packager in APT_PACKAGERS

    @property
    def rpm_family(self) -> bool:
        return self.packager in RPM_PACKAGERS


class Context(BaseModel):
    """Immutable per-scope state: privilege, acting user, scratch dir, target facts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    exec_mode: ExecMode = ExecMode.PRIVILEGED
    acting_user: str = "root"
    sudo_user: str | None = None
    scratch_dir: str = DEFAULT_SCRATCH_DIR
    target: TargetFacts = Field(default_factory=TargetFacts)

    @property
    def privileged(self) -> bool:
        return self.exec_mode == ExecMode.PRIVILEGED

    @property
    def effective_user(self) -> str:
        """The user commands run as under this context."""
        if self.privileged:
            return self.sudo_user or "root"
        return self.acting_user

    def merged(self, overrides: dict[str, Any]) -> Context:
        """A new Context with ``overrides`` applied.

        Raises:
            ConfigurationError: On an unknown or invalid override.
        """
        data = self.model_dump()
        data.update(overrides)
        try:
            return Context.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(p) for p in first["loc"])
            raise ConfigurationError(
                f"Invalid context override {key!r}: {first['msg']}", key=key,
            ) from e


class Session:
    """Scoping state for one target compilation."""

    def __init__(
        self,
        context: Context | None = None,
        *,
        force_overwrite: bool = False,
        install_new_files: bool = True,
        node: Node | None = None,
        provider: ComputeProvider | None = None,
    ):
        self._stack: list[Context] = [context or Context()]
        self.force_overwrite = force_overwrite
        self.install_new_files = install_new_files
        self.node = node
        self.provider = provider
        self._flags: dict[str, bool] = {}

    def __repr__(self) -> str:
        return f"<Session depth={self.depth} context={self.context!r}>"

    @property
    def context(self) -> Context:
        """The Context in force right now."""
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack)

    @contextmanager
    def scope(self, **overrides: Any) -> Iterator[Context]:
        """Apply ``overrides`` for the extent of the block, then restore."""
        scoped = self.context.merged(overrides)
        self._stack.append(scoped)
        depth = len(self._stack)
        logger.debug("Enter scope %d: %s", depth, overrides)
        try:
            yield scoped
        finally:
            self._stack.pop()
            logger.debug("Leave scope %d", depth)

    # ── Flags ───────────────────────────────────────────────────

    def declare_flag(self, name: str) -> None:
        """Register a flag that a compiled fragment may raise on the node."""
        self._flags.setdefault(name, False)

    def set_flag(self, name: str, value: bool = True) -> None:
        self._flags[name] = value

    def flag(self, name: str) -> bool:
        """Whether the named flag was raised during this session."""
        return self._flags.get(name, False)

    @property
    def flags(self) -> dict[str, bool]:
        return dict(self._flags)


def with_scope(session: Session, overrides: dict[str, Any], body: Callable[[Session], T]) -> T:
    """Run ``body(session)`` with ``overrides`` in force; always restore."""
    with session.scope(**overrides):
        return body(session)
