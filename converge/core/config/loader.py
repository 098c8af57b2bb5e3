"""
Configuration loader — reads converge.yml into domain models.

Reads YAML, validates it against Pydantic schemas, and returns typed
objects.  Every plan entry is built into a validated Action (or install
request) at load time, so a bad option key is reported with the file
name before anything is compiled.

    context:
      acting-user: deploy
      scratch-dir: /var/lib/converge
    targets:
      - {name: web1, host: 10.0.0.5, user: deploy, os-family: ubuntu}
    components:
      nginx: {install-strategy: packages, packages: [nginx]}
    plan:
      - {kind: directory, target: /srv/www, options: {owner: www-data}}
      - {install: nginx}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from converge.adapters.base import Node
from converge.core.context import DEFAULT_SCRATCH_DIR, Context, ExecMode, TargetFacts
from converge.core.engine.compiler import Install, PlanEntry, TargetPlan
from converge.core.errors import ConfigurationError
from converge.core.install.resolver import SettingsRegistry
from converge.core.models.action import Action
from converge.core.models.options import hyphenate

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "converge.yml"


class ConfigError(ConfigurationError):
    """Raised when converge.yml is missing or invalid."""


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=hyphenate, populate_by_name=True, extra="forbid")


class ContextDefaults(_ConfigModel):
    exec_mode: ExecMode = ExecMode.PRIVILEGED
    acting_user: str = "root"
    sudo_user: str | None = None
    scratch_dir: str = DEFAULT_SCRATCH_DIR
    force_overwrite: bool = False
    install_new_files: bool = True


def _plan_entry(item: Any) -> PlanEntry:
    if isinstance(item, (Action, Install)):
        return item
    if not isinstance(item, dict):
        raise ValueError(f"plan entries must be mappings, got {type(item).__name__}")
    if "install" in item:
        if set(item) != {"install"}:
            raise ValueError(f"install entry takes only 'install', got {sorted(item)}")
        return Install(component=item["install"])
    return Action.model_validate(item)


class TargetConfig(_ConfigModel):
    name: str
    host: str = "localhost"
    port: int = 22
    user: str | None = None
    os_family: str = "ubuntu"
    packager: str | None = None
    transport: str = "ssh"
    plan: list[PlanEntry] | None = None

    @field_validator("plan", mode="before")
    @classmethod
    def _build_plan(cls, value: Any) -> Any:
        if value is None:
            return None
        return [_plan_entry(item) for item in value]

    def node(self) -> Node:
        return Node(
            name=self.name,
            host=self.host,
            port=self.port,
            user=self.user,
            os_family=self.os_family,
            packager=self.packager,
        )

    def facts(self) -> TargetFacts:
        data: dict[str, Any] = {"os_family": self.os_family}
        if self.packager:
            data["packager"] = self.packager
        return TargetFacts.model_validate(data)


class ConvergeConfig(_ConfigModel):
    """The whole of converge.yml."""

    context: ContextDefaults = Field(default_factory=ContextDefaults)
    targets: list[TargetConfig] = Field(default_factory=list)
    components: dict[str, dict[str, Any]] = Field(default_factory=dict)
    plan: list[PlanEntry] = Field(default_factory=list)

    @field_validator("plan", mode="before")
    @classmethod
    def _build_plan(cls, value: Any) -> Any:
        return [_plan_entry(item) for item in value or []]

    def registry(self) -> SettingsRegistry:
        return SettingsRegistry.from_config(self.components)

    def target(self, name: str) -> TargetConfig:
        for t in self.targets:
            if t.name == name:
                return t
        raise ConfigError(f"No target named {name!r}", key="targets", target=name)

    def context_for(self, target: TargetConfig) -> Context:
        d = self.context
        return Context(
            exec_mode=d.exec_mode,
            acting_user=target.user or d.acting_user,
            sudo_user=d.sudo_user,
            scratch_dir=d.scratch_dir,
            target=target.facts(),
        )

    def target_plans(self, names: list[str] | None = None) -> list[TargetPlan]:
        """One TargetPlan per (selected) target, in file order."""
        chosen = [self.target(n) for n in names] if names else list(self.targets)
        return [
            TargetPlan(
                name=t.name,
                context=self.context_for(t),
                entries=list(t.plan if t.plan is not None else self.plan),
                node=t.node(),
            )
            for t in chosen
        ]


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for converge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to converge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _describe(e: ValidationError) -> str:
    first = e.errors()[0]
    loc = ".".join(str(p) for p in first["loc"])
    return f"{loc}: {first['msg']}" if loc else first["msg"]


def load_config(path: Path | None = None) -> ConvergeConfig:
    """Load and validate converge.yml.

    Args:
        path: Explicit path to converge.yml. If None, searches upward.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(f"No {CONFIG_FILE} found. Create one, or specify --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = ConvergeConfig.model_validate(data)
        config.registry()
        for target in config.targets:
            target.facts()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {_describe(e)}") from e
    except ConfigurationError as e:
        raise ConfigError(
            f"Invalid configuration in {path}: {e}", key=e.key, kind=e.kind, target=e.target,
        ) from e

    logger.info(
        "Loaded %s: %d targets, %d components, %d plan entries",
        path, len(config.targets), len(config.components), len(config.plan),
    )
    return config
