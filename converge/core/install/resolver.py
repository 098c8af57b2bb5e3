"""
Installation strategy resolver — Settings + target facts → Actions.

Each strategy has a params model naming the keys it requires and a
handler emitting its ordered action sequence:

    packages        package(install) per package
    package-source  package-source, then package per package
    rpm             remote-file download, rpm install
    rpm-repo        remote-file download, rpm install (repo), package per package
    deb             package-source (apt path), remote-file download,
                    deb install, package per package

Resolution is pure.  Params are validated in full before the first
action is built, so a failure never yields a partial sequence.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from converge.core.context import DEFAULT_SCRATCH_DIR, Session, TargetFacts
from converge.core.errors import ConfigurationError, StrategyResolutionError
from converge.core.models.action import Action, ActionKind
from converge.core.models.options import hyphenate
from converge.core.models.settings import InstallStrategy, Settings

logger = logging.getLogger(__name__)


# ── Strategy params ─────────────────────────────────────────────


class _Params(BaseModel):
    # components carry other settings (version, config) beside the install keys
    model_config = ConfigDict(alias_generator=hyphenate, populate_by_name=True, extra="ignore")


class RemoteArtifact(_Params):
    """A package file to fetch: ``remote-file`` is a URL or a path on the node."""

    model_config = ConfigDict(extra="forbid")

    remote_file: str
    name: str
    md5: str | None = None
    insecure: bool = False

    def download_options(self) -> dict[str, Any]:
        source = "url" if "://" in self.remote_file else "remote-file"
        options: dict[str, Any] = {source: self.remote_file, "no-versioning": True}
        if self.md5:
            options["md5"] = self.md5
        if self.insecure:
            options["insecure"] = True
        return options


class SourceSpec(_Params):
    model_config = ConfigDict(extra="forbid")

    name: str
    apt: dict[str, Any] | None = None
    yum: dict[str, Any] | None = None

    def options(self) -> dict[str, Any]:
        return {k: v for k, v in (("apt", self.apt), ("yum", self.yum)) if v is not None}


class AptPathSource(SourceSpec):
    apt: dict[str, Any]

    @property
    def path(self) -> str:
        path = self.apt.get("path")
        if not path:
            raise StrategyResolutionError(
                "deb strategy needs package-source.apt.path",
                strategy=InstallStrategy.DEB.value,
                key="package-source.apt.path",
            )
        return path


class PackagesParams(_Params):
    packages: list[str]


class PackageSourceParams(_Params):
    package_source: SourceSpec
    packages: list[str]
    package_options: dict[str, Any] = Field(default_factory=dict)


class RpmParams(_Params):
    rpm: RemoteArtifact


class RpmRepoParams(_Params):
    rpm: RemoteArtifact
    packages: list[str]
    package_options: dict[str, Any] = Field(default_factory=dict)


class DebParams(_Params):
    debs: RemoteArtifact
    package_source: AptPathSource
    packages: list[str]
    package_options: dict[str, Any] = Field(default_factory=dict)


# ── Handlers ────────────────────────────────────────────────────


def _packages(names: list[str], options: dict[str, Any]) -> list[Action]:
    return [Action(kind=ActionKind.PACKAGE, target=n, options=options) for n in names]


def _rpm_actions(artifact: RemoteArtifact, scratch_dir: str, *, repo: bool) -> list[Action]:
    dest = posixpath.join(scratch_dir, artifact.name)
    rpm_options: dict[str, Any] = {"path": dest}
    if repo:
        rpm_options["repo"] = True
    return [
        Action(kind=ActionKind.REMOTE_FILE, target=dest, options=artifact.download_options()),
        Action(kind=ActionKind.RPM, target=artifact.name, options=rpm_options),
    ]


def _resolve_packages(p: PackagesParams, scratch_dir: str) -> list[Action]:
    return _packages(p.packages, {})


def _resolve_package_source(p: PackageSourceParams, scratch_dir: str) -> list[Action]:
    source = Action(
        kind=ActionKind.PACKAGE_SOURCE, target=p.package_source.name, options=p.package_source.options(),
    )
    return [source, *_packages(p.packages, p.package_options)]


def _resolve_rpm(p: RpmParams, scratch_dir: str) -> list[Action]:
    return _rpm_actions(p.rpm, scratch_dir, repo=False)


def _resolve_rpm_repo(p: RpmRepoParams, scratch_dir: str) -> list[Action]:
    return [*_rpm_actions(p.rpm, scratch_dir, repo=True), *_packages(p.packages, p.package_options)]


def _resolve_deb(p: DebParams, scratch_dir: str) -> list[Action]:
    repo_path = p.package_source.path
    dest = posixpath.join(repo_path, p.debs.name)
    return [
        Action(
            kind=ActionKind.PACKAGE_SOURCE, target=p.package_source.name, options=p.package_source.options(),
        ),
        Action(kind=ActionKind.REMOTE_FILE, target=dest, options=p.debs.download_options()),
        Action(kind=ActionKind.DEB, target=p.debs.name, options={"path": dest}),
        *_packages(p.packages, p.package_options),
    ]


# strategy → (params model, packager check, handler)
_Handler = Callable[[Any, str], list[Action]]

_STRATEGIES: dict[InstallStrategy, tuple[type[_Params], Callable[[TargetFacts], bool] | None, _Handler]] = {
    InstallStrategy.PACKAGES: (PackagesParams, None, _resolve_packages),
    InstallStrategy.PACKAGE_SOURCE: (PackageSourceParams, None, _resolve_package_source),
    InstallStrategy.RPM: (RpmParams, lambda f: f.rpm_family, _resolve_rpm),
    InstallStrategy.RPM_REPO: (RpmRepoParams, lambda f: f.rpm_family, _resolve_rpm_repo),
    InstallStrategy.DEB: (DebParams, lambda f: f.apt_family, _resolve_deb),
}


def _parse_params(strategy: InstallStrategy, model: type[_Params], params: dict[str, Any]) -> _Params:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(hyphenate(str(part)) for part in first["loc"])
        if first["type"] == "missing":
            message = f"{strategy.value} strategy needs {key!r}"
        else:
            message = f"Invalid {strategy.value} strategy param {key!r}: {first['msg']}"
        raise StrategyResolutionError(message, strategy=strategy.value, key=key) from e


def resolve_install(
    settings: Settings,
    facts: TargetFacts,
    scratch_dir: str = DEFAULT_SCRATCH_DIR,
) -> list[Action]:
    """The ordered actions installing a component on a target.

    Raises:
        StrategyResolutionError: A required param is missing or invalid,
            or the strategy can't serve the target's packager.
        ConfigurationError: An emitted action has invalid options.
    """
    strategy = settings.install_strategy
    model, compatible, handler = _STRATEGIES[strategy]
    params = _parse_params(strategy, model, settings.params)

    if compatible is not None and not compatible(facts):
        raise StrategyResolutionError(
            f"{strategy.value} strategy can't install with packager {facts.packager!r}",
            strategy=strategy.value,
        )

    actions = handler(params, scratch_dir)
    logger.debug("Resolved %s strategy to %d actions", strategy.value, len(actions))
    return actions


class SettingsRegistry:
    """Read-only component settings, keyed by component name."""

    def __init__(self, settings: Mapping[str, Settings] | None = None):
        self._settings = dict(settings or {})

    @classmethod
    def from_config(cls, components: Mapping[str, Mapping[str, Any]]) -> SettingsRegistry:
        """Build from the flat per-component configuration form."""
        return cls({name: Settings.from_mapping(dict(data)) for name, data in components.items()})

    def __getitem__(self, component: str) -> Settings:
        try:
            return self._settings[component]
        except KeyError:
            raise ConfigurationError(
                f"No settings for component {component!r}", key=component,
            ) from None

    def get(self, component: str) -> Settings:
        """Settings for a component.

        Raises:
            ConfigurationError: No settings are registered for it.
        """
        return self[component]

    def __contains__(self, component: object) -> bool:
        return component in self._settings

    def __iter__(self) -> Iterator[str]:
        return iter(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    def __repr__(self) -> str:
        return f"<SettingsRegistry {sorted(self._settings)}>"


def install(session: Session, registry: SettingsRegistry, component: str) -> list[Action]:
    """Resolve ``component``'s settings against the session's target."""
    settings = registry[component]
    context = session.context
    logger.info("Installing %s with %s strategy", component, settings.install_strategy.value)
    return resolve_install(settings, context.target, context.scratch_dir)
