"""
Settings model — how a software component should be installed.

Settings are created once during a component's configuration phase and
read (never mutated) by the install resolver.  The YAML form is flat::

    nginx:
      install-strategy: package-source
      package-source: {name: nginx, apt: {url: http://nginx.org/packages/ubuntu}}
      packages: [nginx]
      package-options: {}

``Settings.from_mapping`` splits that into the strategy tag and its params.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from converge.core.errors import StrategyResolutionError


class InstallStrategy(str, Enum):
    """The closed set of install procedures."""

    PACKAGES = "packages"
    PACKAGE_SOURCE = "package-source"
    RPM = "rpm"
    RPM_REPO = "rpm-repo"
    DEB = "deb"


_STRATEGY_KEYS = ("install-strategy", "install_strategy")


class Settings(BaseModel):
    """A component's install settings: strategy tag + strategy params."""

    model_config = ConfigDict(frozen=True)

    install_strategy: InstallStrategy
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("install_strategy", mode="before")
    @classmethod
    def _known_strategy(cls, value: Any) -> InstallStrategy:
        if isinstance(value, InstallStrategy):
            return value
        try:
            return InstallStrategy(value)
        except ValueError:
            known = ", ".join(s.value for s in InstallStrategy)
            raise StrategyResolutionError(
                f"Unknown install-strategy {value!r} (known: {known})",
                strategy=str(value),
                key="install-strategy",
            ) from None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Settings:
        """Build Settings from the flat configuration form."""
        params = dict(data)
        strategy = None
        for key in _STRATEGY_KEYS:
            if key in params:
                strategy = params.pop(key)
        if strategy is None:
            raise StrategyResolutionError(
                "Settings have no install-strategy", key="install-strategy",
            )
        return cls(install_strategy=strategy, params=params)
