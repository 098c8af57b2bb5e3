"""
Engine compiler — plan entries → one script per target.

A target's plan is an ordered list of Actions and install requests.
Install requests are resolved to Actions against the target's facts,
then every Action is compiled in order under the target's Session.
Compilation of one target is all-or-nothing: the first configuration
error aborts it and no partial script is returned.

Independent targets compile in parallel, each with its own Session.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from converge.adapters.base import ComputeProvider, Node
from converge.core.actions.catalog import compile_action
from converge.core.actions.common import flag_path, q
from converge.core.context import Context, Session
from converge.core.errors import ConvergeError
from converge.core.install.resolver import SettingsRegistry, install
from converge.core.models.action import Action
from converge.core.models.fragment import Fragment
from converge.core.script.checked import checked, compose

logger = logging.getLogger(__name__)


class Install(BaseModel):
    """Plan entry: install a component with its configured strategy."""

    model_config = ConfigDict(frozen=True)

    component: str


PlanEntry = Action | Install


class TargetPlan(BaseModel):
    """Everything needed to compile one target."""

    name: str
    context: Context = Field(default_factory=Context)
    entries: list[PlanEntry] = Field(default_factory=list)
    node: Node | None = None


class NodeScript(BaseModel):
    """The compiled fragments for one target."""

    target: str
    fragments: list[Fragment] = Field(default_factory=list)

    @property
    def labels(self) -> list[str]:
        return [f.label for f in self.fragments]

    def render(self) -> str:
        """The whole target as one shell script."""
        return compose(self.fragments)


def _reset_flags(session: Session) -> Fragment | None:
    names = sorted(session.flags)
    if not names:
        return None
    paths = " ".join(q(flag_path(session.context, n)) for n in names)
    return checked("Reset flags", [f"rm -f {paths}"], session.context)


def compile_target(
    name: str,
    entries: Iterable[PlanEntry],
    session: Session,
    registry: SettingsRegistry | None = None,
) -> NodeScript:
    """Compile a target's plan.

    Raises:
        ConfigurationError: An entry is invalid for this target.  Nothing
            is returned for the target.
    """
    fragments: list[Fragment] = []
    for entry in entries:
        if isinstance(entry, Install):
            if registry is None:
                registry = SettingsRegistry()
            actions = install(session, registry, entry.component)
        else:
            actions = [entry]
        for action in actions:
            fragments.extend(compile_action(action, session))

    reset = _reset_flags(session)
    if reset is not None:
        fragments.insert(0, reset)

    logger.info("Compiled %s: %d fragments", name, len(fragments))
    return NodeScript(target=name, fragments=fragments)


@dataclass
class CompileReport:
    """Per-target outcome of compiling several targets."""

    scripts: dict[str, NodeScript] = field(default_factory=dict)
    errors: dict[str, ConvergeError] = field(default_factory=dict)

    @property
    def all_ok(self) -> bool:
        return not self.errors


def compile_targets(
    plans: Iterable[TargetPlan],
    registry: SettingsRegistry | None = None,
    *,
    provider: ComputeProvider | None = None,
    force_overwrite: bool = False,
    install_new_files: bool = True,
    max_workers: int = 4,
) -> CompileReport:
    """Compile independent targets in parallel.

    A failing target is reported in ``errors`` and does not affect the
    others.
    """
    plans = list(plans)
    report = CompileReport()

    def _compile(plan: TargetPlan) -> NodeScript:
        session = Session(
            plan.context,
            force_overwrite=force_overwrite,
            install_new_files=install_new_files,
            node=plan.node,
            provider=provider,
        )
        return compile_target(plan.name, plan.entries, session, registry)

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {pool.submit(_compile, p): p.name for p in plans}
        for future in concurrent.futures.as_completed(futures):
            name = futures[future]
            try:
                report.scripts[name] = future.result()
            except ConvergeError as e:
                logger.error("Compiling %s failed: %s", name, e)
                report.errors[name] = e

    # keep plan order regardless of completion order
    order = [p.name for p in plans]
    report.scripts = {n: report.scripts[n] for n in order if n in report.scripts}
    report.errors = {n: report.errors[n] for n in order if n in report.errors}
    return report
