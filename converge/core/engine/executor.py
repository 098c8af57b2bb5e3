"""
Engine executor — run a compiled NodeScript through a transport.

Fragments run in order, one ExecResult each.  A failed fragment has
already stopped its own remaining statements on the node; later
fragments still run, matching the composed script's behaviour.  A
failed remote-file fragment that reported a content conflict carries
the ContentConflictError message as its error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from converge.adapters.base import Node
from converge.adapters.registry import TransportRegistry
from converge.core.engine.compiler import NodeScript
from converge.core.errors import ContentConflictError
from converge.core.models.action import ExecResult

logger = logging.getLogger(__name__)


@dataclass
class ExecutionReport:
    """Result of running one target's script."""

    target: str = ""
    results: list[ExecResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


def execute_script(
    script: NodeScript,
    registry: TransportRegistry,
    transport: str,
    node: Node | None = None,
    dry_run: bool = False,
) -> ExecutionReport:
    """Run every fragment of ``script`` through the named transport.

    Args:
        script: The compiled target.
        registry: Transport registry for dispatch.
        transport: Name of the registered transport to use.
        node: The node to run on (None for the local machine).
        dry_run: If True, validate but don't run.
    """
    report = ExecutionReport(target=script.target)

    for fragment in script.fragments:
        result = registry.run(fragment, transport, node=node, dry_run=dry_run)
        if result.failed:
            conflict = ContentConflictError.from_output(result.stderr)
            if conflict is not None:
                result = result.model_copy(update={
                    "error": str(conflict),
                    "metadata": {**result.metadata, "content_conflict": conflict.path},
                })
        report.results.append(result)

        status_marker = "✓" if result.ok else "✗" if result.failed else "⊘"
        logger.info("%s %s: %s → %s", status_marker, script.target, fragment.label, result.status)
        if result.failed:
            logger.warning("%s: %s failed: %s", script.target, fragment.label, result.error)

    return report
