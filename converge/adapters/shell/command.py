"""
Local shell transport — run fragments with bash on this machine.

Privileged fragments are piped into ``sudo -n bash -s`` unless the
process already runs as root.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from converge.adapters.base import ExecutionContext, Transport
from converge.core.models.action import ExecResult
from converge.core.models.fragment import Fragment
from converge.core.script.checked import sudo_prefix

logger = logging.getLogger(__name__)


def shell_command(fragment: Fragment, *, as_root: bool = False) -> list[str]:
    """The argv that reads a fragment's text from stdin."""
    prefix = [] if fragment.local or as_root else sudo_prefix(fragment)
    return [*prefix, "bash", "-s"]


def run_text(
    transport: str,
    fragment: Fragment,
    argv: list[str],
    timeout: int,
) -> ExecResult:
    """Pipe the fragment text into ``argv`` and capture the outcome."""
    logger.debug("Running %r via %s", fragment.label, " ".join(argv))
    start = time.monotonic()
    try:
        result = subprocess.run(
            argv,
            input=fragment.text,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return ExecResult.failure(
            label=fragment.label,
            transport=transport,
            error=f"Fragment timed out after {timeout}s",
            metadata={"timeout": timeout},
        )
    except OSError as e:
        return ExecResult.failure(
            label=fragment.label,
            transport=transport,
            error=f"Could not start {argv[0]}: {e}",
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    if result.returncode == 0:
        return ExecResult.success(
            label=fragment.label,
            transport=transport,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=elapsed_ms,
        )
    return ExecResult.failure(
        label=fragment.label,
        transport=transport,
        error=result.stderr.strip() or f"Fragment exited with code {result.returncode}",
        exit_status=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        duration_ms=elapsed_ms,
    )


class LocalShellTransport(Transport):
    """Run fragments on the local machine."""

    def __init__(self, timeout: int = 300):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "local"

    def is_available(self) -> bool:
        return shutil.which("bash") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        for upload in context.fragment.uploads:
            if not Path(upload.local_path).is_file():
                return False, f"Upload source does not exist: {upload.local_path}"
        if context.fragment.privileged and not _is_root() and shutil.which("sudo") is None:
            return False, "Privileged fragment needs sudo, which is not installed"
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecResult:
        fragment = context.fragment
        for upload in fragment.uploads:
            try:
                dest = Path(upload.remote_path)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(upload.local_path, dest)
            except OSError as e:
                return ExecResult.failure(
                    label=fragment.label,
                    transport=self.name,
                    error=f"Upload of {upload.local_path} failed: {e}",
                )
        argv = shell_command(fragment, as_root=_is_root())
        return run_text(self.name, fragment, argv, context.timeout or self._timeout)


def _is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0
