"""
SSH transport — run fragments on a node with the system ssh client.

Fragment text goes over ssh's stdin; uploads are copied with scp into
place before the fragment runs.  Fragments marked ``local`` (rsync)
run on this machine instead.
"""

from __future__ import annotations

import logging
import posixpath
import shlex
import shutil
import subprocess

from converge.adapters.base import ExecutionContext, Node, Transport
from converge.adapters.shell.command import run_text, shell_command
from converge.core.models.action import ExecResult

logger = logging.getLogger(__name__)

_SSH_OPTIONS = ["-o", "BatchMode=yes", "-o", "StrictHostKeyChecking=accept-new"]


class SshTransport(Transport):
    """Run fragments on remote nodes over ssh."""

    def __init__(self, timeout: int = 300, ssh_options: list[str] | None = None):
        self._timeout = timeout
        self._options = list(_SSH_OPTIONS if ssh_options is None else ssh_options)

    @property
    def name(self) -> str:
        return "ssh"

    def is_available(self) -> bool:
        return shutil.which("ssh") is not None and shutil.which("scp") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if context.node is None and not context.fragment.local:
            return False, "ssh transport needs a node"
        return True, ""

    def ssh_argv(self, node: Node, remote_command: list[str]) -> list[str]:
        return [
            "ssh", *self._options, "-p", str(node.port), node.destination,
            shlex.join(remote_command),
        ]

    def _upload(self, node: Node, local_path: str, remote_path: str, timeout: int) -> str | None:
        """Copy one file to the node; an error message on failure."""
        parent = posixpath.dirname(remote_path) or "/"
        steps = [
            self.ssh_argv(node, ["mkdir", "-p", parent]),
            ["scp", *self._options, "-P", str(node.port), local_path, f"{node.destination}:{remote_path}"],
        ]
        for argv in steps:
            try:
                result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                return f"Upload of {local_path} failed: {e}"
            if result.returncode != 0:
                return f"Upload of {local_path} failed: {result.stderr.strip()}"
        return None

    def execute(self, context: ExecutionContext) -> ExecResult:
        fragment = context.fragment
        timeout = context.timeout or self._timeout

        if fragment.local:
            return run_text(self.name, fragment, shell_command(fragment), timeout)

        node = context.node
        for upload in fragment.uploads:
            error = self._upload(node, upload.local_path, upload.remote_path, timeout)
            if error:
                return ExecResult.failure(label=fragment.label, transport=self.name, error=error)

        remote_as_root = node.user == "root"
        argv = self.ssh_argv(node, shell_command(fragment, as_root=remote_as_root))
        result = run_text(self.name, fragment, argv, timeout)
        result.metadata["node"] = node.name
        return result
