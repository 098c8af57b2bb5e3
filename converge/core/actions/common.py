"""
Shared helpers for action compilers — quoting and ownership commands.
"""

from __future__ import annotations

import posixpath
import shlex

from converge.core.context import Context
from converge.core.errors import ConfigurationError
from converge.core.models.action import Action

q = shlex.quote


def chown(owner: str, path: str, *, recursive: bool = False, no_dereference: bool = False) -> str:
    flags = " --recursive" if recursive else ""
    flags += " --no-dereference" if no_dereference else ""
    return f"chown{flags} {q(owner)} {q(path)}"


def chgrp(group: str, path: str, *, recursive: bool = False, no_dereference: bool = False) -> str:
    flags = " --recursive" if recursive else ""
    flags += " --no-dereference" if no_dereference else ""
    return f"chgrp{flags} {q(group)} {q(path)}"


def chmod(mode: str | int, path: str) -> str:
    return f"chmod {mode} {q(path)}"


def ownership(
    path: str,
    owner: str | None,
    group: str | None,
    mode: str | int | None,
    *,
    recursive: bool = False,
    no_dereference: bool = False,
) -> list[str]:
    """chown / chgrp / chmod statements for whichever of owner, group, mode is set."""
    statements: list[str] = []
    if owner:
        statements.append(chown(owner, path, recursive=recursive, no_dereference=no_dereference))
    if group:
        statements.append(chgrp(group, path, recursive=recursive, no_dereference=no_dereference))
    if mode is not None:
        statements.append(chmod(mode, path))
    return statements


def rm(path: str, *, recursive: bool = False, force: bool = False) -> str:
    words = ["rm"]
    if recursive:
        words.append("-r")
    if force:
        words.append("-f")
    return " ".join(words) + f" {q(path)}"


def flag_path(context: Context, name: str) -> str:
    """Node-side marker file for a named flag."""
    return posixpath.join(context.scratch_dir, "flags", name)


def heredoc(command: str, content: str, delimiter: str = "CONVERGE_EOF", *, expand: bool = False) -> str:
    """``command <<DELIM`` with ``content`` as the body.

    The body is literal unless ``expand`` is set, in which case the shell
    expands parameters and command substitutions in it.
    """
    while delimiter in content:
        delimiter += "_"
    body = content if content.endswith("\n") else content + "\n"
    opener = delimiter if expand else f"'{delimiter}'"
    return f"{command} <<{opener}\n{body}{delimiter}"


def unsupported(action: Action, what: str) -> ConfigurationError:
    return ConfigurationError(
        f"{action.kind.value} {action.target!r}: {what}",
        kind=action.kind.value,
        target=action.target,
    )
