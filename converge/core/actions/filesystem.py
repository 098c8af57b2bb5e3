"""
Filesystem action compilers — directory, file, symlink, fifo, sed,
wait-for-file and exec.

Every compiler has the same shape: validated options in, conditional
command emission, one checked fragment out.  Absent owner/group/mode
means the matching command is omitted, never emitted empty.
"""

from __future__ import annotations

import logging

from converge.core.actions.common import ownership, q, rm, unsupported
from converge.core.context import Session
from converge.core.models.action import Action
from converge.core.models.fragment import Fragment
from converge.core.models.managed_file import ManagedFileRecord
from converge.core.models.options import (
    DirectoryOptions,
    ExecOptions,
    FifoOptions,
    FileOptions,
    SedOptions,
    SymlinkOptions,
    WaitForFileOptions,
)
from converge.core.script.checked import checked, checked_from_script
from converge.core.script.forms import (
    Cmd,
    Echo,
    Exit,
    If,
    Let,
    Not,
    Raw,
    Var,
    While,
    file_exists,
    num_equals,
)

logger = logging.getLogger(__name__)


def directory(action: Action, session: Session) -> list[Fragment]:
    """Create, touch or delete a directory.

    For create and touch, mode is applied both at creation (quoted, so
    mkdir sees it verbatim) and afterwards with chmod, so an existing
    directory converges too.  ``recursive`` governs chown/chgrp on
    create and ``rm -r`` on delete, independently.
    """
    opts: DirectoryOptions = action.opts
    path = action.target

    if opts.action == "delete":
        return [checked(
            f"Delete directory {path}",
            [rm(path, recursive=opts.recursive, force=opts.force)],
            session.context,
        )]

    mkdir = "mkdir"
    if opts.mode is not None:
        mkdir += f' -m "{opts.mode}"'
    if opts.path:
        mkdir += " -p"
    if opts.verbose:
        mkdir += " -v"
    statements = [f"{mkdir} {q(path)}"]
    statements += ownership(path, opts.owner, opts.group, opts.mode, recursive=opts.recursive)
    return [checked(f"Directory {path}", statements, session.context)]


def file(action: Action, session: Session) -> list[Fragment]:
    opts: FileOptions = action.opts
    path = action.target

    if opts.action == "delete":
        return [checked(f"Delete file {path}", [rm(path, force=opts.force)], session.context)]

    statements = [f"touch {q(path)}"]
    statements += ownership(path, opts.owner, opts.group, opts.mode)
    return [checked(f"File {path}", statements, session.context)]


def symlink(action: Action, session: Session) -> list[Fragment]:
    opts: SymlinkOptions = action.opts
    name = action.target

    if opts.action == "delete":
        return [checked(f"Delete link {name}", [rm(name, force=opts.force)], session.context)]

    ln = "ln -s"
    if opts.force:
        ln += " -f -n"
    statements = [f"{ln} {q(opts.source)} {q(name)}"]
    # chmod on a link changes the target; only ownership is applied to the link itself
    statements += ownership(name, opts.owner, opts.group, None, no_dereference=True)
    if opts.mode is not None:
        logger.debug("Ignoring mode for symlink %s", name)
    return [checked(f"Link {name} to {opts.source}", statements, session.context)]


def fifo(action: Action, session: Session) -> list[Fragment]:
    opts: FifoOptions = action.opts
    path = action.target

    if opts.action == "delete":
        return [checked(f"Delete fifo {path}", [rm(path, force=opts.force)], session.context)]

    statements = [f"[ -p {q(path)} ] || mkfifo {q(path)}"]
    statements += ownership(path, opts.owner, opts.group, opts.mode)
    return [checked(f"Fifo {path}", statements, session.context)]


_SEPARATORS = "/_|:%!@"


def _sed_separator(action: Action, opts: SedOptions) -> str:
    if opts.separator:
        return opts.separator
    text = "".join(k + v for k, v in opts.exprs.items())
    for sep in _SEPARATORS:
        if sep not in text:
            return sep
    raise unsupported(action, "no usable sed separator; pass 'separator'")


def sed(action: Action, session: Session) -> list[Fragment]:
    """Apply substitutions in place; keep a recorded checksum current."""
    opts: SedOptions = action.opts
    path = action.target
    sep = _sed_separator(action, opts)
    restriction = opts.restriction or ""

    words = ["sed", "-i"]
    for expr, replacement in sorted(opts.exprs.items()):
        words += ["-e", q(f"{restriction}s{sep}{expr}{sep}{replacement}{sep}")]
    statements = [" ".join(words) + f" {q(path)}"]

    if not opts.no_md5:
        record = ManagedFileRecord.derive(path, session.context.scratch_dir)
        md5 = q(record.checksum_path)
        statements.append(
            f"if [ -e {md5} ]; then md5sum < {q(path)} | cut -d' ' -f1 > {md5}; fi"
        )
    return [checked(f"Sed file {path}", statements, session.context)]


def wait_for_file(action: Action, session: Session) -> list[Fragment]:
    """Poll for a file, giving up after ``max-retries`` rounds."""
    opts: WaitForFileOptions = action.opts
    path = action.target
    name = opts.service_name or path

    forms = [
        Let("x", 0),
        While(Not(file_exists(path)), [
            Let("x", Raw("$((x + 1))")),
            If(num_equals(Var("x"), opts.max_retries), [
                Echo(f"Timed out waiting for {name}", stderr=True),
                Exit(1),
            ]),
            Echo(f"Waiting for {name}"),
            Cmd("sleep", opts.standoff),
        ]),
    ]
    return [checked_from_script(f"Wait for {name}", forms, session.context)]


def exec_statements(action: Action, session: Session) -> list[Fragment]:
    opts: ExecOptions = action.opts
    return [checked(action.target, opts.statements, session.context)]
