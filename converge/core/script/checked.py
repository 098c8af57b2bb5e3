"""
Checked-script compiler — labeled, fail-fast shell fragments.

``checked(label, statements)`` emits every statement followed by an
exit-status test.  A failing statement prints a labeled message naming
itself on stderr and exits the fragment with its status; the remaining
statements of that fragment never run.  A fragment that gets to the end
reports success.  For example, ``checked("Directory /srv", ["mkdir -p /srv"])``::

    {
    echo 'Directory /srv...'
    mkdir -p /srv
    _rc=$?; if [ $_rc -ne 0 ]; then echo '#> Directory /srv : FAIL (mkdir -p /srv)' >&2; exit $_rc; fi
    echo '#> Directory /srv : SUCCESS'
    } </dev/null

The brace group makes bash read the whole fragment before running any
of it, and its statements get no stdin.  Fragments are fed to
``bash -s``, so a statement reading stdin would otherwise swallow the
guards and statements after it.

Compilation is pure: identical label + statements give byte-identical text.

``compose(fragments)`` stitches fragments into one node script.  Each
fragment runs in its own (sub)shell, so a failure aborts only the rest
of that fragment; later fragments still run and the script exits with
a non-zero status if any fragment failed.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Sequence

from converge.core.context import Context
from converge.core.models.fragment import Fragment, Upload
from converge.core.script.forms import Form, render

_FRAGMENT_DELIMITER = "CONVERGE_FRAGMENT"


def _first_line(statement: str) -> str:
    lines = statement.strip().splitlines()
    return lines[0] if lines else ""


def _guard(label: str, statement: str) -> str:
    message = shlex.quote(f"#> {label} : FAIL ({_first_line(statement)})")
    return (
        f"{statement}\n"
        f"_rc=$?; if [ $_rc -ne 0 ]; then echo {message} >&2; exit $_rc; fi"
    )


def render_checked(label: str, statements: Sequence[str]) -> str:
    """The guarded shell text for a label and statement list."""
    lines = ["{", f"echo {shlex.quote(label + '...')}"]
    lines.extend(_guard(label, s) for s in statements)
    lines.append(f"echo {shlex.quote(f'#> {label} : SUCCESS')}")
    lines.append("} </dev/null")
    return "\n".join(lines) + "\n"


def checked(
    label: str,
    statements: Iterable[str],
    context: Context | None = None,
    *,
    local: bool = False,
    uploads: Iterable[Upload] = (),
) -> Fragment:
    """Compile statements into one fail-fast, labeled Fragment.

    Args:
        label: Human-readable label reported on success and failure.
        statements: Shell statements, in execution order.
        context: When given, the fragment runs with this context's
            privilege and sudo user.  ``text`` does not depend on it.
        local: The fragment runs on the origin machine, not the node.
        uploads: Local files to transfer to the node before running.
    """
    stmts = tuple(s for s in statements if s)
    privileged = context.privileged if context is not None else False
    sudo_user = context.sudo_user if context is not None and privileged else None
    return Fragment(
        label=label,
        statements=stmts,
        text=render_checked(label, stmts),
        privileged=privileged,
        sudo_user=sudo_user,
        local=local,
        uploads=tuple(uploads),
    )


def checked_from_script(
    label: str,
    forms: Iterable[Form],
    context: Context | None = None,
    **kwargs,
) -> Fragment:
    """Render control-flow forms, then guard each top-level form."""
    return checked(label, [render(f) for f in forms], context, **kwargs)


def sudo_prefix(fragment: Fragment) -> list[str]:
    """The sudo invocation a privileged fragment runs under."""
    if not fragment.privileged:
        return []
    prefix = ["sudo", "-n"]
    if fragment.sudo_user:
        prefix += ["-u", fragment.sudo_user]
    return prefix


def _delimiter(text: str) -> str:
    delimiter = _FRAGMENT_DELIMITER
    n = 0
    while delimiter in text:
        n += 1
        delimiter = f"{_FRAGMENT_DELIMITER}_{n}"
    return delimiter


def compose(fragments: Iterable[Fragment], shebang: str = "#!/usr/bin/env bash") -> str:
    """Render fragments, in order, as a single node script.

    Origin-side fragments (rsync) and file uploads are not part of a
    node script; the script warns on stderr where ``converge apply``
    would have run them.
    """
    parts = [shebang, "converge_status=0"]
    for fragment in fragments:
        if fragment.local:
            parts.append(f"# runs on origin: {fragment.label}")
            warning = f"converge: skipped {fragment.label}: runs on the origin machine, use converge apply"
            parts.append(f"echo {shlex.quote(warning)} >&2")
            continue
        for upload in fragment.uploads:
            parts.append(f"# upload: {upload.local_path} -> {upload.remote_path}")
            warning = f"converge: not uploaded {upload.local_path} -> {upload.remote_path}, use converge apply"
            parts.append(f"echo {shlex.quote(warning)} >&2")
        if fragment.privileged:
            delimiter = _delimiter(fragment.text)
            runner = shlex.join([*sudo_prefix(fragment), "bash", "-s"])
            parts.append(f"{runner} <<'{delimiter}' || converge_status=1")
            parts.append(fragment.text + delimiter)
        else:
            parts.append("(")
            parts.append(fragment.text + ") || converge_status=1")
    parts.append("exit $converge_status")
    return "\n".join(parts) + "\n"
