"""
Content/version manager for managed files.

``content_statements()`` renders the managed-file protocol as shell
statements for a remote-file fragment.  Per invocation on the node:

    1. If the live file and a recorded checksum both exist, they must
       agree unless overwrite is authorised; otherwise print the
       content-conflict message, fail, and touch nothing.
    2. New content equal to the live content is not a change.
    3. Otherwise back up the live file as the next numbered version
       (unless versioning is off), evict the oldest versions beyond
       max-versions, install the staged file and record its checksum.
    4. Touch the flag-on-changed flag file, if any, when content changed.

The conflict message is ``ContentConflictError``'s own text, so a failed
fragment's stderr can be turned back into the error after execution.
"""

from __future__ import annotations

import logging

from converge.core.actions.common import flag_path, ownership, q
from converge.core.context import Context
from converge.core.errors import ContentConflictError
from converge.core.models.managed_file import ManagedFileRecord

logger = logging.getLogger(__name__)


def _live_md5(path: str) -> str:
    return f"$(md5sum < {q(path)} | cut -d' ' -f1)"


def _versions(record: ManagedFileRecord) -> str:
    """Shell pipeline listing retained versions as ``N path`` lines, oldest first."""
    return (
        f"ls -1d {q(record.backup_path)}.~*~ 2>/dev/null"
        r" | sed -n 's/^\(.*\.~\([0-9]*\)~\)$/\2 \1/p' | sort -n"
    )


def conflict_statement(record: ManagedFileRecord) -> str:
    """Fails when the live file no longer matches its recorded checksum."""
    base, md5 = q(record.base_path), q(record.checksum_path)
    # message text is ContentConflictError's, with the checksums spliced in
    head, mid, tail = ContentConflictError.message(record.base_path, "\0", "\0").split("\0")
    message = f'{q(head)}"$_rec"{q(mid)}"$_live"{q(tail)}'
    return (
        f"if [ -e {base} ] && [ -e {md5} ]; then "
        f"_live={_live_md5(record.base_path)}; _rec=$(cut -d' ' -f1 {md5}); "
        f'if [ "$_live" != "$_rec" ]; then echo {message} >&2; false; fi; fi'
    )


def content_statements(
    record: ManagedFileRecord,
    context: Context,
    *,
    fetch: list[str],
    overwrite_changes: bool = False,
    force_overwrite: bool = False,
    no_versioning: bool = False,
    install_new_files: bool = True,
    force: bool = False,
    flag_on_changed: str | None = None,
    owner: str | None = None,
    group: str | None = None,
    mode: str | int | None = None,
) -> list[str]:
    """Shell statements installing a managed file on the node.

    ``fetch`` must leave the new content at ``record.staged_path``.  The
    statements share the ``_changed`` shell variable, so they must run
    in one fragment.
    """
    base, staged, md5 = q(record.base_path), q(record.staged_path), q(record.checksum_path)
    stage_dir = q(record.staged_path.rsplit("/", 1)[0] or "/")

    statements = [f"mkdir -p {stage_dir}", *fetch]
    if not install_new_files:
        logger.debug("%s: staging only, install-new-files is off", record.base_path)
        return statements

    if overwrite_changes or force_overwrite:
        logger.debug("%s: no conflict check, overwrite authorised", record.base_path)
    else:
        statements.append(conflict_statement(record))

    if force:
        statements.append("_changed=1")
    else:
        statements.append(f"_changed=1; if [ -e {base} ] && cmp -s {staged} {base}; then _changed=0; fi")

    if not no_versioning:
        latest = f"$({_versions(record)} | tail -n 1 | cut -d' ' -f1)"
        statements.append(
            f"if [ $_changed -eq 1 ] && [ -e {base} ]; then "
            f'_n={latest}; cp -p {base} {q(record.backup_path)}.~$((${{_n:-0}} + 1))~; fi'
        )
        statements.append(
            f"if [ $_changed -eq 1 ]; then {_versions(record)}"
            f" | head -n -{record.max_versions} | cut -d' ' -f2- | xargs -r -d '\\n' rm -f; fi"
        )

    statements.append(f"if [ $_changed -eq 1 ]; then mv -f {staged} {base}; else rm -f {staged}; fi")
    statements.append(f"md5sum < {base} | cut -d' ' -f1 > {md5}")
    statements += ownership(record.base_path, owner, group, mode)

    if flag_on_changed:
        marker = flag_path(context, flag_on_changed)
        flags_dir = q(marker.rsplit("/", 1)[0])
        statements.append(f"if [ $_changed -eq 1 ]; then mkdir -p {flags_dir} && touch {q(marker)}; fi")
    return statements
