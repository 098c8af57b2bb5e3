"""
Remote content actions — remote-file, remote-directory and rsync.

remote-file always compiles inside a privileged scope: content is
transferred into the scratch directory, then installed over the live
file by the content manager's statements.
"""

from __future__ import annotations

import logging
import posixpath

from converge.core.actions import filesystem
from converge.core.actions.common import heredoc, ownership, q, rm, unsupported
from converge.core.content.manager import content_statements
from converge.core.context import ExecMode, Session
from converge.core.models.action import Action, ActionKind
from converge.core.models.fragment import Fragment, Upload
from converge.core.models.managed_file import ManagedFileRecord
from converge.core.models.options import RemoteDirectoryOptions, RemoteFileOptions, RsyncOptions
from converge.core.script.checked import checked

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


def _download(url: str, dest: str, *, insecure: bool = False) -> str:
    flags = "--fail --silent --show-error --location"
    if insecure:
        flags += " --insecure"
    return f"curl {flags} -o {q(dest)} {q(url)}"


def _md5_checks(staged: str, md5: str | None, md5_url: str | None, insecure: bool) -> list[str]:
    checks = []
    if md5:
        checks.append(f"echo {q(f'{md5}  {staged}')} | md5sum -c --quiet -")
    if md5_url:
        fetch = _download(md5_url, "-", insecure=insecure)
        checks.append(
            f"{fetch} | awk -v f={q(staged)} '{{print $1 \"  \" f}}' | md5sum -c --quiet -"
        )
    return checks


def _fetch(opts: RemoteFileOptions, staged: str) -> tuple[list[str], list[Upload]]:
    """Statements (and uploads) leaving the new content at ``staged``."""
    if opts.local_file is not None:
        return [f"test -e {q(staged)}"], [Upload(local_path=opts.local_file, remote_path=staged)]
    if opts.remote_file is not None:
        return [f"cp -p {q(opts.remote_file)} {q(staged)}"], []
    if opts.url is not None:
        return [_download(opts.url, staged, insecure=opts.insecure)], []
    if opts.content is not None:
        return [heredoc(f"cat > {q(staged)}", opts.content, expand=True)], []
    return [heredoc(f"cat > {q(staged)}", opts.literal or "")], []


def remote_file(action: Action, session: Session) -> list[Fragment]:
    """Manage a file's content, versions and ownership on the node."""
    opts: RemoteFileOptions = action.opts
    path = action.target

    with session.scope(exec_mode=ExecMode.PRIVILEGED) as context:
        record = ManagedFileRecord.derive(path, context.scratch_dir, opts.max_versions)

        if opts.action == "delete":
            statements = [rm(path, force=True), rm(record.checksum_path, force=True)]
            return [checked(f"Delete remote-file {path}", statements, context)]

        if opts.link is not None:
            statements = [f"ln -s -f -n {q(opts.link)} {q(path)}"]
            statements += ownership(path, opts.owner, opts.group, None, no_dereference=True)
            return [checked(f"Link remote-file {path} to {opts.link}", statements, context)]

        fetch, uploads = _fetch(opts, record.staged_path)
        fetch += _md5_checks(record.staged_path, opts.md5, opts.md5_url, opts.insecure)
        if opts.verify:
            fetch.append(f"{opts.verify} {q(record.staged_path)}")

        if opts.flag_on_changed:
            session.declare_flag(opts.flag_on_changed)

        statements = content_statements(
            record,
            context,
            fetch=fetch,
            overwrite_changes=opts.overwrite_changes,
            force_overwrite=session.force_overwrite,
            no_versioning=opts.no_versioning,
            install_new_files=opts.install_new_files and session.install_new_files,
            force=opts.force,
            flag_on_changed=opts.flag_on_changed,
            owner=opts.owner,
            group=opts.group,
            mode=opts.mode,
        )
        return [checked(f"Remote file {path}", statements, context, uploads=uploads)]


_ARCHIVE_SUFFIX = {"tar": ".tar", "unzip": ".zip", "jar": ".jar"}


def _unpack(opts: RemoteDirectoryOptions, archive: str, path: str) -> str:
    files = " ".join(q(f) for f in opts.extract_files)
    if opts.unpack == "tar":
        cmd = (
            f"tar {opts.tar_options} --strip-components={opts.strip_components}"
            f" -f {q(archive)} -C {q(path)}"
        )
    elif opts.unpack == "unzip":
        cmd = f"unzip {opts.unzip_options} {q(archive)} -d {q(path)}"
    else:
        cmd = f"(cd {q(path)} && jar {opts.jar_options} {q(archive)}"
        return f"{cmd} {files})" if files else cmd + ")"
    return f"{cmd} {files}" if files else cmd


def remote_directory(action: Action, session: Session) -> list[Fragment]:
    """Download an archive and unpack it into a directory.

    The archive is only re-extracted when its checksum differs from the
    one recorded at the last extraction.
    """
    opts: RemoteDirectoryOptions = action.opts
    path = action.target
    context = session.context

    if opts.unpack != "tar" and opts.strip_components != 1:
        logger.warning("strip-components is ignored when unpacking with %s", opts.unpack)

    fragments = filesystem.directory(
        Action(kind=ActionKind.DIRECTORY, target=path, options={
            "owner": opts.owner, "group": opts.group, "recursive": False,
        }),
        session,
    )

    archive = posixpath.join(context.scratch_dir, path.lstrip("/")) + _ARCHIVE_SUFFIX[opts.unpack]
    source = {"url": opts.url} if opts.url else (
        {"local-file": opts.local_file} if opts.local_file else {"remote-file": opts.remote_file}
    )
    fragments += remote_file(
        Action(kind=ActionKind.REMOTE_FILE, target=archive, options={
            **source,
            "md5": opts.md5,
            "md5-url": opts.md5_url,
            "insecure": opts.insecure,
            "no-versioning": True,
            "overwrite-changes": True,
        }),
        session,
    )

    extracted = q(archive + ".extracted")
    current = f"$(md5sum < {q(archive)} | cut -d' ' -f1)"
    statement = (
        f'if [ ! -e {extracted} ] || [ "{current}" != "$(cat {extracted})" ]; then '
        f"{_unpack(opts, archive, path)} && md5sum < {q(archive)} | cut -d' ' -f1 > {extracted}; fi"
    )
    fragments.append(checked(f"Unpack {archive} into {path}", [statement], session.context))

    if opts.recursive and (opts.owner or opts.group):
        fragments += filesystem.directory(
            Action(kind=ActionKind.DIRECTORY, target=path, options={
                "owner": opts.owner, "group": opts.group, "recursive": True,
            }),
            session,
        )
    return fragments


def rsync(action: Action, session: Session) -> list[Fragment]:
    """Push a local directory to the node with rsync over ssh.

    Runs on the origin machine.  The node's address and ssh port come
    from the compute provider unless given explicitly.
    """
    opts: RsyncOptions = action.opts
    ip = opts.ip
    port = opts.port

    has_provider = session.provider is not None and session.node is not None

    if ip is None:
        if not has_provider:
            raise unsupported(action, "no 'ip' given and no compute provider to ask")
        ip = session.provider.address(session.node)
    if port is None:
        port = session.provider.ssh_port(session.node) if has_provider else DEFAULT_SSH_PORT
    username = opts.username or session.context.acting_user

    flags = " ".join(q(f) for f in opts.flags)
    statement = (
        f"rsync -e {q(f'ssh -p {port}')} {flags}"
        f" {q(opts.source)} {q(f'{username}@{ip}:{action.target}')}"
    )
    return [checked(f"Rsync {opts.source} to {action.target}", [statement], local=True)]
