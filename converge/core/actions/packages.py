"""
Package actions — package, package-manager, package-source, debconf,
rpm and deb.

Commands are looked up per packager from the tables below.  A packager
with no entry is a configuration error, raised before any text is
produced.
"""

from __future__ import annotations

import logging

from converge.core.actions.common import heredoc, q, unsupported
from converge.core.context import APT_PACKAGERS, RPM_PACKAGERS, Session
from converge.core.models.action import Action
from converge.core.models.fragment import Fragment
from converge.core.models.options import (
    AptSourceOptions,
    DebconfOptions,
    DebOptions,
    PackageManagerOptions,
    PackageOptions,
    PackageSourceOptions,
    RpmOptions,
    YumSourceOptions,
)
from converge.core.script.checked import checked
from converge.core.script.forms import Cmd, Raw, Str, render

logger = logging.getLogger(__name__)

_APT_ENV = "DEBIAN_FRONTEND=noninteractive"

# packager → install command prefix
_INSTALL: dict[str, list[str]] = {
    "apt": [_APT_ENV, "apt-get", "install", "-q", "-y"],
    "aptitude": [_APT_ENV, "aptitude", "install", "-q", "-y"],
    "yum": ["yum", "install", "-q", "-y"],
    "dnf": ["dnf", "install", "-q", "-y"],
    "zypper": ["zypper", "--non-interactive", "install"],
    "pacman": ["pacman", "-S", "--noconfirm", "--needed"],
    "apk": ["apk", "add"],
    "brew": ["brew", "install"],
}

# packager → (install verb, upgrade verb, extra flags)
# The upgrade command is the install command with the verb replaced.
_UPGRADE_RULES: dict[str, tuple[str, str, list[str]]] = {
    "apt": ("install", "install", ["--only-upgrade"]),
    "aptitude": ("install", "safe-upgrade", []),
    "yum": ("install", "update", []),
    "dnf": ("install", "upgrade", []),
    "zypper": ("install", "update", []),
    "pacman": ("-S", "-S", []),
    "apk": ("add", "upgrade", []),
    "brew": ("install", "upgrade", []),
}

# packager → (remove, purge)
_REMOVE: dict[str, tuple[list[str], list[str]]] = {
    "apt": ([_APT_ENV, "apt-get", "remove", "-q", "-y"], [_APT_ENV, "apt-get", "purge", "-q", "-y"]),
    "aptitude": ([_APT_ENV, "aptitude", "remove", "-q", "-y"], [_APT_ENV, "aptitude", "purge", "-q", "-y"]),
    "yum": (["yum", "remove", "-q", "-y"], ["yum", "remove", "-q", "-y"]),
    "dnf": (["dnf", "remove", "-q", "-y"], ["dnf", "remove", "-q", "-y"]),
    "zypper": (["zypper", "--non-interactive", "remove"], ["zypper", "--non-interactive", "remove", "--clean-deps"]),
    "pacman": (["pacman", "-R", "--noconfirm"], ["pacman", "-Rns", "--noconfirm"]),
    "apk": (["apk", "del"], ["apk", "del", "--purge"]),
    "brew": (["brew", "uninstall"], ["brew", "uninstall", "--zap"]),
}

# package-manager operations
_MANAGER: dict[str, dict[str, str]] = {
    "update": {
        "apt": "apt-get -qq update",
        "aptitude": "aptitude -q update",
        "yum": "yum makecache -q",
        "dnf": "dnf makecache -q",
        "zypper": "zypper --non-interactive refresh",
        "pacman": "pacman -Sy --noconfirm",
        "apk": "apk update",
        "brew": "brew update",
    },
    "upgrade": {
        "apt": f"{_APT_ENV} apt-get -q -y upgrade",
        "aptitude": f"{_APT_ENV} aptitude -q -y safe-upgrade",
        "yum": "yum update -q -y",
        "dnf": "dnf upgrade -q -y",
        "zypper": "zypper --non-interactive update",
        "pacman": "pacman -Syu --noconfirm",
        "apk": "apk upgrade",
        "brew": "brew upgrade",
    },
    "list-installed": {
        "apt": "dpkg --get-selections",
        "aptitude": "aptitude search '~i'",
        "yum": "rpm -qa",
        "dnf": "rpm -qa",
        "zypper": "rpm -qa",
        "pacman": "pacman -Q",
        "apk": "apk info",
        "brew": "brew list",
    },
}

_APT_SOURCES = "/etc/apt/sources.list"


def _packager(action: Action, session: Session) -> str:
    packager = session.context.target.packager
    if packager not in _INSTALL:
        raise unsupported(action, f"unsupported packager {packager!r}")
    return packager


def _install_command(packager: str, names: list[str]) -> list[str]:
    return _INSTALL[packager] + names


def _upgrade_command(packager: str, names: list[str]) -> list[str]:
    install_verb, upgrade_verb, extra_flags = _UPGRADE_RULES[packager]
    cmd = _install_command(packager, names)
    idx = cmd.index(install_verb)
    cmd[idx] = upgrade_verb
    for i, flag in enumerate(extra_flags):
        cmd.insert(idx + 1 + i, flag)
    return cmd


def _repo_flags(packager: str, opts: PackageOptions) -> list[str]:
    flags: list[str] = []
    if packager in APT_PACKAGERS:
        flags += [f"-t {q(release)}" for release in opts.enable]
        if opts.allow_unsigned:
            flags.append("--allow-unauthenticated")
    elif packager in ("yum", "dnf"):
        flags += [f"--enablerepo={q(r)}" for r in opts.enable]
        flags += [f"--disablerepo={q(r)}" for r in opts.disable]
        if opts.allow_unsigned:
            flags.append("--nogpgcheck")
    elif packager == "zypper" and opts.allow_unsigned:
        flags.append("--no-gpg-checks")
    return flags


def package(action: Action, session: Session) -> list[Fragment]:
    """Install, remove or upgrade one package with the target's packager."""
    opts: PackageOptions = action.opts
    packager = _packager(action, session)
    name = q(action.target)

    if opts.action == "remove":
        remove, purge = _REMOVE[packager]
        cmd = (purge if opts.purge else remove) + [name]
        label = f"Remove package {action.target}"
    elif opts.action == "upgrade":
        cmd = _upgrade_command(packager, [name])
        label = f"Upgrade package {action.target}"
    else:
        cmd = _install_command(packager, [name])
        label = f"Package {action.target}"

    if opts.action != "remove":
        flags = _repo_flags(packager, opts)
        if flags:
            # flags go straight after the verb
            verb = _UPGRADE_RULES[packager][1 if opts.action == "upgrade" else 0]
            idx = cmd.index(verb) + 1
            cmd[idx:idx] = flags

    statements = [" ".join(cmd)]
    if opts.disable_service_start and packager in APT_PACKAGERS:
        # policy-rc.d exit status 101 stops maintainer scripts from starting daemons
        policy = "/usr/sbin/policy-rc.d"
        statements = [
            f"printf '#!/bin/sh\\nexit 101\\n' > {policy} && chmod 0755 {policy}",
            f"{statements[0]}; _pkg_rc=$?; rm -f {policy}; [ $_pkg_rc -eq 0 ]",
        ]
    return [checked(label, statements, session.context)]


def _add_scope(action: Action, session: Session, packager: str) -> str:
    opts: PackageManagerOptions = action.opts
    if packager not in APT_PACKAGERS:
        raise unsupported(action, f"add-scope is only supported for apt packagers, not {packager!r}")
    if not opts.scope:
        raise unsupported(action, "add-scope needs 'scope'")
    scope = opts.scope
    present = q(f"^deb .* {scope}( |$)")
    append = q("s/^(deb .* main)$/\\1 " + scope + "/")
    return f"grep -Eq {present} {_APT_SOURCES} || sed -i -E {append} {_APT_SOURCES}"


def package_manager(action: Action, session: Session) -> list[Fragment]:
    packager = _packager(action, session)
    operation = action.target

    if operation == "add-scope":
        statement = _add_scope(action, session, packager)
        label = f"Package manager add-scope {action.opts.scope}"
    elif operation in _MANAGER:
        statement = _MANAGER[operation][packager]
        label = f"Package manager {operation}"
    else:
        raise unsupported(action, f"unknown package-manager operation {operation!r}")
    return [checked(label, [statement], session.context)]


def _replace_if_changed(staged: str, path: str, update: str) -> str:
    return f"if ! cmp -s {q(staged)} {q(path)}; then mv -f {q(staged)} {q(path)} && {update}; else rm -f {q(staged)}; fi"


def _apt_source(name: str, opts: AptSourceOptions) -> list[str]:
    path = f"/etc/apt/sources.list.d/{name}.list"
    staged = path + ".new"
    statements: list[str] = []

    if opts.key_url:
        statements.append(f"wget -qO- {q(opts.key_url)} | apt-key add -")
    if opts.key_server and opts.key_id:
        statements.append(
            f"apt-key adv --keyserver {q(opts.key_server)} --recv-keys {q(opts.key_id)}"
        )

    if opts.path:
        line = Str(f"{opts.source_type} file:{opts.path} ./")
    else:
        release = opts.release if opts.release else Raw("$(lsb_release -c -s)")
        line = Str(f"{opts.source_type} {opts.url} ", release, " " + " ".join(opts.scopes))
    statements.append(render(Cmd("printf", "%s\\n", line, Raw(">"), staged)))
    statements.append(_replace_if_changed(staged, path, _MANAGER["update"]["apt"]))
    return statements


def _yum_source(name: str, opts: YumSourceOptions, packager: str) -> list[str]:
    repo_dir = "/etc/zypp/repos.d" if packager == "zypper" else "/etc/yum.repos.d"
    path = f"{repo_dir}/{name}.repo"
    staged = path + ".new"
    lines = [
        f"[{name}]",
        f"name={opts.name or name}",
        f"baseurl={opts.url}",
        f"enabled={1 if opts.enabled else 0}",
        f"gpgcheck={1 if opts.gpgkey else 0}",
    ]
    if opts.gpgkey:
        lines.append(f"gpgkey={opts.gpgkey}")
    return [
        heredoc(f"cat > {q(staged)}", "\n".join(lines)),
        _replace_if_changed(staged, path, _MANAGER["update"][packager]),
    ]


def package_source(action: Action, session: Session) -> list[Fragment]:
    """Register a named package source for the target's packager family.

    A source with no entry for the target's family compiles to nothing.
    """
    opts: PackageSourceOptions = action.opts
    packager = _packager(action, session)
    name = action.target

    if packager in APT_PACKAGERS and opts.apt is not None:
        statements = _apt_source(name, opts.apt)
    elif packager in RPM_PACKAGERS and opts.yum is not None:
        statements = _yum_source(name, opts.yum, packager)
    else:
        logger.debug("Package source %s has no entry for packager %s", name, packager)
        return []
    return [checked(f"Package source {name}", statements, session.context)]


def debconf(action: Action, session: Session) -> list[Fragment]:
    opts: DebconfOptions = action.opts
    if not session.context.target.apt_family:
        raise unsupported(action, "debconf selections need an apt packager")
    statement = f"echo {q(opts.selection())} | debconf-set-selections"
    return [checked(f"Debconf {action.target}", [statement], session.context)]


def rpm(action: Action, session: Session) -> list[Fragment]:
    """Install an rpm file on the node unless the package is already present."""
    opts: RpmOptions = action.opts
    name = action.target
    path = opts.path or name
    # installed check uses the package name inside the rpm file
    statement = f'rpm -q "$(rpm -qp {q(path)})" >/dev/null 2>&1 || rpm -U --quiet {q(path)}'
    label = f"Install rpm repo {name}" if opts.repo else f"Install rpm {name}"
    statements = [statement]
    if opts.repo:
        packager = _packager(action, session)
        if packager in RPM_PACKAGERS:
            statements.append(_MANAGER["update"][packager])
    return [checked(label, statements, session.context)]


def deb(action: Action, session: Session) -> list[Fragment]:
    opts: DebOptions = action.opts
    name = action.target
    path = opts.path or name
    statement = (
        f'dpkg -s "$(dpkg-deb -f {q(path)} Package)" >/dev/null 2>&1 '
        f"|| {_APT_ENV} dpkg -i {q(path)}"
    )
    return [checked(f"Install deb {name}", [statement], session.context)]
