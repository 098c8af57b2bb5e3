"""
Builder functions — Action values for every kind, plus plan helpers.

Builders only construct validated Actions; nothing is compiled here.
Plan helpers compose several actions into the ordered list a common
task needs:

    plan = [
        *directories(["/srv/app", "/srv/app/log"], owner="app"),
        *with_service_restart("app", [
            remote_file("/etc/app.conf", content="port=80\\n"),
        ]),
    ]
"""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Mapping
from typing import Any

from converge.core.models.action import Action, ActionKind
from converge.core.script.forms import Cmd, Echo, Exit, If, Let, Not, Raw, Var, While, num_equals, quiet, render


def _action(kind: ActionKind, target: str, options: Mapping[str, Any]) -> Action:
    return Action(kind=kind, target=target, options={k: v for k, v in options.items() if v is not None})


def directory(path: str, /, **options: Any) -> Action:
    return _action(ActionKind.DIRECTORY, path, options)


def file(path: str, **options: Any) -> Action:
    return _action(ActionKind.FILE, path, options)


def symlink(source: str, name: str, **options: Any) -> Action:
    return _action(ActionKind.SYMLINK, name, {**options, "source": source})


def fifo(path: str, **options: Any) -> Action:
    return _action(ActionKind.FIFO, path, options)


def sed(path: str, exprs: Mapping[str, str], **options: Any) -> Action:
    return _action(ActionKind.SED, path, {**options, "exprs": dict(exprs)})


def wait_for_file(path: str, **options: Any) -> Action:
    return _action(ActionKind.WAIT_FOR_FILE, path, options)


def exec_checked(label: str, *statements: str) -> Action:
    return _action(ActionKind.EXEC, label, {"statements": list(statements)})


def user(name: str, **options: Any) -> Action:
    return _action(ActionKind.USER, name, options)


def group(name: str, **options: Any) -> Action:
    return _action(ActionKind.GROUP, name, options)


def service(name: str, **options: Any) -> Action:
    return _action(ActionKind.SERVICE, name, options)


def package(name: str, **options: Any) -> Action:
    return _action(ActionKind.PACKAGE, name, options)


def packages(names: Iterable[str], **options: Any) -> list[Action]:
    return [package(name, **options) for name in names]


def package_manager(operation: str, **options: Any) -> Action:
    return _action(ActionKind.PACKAGE_MANAGER, operation, options)


def package_source(name: str, **options: Any) -> Action:
    return _action(ActionKind.PACKAGE_SOURCE, name, options)


def debconf(package_name: str, **options: Any) -> Action:
    return _action(ActionKind.DEBCONF, package_name, options)


def rpm(name: str, **options: Any) -> Action:
    return _action(ActionKind.RPM, name, options)


def deb(name: str, **options: Any) -> Action:
    return _action(ActionKind.DEB, name, options)


def remote_file(path: str, **options: Any) -> Action:
    return _action(ActionKind.REMOTE_FILE, path, options)


def remote_directory(path: str, **options: Any) -> Action:
    return _action(ActionKind.REMOTE_DIRECTORY, path, options)


def rsync(source: str, target: str, **options: Any) -> Action:
    return _action(ActionKind.RSYNC, target, {**options, "source": source})


# ── Plan helpers ────────────────────────────────────────────────


def directories(paths: Iterable[str], **options: Any) -> list[Action]:
    """The same directory options applied to several paths."""
    return [directory(p, **options) for p in paths]


# What compiled fragments call on the node: md5sum/cut/xargs, cmp, sed, curl, sudo
MINIMAL_PACKAGES = ("coreutils", "findutils", "diffutils", "sed", "curl", "sudo")


def minimal_packages(actions: Iterable[Action] = (), **options: Any) -> list[Action]:
    """The packages converge itself needs on a node, ahead of ``actions``.

    Goes first in a plan so the tools are present before any other
    package-manager, package-source or package action runs.
    """
    return [*packages(MINIMAL_PACKAGES, **options), *actions]


def rsync_directory(
    source: str,
    target: str,
    *,
    owner: str | None = None,
    group: str | None = None,
    mode: str | int | None = None,
    **rsync_options: Any,
) -> list[Action]:
    """Ensure rsync and the target directory exist, push, then fix ownership."""
    actions = [
        package("rsync"),
        directory(target, owner=owner, group=group, mode=mode),
        rsync(source, target, **rsync_options),
    ]
    if owner or group:
        actions.append(directory(target, owner=owner, group=group, recursive=True))
    return actions


def with_service_restart(name: str, actions: Iterable[Action], **service_options: Any) -> list[Action]:
    """Stop a service around ``actions`` and start it again afterwards."""
    return [
        service(name, action="stop", **service_options),
        *actions,
        service(name, action="start", **service_options),
    ]


_SERVICE_SCRIPT_PATHS = {
    "initd": ("/etc/init.d/{name}", "0755"),
    "systemd": ("/etc/systemd/system/{name}.service", "0644"),
    "upstart": ("/etc/init/{name}.conf", "0644"),
}


def service_script(name: str, *, service_impl: str = "initd", **source: Any) -> list[Action]:
    """Install the control script/unit for a service.

    ``source`` takes the remote-file content options (``content``,
    ``local_file``, ``url``, ...).  systemd units are followed by a
    daemon reload.
    """
    template, mode = _SERVICE_SCRIPT_PATHS[service_impl]
    actions = [
        remote_file(template.format(name=name), owner="root", group="root", mode=mode, **source),
    ]
    if service_impl == "systemd":
        actions.append(exec_checked(f"Reload systemd for {name}", "systemctl daemon-reload"))
    return actions


def retry_until(label: str, condition: str, *, max_retries: int = 5, standoff: int = 2) -> Action:
    """Poll until the shell ``condition`` succeeds, giving up after ``max_retries``."""
    loop = [
        Let("x", 0),
        While(Not(quiet(Cmd(Raw(condition)))), [
            Let("x", Raw("$((x + 1))")),
            If(num_equals(Var("x"), max_retries), [
                Echo(f"Giving up: {label}", stderr=True),
                Exit(1),
            ]),
            Cmd("sleep", standoff),
        ]),
    ]
    return exec_checked(label, *(render(form) for form in loop))


def etc_default(name: str, values: Mapping[str, Any] | None = None, **kw: Any) -> Action:
    """Write ``/etc/default/<name>`` (or an absolute path) as ``KEY="value"`` lines."""
    path = name if posixpath.isabs(name) else posixpath.join("/etc/default", name)
    entries = {**(values or {}), **kw}
    content = "\n".join(f'{key}="{value}"' for key, value in entries.items())
    return remote_file(path, owner="root", group="root", mode=644, content=content)
