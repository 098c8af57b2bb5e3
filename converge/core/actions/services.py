"""
Service control — init.d, systemd and upstart.

A service action may be made conditional on a flag raised earlier in
the same run (``if-flag``, paired with a remote-file's
``flag-on-changed``) or on the service not currently running
(``if-stopped``).
"""

from __future__ import annotations

from converge.core.actions.common import flag_path, q, unsupported
from converge.core.context import Context, Session
from converge.core.models.action import Action
from converge.core.models.fragment import Fragment
from converge.core.models.options import ServiceOptions
from converge.core.script.checked import checked


def _control(impl: str, name: str, verb: str) -> str:
    if impl == "systemd":
        return f"systemctl {verb} {q(name)}"
    if impl == "upstart":
        return f"initctl {verb} {q(name)}"
    return f"{q(f'/etc/init.d/{name}')} {verb}"


def _status(impl: str, name: str) -> str:
    if impl == "systemd":
        return f"systemctl is-active --quiet {q(name)}"
    if impl == "upstart":
        return f"initctl status {q(name)} | grep -q running"
    return f"{q(f'/etc/init.d/{name}')} status >/dev/null 2>&1"


def _boot_links(action: Action, context: Context, opts: ServiceOptions) -> str:
    name = action.target
    enable = opts.action == "enable"
    if opts.service_impl == "systemd":
        return f"systemctl {'enable' if enable else 'disable'} {q(name)}"
    if opts.service_impl == "upstart":
        override = q(f"/etc/init/{name}.override")
        return f"rm -f {override}" if enable else f"echo manual > {override}"
    if context.target.apt_family:
        return f"update-rc.d {q(name)} {'defaults' if enable else 'disable'}"
    if context.target.rpm_family:
        return f"chkconfig {q(name)} {'on' if enable else 'off'}"
    raise unsupported(action, f"no boot-link tool for packager {context.target.packager!r}")


def service(action: Action, session: Session) -> list[Fragment]:
    opts: ServiceOptions = action.opts
    context = session.context
    name = action.target

    if opts.action in ("enable", "disable"):
        statement = _boot_links(action, context, opts)
    else:
        statement = _control(opts.service_impl, name, opts.action)
        if opts.if_stopped:
            statement = f"{_status(opts.service_impl, name)} || {statement}"

    label = f"{opts.action.capitalize()} service {name}"
    if opts.if_flag:
        marker = q(flag_path(context, opts.if_flag))
        statement = f"if [ -e {marker} ]; then {statement}; fi"
        label += f" if {opts.if_flag}"
    return [checked(label, [statement], context)]
