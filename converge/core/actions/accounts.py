"""
User and group action compilers.
"""

from __future__ import annotations

from converge.core.actions.common import q
from converge.core.context import Session
from converge.core.models.action import Action
from converge.core.models.fragment import Fragment
from converge.core.models.options import GroupOptions, UserOptions
from converge.core.script.checked import checked


def _user_flags(opts: UserOptions, *, creating: bool) -> list[str]:
    flags: list[str] = []
    if opts.shell:
        flags += ["--shell", q(opts.shell)]
    if opts.home:
        flags += ["--home", q(opts.home)]
    if creating and opts.base_dir:
        flags += ["--base-dir", q(opts.base_dir)]
    if creating and opts.system:
        flags.append("--system")
    if creating and opts.create_home is True:
        flags.append("--create-home")
    elif creating and opts.create_home is False:
        flags.append("--no-create-home")
    if opts.comment:
        flags += ["--comment", q(opts.comment)]
    if opts.group:
        flags += ["--gid", q(opts.group)]
    if opts.groups:
        flags += ["--groups", q(",".join(opts.groups))]
        if opts.append and not creating:
            flags.append("--append")
    if opts.password:
        flags += ["--password", q(opts.password)]
    if opts.uid is not None:
        flags += ["--uid", str(opts.uid)]
    return flags


def _join(words: list[str]) -> str:
    return " ".join(words)


def user(action: Action, session: Session) -> list[Fragment]:
    """Create, modify, lock, unlock or remove a login account.

    ``manage`` creates the user when absent and brings an existing user
    in line with the given options; ``create`` only ever creates.
    """
    opts: UserOptions = action.opts
    name = q(action.target)
    exists = f"getent passwd {name} >/dev/null"

    if opts.action == "remove":
        words = ["userdel"] + (["--force"] if opts.force else []) + [name]
        statement = f"if {exists}; then {_join(words)}; fi"
        return [checked(f"Remove user {action.target}", [statement], session.context)]

    if opts.action in ("lock", "unlock"):
        flag = "--lock" if opts.action == "lock" else "--unlock"
        statement = f"if {exists}; then usermod {flag} {name}; fi"
        return [checked(f"{opts.action.capitalize()} user {action.target}", [statement], session.context)]

    useradd = _join(["useradd", *_user_flags(opts, creating=True), name])
    if opts.action == "create":
        statement = f"{exists} || {useradd}"
    else:
        modify = _user_flags(opts, creating=False)
        usermod = _join(["usermod", *modify, name]) if modify else ":"
        statement = f"if {exists}; then {usermod}; else {useradd}; fi"
    return [checked(f"User {action.target}", [statement], session.context)]


def group(action: Action, session: Session) -> list[Fragment]:
    opts: GroupOptions = action.opts
    name = q(action.target)
    exists = f"getent group {name} >/dev/null"

    if opts.action == "remove":
        statement = f"if {exists}; then groupdel {name}; fi"
        return [checked(f"Remove group {action.target}", [statement], session.context)]

    add = ["groupadd"]
    mod: list[str] = []
    if opts.system:
        add.append("-r")
    if opts.gid is not None:
        add += ["-g", str(opts.gid)]
        mod += ["-g", str(opts.gid)]
    if opts.password:
        add += ["-p", q(opts.password)]
        mod += ["-p", q(opts.password)]
    add.append(name)

    if opts.action == "create" or not mod:
        statement = f"{exists} || {_join(add)}"
    else:
        statement = f"if {exists}; then {_join(['groupmod', *mod, name])}; else {_join(add)}; fi"
    return [checked(f"Group {action.target}", [statement], session.context)]
