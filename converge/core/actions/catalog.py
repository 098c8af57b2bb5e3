"""
Action catalog — one compiler per action kind.

Adding a kind means adding an ``ActionKind`` member, an options model
and a row here; nothing else dispatches on kind.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from converge.core.actions import accounts, filesystem, packages, remote, services
from converge.core.context import Session
from converge.core.models.action import Action, ActionKind
from converge.core.models.fragment import Fragment

logger = logging.getLogger(__name__)

Compiler = Callable[[Action, Session], list[Fragment]]

COMPILERS: dict[ActionKind, Compiler] = {
    ActionKind.DIRECTORY: filesystem.directory,
    ActionKind.FILE: filesystem.file,
    ActionKind.SYMLINK: filesystem.symlink,
    ActionKind.FIFO: filesystem.fifo,
    ActionKind.SED: filesystem.sed,
    ActionKind.WAIT_FOR_FILE: filesystem.wait_for_file,
    ActionKind.EXEC: filesystem.exec_statements,
    ActionKind.USER: accounts.user,
    ActionKind.GROUP: accounts.group,
    ActionKind.SERVICE: services.service,
    ActionKind.PACKAGE: packages.package,
    ActionKind.PACKAGE_MANAGER: packages.package_manager,
    ActionKind.PACKAGE_SOURCE: packages.package_source,
    ActionKind.DEBCONF: packages.debconf,
    ActionKind.RPM: packages.rpm,
    ActionKind.DEB: packages.deb,
    ActionKind.REMOTE_FILE: remote.remote_file,
    ActionKind.REMOTE_DIRECTORY: remote.remote_directory,
    ActionKind.RSYNC: remote.rsync,
}


def compile_action(action: Action, session: Session) -> list[Fragment]:
    """Compile one action to its fragments under the session's current context.

    Raises:
        ConfigurationError: The action can't be compiled for this target.
    """
    logger.debug("Compiling %s", action.describe())
    return COMPILERS[action.kind](action, session)
