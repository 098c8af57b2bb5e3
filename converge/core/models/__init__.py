"""
Domain models — Pydantic types for the compilation core.

All models are re-exported here for convenient access:

    from converge.core.models import Action, ActionKind, Fragment, Settings
"""

from converge.core.models.action import OPTION_MODELS, Action, ActionKind, ExecResult
from converge.core.models.fragment import Fragment, Upload
from converge.core.models.managed_file import ManagedFileRecord
from converge.core.models.settings import InstallStrategy, Settings

__all__ = [
    # action.py
    "Action",
    "ActionKind",
    "ExecResult",
    "OPTION_MODELS",
    # fragment.py
    "Fragment",
    "Upload",
    # managed_file.py
    "ManagedFileRecord",
    # settings.py
    "InstallStrategy",
    "Settings",
]
