"""
Fragment model — a labeled, guarded sequence of shell statements.

A Fragment is the only artifact that crosses from the compiler to a
transport.  ``text`` is the rendered, fail-fast shell; ``statements``
keeps the raw statements for inspection and tests.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Upload(BaseModel):
    """A local file the transport copies to the node before running the fragment."""

    model_config = ConfigDict(frozen=True)

    local_path: str
    remote_path: str


class Fragment(BaseModel):
    """One checked-script unit.

    The execution fields (``privileged``, ``sudo_user``, ``local``) are
    stamped from the Context in force when the fragment was compiled;
    they never change ``text``.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    statements: tuple[str, ...]
    text: str

    privileged: bool = False
    sudo_user: str | None = None
    local: bool = False            # runs on the origin machine, not the node
    uploads: tuple[Upload, ...] = ()
