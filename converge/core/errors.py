"""
Error taxonomy for the compilation core.

Every error raised here is detected before any script text leaves the
compiler, propagates to the caller of the compile/resolve entry point,
and carries enough context (label, key, strategy) to diagnose without
re-running.  Runtime failures on the node are NOT errors of the core —
they surface through the checked-script protocol instead.  The one
exception is a content conflict: the node prints its message and the
executor maps it back to ContentConflictError.
"""

from __future__ import annotations

import re


class ConvergeError(Exception):
    """Base class for all errors raised by the core."""


class ConfigurationError(ConvergeError):
    """Invalid option key, unknown action kind, or unusable configuration."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        kind: str | None = None,
        target: str | None = None,
    ):
        super().__init__(message)
        self.key = key
        self.kind = kind
        self.target = target


class StrategyResolutionError(ConfigurationError):
    """Unknown or under-specified install strategy, or one the packager can't serve."""

    def __init__(
        self,
        message: str,
        *,
        strategy: str | None = None,
        key: str | None = None,
    ):
        super().__init__(message, key=key)
        self.strategy = strategy


class ContentConflictError(ConvergeError):
    """A managed file was modified outside of converge and overwrite is not authorised.

    The node reports a conflict on stderr with :meth:`message`; use
    :meth:`from_output` to recover the error from a failed fragment.
    """

    _PATTERN = re.compile(
        r"Existing content of (?P<path>.+?) did not match the recorded checksum "
        r"\(expected (?P<expected>\w*), found (?P<actual>\w*)\); refusing to overwrite"
    )

    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(self.message(path, expected, actual))
        self.path = path
        self.expected = expected
        self.actual = actual

    @staticmethod
    def message(path: str, expected: str, actual: str) -> str:
        return (
            f"Existing content of {path} did not match the recorded checksum "
            f"(expected {expected}, found {actual}); refusing to overwrite"
        )

    @classmethod
    def from_output(cls, text: str) -> ContentConflictError | None:
        """The conflict reported in ``text``, if there is one."""
        m = cls._PATTERN.search(text)
        if m is None:
            return None
        return cls(m.group("path"), m.group("expected"), m.group("actual"))
