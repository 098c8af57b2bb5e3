"""
Control-flow forms — a small expression tree rendered to shell text.

Forms let callers describe conditionals, bounded loops and string
interpolation without hand-assembling shell syntax.  ``render()`` turns
a form into bash; words are quoted unless they are ``Raw``.

    >>> print(render(If(file_exists("/etc/motd"), [Echo("present")])))
    if [ -e /etc/motd ]; then
      echo present
    fi
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field


class Form:
    """Base for everything ``render()`` understands."""


@dataclass(frozen=True)
class Raw(Form):
    """Verbatim shell text — never quoted."""

    text: str


@dataclass(frozen=True)
class Var:
    """A shell variable reference, rendered ``"${name}"``."""

    name: str


@dataclass(frozen=True)
class Str:
    """Double-quoted string with interpolation.

    >>> _word(Str("Waiting for ", Var("svc")))
    '"Waiting for ${svc}"'
    """

    parts: tuple[str | Var | Raw, ...]

    def __init__(self, *parts: str | Var | Raw):
        object.__setattr__(self, "parts", parts)


Word = str | int | Var | Str | Raw


def _escape_dq(text: str) -> str:
    for ch in ("\\", '"', "$", "`"):
        text = text.replace(ch, "\\" + ch)
    return text


def _word(word: Word) -> str:
    if isinstance(word, Raw):
        return word.text
    if isinstance(word, Var):
        return f'"${{{word.name}}}"'
    if isinstance(word, Str):
        inner = []
        for part in word.parts:
            if isinstance(part, Var):
                inner.append(f"${{{part.name}}}")
            elif isinstance(part, Raw):
                inner.append(part.text)
            else:
                inner.append(_escape_dq(part))
        return '"' + "".join(inner) + '"'
    if isinstance(word, int):
        return str(word)
    return shlex.quote(word)


@dataclass(frozen=True)
class Cmd(Form):
    """A simple command; each word is quoted."""

    words: tuple[Word, ...]

    def __init__(self, *words: Word):
        object.__setattr__(self, "words", words)


@dataclass(frozen=True)
class Let(Form):
    name: str
    value: Word


@dataclass(frozen=True)
class Test(Form):
    """``[ ... ]``"""

    words: tuple[Word, ...]

    def __init__(self, *words: Word):
        object.__setattr__(self, "words", words)


@dataclass(frozen=True)
class Not(Form):
    cond: Form


@dataclass(frozen=True)
class And(Form):
    conds: tuple[Form, ...]

    def __init__(self, *conds: Form):
        object.__setattr__(self, "conds", conds)


@dataclass(frozen=True)
class Or(Form):
    conds: tuple[Form, ...]

    def __init__(self, *conds: Form):
        object.__setattr__(self, "conds", conds)


@dataclass(frozen=True)
class If(Form):
    cond: Form
    then: tuple[Form, ...] | list[Form]
    otherwise: tuple[Form, ...] | list[Form] = field(default=())


@dataclass(frozen=True)
class While(Form):
    cond: Form
    body: tuple[Form, ...] | list[Form]


@dataclass(frozen=True)
class For(Form):
    var: str
    items: tuple[Word, ...] | list[Word]
    body: tuple[Form, ...] | list[Form]


@dataclass(frozen=True)
class Echo(Form):
    words: tuple[Word, ...]
    stderr: bool = False

    def __init__(self, *words: Word, stderr: bool = False):
        object.__setattr__(self, "words", words)
        object.__setattr__(self, "stderr", stderr)


@dataclass(frozen=True)
class Exit(Form):
    code: int | Word = 1


@dataclass(frozen=True)
class Group(Form):
    """``{ ...; }`` — several forms treated as one statement."""

    body: tuple[Form, ...] | list[Form]


# ── Condition helpers ───────────────────────────────────────────


def file_exists(path: Word) -> Test:
    return Test("-e", path)


def dir_exists(path: Word) -> Test:
    return Test("-d", path)


def equals(a: Word, b: Word) -> Test:
    return Test(a, "=", b)


def num_equals(a: Word, b: Word) -> Test:
    return Test(a, "-eq", b)


def quiet(cmd: Cmd) -> Cmd:
    """The command with stdout and stderr discarded."""
    return Cmd(*cmd.words, Raw(">/dev/null 2>&1"))


# ── Rendering ───────────────────────────────────────────────────

_INDENT = "  "


def _indent(text: str) -> str:
    # heredoc bodies must keep their terminators in column 0
    if "<<" in text:
        return text
    return "\n".join(_INDENT + line if line else line for line in text.splitlines())


def _block(forms: tuple[Form, ...] | list[Form]) -> str:
    if not forms:
        return _INDENT + ":"
    return "\n".join(_indent(render(f)) for f in forms)


def render(form: Form) -> str:
    """Render a form to bash text."""
    if isinstance(form, Raw):
        return form.text
    if isinstance(form, Cmd):
        return " ".join(_word(w) for w in form.words)
    if isinstance(form, Let):
        return f"{form.name}={_word(form.value)}"
    if isinstance(form, Test):
        return "[ " + " ".join(_word(w) for w in form.words) + " ]"
    if isinstance(form, Not):
        return "! " + render(form.cond)
    if isinstance(form, And):
        return " && ".join(render(c) for c in form.conds)
    if isinstance(form, Or):
        return " || ".join(render(c) for c in form.conds)
    if isinstance(form, If):
        text = f"if {render(form.cond)}; then\n{_block(form.then)}"
        if form.otherwise:
            text += f"\nelse\n{_block(form.otherwise)}"
        return text + "\nfi"
    if isinstance(form, While):
        return f"while {render(form.cond)}; do\n{_block(form.body)}\ndone"
    if isinstance(form, For):
        items = " ".join(_word(i) for i in form.items)
        return f"for {form.var} in {items}; do\n{_block(form.body)}\ndone"
    if isinstance(form, Echo):
        text = "echo " + " ".join(_word(w) for w in form.words)
        return text + " >&2" if form.stderr else text
    if isinstance(form, Exit):
        return f"exit {_word(form.code)}"
    if isinstance(form, Group):
        return "{\n" + _block(form.body) + "\n}"
    raise TypeError(f"Cannot render {type(form).__name__} as shell")
