"""
Option models — the recognised option set of every action kind.

Each action kind has exactly one options model.  Models forbid extra
keys, so an unknown option is rejected when the Action is built, long
before any script text is produced.  Keys may be written either the
YAML way (``overwrite-changes``) or the Python way (``overwrite_changes``).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


def hyphenate(name: str) -> str:
    return name.replace("_", "-")


class ActionOptions(BaseModel):
    """Base for all per-kind option models."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=hyphenate,
        populate_by_name=True,
        frozen=True,
    )

    @classmethod
    def recognised_keys(cls) -> set[str]:
        """Every key spelling accepted by this model."""
        keys: set[str] = set()
        for name, field in cls.model_fields.items():
            keys.add(name)
            if field.alias:
                keys.add(field.alias)
        return keys


Mode = str | int


# ── Filesystem ──────────────────────────────────────────────────


class DirectoryOptions(ActionOptions):
    action: Literal["create", "touch", "delete"] = "create"
    owner: str | None = None
    group: str | None = None
    mode: Mode | None = None
    recursive: bool = True
    force: bool = True
    path: bool = True          # create all path elements (mkdir -p)
    verbose: bool = False


class FileOptions(ActionOptions):
    action: Literal["create", "touch", "delete"] = "create"
    owner: str | None = None
    group: str | None = None
    mode: Mode | None = None
    force: bool = True


class SymlinkOptions(ActionOptions):
    source: str                # the path the link points at
    action: Literal["create", "delete"] = "create"
    owner: str | None = None
    group: str | None = None
    mode: Mode | None = None
    force: bool = True


class FifoOptions(ActionOptions):
    action: Literal["create", "delete"] = "create"
    owner: str | None = None
    group: str | None = None
    mode: Mode | None = None
    force: bool = False


class SedOptions(ActionOptions):
    exprs: dict[str, str]
    separator: str | None = None
    no_md5: bool = False
    restriction: str | None = None


class WaitForFileOptions(ActionOptions):
    max_retries: int = 5
    standoff: int = 2
    service_name: str | None = None


class ExecOptions(ActionOptions):
    statements: list[str]


# ── Users and groups ────────────────────────────────────────────


class UserOptions(ActionOptions):
    action: Literal["create", "manage", "lock", "unlock", "remove"] = "manage"
    shell: str | None = None
    base_dir: str | None = None
    home: str | None = None
    system: bool = False
    create_home: bool | None = None
    comment: str | None = None
    group: str | None = None
    groups: list[str] = Field(default_factory=list)
    append: bool = False
    password: str | None = None
    uid: int | None = None
    force: bool = False


class GroupOptions(ActionOptions):
    action: Literal["create", "manage", "remove"] = "manage"
    system: bool = False
    gid: int | None = None
    password: str | None = None


# ── Services ────────────────────────────────────────────────────


class ServiceOptions(ActionOptions):
    action: Literal["start", "stop", "restart", "reload", "enable", "disable"] = "start"
    if_flag: str | None = None
    if_stopped: bool = False
    service_impl: Literal["initd", "systemd", "upstart"] = "initd"


# ── Packages ────────────────────────────────────────────────────


class PackageOptions(ActionOptions):
    action: Literal["install", "remove", "upgrade"] = "install"
    purge: bool = False
    enable: list[str] = Field(default_factory=list)
    disable: list[str] = Field(default_factory=list)
    allow_unsigned: bool = False
    disable_service_start: bool = False


class PackageManagerOptions(ActionOptions):
    scope: str | None = None


class AptSourceOptions(ActionOptions):
    url: str | None = None
    path: str | None = None            # local directory repository
    source_type: str = "deb"
    release: str | None = None
    scopes: list[str] = Field(default_factory=lambda: ["main"])
    key_url: str | None = None
    key_server: str | None = None
    key_id: str | None = None

    @model_validator(mode="after")
    def _needs_location(self) -> "AptSourceOptions":
        if not self.url and not self.path:
            raise ValueError("apt package source needs either 'url' or 'path'")
        return self


class YumSourceOptions(ActionOptions):
    url: str
    name: str | None = None
    gpgkey: str | None = None
    enabled: bool = True


class PackageSourceOptions(ActionOptions):
    apt: AptSourceOptions | None = None
    yum: YumSourceOptions | None = None


class DebconfOptions(ActionOptions):
    line: str | None = None
    package: str | None = None
    question: str | None = None
    type: str | None = None
    value: str | None = None

    @model_validator(mode="after")
    def _line_or_parts(self) -> "DebconfOptions":
        parts = (self.package, self.question, self.type, self.value)
        if self.line is None and any(p is None for p in parts):
            raise ValueError("debconf needs 'line' or all of package/question/type/value")
        return self

    def selection(self) -> str:
        if self.line is not None:
            return self.line
        return f"{self.package} {self.question} {self.type} {self.value}"


class RpmOptions(ActionOptions):
    path: str | None = None            # rpm file on the node (default: target)
    repo: bool = False                 # the rpm registers a package repository


class DebOptions(ActionOptions):
    path: str | None = None            # deb file on the node (default: target)


# ── Remote content ──────────────────────────────────────────────

CONTENT_OPTIONS = ("local_file", "remote_file", "url", "content", "literal", "link")


class RemoteFileOptions(ActionOptions):
    action: Literal["create", "delete"] = "create"
    # content sources
    local_file: str | None = None
    remote_file: str | None = None
    url: str | None = None
    content: str | None = None
    literal: str | None = None
    link: str | None = None
    md5: str | None = None
    md5_url: str | None = None
    insecure: bool = False
    # versioning
    overwrite_changes: bool = False
    install_new_files: bool = True
    no_versioning: bool = False
    max_versions: int = Field(default=5, ge=1)
    flag_on_changed: str | None = None
    # ownership
    owner: str | None = None
    group: str | None = None
    mode: Mode | None = None
    force: bool = False
    # verification
    verify: str | None = None

    @model_validator(mode="after")
    def _one_content_source(self) -> "RemoteFileOptions":
        if self.action == "delete":
            return self
        given = [k for k in CONTENT_OPTIONS if getattr(self, k) is not None]
        if not given:
            raise ValueError(
                "remote-file needs one of: " + ", ".join(hyphenate(k) for k in CONTENT_OPTIONS)
            )
        if len(given) > 1:
            raise ValueError(
                "remote-file content sources are exclusive, got: "
                + ", ".join(hyphenate(k) for k in given)
            )
        return self


class RemoteDirectoryOptions(ActionOptions):
    action: Literal["create"] = "create"
    url: str | None = None
    local_file: str | None = None
    remote_file: str | None = None
    unpack: Literal["tar", "unzip", "jar"] = "tar"
    tar_options: str = "xz"
    unzip_options: str = "-o"
    jar_options: str = "xf"
    strip_components: int = 1
    extract_files: list[str] = Field(default_factory=list)
    md5: str | None = None
    md5_url: str | None = None
    owner: str | None = None
    group: str | None = None
    recursive: bool = True
    insecure: bool = False

    @model_validator(mode="after")
    def _one_source(self) -> "RemoteDirectoryOptions":
        given = [k for k in ("url", "local_file", "remote_file") if getattr(self, k)]
        if len(given) != 1:
            raise ValueError("remote-directory needs exactly one of url, local-file, remote-file")
        return self


class RsyncOptions(ActionOptions):
    source: str
    port: int | None = None
    ip: str | None = None
    username: str | None = None
    flags: list[str] = Field(
        default_factory=lambda: ["-rP", "--delete", "--copy-links", "-F", "-F"]
    )
