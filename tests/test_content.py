"""
Tests for managed-file content — the compiled remote-file fragment run
in bash against tmp_path: conflict detection, versioning, eviction and
flags.
"""

import hashlib
import shutil
import subprocess
from pathlib import Path

import pytest

from converge.core.actions import builders
from converge.core.actions.catalog import compile_action
from converge.core.content.manager import conflict_statement, content_statements
from converge.core.context import Context, Session
from converge.core.errors import ContentConflictError
from converge.core.models import ManagedFileRecord

needs_shell_tools = pytest.mark.skipif(
    any(shutil.which(tool) is None for tool in ("bash", "md5sum", "cmp")),
    reason="bash, md5sum or cmp not installed",
)


def _md5(text: str) -> str:
    return hashlib.md5(text.encode()).hexdigest()


class FakeNode:
    """A live file and scratch directory under tmp_path."""

    def __init__(self, root: Path, **session_kwargs):
        self.live = root / "etc" / "app.conf"
        self.live.parent.mkdir(parents=True)
        self.scratch = root / "scratch"
        self.session = Session(Context(scratch_dir=str(self.scratch)), **session_kwargs)
        self.record = ManagedFileRecord.derive(str(self.live), str(self.scratch))

    def apply(self, text: str, **options) -> subprocess.CompletedProcess:
        action = builders.remote_file(str(self.live), literal=text, **options)
        [fragment] = compile_action(action, self.session)
        return subprocess.run(
            ["bash", "-s"], input=fragment.text, capture_output=True, text=True, timeout=30,
        )

    def backups(self) -> list[str]:
        backup = Path(self.record.backup_path)
        return sorted(p.name for p in backup.parent.glob(backup.name + ".~*~"))

    def recorded(self) -> str:
        return Path(self.record.checksum_path).read_text().strip()

    def flag(self, name: str) -> Path:
        return self.scratch / "flags" / name


@pytest.fixture
def node(tmp_path) -> FakeNode:
    return FakeNode(tmp_path)


# ── Install ──────────────────────────────────────────────────────────


@needs_shell_tools
class TestInstall:
    def test_new_file(self, node: FakeNode):
        result = node.apply("v1")
        assert result.returncode == 0, result.stderr
        assert node.live.read_text() == "v1\n"
        assert node.recorded() == _md5("v1\n")
        assert node.backups() == []
        assert not Path(node.record.staged_path).exists()

    def test_unchanged_content_makes_no_backup(self, node: FakeNode):
        node.apply("v1")
        result = node.apply("v1")
        assert result.returncode == 0, result.stderr
        assert node.backups() == []

    def test_change_backs_up_previous(self, node: FakeNode):
        node.apply("v1")
        node.apply("v2")
        assert node.live.read_text() == "v2\n"
        assert node.backups() == ["app.conf.converge.~1~"]
        backup = Path(node.record.backup_path + ".~1~")
        assert backup.read_text() == "v1\n"

    def test_force_reinstalls_identical_content(self, node: FakeNode):
        node.apply("v1")
        node.apply("v1", force=True)
        assert node.backups() == ["app.conf.converge.~1~"]

    def test_no_versioning(self, node: FakeNode):
        node.apply("v1")
        node.apply("v2", no_versioning=True)
        assert node.live.read_text() == "v2\n"
        assert node.backups() == []


# ── Retention ────────────────────────────────────────────────────────


@needs_shell_tools
class TestRetention:
    def test_oldest_versions_evicted(self, node: FakeNode):
        for n in range(1, 5):
            result = node.apply(f"v{n}", max_versions=2)
            assert result.returncode == 0, result.stderr
        assert node.backups() == ["app.conf.converge.~2~", "app.conf.converge.~3~"]
        assert Path(node.record.backup_path + ".~2~").read_text() == "v2\n"
        assert Path(node.record.backup_path + ".~3~").read_text() == "v3\n"

    def test_numbering_continues_after_eviction(self, node: FakeNode):
        for n in range(1, 6):
            node.apply(f"v{n}", max_versions=2)
        assert node.backups() == ["app.conf.converge.~3~", "app.conf.converge.~4~"]


# ── Conflict ─────────────────────────────────────────────────────────


@needs_shell_tools
class TestConflict:
    def test_modified_file_is_refused(self, node: FakeNode):
        node.apply("v1")
        node.live.write_text("edited by hand\n")
        result = node.apply("v2")
        assert result.returncode != 0
        assert node.live.read_text() == "edited by hand\n"
        assert node.recorded() == _md5("v1\n")
        assert node.backups() == []

    def test_failure_names_the_conflict(self, node: FakeNode):
        node.apply("v1")
        node.live.write_text("edited by hand\n")
        result = node.apply("v2")
        conflict = ContentConflictError.from_output(result.stderr)
        assert conflict is not None
        assert conflict.path == str(node.live)
        assert conflict.expected == _md5("v1\n")
        assert conflict.actual == _md5("edited by hand\n")
        assert "SUCCESS" not in result.stdout

    def test_overwrite_changes(self, node: FakeNode):
        node.apply("v1")
        node.live.write_text("edited\n")
        result = node.apply("v2", overwrite_changes=True)
        assert result.returncode == 0, result.stderr
        assert node.live.read_text() == "v2\n"
        assert node.recorded() == _md5("v2\n")

    def test_force_overwrite_session(self, tmp_path):
        node = FakeNode(tmp_path, force_overwrite=True)
        node.apply("v1")
        node.live.write_text("edited\n")
        result = node.apply("v2")
        assert result.returncode == 0, result.stderr
        assert node.live.read_text() == "v2\n"

    def test_no_record_no_conflict(self, node: FakeNode):
        node.live.write_text("pre-existing\n")
        result = node.apply("v1")
        assert result.returncode == 0, result.stderr
        assert node.live.read_text() == "v1\n"
        assert node.backups() == ["app.conf.converge.~1~"]


# ── Flags ────────────────────────────────────────────────────────────


@needs_shell_tools
class TestFlags:
    def test_flag_touched_on_change(self, node: FakeNode):
        node.apply("v1", flag_on_changed="restart")
        assert node.flag("restart").exists()

    def test_flag_not_touched_when_unchanged(self, node: FakeNode):
        node.apply("v1", flag_on_changed="restart")
        node.flag("restart").unlink()
        node.apply("v1", flag_on_changed="restart")
        assert not node.flag("restart").exists()

    def test_flag_touched_again_on_next_change(self, node: FakeNode):
        node.apply("v1", flag_on_changed="restart")
        node.flag("restart").unlink()
        node.apply("v2", flag_on_changed="restart")
        assert node.flag("restart").exists()


# ── Statements ───────────────────────────────────────────────────────


class TestStatements:
    def test_force_always_changes(self):
        record = ManagedFileRecord.derive("/etc/x", "/s")
        statements = content_statements(record, Context(), fetch=["true"], force=True)
        assert "_changed=1" in statements

    def test_max_versions_in_eviction(self):
        record = ManagedFileRecord.derive("/etc/x", "/s", max_versions=3)
        statements = content_statements(record, Context(), fetch=["true"])
        assert any("head -n -3" in s for s in statements)

    def test_conflict_message_matches_error(self):
        statement = conflict_statement(ManagedFileRecord.derive("/etc/x", "/s"))
        assert "'Existing content of /etc/x did not match the recorded checksum (expected '\"$_rec\"" in statement
        assert "'); refusing to overwrite'" in statement


class TestContentConflictError:
    def test_round_trip_through_output(self):
        error = ContentConflictError("/etc/x", "aaa", "bbb")
        found = ContentConflictError.from_output(f"noise\n{error}\n#> Remote file /etc/x : FAIL (if)")
        assert (found.path, found.expected, found.actual) == ("/etc/x", "aaa", "bbb")

    def test_unrelated_output(self):
        assert ContentConflictError.from_output("#> Remote file /etc/x : FAIL (cp)") is None
