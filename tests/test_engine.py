"""
Tests for the engine — target compilation, parallel compilation and
script execution through the transport registry.
"""

import pytest

from converge.adapters.mock import MockTransport
from converge.adapters.registry import TransportRegistry
from converge.core.actions import builders
from converge.core.context import Context, Session, TargetFacts
from converge.core.engine.compiler import Install, NodeScript, TargetPlan, compile_target, compile_targets
from converge.core.engine.executor import ExecutionReport, execute_script
from converge.core.errors import ConfigurationError, ContentConflictError
from converge.core.install import SettingsRegistry
from converge.core.models import ExecResult

REGISTRY = SettingsRegistry.from_config({
    "git": {"install-strategy": "packages", "packages": ["git"]},
    "epel": {"install-strategy": "rpm", "rpm": {"remote-file": "http://x/epel.rpm", "name": "epel"}},
})

# ── Compile Tests ────────────────────────────────────────────────────


class TestCompileTarget:
    def test_actions_in_order(self, session: Session):
        script = compile_target("web1", [
            builders.directory("/srv"),
            builders.file("/srv/index.html"),
        ], session)
        assert script.target == "web1"
        assert script.labels == ["Directory /srv", "File /srv/index.html"]

    def test_install_entries_resolved(self, session: Session):
        script = compile_target("web1", [Install(component="git")], session, REGISTRY)
        assert script.labels == ["Package git"]

    def test_unknown_component_aborts(self, session: Session):
        with pytest.raises(ConfigurationError):
            compile_target("web1", [builders.directory("/srv"), Install(component="nope")], session, REGISTRY)

    def test_incompatible_strategy_aborts(self, session: Session):
        with pytest.raises(ConfigurationError):
            compile_target("web1", [Install(component="epel")], session, REGISTRY)

    def test_flags_reset_first(self, session: Session):
        script = compile_target("web1", [
            builders.remote_file("/etc/app.conf", content="a", flag_on_changed="restart"),
            builders.service("app", action="restart", if_flag="restart"),
        ], session)
        assert script.labels[0] == "Reset flags"
        assert script.fragments[0].statements == ("rm -f /var/lib/converge/flags/restart",)

    def test_no_flags_no_reset(self, session: Session):
        script = compile_target("web1", [builders.directory("/srv")], session)
        assert "Reset flags" not in script.labels

    def test_render(self, session: Session):
        script = compile_target("web1", [builders.directory("/srv")], session)
        text = script.render()
        assert text.startswith("#!/usr/bin/env bash\n")
        assert text.rstrip().endswith("exit $converge_status")


class TestCompileTargets:
    def test_independent_targets(self):
        plans = [
            TargetPlan(name="web1", entries=[Install(component="git")]),
            TargetPlan(
                name="db1",
                context=Context(target=TargetFacts(os_family="centos")),
                entries=[Install(component="epel")],
            ),
        ]
        report = compile_targets(plans, REGISTRY, max_workers=2)
        assert report.all_ok
        assert list(report.scripts) == ["web1", "db1"]
        assert report.scripts["db1"].labels == ["Remote file /var/lib/converge/epel", "Install rpm epel"]

    def test_failure_isolated(self):
        plans = [
            TargetPlan(name="web1", entries=[Install(component="epel")]),
            TargetPlan(name="web2", entries=[Install(component="git")]),
        ]
        report = compile_targets(plans, REGISTRY)
        assert not report.all_ok
        assert list(report.errors) == ["web1"]
        assert list(report.scripts) == ["web2"]

    def test_sessions_not_shared(self):
        plans = [
            TargetPlan(name=f"t{n}", entries=[
                builders.remote_file(f"/etc/f{n}", content="x", flag_on_changed=f"flag{n}"),
            ])
            for n in range(4)
        ]
        report = compile_targets(plans, max_workers=4)
        for n in range(4):
            reset = report.scripts[f"t{n}"].fragments[0]
            assert reset.statements == (f"rm -f /var/lib/converge/flags/flag{n}",)


# ── Execution Tests ──────────────────────────────────────────────────


def _script(session: Session) -> NodeScript:
    return compile_target("web1", [
        builders.directory("/srv"),
        builders.file("/srv/a"),
        builders.file("/srv/b"),
    ], session)


class TestExecuteScript:
    def test_all_succeed(self, session: Session):
        mock = MockTransport()
        registry = TransportRegistry()
        registry.register(mock)
        report = execute_script(_script(session), registry, "mock")
        assert report.all_ok
        assert report.total == 3
        assert mock.labels == ["Directory /srv", "File /srv/a", "File /srv/b"]

    def test_failure_does_not_stop_later_fragments(self, session: Session):
        mock = MockTransport()
        mock.set_failure("File /srv/a")
        registry = TransportRegistry()
        registry.register(mock)
        report = execute_script(_script(session), registry, "mock")
        assert report.failed == 1
        assert report.succeeded == 2
        assert report.status == "partial"
        assert mock.call_count == 3

    def test_content_conflict_is_named(self, session: Session):
        script = compile_target("web1", [builders.remote_file("/etc/app.conf", content="v2")], session)
        conflict = ContentConflictError("/etc/app.conf", "aaa", "bbb")
        mock = MockTransport()
        mock.set_response("Remote file /etc/app.conf", ExecResult.failure(
            label="Remote file /etc/app.conf",
            transport="mock",
            error="#> Remote file /etc/app.conf : FAIL (if)",
            stderr=f"{conflict}\n#> Remote file /etc/app.conf : FAIL (if)",
        ))
        registry = TransportRegistry()
        registry.register(mock)
        report = execute_script(script, registry, "mock")
        [result] = report.results
        assert result.failed
        assert result.error == str(conflict)
        assert result.metadata["content_conflict"] == "/etc/app.conf"

    def test_ordinary_failure_error_kept(self, session: Session):
        mock = MockTransport()
        mock.set_failure("File /srv/a", error="disk full")
        registry = TransportRegistry()
        registry.register(mock)
        report = execute_script(_script(session), registry, "mock")
        assert report.results[1].error == "disk full"
        assert "content_conflict" not in report.results[1].metadata

    def test_dry_run(self, session: Session):
        registry = TransportRegistry()
        registry.register(MockTransport())
        report = execute_script(_script(session), registry, "mock", dry_run=True)
        assert report.skipped == 3
        assert report.all_ok

    def test_mock_mode(self, session: Session):
        registry = TransportRegistry(mock_mode=True)
        report = execute_script(_script(session), registry, "ssh")
        assert report.succeeded == 3


# ── Report Tests ─────────────────────────────────────────────────────


class TestExecutionReport:
    def test_status_ok(self):
        report = ExecutionReport(results=[ExecResult.success(label="a", transport="t")])
        assert report.status == "ok"

    def test_status_failed(self):
        report = ExecutionReport(results=[ExecResult.failure(label="a", transport="t", error="x")])
        assert report.status == "failed"

    def test_to_dict(self):
        report = ExecutionReport(
            target="web1",
            results=[
                ExecResult.success(label="a", transport="t"),
                ExecResult.skip(label="b", transport="t"),
            ],
        )
        d = report.to_dict()
        assert d["target"] == "web1"
        assert d["total"] == 2
        assert d["skipped"] == 1
        assert d["results"][0]["label"] == "a"
