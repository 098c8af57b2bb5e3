"""
converge — CLI entrypoint.

Usage:
    converge --help
    converge config check
    converge compile --target web1
    converge resolve nginx --os-family centos
    converge apply --dry-run
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from converge import __version__
from converge.core.observability.logging_config import setup_logging

ENV_FORCE_OVERWRITE = "CONVERGE_FORCE_OVERWRITE"

_TRUTHY = {"1", "true", "yes", "on"}


def _load(ctx: click.Context):
    from converge.core.config.loader import ConfigError, load_config

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _force_overwrite(flag: bool, config) -> bool:
    env = os.environ.get(ENV_FORCE_OVERWRITE, "").strip().lower() in _TRUTHY
    return flag or env or config.context.force_overwrite


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to converge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """converge — compile machine state into checked shell scripts."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None

    setup_logging(level=level, quiet_third_party=not debug)


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate converge.yml."""
    from converge.core.config.loader import ConfigError, load_config

    try:
        cfg = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        if as_json:
            click.echo(json.dumps({"valid": False, "errors": [str(e)]}, indent=2))
        else:
            click.secho("❌ Configuration errors:", fg="red", bold=True)
            click.echo(f"   • {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "valid": True,
            "targets": [t.name for t in cfg.targets],
            "components": sorted(cfg.components),
            "plan_entries": len(cfg.plan),
        }, indent=2))
        return

    click.secho("✅ Configuration is valid", fg="green", bold=True)
    click.echo(f"   Targets: {len(cfg.targets)}")
    click.echo(f"   Components: {len(cfg.components)}")
    click.echo(f"   Plan entries: {len(cfg.plan)}")


@cli.command("compile")
@click.option("--target", "-t", "targets", multiple=True, help="Compile only these targets.")
@click.option("--out", "out_dir", type=click.Path(file_okay=False), default=None,
              help="Write <target>.sh files here instead of printing.")
@click.option("--force-overwrite", is_flag=True, help="Overwrite locally modified managed files.")
@click.option("--workers", default=4, type=int, help="Targets compiled in parallel.")
@click.pass_context
def compile_cmd(
    ctx: click.Context,
    targets: tuple[str, ...],
    out_dir: str | None,
    force_overwrite: bool,
    workers: int,
) -> None:
    """Compile the plan into one shell script per target."""
    from converge.adapters.mock import StaticProvider
    from converge.core.config.loader import ConfigError
    from converge.core.engine.compiler import compile_targets

    cfg = _load(ctx)
    try:
        plans = cfg.target_plans(list(targets) or None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    report = compile_targets(
        plans,
        cfg.registry(),
        provider=StaticProvider([p.node for p in plans if p.node]),
        force_overwrite=_force_overwrite(force_overwrite, cfg),
        install_new_files=cfg.context.install_new_files,
        max_workers=workers,
    )

    for name, script in report.scripts.items():
        text = script.render()
        if out_dir:
            path = Path(out_dir) / f"{name}.sh"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            if not ctx.obj.get("quiet"):
                click.secho(f"✓ {name} → {path} ({len(script.fragments)} fragments)", fg="green")
        else:
            if len(report.scripts) > 1:
                click.secho(f"# ── {name} ──", fg="cyan")
            click.echo(text, nl=False)

    for name, error in report.errors.items():
        click.secho(f"❌ {name}: {error}", fg="red", err=True)
    if not report.all_ok:
        sys.exit(1)


@cli.command()
@click.argument("component")
@click.option("--os-family", default=None, help="Target OS family (default: ubuntu).")
@click.option("--packager", default=None, help="Target packager (default: from OS family).")
@click.option("--scratch-dir", default=None, help="Scratch directory on the target.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def resolve(
    ctx: click.Context,
    component: str,
    os_family: str | None,
    packager: str | None,
    scratch_dir: str | None,
    as_json: bool,
) -> None:
    """Show the actions that install COMPONENT on a target."""
    from pydantic import ValidationError

    from converge.core.context import TargetFacts
    from converge.core.errors import ConfigurationError
    from converge.core.install.resolver import resolve_install

    cfg = _load(ctx)
    facts_data = {"os_family": os_family or "ubuntu"}
    if packager:
        facts_data["packager"] = packager

    try:
        facts = TargetFacts.model_validate(facts_data)
        actions = resolve_install(
            cfg.registry()[component], facts, scratch_dir or cfg.context.scratch_dir,
        )
    except ValidationError as e:
        click.secho(f"❌ {e.errors()[0]['msg']}", fg="red")
        sys.exit(1)
    except ConfigurationError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([a.model_dump(mode="json") for a in actions], indent=2))
        return

    click.secho(f"\n📦 {component} on {facts.os_family} ({facts.packager})", fg="cyan", bold=True)
    for i, action in enumerate(actions, 1):
        click.echo(f"   {i}. {action.describe()}")
        for key, value in action.options.items():
            click.echo(f"        {key}: {value}")
    click.echo()


@cli.command()
@click.option("--target", "-t", "targets", multiple=True, help="Apply only to these targets.")
@click.option("--dry-run", is_flag=True, help="Compile and validate but don't run.")
@click.option("--local", is_flag=True, help="Run on this machine instead of over ssh.")
@click.option("--mock", is_flag=True, help="Use the mock transport (no real execution).")
@click.option("--force-overwrite", is_flag=True, help="Overwrite locally modified managed files.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    targets: tuple[str, ...],
    dry_run: bool,
    local: bool,
    mock: bool,
    force_overwrite: bool,
    as_json: bool,
) -> None:
    """Compile the plan and run it on each target."""
    from converge.adapters.mock import MockTransport, StaticProvider
    from converge.adapters.registry import TransportRegistry
    from converge.adapters.shell.command import LocalShellTransport
    from converge.adapters.shell.ssh import SshTransport
    from converge.core.config.loader import ConfigError
    from converge.core.engine.compiler import compile_targets
    from converge.core.engine.executor import execute_script

    cfg = _load(ctx)
    try:
        plans = cfg.target_plans(list(targets) or None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    compiled = compile_targets(
        plans,
        cfg.registry(),
        provider=StaticProvider([p.node for p in plans if p.node]),
        force_overwrite=_force_overwrite(force_overwrite, cfg),
        install_new_files=cfg.context.install_new_files,
    )

    registry = TransportRegistry(mock_mode=mock)
    if mock:
        registry.set_mock_mode(True, MockTransport())
    registry.register(LocalShellTransport())
    registry.register(SshTransport())

    reports = []
    for plan in plans:
        script = compiled.scripts.get(plan.name)
        if script is None:
            continue
        transport = "local" if local else cfg.target(plan.name).transport
        reports.append(execute_script(script, registry, transport, node=plan.node, dry_run=dry_run))

    ok = compiled.all_ok and all(r.all_ok for r in reports)

    if as_json:
        click.echo(json.dumps({
            "status": "ok" if ok else "failed",
            "targets": [r.to_dict() for r in reports],
            "compile_errors": {n: str(e) for n, e in compiled.errors.items()},
        }, indent=2))
        sys.exit(0 if ok else 1)

    for name, error in compiled.errors.items():
        click.secho(f"❌ {name}: {error}", fg="red")

    for report in reports:
        color = {"ok": "green", "partial": "yellow", "failed": "red"}[report.status]
        click.secho(f"\n🖥  {report.target} — {report.status}", fg=color, bold=True)
        for result in report.results:
            if result.ok:
                click.secho(f"   ✓ {result.label}", fg="green")
            elif result.failed:
                click.secho(f"   ✗ {result.label}: {result.error}", fg="red")
            else:
                click.secho(f"   ⊘ {result.label}", fg="yellow")
        click.echo(f"   {report.succeeded}/{report.total} succeeded")

    click.echo()
    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
