"""
Jetson Setup — CLI entrypoint.

Usage:
    jetson-setup --help
    jetson-setup run
    jetson-setup plan
    jetson-setup config check
    jetson-setup doctor
"""

from __future__ import annotations

import json
import os
import signal
import sys
from pathlib import Path

import click

from jetson_setup import __version__
from jetson_setup.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    resolve_level,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="jetson-setup")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to jetson-setup.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Jetson Setup — resilient post-flash provisioning for NVIDIA Jetson."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
        quiet_third_party=not debug,
    )


def _terminate(signum: int, frame: object) -> None:
    # Unwind through the contenders guard instead of dying mid-step.
    sys.exit(128 + signum)


@cli.command()
@click.argument("args", nargs=-1)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output summary as JSON.")
@click.option("--dry-run", is_flag=True, help="Log every command but execute none.")
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the run log (default: config log_dir).",
)
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Reboot without asking if one is required.")
@click.option("--no-reboot-prompt", is_flag=True, help="Never offer a reboot.")
@click.pass_context
def run(
    ctx: click.Context,
    args: tuple[str, ...],
    as_json: bool,
    dry_run: bool,
    log_dir: str | None,
    assume_yes: bool,
    no_reboot_prompt: bool,
) -> None:
    """Run the full setup.

    Extra ARGS are passed to every optional helper script. Without a
    config file, helper scripts are looked up in scripts/ next to the
    jetson-setup program (override with JETSON_SETUP_SCRIPTS_DIR) and the
    run log is written to the current directory.

    Examples:

        jetson-setup run

        jetson-setup run --dry-run

        jetson-setup --config ./jetson-setup.yml run --no-reboot-prompt
    """
    from jetson_setup.core.use_cases.run import run_setup

    if assume_yes:
        confirm = lambda prompt: True  # noqa: E731
    else:
        confirm = lambda prompt: click.confirm(prompt, default=False)  # noqa: E731

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        result = run_setup(
            config_path=ctx.obj.get("config_path"),
            extra_args=args,
            dry_run=dry_run,
            log_dir=Path(log_dir) if log_dir else None,
            reboot_prompt=not no_reboot_prompt and not as_json,
            confirm=confirm,
            stream=sys.stderr if as_json else None,
        )
    finally:
        signal.signal(signal.SIGTERM, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    report = result.report
    assert report is not None

    click.echo()
    if report.ok:
        label = "[dry-run] " if dry_run else ""
        click.secho(f"✅ {label}Setup complete", fg="green", bold=True)
        if report.warnings:
            click.secho(f"   {report.warnings} step(s) warned", fg="yellow")
    else:
        click.secho(f"❌ {report.error}", fg="red", bold=True)
    if result.log_path:
        click.echo(f"   Log: {result.log_path}")
    click.echo()

    sys.exit(result.exit_code)


@cli.command()
@click.argument("args", nargs=-1)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, args: tuple[str, ...], as_json: bool) -> None:
    """Show the steps a run would execute, without running anything."""
    from jetson_setup.core.config.loader import ConfigError, load_config
    from jetson_setup.core.services.plan import build_plan

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(2)

    setup_plan = build_plan(config, args)

    if as_json:
        click.echo(json.dumps(setup_plan.to_dict(), indent=2))
        return

    click.secho(f"\n📋 Setup plan: {setup_plan.total_steps} steps", fg="cyan", bold=True)
    click.echo(f"   Retries: {config.retry.max_attempts} attempts, backoff from {config.retry.initial_delay:g}s")
    click.echo()

    for i, step in enumerate(setup_plan.steps, 1):
        marker = "" if step.required else " (best-effort)"
        click.echo(f"   {i:2d}. {step.label}{marker}")
        for fb in step.fallbacks:
            click.echo(f"       ↳ fallback: {fb.label}")

    if setup_plan.optional:
        click.echo()
        click.secho("   Optional:", fg="white", bold=True)
        for opt in setup_plan.optional:
            present = "✓" if opt.script.is_file() else "–"
            click.echo(f"     {present} {opt.label}  → {opt.script}")

    click.echo()


@cli.group()
def config() -> None:
    """Setup configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate jetson-setup.yml configuration."""
    from jetson_setup.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Source: {result.config_path or 'built-in defaults'}")
        click.echo(f"   Browser: {result.config.browser.strategy}")
        click.echo(f"   Optional steps: {len(result.config.optional_steps)}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def doctor(ctx: click.Context, as_json: bool) -> None:
    """Check tools, package locks, helper scripts, and pending reboot."""
    from jetson_setup.adapters.shell.command import CommandRunner
    from jetson_setup.core.config.loader import ConfigError, load_config
    from jetson_setup.core.observability.health import check_system_health
    from jetson_setup.core.reliability.locks import FuserLockProbe
    from jetson_setup.core.services.plan import build_plan
    from jetson_setup.core.use_cases.run import build_default_registry

    try:
        setup_config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(2)

    runner = CommandRunner(use_sudo=setup_config.use_sudo, timeout=10)
    system_health = check_system_health(
        registry=build_default_registry(runner),
        probe=FuserLockProbe(runner),
        resources=setup_config.locks.resources,
        plan=build_plan(setup_config),
        reboot_sentinel=setup_config.reboot_sentinel,
    )

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        return

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = status_icons.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()


if __name__ == "__main__":
    cli()
