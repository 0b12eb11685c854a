"""
Host Provisioner — CLI entrypoint.

Usage:
    provision --help
    provision run --github-user octocat
    provision plan
    provision config check
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import resolve_level, setup_from_env


@click.group()
@click.version_option(version=__version__, prog_name="provision")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Host Provisioner — converge an Ubuntu host to a known-good setup."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_env(resolve_level(debug=debug, verbose=verbose, quiet=quiet), debug=debug)


# ── Helpers ─────────────────────────────────────────────────────


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def _exit_on_signal(signum: int, _frame: object) -> None:
    # SystemExit unwinds through the executor's finally, releasing sudo
    raise SystemExit(128 + signum)


def _install_signal_handlers() -> dict:
    """Route SIGTERM/SIGHUP through SystemExit. Returns the previous handlers."""
    previous = {}
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            previous[signum] = signal.signal(signum, _exit_on_signal)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _echo_result(step, result, verbose: bool = False) -> None:
    """One progress line per finished step."""
    timing = f" ({result.duration_ms}ms)" if verbose and result.duration_ms else ""
    if result.status == "applied":
        click.secho(f"   ✓ {step.name}", fg="green", nl=False)
        click.echo(f"{timing}")
        if verbose and result.detail:
            click.echo(f"     │ {result.detail}")
    elif result.status == "skipped":
        click.secho(f"   ⊘ {step.name} ", fg="yellow", nl=False)
        click.echo(f"({result.detail})")
    elif step.critical:
        click.secho(f"   ✗ {step.name}", fg="red", bold=True, nl=False)
        click.echo(f"{timing}")
        for line in result.detail.split("\n")[:5]:
            click.echo(f"     │ {line}")
    else:
        click.secho(f"   ⚠ {step.name}", fg="yellow", nl=False)
        click.echo(f"{timing}")
        for line in result.detail.split("\n")[:5]:
            click.echo(f"     │ {line}")


def _selection(only: tuple[str, ...], skip: tuple[str, ...]) -> dict:
    return {
        "only": list(only) if only else None,
        "skip": list(skip) if skip else None,
    }


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("--github-user", "-u", default=None, help="GitHub account whose SSH keys are authorized.")
@click.option("--only", multiple=True, help="Run only this step (repeatable).")
@click.option("--skip", multiple=True, help="Skip this step (repeatable).")
@click.option("--mock", is_flag=True, help="Provision a simulated host (no real execution).")
@click.option("--yes", "-y", is_flag=True, help="Don't prompt; use the configured account.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    github_user: str | None,
    only: tuple[str, ...],
    skip: tuple[str, ...],
    mock: bool,
    yes: bool,
    as_json: bool,
) -> None:
    """Converge this host, one step at a time.

    Examples:

        provision run

        provision run --github-user octocat --yes

        provision run --only install-zsh --only create-zshrc

        provision run --mock
    """
    from provisioner.core.data.server_profile import POST_RUN_NOTES
    from provisioner.core.use_cases.run import run_provisioning

    if github_user is None and not yes and not as_json and _is_interactive():
        github_user = click.prompt(
            "GitHub username for SSH keys (blank for default)",
            default="",
            show_default=False,
        )

    verbose = ctx.obj.get("verbose", False)
    quiet = ctx.obj.get("quiet", False)

    def _progress(step, result) -> None:
        _echo_result(step, result, verbose=verbose)

    if not as_json:
        mode_label = "[mock] " if mock else ""
        click.secho(f"\n⚡ {mode_label}Provisioning host", fg="cyan", bold=True)
        click.echo()

    previous_handlers = _install_signal_handlers()
    try:
        result = run_provisioning(
            config_path=ctx.obj.get("config_path"),
            github_user=github_user,
            mock_mode=mock,
            on_result=None if as_json else _progress,
            **_selection(only, skip),
        )
    finally:
        _restore_signal_handlers(previous_handlers)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    click.echo()
    if result.aborted_step:
        click.secho(
            f"   Aborted at '{result.aborted_step}': {result.abort_detail}",
            fg="red",
            bold=True,
        )
        click.echo(
            f"   {report.applied} applied, {report.skipped} skipped, "
            f"{report.failed} failed before the abort"
        )
        click.echo()
        sys.exit(result.exit_code)

    status_color = {"ok": "green", "partial": "yellow"}.get(report.status, "white")
    click.secho(
        f"   Result: {report.applied} applied, {report.skipped} skipped, {report.failed} failed",
        fg=status_color,
        bold=True,
    )
    if report.failed_steps:
        click.secho(f"   Failed: {', '.join(report.failed_steps)}", fg="yellow")
    click.echo(f"   SSH keys: github.com/{result.github_user}")

    if not quiet:
        click.echo()
        click.secho("   Notes:", fg="white", bold=True)
        for note in POST_RUN_NOTES:
            click.echo(f"     • {note}")
    click.echo()


@cli.command()
@click.option("--github-user", "-u", default=None, help="GitHub account whose SSH keys are checked.")
@click.option("--only", multiple=True, help="Plan only this step (repeatable).")
@click.option("--skip", multiple=True, help="Leave this step out (repeatable).")
@click.option("--mock", is_flag=True, help="Probe a simulated host.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(
    ctx: click.Context,
    github_user: str | None,
    only: tuple[str, ...],
    skip: tuple[str, ...],
    mock: bool,
    as_json: bool,
) -> None:
    """Show which steps a run would apply. Changes nothing."""
    from provisioner.core.models.step import Detection
    from provisioner.core.use_cases.plan import plan_provisioning

    result = plan_provisioning(
        config_path=ctx.obj.get("config_path"),
        github_user=github_user,
        mock_mode=mock,
        **_selection(only, skip),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n🔍 {mode_label}Plan", fg="cyan", bold=True)
    click.echo(f"   {len(result.pending)} to apply, {len(result.satisfied)} already satisfied")
    click.echo()

    for planned in result.steps:
        critical = " (critical)" if planned.critical else ""
        if planned.detection is Detection.SATISFIED:
            click.secho(f"   ⊘ {planned.name}{critical}", fg="yellow")
        else:
            click.secho(f"   → {planned.name}{critical}", fg="cyan")
            if planned.probe_error and ctx.obj.get("verbose"):
                click.echo(f"     │ probe failed: {planned.probe_error}")

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def steps(as_json: bool) -> None:
    """List the provisioning steps in execution order."""
    from provisioner.core.services.ubuntu_server import build_server_steps

    catalog = build_server_steps()

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in catalog], indent=2))
        return

    click.secho(f"\n📋 Steps ({len(catalog)})", fg="cyan", bold=True)
    for i, step in enumerate(catalog, start=1):
        critical = click.style(" critical", fg="red") if step.critical else ""
        click.echo(f"   {i:2d}. {step.name}{critical}")
        if step.description:
            click.echo(f"       {step.description}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show what the last run did."""
    from provisioner.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.has_run:
        click.echo("No runs recorded yet. Run 'provision run' to start.")
        return

    assert result.state is not None
    last = result.state.last_run
    status_color = {"ok": "green", "partial": "yellow", "aborted": "red"}.get(last.status, "white")

    click.secho(f"\n📋 {result.state.hostname or 'this host'}", fg="cyan", bold=True)
    click.echo(f"   Runs recorded: {result.run_count}")
    click.echo()
    click.secho("   Last run:", fg="white", bold=True)
    click.echo(f"     {last.run_id} — ", nl=False)
    click.secho(last.status, fg=status_color)
    if last.ended_at:
        click.echo(f"     at {last.ended_at}")
    click.echo(
        f"     {last.steps_applied} applied, {last.steps_skipped} skipped, "
        f"{last.steps_failed} failed (github user: {last.github_user})"
    )

    if ctx.obj.get("verbose"):
        click.echo()
        click.secho("   Steps:", fg="white", bold=True)
        for name, step_state in result.state.steps.items():
            click.echo(f"     • {name}: {step_state.last_status}")
    click.echo()


@cli.command()
@click.option("-n", "limit", default=10, type=int, show_default=True, help="Number of runs.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent runs from the audit ledger."""
    from provisioner.core.use_cases.status import get_history

    result = get_history(config_path=ctx.obj.get("config_path"), limit=limit)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.entries:
        click.echo("No runs recorded yet.")
        return

    click.echo()
    for entry in reversed(result.entries):
        color = {"ok": "green", "partial": "yellow", "aborted": "red"}.get(entry.status, "white")
        mock = " [mock]" if entry.mock else ""
        click.echo(f"   {entry.timestamp[:19]}  {entry.run_id}{mock}  ", nl=False)
        click.secho(f"{entry.status:8s}", fg=color, nl=False)
        click.echo(
            f"  {entry.steps_applied} applied, {entry.steps_skipped} skipped, "
            f"{entry.steps_failed} failed"
        )
    click.echo()


@cli.group()
def config() -> None:
    """Provisioning configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate provision.yml configuration."""
    from provisioner.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        if result.config_path:
            click.echo(f"   File: {result.config_path}")
        click.echo(f"   GitHub user: {result.config.github_user}")
        click.echo(f"   State dir: {result.config.state_path}")
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


if __name__ == "__main__":
    cli()
