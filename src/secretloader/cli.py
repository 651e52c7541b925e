"""
secretloader CLI - container startup secret loading.

A process cannot change its parent's environment, so the loaded secrets
reach the workload in one of two ways:

    secretloader exec -- /usr/bin/myapp --flag     # exec with secrets set
    eval "$(secretloader load --format shell)"     # from a sourced init hook

Logs always go to stderr; only ``load`` writes to stdout.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
import os
import shlex
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from secretloader import __version__
from secretloader.config import LoaderConfig, ReferenceConfig
from secretloader.detection import FindingKind, audit_environment
from secretloader.loader import SecretLoader
from secretloader.models import GlobalLoadReport, ProviderStatus
from secretloader.providers import create_providers
from secretloader.redaction import RedactingFilter
from secretloader.references import ReferenceResolver
from secretloader.sink import EnvironmentSink
from secretloader.startup import startup

console = Console()
err_console = Console(stderr=True)

# Their DEBUG output includes request and response bodies
SDK_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "azure", "google")

STATUS_STYLES = {
    ProviderStatus.OK: "green",
    ProviderStatus.DEGRADED: "yellow",
    ProviderStatus.FAILED: "red",
    ProviderStatus.SKIPPED: "dim",
}


def setup_logging(level: str = "INFO") -> None:
    """Route all logging through a redacting RichHandler on stderr."""
    handler = RichHandler(console=err_console, show_path=False, markup=False, rich_tracebacks=False)
    handler.addFilter(RedactingFilter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def print_report(report: GlobalLoadReport) -> None:
    """Per-provider summary table and final banner on stderr."""
    if not report.enabled:
        err_console.print("[dim]Secret loader disabled[/dim]")
        return

    table = Table(title="Secret Loader Summary")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Auth")
    table.add_column("Loaded", justify="right")
    table.add_column("Errors", justify="right")

    rows = list(report.results)
    if report.references and report.references.status != ProviderStatus.SKIPPED:
        rows.insert(0, report.references)
    for result in rows:
        style = STATUS_STYLES[result.status]
        table.add_row(
            result.provider,
            f"[{style}]{result.status.value}[/{style}]",
            result.auth_method or "-",
            str(result.loaded),
            str(len(result.errors)),
        )
    err_console.print(table)

    if report.is_fatal:
        err_console.print(Panel(
            f"[bold red]FAILED[/bold red] - {len(report.fatal_errors)} fatal error(s), "
            "aborting (SECRET_LOADER_FAIL_ON_ERROR=true)",
            border_style="red",
        ))
    elif report.failed_providers:
        err_console.print(Panel(
            f"[bold yellow]PARTIAL[/bold yellow] - {report.total_loaded} secret(s) loaded, "
            f"{len(report.failed_providers)} provider(s) failed",
            border_style="yellow",
        ))
    else:
        err_console.print(Panel(
            f"[bold green]OK[/bold green] - {report.total_loaded} secret(s) loaded",
            border_style="green",
        ))


def format_exports(values: dict[str, str], fmt: str) -> str:
    """Render variables for ``eval`` (shell) or an env file (dotenv)."""
    lines = []
    for name, value in values.items():
        if fmt == "shell":
            lines.append(f"export {name}={shlex.quote(value)}")
        else:
            lines.append(f"{name}={shlex.quote(value)}")
    return "\n".join(lines)


@click.group()
@click.version_option(version=__version__, prog_name="secretloader")
@click.option("--log-level", default=None, help="Override SECRET_LOADER_LOG_LEVEL")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """secretloader - Multi-provider secret loading at container start

    Pulls secrets from Docker secrets, 1Password, HashiCorp Vault, AWS
    Secrets Manager, Azure Key Vault and GCP Secret Manager into the
    environment before the workload starts.
    """
    ctx.ensure_object(dict)
    config = LoaderConfig.from_env()
    setup_logging(log_level or config.log_level)
    ctx.obj["console"] = console
    ctx.obj["config"] = config


# =============================================================================
# Loading Commands
# =============================================================================

@main.command("exec", context_settings={"ignore_unknown_options": True})
@click.option("--quiet", "-q", is_flag=True, help="Skip the summary table")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def exec_command(ctx: click.Context, quiet: bool, command: tuple[str, ...]) -> None:
    """Load secrets, then replace this process with COMMAND."""
    environ = dict(os.environ)
    report = startup(environ=environ)
    if not quiet:
        print_report(report)

    if report.is_fatal:
        ctx.exit(report.exit_code())

    sys.stdout.flush()
    sys.stderr.flush()
    try:
        os.execvpe(command[0], list(command), environ)
    except OSError as e:
        err_console.print(f"[red]Cannot execute {command[0]}: {e.strerror}[/red]")
        ctx.exit(127)


@main.command("load")
@click.option("--format", "-f", "fmt", type=click.Choice(["shell", "dotenv"]), default="shell",
              help="Output format")
@click.option("--quiet", "-q", is_flag=True, help="Skip the summary table")
@click.option("--report", "report_path", type=click.Path(dir_okay=False),
              help="Write a JSON report (names only, no values) to this file")
@click.pass_context
def load_command(ctx: click.Context, fmt: str, quiet: bool, report_path: str | None) -> None:
    """Load secrets and print them as export statements on stdout.

    Intended for a sourced init hook:  eval "$(secretloader load)"
    """
    sink = EnvironmentSink(dict(os.environ))
    report = startup(sink=sink)
    if not quiet:
        print_report(report)

    if report_path:
        with open(report_path, "w") as f:
            json.dump(report.to_dict(), f, indent=2)

    if report.is_fatal:
        ctx.exit(report.exit_code())

    output = format_exports(sink.written, fmt)
    if output:
        click.echo(output)


# =============================================================================
# Inspection Commands
# =============================================================================

@main.command("health")
@click.option("--strict", is_flag=True, help="Exit 1 if any enabled provider is unhealthy")
@click.pass_context
def health_command(ctx: click.Context, strict: bool) -> None:
    """Check connectivity and credentials for every provider."""
    loader = SecretLoader(config=ctx.obj["config"])
    health = loader.health_check_all()

    table = Table(title="Secret Provider Health")
    table.add_column("Provider", style="cyan")
    table.add_column("Health")
    for name, ok in health.items():
        table.add_row(name, "[green]healthy[/green]" if ok else "[red]unhealthy[/red]")
    console.print(table)

    if strict and not all(health.values()):
        ctx.exit(1)


@main.command("providers")
@click.pass_context
def providers_command(ctx: click.Context) -> None:
    """Show providers in priority order and their (non-sensitive) settings."""
    config: LoaderConfig = ctx.obj["config"]

    if not config.enabled:
        console.print("[yellow]Secret loader disabled (SECRET_LOADER_ENABLED != true)[/yellow]")
    for unknown in config.unknown_providers:
        console.print(f"[yellow]Unknown provider in SECRET_LOADER_PRIORITY: {unknown}[/yellow]")

    table = Table(title="Secret Providers")
    table.add_column("#", justify="right")
    table.add_column("Provider", style="cyan")
    table.add_column("Enabled")
    table.add_column("Settings")

    for position, provider in enumerate(create_providers(config.priority, retry=config.retry), start=1):
        settings = {k: v for k, v in provider.describe().items() if v not in (None, "", []) and k != "enabled"}
        table.add_row(
            str(position),
            provider.display_name,
            "[green]yes[/green]" if provider.enabled() else "[dim]no[/dim]",
            ", ".join(f"{k}={v}" for k, v in settings.items()),
        )
    console.print(table)


@main.command("refs")
@click.pass_context
def refs_command(ctx: click.Context) -> None:
    """Dry run of the OP_<NAME>_REF convention (no lookups are made)."""
    resolver = ReferenceResolver(config=ReferenceConfig.from_env(), sink=EnvironmentSink(dict(os.environ)))
    planned = resolver.plan()

    if not resolver.enabled():
        console.print(
            "[yellow]Reference pass inactive: requires the op CLI and OP_SERVICE_ACCOUNT_TOKEN[/yellow]"
        )
    if not planned:
        console.print("[dim]No OP_*_REF variables found[/dim]")
        return

    table = Table(title="1Password References")
    table.add_column("Variable", style="cyan")
    table.add_column("Target")
    table.add_column("Reference")
    table.add_column("Action")
    for binding, action in planned:
        table.add_row(binding.source, binding.target, binding.reference, action)
    console.print(table)


@main.command("audit-env")
@click.option("--strict", is_flag=True, help="Exit 1 if a plaintext secret is found")
@click.pass_context
def audit_env_command(ctx: click.Context, strict: bool) -> None:
    """Flag secret-looking variables set as plaintext."""
    findings = audit_environment(os.environ)
    if not findings:
        console.print("[green]No secret-looking variables found[/green]")
        return

    table = Table(title="Environment Secret Audit")
    table.add_column("Variable", style="cyan")
    table.add_column("Kind")
    table.add_column("Length", justify="right")
    for finding in findings:
        style = "green" if finding.kind == FindingKind.REFERENCE else "yellow"
        table.add_row(finding.name, f"[{style}]{finding.kind.value}[/{style}]", str(finding.length))
    console.print(table)

    plaintext = [f for f in findings if f.kind == FindingKind.PLAINTEXT]
    if plaintext:
        console.print(
            "[yellow]Use environment variable references, secret files, "
            "or a secret management system for these values[/yellow]"
        )
    if strict and plaintext:
        ctx.exit(1)


if __name__ == "__main__":
    main()
