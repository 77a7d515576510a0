"""Typer-powered command line interface for ``vhostctl``.

``vhostctl setup`` walks the operator through generating a self-signed
certificate and publishing an nginx reverse-proxy site for it. ``probe`` and
``inspect`` expose the connectivity check and certificate inspection on their
own.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import ConfigBackups
from .commands import CommandError, CommandExecutor
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .prompts import Prompter
from .providers import NginxProvider, SystemdProvider, UpstreamProbe
from .recovery import (
    RecoveryManager,
    RunContext,
    RunInterrupted,
    interrupt_guard,
    signals_ignored,
)
from .templates import TemplateEngine
from .tls import (
    CertificateBundle,
    CertificateError,
    CertificateExistsError,
    CertificateProvisioner,
    inspect_bundle,
)
from .tools import PrerequisiteChecker, ToolMissingError, default_requirements
from .validators import (
    InputKind,
    InvalidInputError,
    validate_domain,
    validate_ipv4,
    validate_port,
)
from .workflow import SetupFailed, SetupWorkflow, SiteRequest

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to vhostctl's YAML config file.",
)

INSPECT_DIR_OPTION = typer.Option(
    ...,
    "--dir",
    file_okay=False,
    help="Directory holding <domain>.crt and <domain>.key.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON.",
)

WELCOME = textwrap.dedent(
    """
    [bold]Welcome to the SSL certificate setup![/bold]
    This command generates a self-signed SSL certificate and configures nginx
    to serve your domain over HTTPS as a reverse proxy.
    Note: Self-signed certificates are not trusted by browsers and will display
    a warning. For production environments, consider a Let's Encrypt certificate.
    Also, ensure that port 443 is open on your firewall for HTTPS traffic.
    """
).strip()

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Self-signed TLS and nginx reverse-proxy setup.

        Generates a certificate for a domain, writes an nginx site that proxies
        to an upstream, and rolls configuration back when a step fails.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    executor: CommandExecutor
    prompter: Prompter
    nginx_provider: NginxProvider
    systemd_provider: SystemdProvider
    backups: ConfigBackups
    recovery: RecoveryManager
    prerequisites: PrerequisiteChecker
    workflow: SetupWorkflow


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    config = load_config(config_file=config_file)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    executor = CommandExecutor()
    prompter = Prompter(console=console, attempts=config.prompts.attempts)
    nginx_provider = NginxProvider(
        templates=templates,
        sites_available=config.nginx.sites_available,
        sites_enabled=config.nginx.sites_enabled,
    )
    systemd_provider = SystemdProvider(
        executor=executor,
        systemctl_bin=config.systemd.systemctl_bin,
    )
    backups = ConfigBackups(config.nginx.sites_available, scope=config.backups.scope)
    recovery = RecoveryManager(backups=backups, prompter=prompter, console=console)
    prerequisites = PrerequisiteChecker(
        executor=executor,
        prompter=prompter,
        systemd=systemd_provider,
        console=console,
        package_manager=config.packages.manager,
    )
    workflow = SetupWorkflow(
        provisioner=CertificateProvisioner(
            executor=executor,
            openssl_bin=config.tls.openssl_bin,
            key_size=config.tls.key_size,
        ),
        nginx=nginx_provider,
        systemd=systemd_provider,
        backups=backups,
        recovery=recovery,
        prober=UpstreamProbe(timeout=config.probe.timeout),
        prompter=prompter,
        console=console,
        service=config.nginx.service,
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        executor=executor,
        prompter=prompter,
        nginx_provider=nginx_provider,
        systemd_provider=systemd_provider,
        backups=backups,
        recovery=recovery,
        prerequisites=prerequisites,
        workflow=workflow,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the vhostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"vhostctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    try:
        _ensure_runtime(ctx, config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: list[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=errors or [message], rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


@app.command()
def setup(ctx: typer.Context) -> None:
    """Generate a self-signed certificate and configure an nginx reverse proxy."""
    runtime = _get_runtime(ctx)
    run = RunContext()
    with runtime.logger.operation("setup", target={"kind": "site"}) as op:
        try:
            with interrupt_guard(run):
                _run_setup(runtime, run, op)
        except RunInterrupted as exc:
            with signals_ignored():
                report = runtime.recovery.cleanup(exc.run)
            op.add_step(
                "cleanup",
                status="error" if report.errors else "success",
                detail=report.to_dict(),
            )
            _command_error(
                op,
                f"Setup interrupted ({exc}); changes have been cleaned up.",
                errors=[str(exc), *report.errors],
                context={"recovery": report.to_dict()},
            )
        except SetupFailed as exc:
            _command_error(
                op,
                f"Setup failed: {exc}",
                errors=[str(exc), *exc.report.errors],
                context={"recovery": exc.report.to_dict()},
            )
        except (InvalidInputError, ToolMissingError, CertificateExistsError) as exc:
            _command_error(op, str(exc))
        except CommandError as exc:
            _command_error(op, f"{exc}. Exiting.")
        except EOFError:
            _command_error(op, "No input received; aborting.")


def _run_setup(runtime: RuntimeContext, run: RunContext, op: OperationScope) -> None:
    config = runtime.config
    prompter = runtime.prompter
    workflow = runtime.workflow

    console.print(WELCOME)
    console.print()

    installed = runtime.prerequisites.ensure(
        default_requirements(
            nginx_service=config.nginx.service,
            openssl_bin=config.tls.openssl_bin,
        )
    )
    op.add_step(
        "prerequisites",
        status="success",
        detail={"installed": installed},
    )

    domain = prompter.ask_domain("Enter the domain name for the SSL certificate:")
    certificate_dir = prompter.ask_path("Enter the absolute path to save the certificate files:")
    days = prompter.ask_int(
        "Enter the number of days until the certificate expires (between 1 and 365):",
        InputKind.EXPIRATION_DAYS,
    )
    upstream_host = prompter.ask_ipv4("Enter the IP address to forward traffic to:")
    upstream_port = prompter.ask_int("Enter the port to forward traffic to:", InputKind.PORT)
    redirect = prompter.confirm("Do you want to enable a 301 redirect from HTTP to HTTPS? (y/n):")
    request = SiteRequest(
        domain=domain,
        certificate_dir=certificate_dir,
        redirect=redirect,
        upstream_host=upstream_host,
        upstream_port=upstream_port,
    )
    op.args.update(request.to_dict())
    op.args["days"] = days
    op.target["name"] = domain

    bundle, details = workflow.provision_certificate(
        run,
        domain,
        certificate_dir,
        days,
        op=op,
    )
    result = workflow.write_configuration(run, request, op=op)
    backups = [str(result.backup)] if result.backup else []
    changes = [bundle.key, bundle.certificate, result.link]
    if result.changed:
        changes.append(result.path)
    context: dict[str, object] = {
        "certificate": bundle.to_dict(),
        "details": details.to_dict(),
        "config": str(result.path),
        "link": str(result.link),
        "changes": [str(path) for path in changes],
    }

    restart = workflow.restart_service(op=op)
    if not restart.ok:
        _command_error(
            op,
            f"Unable to restart {config.nginx.service}; the new configuration is in place.",
            errors=[restart.summary()],
            context=context,
        )

    if prompter.confirm(
        "Would you like to test the connection to the IP address and port you configured? (y/n):"
    ):
        outcome = workflow.probe_upstream(upstream_host, upstream_port, op=op)
        context["probe"] = outcome.to_dict()
    else:
        console.print("IP and port testing skipped. The configuration has been applied.")

    console.print(
        "[green]Setup completed. The SSL certificate and nginx configuration "
        "have been set up.[/green]"
    )
    op.success(
        "Setup completed.",
        changed=len(changes),
        backups=backups,
        context=context,
    )


@app.command()
def probe(
    ctx: typer.Context,
    host: str = typer.Argument(..., help="Upstream IPv4 address."),
    port: str = typer.Argument(..., help="Upstream TCP port."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Check whether the upstream answers HTTP requests."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "probe",
        args={"host": host, "port": port},
        target={"kind": "upstream", "name": f"{host}:{port}"},
    ) as op:
        try:
            address = validate_ipv4(host)
            number = validate_port(port)
        except InvalidInputError as exc:
            _command_error(op, str(exc))

        if json_output:
            result = runtime.workflow.prober.probe(address, number)
            console.print_json(data=result.to_dict())
        else:
            result = runtime.workflow.probe_upstream(address, number, op=op)
            table = Table("Address", "Status", "Outcome")
            table.add_row(result.address, result.code, result.outcome.value)
            console.print(table)

        if result.ok:
            op.success("Upstream reachable.", context=result.to_dict())
        else:
            op.warning(
                result.describe(),
                warnings=[result.outcome.value],
                context=result.to_dict(),
            )


@app.command()
def inspect(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain the certificate was generated for."),
    directory: Path = INSPECT_DIR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show details of a generated certificate bundle."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "inspect",
        args={"domain": domain, "dir": str(directory)},
        target={"kind": "certificate", "name": domain},
    ) as op:
        try:
            bundle = CertificateBundle(domain=validate_domain(domain), directory=directory)
            details = inspect_bundle(bundle)
        except (InvalidInputError, CertificateError) as exc:
            _command_error(op, str(exc))

        if json_output:
            console.print_json(data={**bundle.to_dict(), **details.to_dict()})
        else:
            table = Table("Field", "Value")
            table.add_row("Certificate", str(bundle.certificate))
            table.add_row("Key", str(bundle.key))
            table.add_row("Common name", details.common_name or "-")
            table.add_row("Serial", str(details.serial_number))
            table.add_row("Not valid before", details.not_valid_before.isoformat())
            table.add_row("Not valid after", details.not_valid_after.isoformat())
            table.add_row("Key size", str(details.key_size or "-"))
            table.add_row(
                "Key matches",
                "[green]yes[/green]" if details.key_matches else "[red]no[/red]",
            )
            console.print(table)
        op.success("Certificate inspected.", context=details.to_dict())


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
