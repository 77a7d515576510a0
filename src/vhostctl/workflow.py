"""Orchestration of certificate provisioning and site configuration.

The workflow decides *when* recovery runs: any failure after certificate
provisioning has started triggers :meth:`RecoveryManager.rollback` and is
then re-raised as :class:`SetupFailed`. Decisions made by the operator
(declining an overwrite, an invalid answer) abort without rollback because
nothing has been changed yet.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from .backups import BackupError, ConfigBackups
from .commands import CommandError, CommandResult
from .logging import OperationScope
from .prompts import Prompter
from .providers.nginx import NginxError, NginxProvider
from .providers.systemd import SystemdProvider
from .providers.upstream import ProbeResult, UpstreamProbe
from .recovery import RecoveryManager, RecoveryReport, RunContext
from .tls import (
    CertificateBundle,
    CertificateDetails,
    CertificateError,
    CertificateProvisioner,
    verify_bundle,
)


class SetupFailed(RuntimeError):
    """Raised when a step failed and rollback has already been performed."""

    def __init__(self, message: str, report: RecoveryReport) -> None:
        """Attach the rollback *report* to the failure."""
        super().__init__(message)
        self.report = report


@dataclass(frozen=True, slots=True)
class SiteRequest:
    """Parameters of the site being configured."""

    domain: str
    certificate_dir: Path
    redirect: bool
    upstream_host: str
    upstream_port: int

    @property
    def bundle(self) -> CertificateBundle:
        """Return the certificate bundle referenced by the site."""
        return CertificateBundle(domain=self.domain, directory=self.certificate_dir)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "certificate_dir": str(self.certificate_dir),
            "redirect": self.redirect,
            "upstream_host": self.upstream_host,
            "upstream_port": self.upstream_port,
        }


@dataclass(frozen=True, slots=True)
class ConfigurationResult:
    """Outcome of writing and enabling a site."""

    path: Path
    link: Path
    document: str
    changed: bool
    backup: Path | None


@dataclass(slots=True)
class SetupWorkflow:
    """Run the provisioning and configuration steps with rollback on failure."""

    provisioner: CertificateProvisioner
    nginx: NginxProvider
    systemd: SystemdProvider
    backups: ConfigBackups
    recovery: RecoveryManager
    prober: UpstreamProbe
    prompter: Prompter
    console: Console
    service: str = "nginx"

    def provision_certificate(
        self,
        run: RunContext,
        domain: str,
        directory: Path,
        days: int,
        *,
        op: OperationScope | None = None,
    ) -> tuple[CertificateBundle, CertificateDetails]:
        """Generate and verify the certificate for *domain*."""
        run.domain = domain
        run.track_certificates(directory)
        self.console.print(f"Checking for existing SSL certificate files at {directory}...")
        try:
            bundle = self.provisioner.generate(
                domain,
                directory,
                days,
                confirm_overwrite=self._confirm_overwrite,
            )
            details = verify_bundle(bundle, days=days)
        except (CommandError, CertificateError) as exc:
            raise self._fail(run, "certificate.generate", exc, op) from exc
        self._step(op, "certificate.generate", "success", bundle.to_dict())
        self.console.print(
            f"SSL certificate generated and saved to {directory} "
            f"(valid until {details.not_valid_after:%Y-%m-%d})."
        )
        return bundle, details

    def write_configuration(
        self,
        run: RunContext,
        request: SiteRequest,
        *,
        op: OperationScope | None = None,
    ) -> ConfigurationResult:
        """Back up, render, write and enable the site configuration."""
        run.domain = request.domain
        path = self.nginx.site_path(request.domain)
        backup: Path | None = None
        if self.nginx.site_exists(request.domain):
            self.console.print(
                f"A configuration file for {request.domain} already exists.\n"
                "[yellow]Warning: If you choose not to create a backup, the existing "
                "file will be overwritten.[/yellow]"
            )
            if self.prompter.confirm(
                "Would you like to create a backup before overwriting it? (y/n):"
            ):
                try:
                    backup = self.backups.create(path)
                except BackupError as exc:
                    raise self._fail(run, "config.backup", exc, op) from exc
                self._step(op, "config.backup", "success", str(backup))
                self.console.print(f"Backup created at {backup}.")
            else:
                self._step(op, "config.backup", "skipped", "user-declined")
                self.console.print(
                    "Proceeding without backup. The existing file will be overwritten."
                )

        bundle = request.bundle
        context = self.nginx.build_context(
            request.domain,
            certificate=bundle.certificate,
            certificate_key=bundle.key,
            redirect=request.redirect,
            upstream_host=request.upstream_host,
            upstream_port=request.upstream_port,
        )
        self.console.print(f"Creating nginx configuration file for {request.domain}...")
        try:
            changed = self.nginx.write_site(request.domain, context)
        except NginxError as exc:
            raise self._fail(run, "config.write", exc, op) from exc
        self._step(op, "config.write", "success" if changed else "unchanged", str(path))
        self.console.print(f"Nginx configuration file created at {path}")

        try:
            link = self.nginx.enable(request.domain)
        except NginxError as exc:
            raise self._fail(run, "config.enable", exc, op) from exc
        if not self.nginx.is_enabled(request.domain):
            error = NginxError(f"Symbolic link {link} does not point at {path}.")
            raise self._fail(run, "config.enable", error, op)
        self._step(op, "config.enable", "success", str(link))
        self.console.print(f"Configuration linked to {self.nginx.sites_enabled}")

        document = path.read_text(encoding="utf-8")
        self.console.print("Nginx configuration file content:\n")
        self.console.print(document, markup=False, highlight=False, soft_wrap=True)
        return ConfigurationResult(
            path=path,
            link=link,
            document=document,
            changed=changed,
            backup=backup,
        )

    def restart_service(self, *, op: OperationScope | None = None) -> CommandResult:
        """Restart the web server; failures are reported, never rolled back."""
        self.console.print(f"Restarting {self.service} to apply the new configuration...")
        result = self.systemd.restart(self.service)
        if result.ok:
            self._step(op, "service.restart", "success", self.service)
            self.console.print(f"[green]{self.service} restarted successfully.[/green]")
        else:
            self._step(op, "service.restart", "error", result.summary())
            self.console.print(
                f"[red]Unable to restart {self.service}: {result.summary()}[/red]\n"
                "Please check the configuration and restart it manually using "
                f"'systemctl restart {self.service}' to apply the changes."
            )
        return result

    def probe_upstream(
        self,
        host: str,
        port: int,
        *,
        op: OperationScope | None = None,
    ) -> ProbeResult:
        """Probe the upstream once and print the classification."""
        self.console.print(f"Testing the connection to {host}:{port}...")
        result = self.prober.probe(host, port)
        self._step(op, "upstream.probe", "success" if result.ok else "warning", result.to_dict())
        style = "green" if result.ok else "yellow"
        self.console.print(f"[{style}]{result.describe()}[/{style}]")
        return result

    def _confirm_overwrite(self, bundle: CertificateBundle) -> bool:
        listing = "\n".join(f"- {path}" for path in (bundle.certificate, bundle.key))
        self.console.print(f"Existing SSL certificate files found:\n{listing}")
        return self.prompter.confirm("Do you want to overwrite these files? (y/n):")

    def _fail(
        self,
        run: RunContext,
        step: str,
        exc: Exception,
        op: OperationScope | None,
    ) -> SetupFailed:
        message = str(exc)
        self._step(op, step, "error", message)
        self.console.print(f"[red]{message}[/red]")
        report = self.recovery.rollback(run)
        self._step(op, "rollback", "error" if report.errors else "success", report.to_dict())
        return SetupFailed(message, report)

    @staticmethod
    def _step(op: OperationScope | None, name: str, status: str, detail: object) -> None:
        if op is not None:
            op.add_step(name, status=status, detail=detail)


__all__ = ["ConfigurationResult", "SetupFailed", "SetupWorkflow", "SiteRequest"]
