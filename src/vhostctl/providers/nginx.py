"""Nginx provider for managing vhost configurations."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine, TemplateError


class NginxError(RuntimeError):
    """Raised when nginx site files cannot be written or linked."""


@dataclass(slots=True)
class NginxProvider:
    """Render and enable nginx reverse-proxy sites."""

    templates: TemplateEngine
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    template_name: str = "nginx/site.conf.j2"

    def site_name(self, domain: str) -> str:
        """Return the canonical site file name for *domain*."""
        return f"{domain}.conf"

    def site_path(self, domain: str) -> Path:
        """Return the path to the site configuration file."""
        return self.sites_available / self.site_name(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.sites_enabled / self.site_name(domain)

    def site_exists(self, domain: str) -> bool:
        """Return True when a configuration file exists for *domain*."""
        return self.site_path(domain).exists()

    def build_context(
        self,
        domain: str,
        *,
        certificate: Path,
        certificate_key: Path,
        redirect: bool,
        upstream_host: str,
        upstream_port: int,
    ) -> dict[str, object]:
        """Return the template context for a site."""
        return {
            "server_name": domain,
            "certificate": str(certificate),
            "certificate_key": str(certificate_key),
            "redirect": redirect,
            "upstream_host": upstream_host,
            "upstream_port": upstream_port,
            "upstream_url": f"{upstream_host}:{upstream_port}",
        }

    def render(self, context: Mapping[str, object]) -> str:
        """Return the rendered configuration document."""
        return self.templates.render_to_string(self.template_name, context)

    def write_site(self, domain: str, context: Mapping[str, object]) -> bool:
        """Write the configuration for *domain*; return True when it changed."""
        try:
            return self.templates.render_to_path(
                self.template_name,
                self.site_path(domain),
                context,
                mode=0o644,
            )
        except TemplateError as exc:
            raise NginxError(
                f"Failed to create nginx configuration file at {self.site_path(domain)}: {exc}. "
                "Please ensure you have the necessary permissions and try again."
            ) from exc

    def enable(self, domain: str) -> Path:
        """Re-create the sites-enabled symlink for *domain*."""
        source = self.site_path(domain)
        target = self.enabled_path(domain)
        if target.exists() or target.is_symlink():
            try:
                target.unlink()
            except OSError as exc:
                raise NginxError(
                    f"Unable to remove the existing symbolic link at {target}: {exc}. "
                    "Please check permissions and ensure no other processes are using the file."
                ) from exc
        try:
            target.symlink_to(source)
        except OSError as exc:
            raise NginxError(
                f"Failed to create symbolic link in {self.sites_enabled}: {exc}. "
                "Verify that you have the necessary permissions and that the directory "
                "is writable."
            ) from exc
        return target

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(domain)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path(domain).resolve()
        except OSError:
            return False


__all__ = ["NginxError", "NginxProvider"]
