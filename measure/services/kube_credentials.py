"""Cluster credentials shared by pod listing and ``kubectl exec``.

Resolved once per run, first match wins:

1. an explicit ``KUBE_API_SERVER`` (with ``KUBE_TOKEN`` / ``KUBE_CA_FILE``)
2. the in-cluster service account (``KUBERNETES_SERVICE_HOST``)
3. a kubeconfig file (``KUBECONFIG``, else ``~/.kube/config``)
"""

from __future__ import annotations

import atexit
import base64
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from core.config import Settings
from services.measurement_config import ConfigError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class KubeConfigError(ConfigError):
    """No usable cluster credentials could be resolved."""


@dataclass(frozen=True)
class KubeCredentials:
    server: str
    token: str = ""
    ca_file: str = ""
    client_cert_file: str = ""
    client_key_file: str = ""
    insecure: bool = False
    kubeconfig: str = ""
    context: str = ""
    source: str = "settings"

    def ssl_verify(self) -> ssl.SSLContext | bool:
        """Value for httpx ``verify=``."""
        if self.insecure:
            return False
        context = ssl.create_default_context(cafile=self.ca_file or None)
        if self.client_cert_file and self.client_key_file:
            context.load_cert_chain(self.client_cert_file, self.client_key_file)
        return context

    def kubectl_flags(self) -> list[str]:
        """Global kubectl flags selecting exactly this server and identity."""
        # /dev/null unless resolved from a kubeconfig: no default context is merged in
        flags = ["--kubeconfig", self.kubeconfig or os.devnull]
        if self.context:
            flags += ["--context", self.context]
        flags += ["--server", self.server]
        if self.token:
            flags += ["--token", self.token]
        if self.insecure:
            flags.append("--insecure-skip-tls-verify=true")
        elif self.ca_file:
            flags += ["--certificate-authority", self.ca_file]
        if self.client_cert_file and self.client_key_file:
            flags += [
                "--client-certificate",
                self.client_cert_file,
                "--client-key",
                self.client_key_file,
            ]
        return flags


def load_credentials(settings: Settings, environ: Mapping[str, str] | None = None) -> KubeCredentials:
    environ = os.environ if environ is None else environ

    if settings.kube_api_server:
        return KubeCredentials(
            server=settings.kube_api_server.rstrip("/"),
            token=settings.effective_kube_token,
            ca_file=settings.kube_ca_file,
            insecure=settings.kube_insecure_skip_tls_verify,
        )

    host = environ.get("KUBERNETES_SERVICE_HOST", "")
    if host:
        port = environ.get("KUBERNETES_SERVICE_PORT", "443")
        if ":" in host:
            host = f"[{host}]"
        ca_file = settings.kube_ca_file
        if not ca_file and (SERVICE_ACCOUNT_DIR / "ca.crt").is_file():
            ca_file = str(SERVICE_ACCOUNT_DIR / "ca.crt")
        return KubeCredentials(
            server=f"https://{host}:{port}",
            token=settings.effective_kube_token,
            ca_file=ca_file,
            insecure=settings.kube_insecure_skip_tls_verify,
            source="in-cluster",
        )

    path = _kubeconfig_path(settings, environ)
    if path is None:
        raise KubeConfigError(
            "no cluster credentials: set KUBE_API_SERVER, run in-cluster, or provide a kubeconfig"
        )
    return _from_kubeconfig(path, settings)


def _kubeconfig_path(settings: Settings, environ: Mapping[str, str]) -> Path | None:
    listed = settings.kubeconfig or environ.get("KUBECONFIG", "")
    entries = [Path(entry).expanduser() for entry in listed.split(os.pathsep) if entry]
    for entry in entries:
        if entry.is_file():
            return entry
    if entries:
        raise KubeConfigError(f"kubeconfig not found: {listed}")
    home = Path(environ["HOME"]) if "HOME" in environ else Path.home()
    default = home / ".kube" / "config"
    return default if default.is_file() else None


def _named(data: Mapping[str, Any], section: str, name: str) -> dict[str, Any]:
    """Return the body of the ``name`` entry in a kubeconfig list section."""
    key = section[:-1]
    for entry in data.get(section) or []:
        if isinstance(entry, dict) and entry.get("name") == name:
            return entry.get(key) or {}
    raise KubeConfigError(f"kubeconfig has no {key} named {name!r}")


def _from_kubeconfig(path: Path, settings: Settings) -> KubeCredentials:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise KubeConfigError(f"cannot read kubeconfig {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise KubeConfigError(f"kubeconfig {path} must be a mapping")

    context_name = settings.kube_context or data.get("current-context", "")
    if not context_name:
        raise KubeConfigError(f"kubeconfig {path} has no current-context")
    context = _named(data, "contexts", context_name)
    cluster = _named(data, "clusters", context.get("cluster", ""))
    user = _named(data, "users", context["user"]) if context.get("user") else {}

    server = cluster.get("server", "")
    if not server:
        raise KubeConfigError(f"cluster of context {context_name!r} has no server")

    base = path.parent
    token = user.get("token", "")
    if not token and user.get("tokenFile"):
        try:
            token = _resolve(base, user["tokenFile"]).read_text().strip()
        except OSError as exc:
            raise KubeConfigError(f"cannot read tokenFile of context {context_name!r}: {exc}") from exc
    if not token and not (user.get("client-certificate") or user.get("client-certificate-data")):
        if user.get("exec") or user.get("auth-provider"):
            logger.warning(
                "kubeconfig user of context %s uses an auth plugin, which is not supported",
                context_name,
            )

    return KubeCredentials(
        server=server.rstrip("/"),
        token=token,
        ca_file=_file_or_data(base, cluster, "certificate-authority", ".crt"),
        client_cert_file=_file_or_data(base, user, "client-certificate", ".crt"),
        client_key_file=_file_or_data(base, user, "client-key", ".key"),
        insecure=bool(cluster.get("insecure-skip-tls-verify")) or settings.kube_insecure_skip_tls_verify,
        kubeconfig=str(path),
        context=context_name,
        source="kubeconfig",
    )


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _file_or_data(base: Path, section: Mapping[str, Any], key: str, suffix: str) -> str:
    """Path of ``key``, or of a private temp file holding ``key-data``."""
    if section.get(key):
        return str(_resolve(base, section[key]))
    encoded = section.get(f"{key}-data")
    if not encoded:
        return ""
    fd, name = tempfile.mkstemp(prefix="kube-", suffix=suffix)
    with os.fdopen(fd, "wb") as fh:
        fh.write(base64.b64decode(encoded))
    atexit.register(_remove, name)
    return name


def _remove(name: str) -> None:
    try:
        os.unlink(name)
    except FileNotFoundError:
        pass
