"""Tests for cluster credential resolution and the shared cluster context."""

import base64
import os

import pytest

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from core.config import Settings
from models.measurement_schemas import Endpoint
from services.cluster import ClusterContext
from services.kube_credentials import KubeConfigError, KubeCredentials, load_credentials

ENDPOINT = Endpoint(name="e1", namespace="default", container="app")

KUBECONFIG = """
apiVersion: v1
kind: Config
current-context: perf
contexts:
  - name: perf
    context: {{cluster: perf-cluster, user: perf-user}}
  - name: other
    context: {{cluster: other-cluster, user: perf-user}}
clusters:
  - name: perf-cluster
    cluster:
      server: https://perf.example:6443/
      certificate-authority: certs/ca.crt
  - name: other-cluster
    cluster:
      server: https://other.example:6443
      insecure-skip-tls-verify: true
users:
  - name: perf-user
    user:
      token: {token}
"""


def _settings(**overrides) -> Settings:
    values = {
        "kube_api_server": "",
        "kube_token": "",
        "kube_token_file": "",
        "kube_ca_file": "",
        "kube_insecure_skip_tls_verify": False,
        "kubeconfig": "",
        "kube_context": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _write_kubeconfig(tmp_path, token="kc-token") -> Path:
    path = tmp_path / "config"
    path.write_text(KUBECONFIG.format(token=token))
    return path


class TestLoadCredentials:
    def test_explicit_server(self):
        credentials = load_credentials(
            _settings(kube_api_server="https://api.example:6443/", kube_token="tok", kube_ca_file="/ca.crt"),
            environ={"KUBERNETES_SERVICE_HOST": "10.0.0.1"},
        )
        assert credentials == KubeCredentials(server="https://api.example:6443", token="tok", ca_file="/ca.crt")

    def test_in_cluster(self):
        credentials = load_credentials(
            _settings(kube_token="sa-token"),
            environ={"KUBERNETES_SERVICE_HOST": "10.0.0.1", "KUBERNETES_SERVICE_PORT": "6443"},
        )
        assert credentials.server == "https://10.0.0.1:6443"
        assert credentials.token == "sa-token"
        assert credentials.source == "in-cluster"

    def test_kubeconfig_current_context(self, tmp_path):
        path = _write_kubeconfig(tmp_path)

        credentials = load_credentials(_settings(), environ={"KUBECONFIG": str(path)})

        assert credentials.server == "https://perf.example:6443"
        assert credentials.token == "kc-token"
        assert credentials.ca_file == str(tmp_path / "certs" / "ca.crt")
        assert credentials.context == "perf"
        assert credentials.kubeconfig == str(path)

    def test_kubeconfig_context_override(self, tmp_path):
        path = _write_kubeconfig(tmp_path)

        credentials = load_credentials(_settings(kubeconfig=str(path), kube_context="other"), environ={})

        assert credentials.server == "https://other.example:6443"
        assert credentials.insecure is True

    def test_default_kubeconfig_under_home(self, tmp_path):
        (tmp_path / ".kube").mkdir()
        _write_kubeconfig(tmp_path / ".kube")

        credentials = load_credentials(_settings(), environ={"HOME": str(tmp_path)})

        assert credentials.server == "https://perf.example:6443"

    def test_embedded_ca_written_to_private_file(self, tmp_path):
        path = tmp_path / "config"
        path.write_text(
            "current-context: c\n"
            "contexts: [{name: c, context: {cluster: k}}]\n"
            "clusters: [{name: k, cluster: {server: 'https://k:6443', "
            f"certificate-authority-data: {base64.b64encode(b'PEM').decode()}}}}}]\n"
        )

        credentials = load_credentials(_settings(kubeconfig=str(path)), environ={})

        assert Path(credentials.ca_file).read_bytes() == b"PEM"
        assert os.stat(credentials.ca_file).st_mode & 0o077 == 0
        assert credentials.token == ""

    def test_unknown_context(self, tmp_path):
        path = _write_kubeconfig(tmp_path)
        with pytest.raises(KubeConfigError, match="context named 'missing'"):
            load_credentials(_settings(kubeconfig=str(path), kube_context="missing"), environ={})

    def test_missing_kubeconfig_file(self, tmp_path):
        with pytest.raises(KubeConfigError, match="kubeconfig not found"):
            load_credentials(_settings(kubeconfig=str(tmp_path / "nope")), environ={})

    def test_nothing_configured(self, tmp_path):
        with pytest.raises(KubeConfigError, match="no cluster credentials"):
            load_credentials(_settings(), environ={"HOME": str(tmp_path)})


class TestKubectlFlags:
    def test_insecure_skips_certificate_authority(self):
        flags = KubeCredentials(server="https://k", ca_file="/ca.crt", insecure=True).kubectl_flags()
        assert "--insecure-skip-tls-verify=true" in flags
        assert "--certificate-authority" not in flags

    def test_isolated_from_default_kubeconfig(self):
        flags = KubeCredentials(server="https://k", token="t").kubectl_flags()
        assert flags[:2] == ["--kubeconfig", os.devnull]

    def test_client_certificate(self):
        flags = KubeCredentials(
            server="https://k", client_cert_file="/c.crt", client_key_file="/c.key"
        ).kubectl_flags()
        assert flags[-4:] == ["--client-certificate", "/c.crt", "--client-key", "/c.key"]


class TestClusterContext:
    def test_lister_and_kubectl_share_server_and_token(self):
        settings = _settings(
            kube_api_server="https://api.example:6443",
            kube_token="shared-token",
            kube_insecure_skip_tls_verify=True,
        )

        context = ClusterContext.from_settings(settings, environ={})

        argv = context.executor.argv(ENDPOINT, ["curl"])
        assert context.pod_lister.api_server == "https://api.example:6443"
        assert context.pod_lister.token == "shared-token"
        assert context.pod_lister.verify is False
        assert argv[argv.index("--server") + 1] == context.pod_lister.api_server
        assert argv[argv.index("--token") + 1] == context.pod_lister.token

    def test_kubeconfig_only_user(self, tmp_path):
        path = _write_kubeconfig(tmp_path)
        settings = _settings(kubeconfig=str(path), kube_insecure_skip_tls_verify=True)

        context = ClusterContext.from_settings(settings, environ={})

        argv = context.executor.argv(ENDPOINT, ["curl"])
        assert context.pod_lister.api_server == "https://perf.example:6443"
        assert argv[argv.index("--server") + 1] == "https://perf.example:6443"
        assert argv[argv.index("--token") + 1] == "kc-token"
        assert argv[argv.index("--context") + 1] == "perf"

    def test_no_credentials_raises(self, tmp_path):
        with pytest.raises(KubeConfigError):
            ClusterContext.from_settings(_settings(), environ={"HOME": str(tmp_path)})
