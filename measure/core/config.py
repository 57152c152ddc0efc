import os
from pathlib import Path

from pydantic_settings import BaseSettings

# Find local.env from project root (parent of measure/)
_env_file = Path(__file__).resolve().parent.parent.parent / "local.env"


def _detect_environment() -> str:
    """Detect runtime environment: in-cluster or local."""
    if os.environ.get("KUBERNETES_SERVICE_HOST"):
        return "in-cluster"
    return "development"


class Settings(BaseSettings):
    # Kubernetes API, shared by pod listing and kubectl exec.
    # Empty: in-cluster service account, else the kubeconfig.
    kube_api_server: str = ""
    kube_token: str = ""
    kube_token_file: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    kube_ca_file: str = ""
    kube_insecure_skip_tls_verify: bool = False

    # kubectl (remote exec) and kubeconfig selection
    kubectl_bin: str = "kubectl"
    kubeconfig: str = ""
    kube_context: str = ""

    # Timeouts (seconds)
    api_timeout_seconds: float = 30
    exec_timeout_seconds: float = 60
    stop_timeout_seconds: float = 30

    # Logging
    log_level: str = "INFO"

    # Langfuse
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_base_url: str = "https://us.cloud.langfuse.com"

    # Environment (auto-detected)
    environment: str = ""

    @property
    def effective_kube_token(self) -> str:
        """Return the configured token, falling back to the service account token file."""
        if self.kube_token.strip():
            return self.kube_token.strip()
        token_path = Path(self.kube_token_file) if self.kube_token_file else None
        if token_path and token_path.is_file():
            return token_path.read_text().strip()
        return ""

    model_config = {"env_file": str(_env_file), "extra": "ignore"}


settings = Settings()
if not settings.environment:
    settings.environment = _detect_environment()
