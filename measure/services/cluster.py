"""Shared, read-only cluster access handed to every measurement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from core.config import Settings
from services.endpoints import KubeApiPodLister, PodLister
from services.kube_credentials import load_credentials
from services.remote_exec import CommandExecutor, KubectlExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterContext:
    pod_lister: PodLister
    executor: CommandExecutor
    stop_timeout: float = 30

    @classmethod
    def from_settings(
        cls, settings: Settings, environ: Mapping[str, str] | None = None
    ) -> "ClusterContext":
        """Resolve credentials once; the pod lister and kubectl both use them.

        Raises KubeConfigError when no credentials can be found.
        """
        credentials = load_credentials(settings, environ)
        if not credentials.token and not credentials.client_cert_file:
            logger.warning(
                "No Kubernetes credentials configured; talking to %s anonymously",
                credentials.server,
            )
        lister = KubeApiPodLister(
            api_server=credentials.server,
            token=credentials.token,
            verify=credentials.ssl_verify(),
            timeout=settings.api_timeout_seconds,
        )
        executor = KubectlExecutor(
            kubectl_bin=settings.kubectl_bin,
            credentials=credentials,
            timeout=settings.exec_timeout_seconds,
        )
        logger.info("Using Kubernetes API at %s (%s)", credentials.server, credentials.source)
        return cls(
            pod_lister=lister,
            executor=executor,
            stop_timeout=settings.stop_timeout_seconds,
        )
