"""Endpoint resolution: list the live pods matching a pprof target.

Endpoints are resolved again on every pass, so pods added or removed by a
scale-up/down are picked up without any cache invalidation.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Mapping, Protocol

import httpx

from models.measurement_schemas import Endpoint, PProfTarget
from services.measurements.exceptions import EndpointResolutionError

logger = logging.getLogger(__name__)


def format_label_selector(labels: Mapping[str, str]) -> str:
    """Render labels as a selector string: ``k1=v1,k2=v2`` sorted by key."""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


class PodLister(Protocol):
    async def list_pods(self, namespace: str, label_selector: str) -> list[dict[str, Any]]: ...


class KubeApiPodLister:
    """List pods through the Kubernetes REST API with httpx."""

    def __init__(
        self,
        api_server: str,
        token: str = "",
        verify: ssl.SSLContext | bool = True,
        timeout: float = 30,
    ) -> None:
        self.api_server = api_server.rstrip("/")
        self.token = token
        self.verify = verify
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def list_pods(self, namespace: str, label_selector: str) -> list[dict[str, Any]]:
        url = f"{self.api_server}/api/v1/namespaces/{namespace}/pods"
        params = {"labelSelector": label_selector} if label_selector else {}

        async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify) as client:
            try:
                response = await client.get(url, params=params, headers=self._headers())
            except httpx.HTTPError as exc:
                raise EndpointResolutionError(f"GET {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise EndpointResolutionError(
                f"GET {url} returned {response.status_code}: {response.text[:200]}"
            )
        return response.json().get("items", [])


def _to_endpoint(pod: Mapping[str, Any]) -> Endpoint | None:
    metadata = pod.get("metadata", {})
    containers = pod.get("spec", {}).get("containers", [])
    phase = pod.get("status", {}).get("phase", "")
    if phase != "Running" or not containers:
        return None
    return Endpoint(
        name=metadata["name"],
        namespace=metadata.get("namespace", ""),
        container=containers[0]["name"],
        phase=phase,
    )


async def resolve_endpoints(lister: PodLister, target: PProfTarget) -> list[Endpoint]:
    """Return the running pods selected by *target*.

    Errors are logged and yield an empty list: the target contributes nothing
    to this pass and the rest of the pass goes on.
    """
    label_selector = format_label_selector(target.label_selector)
    try:
        pods = await lister.list_pods(target.namespace, label_selector)
    except Exception as exc:
        logger.error("Error found listing pods labeled with %s: %s", label_selector, exc)
        return []

    endpoints: list[Endpoint] = []
    for pod in pods:
        try:
            endpoint = _to_endpoint(pod)
        except (KeyError, TypeError) as exc:
            logger.warning("Skipping malformed pod entry for %s: %s", target.name, exc)
            continue
        if endpoint is None:
            continue
        if not endpoint.namespace:
            endpoint = endpoint.model_copy(update={"namespace": target.namespace})
        endpoints.append(endpoint)

    logger.debug(
        "Resolved %d endpoint(s) for %s in %s", len(endpoints), target.name, target.namespace
    )
    return endpoints
