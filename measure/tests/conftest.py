"""Shared test fixtures for the measurement tests."""

import os
import sys
from pathlib import Path

import pytest

# Add measure/ to Python path so imports work
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

# Disable Langfuse during tests so @observe spans are not exported
os.environ.pop("LANGFUSE_PUBLIC_KEY", None)
os.environ.pop("LANGFUSE_SECRET_KEY", None)
os.environ["LANGFUSE_ENABLED"] = "false"

from models.measurement_schemas import MeasurementSpec  # noqa: E402
from services.cluster import ClusterContext  # noqa: E402


def make_pod(name: str, namespace: str = "default", phase: str = "Running", container: str = "app") -> dict:
    """Factory for a pod object as returned by the Kubernetes API."""
    return {
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"containers": [{"name": container}, {"name": "sidecar"}]},
        "status": {"phase": phase},
    }


class FakePodLister:
    """Pod lister keyed by label selector string; a value that is an
    exception is raised instead of returned."""

    def __init__(self, pods_by_selector: dict | None = None):
        self.pods_by_selector = pods_by_selector or {}
        self.calls: list[tuple[str, str]] = []

    async def list_pods(self, namespace, label_selector):
        self.calls.append((namespace, label_selector))
        result = self.pods_by_selector.get(label_selector, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeExecutor:
    """Writes a fixed payload into the sink, mirroring merged stdout/stderr."""

    def __init__(self, payload: bytes = b"profile-bytes", returncode: int = 0, fail_for: set | None = None):
        self.payload = payload
        self.returncode = returncode
        self.fail_for = fail_for or set()
        self.commands: list[tuple[str, list[str]]] = []

    async def exec_stream(self, endpoint, command, sink):
        self.commands.append((endpoint.name, list(command)))
        if endpoint.name in self.fail_for:
            raise ConnectionError(f"exec into {endpoint.name} refused")
        sink.write(self.payload)
        return self.returncode


def make_pprof_spec(directory: Path, targets=None, interval="1s", name: str = "pprof") -> MeasurementSpec:
    return MeasurementSpec.model_validate(
        {
            "name": name,
            "pprofDirectory": str(directory),
            "pprofInterval": interval,
            "pprofTargets": targets or [],
        }
    )


def api_target(**overrides) -> dict:
    data = {
        "name": "api",
        "namespace": "default",
        "labelSelector": {"app": "api"},
        "url": "https://localhost:6060/debug/pprof/heap",
    }
    data.update(overrides)
    return data


@pytest.fixture
def pod_lister():
    return FakePodLister({"app=api": [make_pod("e1"), make_pod("e2")]})


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def cluster(pod_lister, executor):
    return ClusterContext(pod_lister=pod_lister, executor=executor, stop_timeout=5)
