"""Remote collector: run curl inside a pod and stream its output to a file."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import BinaryIO, Callable, Protocol, Sequence

from models.measurement_schemas import Artifact, Endpoint, PProfTarget
from services.kube_credentials import KubeCredentials
from services.measurements.exceptions import RemoteExecutionError

logger = logging.getLogger(__name__)

ARTIFACT_EXTENSION = "pprof"


def build_pprof_command(target: PProfTarget) -> list[str]:
    """Return the curl invocation fetching the target's profile URL."""
    if target.bearer_token:
        return [
            "curl",
            "-sSLkH",
            f"Authorization: Bearer {target.bearer_token}",
            target.url,
        ]
    return ["curl", "-sSLk", target.url]


def artifact_path(directory: Path, target_name: str, endpoint_name: str, timestamp: int) -> Path:
    return directory / f"{target_name}-{endpoint_name}-{timestamp}.{ARTIFACT_EXTENSION}"


class CommandExecutor(Protocol):
    async def exec_stream(
        self, endpoint: Endpoint, command: Sequence[str], sink: BinaryIO
    ) -> int: ...


class KubectlExecutor:
    """Execute commands in pod containers through ``kubectl exec``.

    stdout and stderr of the remote command are both written to *sink*.
    kubectl is pointed at the same server and credentials as the pod lister.
    """

    def __init__(
        self,
        kubectl_bin: str = "kubectl",
        credentials: KubeCredentials | None = None,
        timeout: float | None = 60,
    ) -> None:
        self.kubectl_bin = kubectl_bin
        self.credentials = credentials
        self.timeout = timeout

    def argv(self, endpoint: Endpoint, command: Sequence[str]) -> list[str]:
        argv = [self.kubectl_bin]
        if self.credentials is not None:
            argv += self.credentials.kubectl_flags()
        argv += [
            "exec",
            "-n",
            endpoint.namespace,
            endpoint.name,
            "-c",
            endpoint.container,
            "--",
            *command,
        ]
        return argv

    async def exec_stream(
        self, endpoint: Endpoint, command: Sequence[str], sink: BinaryIO
    ) -> int:
        argv = self.argv(endpoint, command)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=sink,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise RemoteExecutionError(f"cannot run {self.kubectl_bin}: {exc}") from exc

        try:
            return await asyncio.wait_for(process.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _reap(process)
            raise RemoteExecutionError(
                f"exec in {endpoint.namespace}/{endpoint.name} timed out after {self.timeout}s"
            )
        except BaseException:
            # Cancelled: the child must not outlive its task or keep writing to sink
            await _reap(process)
            raise


async def _reap(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def collect_from_endpoint(
    executor: CommandExecutor,
    directory: Path,
    target: PProfTarget,
    endpoint: Endpoint,
    now: Callable[[], float] = time.time,
) -> Artifact:
    """Collect one profile from *endpoint* into a new artifact file.

    Never raises: every failure is logged with the target and pod name and
    reported on the returned Artifact.
    """
    timestamp = int(now())
    path = artifact_path(directory, target.name, endpoint.name, timestamp)
    artifact = Artifact(path=path, target=target.name, endpoint=endpoint.name, timestamp=timestamp)

    loop = asyncio.get_running_loop()
    try:
        # Artifacts are write-once; never clobber one from an earlier pass
        sink = await loop.run_in_executor(None, open, path, "xb")
    except OSError as exc:
        logger.error("Error creating pprof file %s: %s", path.name, exc)
        return artifact.model_copy(update={"ok": False, "error": str(exc)})

    command = build_pprof_command(target)
    try:
        with sink:
            returncode = await executor.exec_stream(endpoint, command, sink)
        if returncode != 0:
            raise RemoteExecutionError(f"command exited with status {returncode}")
    except Exception as exc:
        logger.error(
            "Failed to execute pprof command on %s/%s: %s", target.name, endpoint.name, exc
        )
        return artifact.model_copy(update={"ok": False, "error": str(exc)})

    logger.debug("Collected %s", path)
    return artifact
