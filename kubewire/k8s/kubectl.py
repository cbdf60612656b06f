"""Operator workflow around the orchestrator's own CLI.

kubewire does not talk to the Kubernetes API. Applying, inspecting and
deleting the tutorial objects is delegated to ``kubectl``; the external
URL of the NodePort service comes from ``minikube service --url``.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from kubewire.core.config import get_config_value, get_float
from kubewire.core.errors import KubectlError, ManifestError
from kubewire.k8s.constants import APPLY_ORDER, DEFAULT_WEB_SERVICE

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: List[str]
    stdout: str
    stderr: str = ""


def run_command(command: List[str], timeout: float) -> CommandResult:
    """Run an external command and capture its output.

    Raises:
        KubectlError: If the binary is missing, times out, or exits non-zero
    """
    logger.debug(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise KubectlError(f"{command[0]} not found on PATH", command=command) from e
    except subprocess.TimeoutExpired as e:
        raise KubectlError(f"{command[0]} timed out after {timeout}s", command=command) from e

    if result.returncode != 0:
        raise KubectlError(
            f"{' '.join(command)} failed: {result.stderr.strip()}",
            command=command,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return CommandResult(command=command, stdout=result.stdout, stderr=result.stderr)


class Kubectl:
    """Thin wrapper that builds and runs kubectl invocations.

    Defaults come from the ``kubectl`` section of kubewire.json (or the
    KUBECTL_BINARY / KUBECTL_CONTEXT / KUBECTL_NAMESPACE /
    KUBECTL_TIMEOUT_SECONDS environment variables).
    """

    def __init__(
        self,
        binary: Optional[str] = None,
        context: Optional[str] = None,
        namespace: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        dry_run: bool = False,
    ):
        self.binary = binary or get_config_value(["kubectl", "binary"], default="kubectl")
        self.context = context or get_config_value(["kubectl", "context"])
        self.namespace = namespace or get_config_value(["kubectl", "namespace"])
        if timeout_seconds is None:
            timeout_seconds = get_float(["kubectl", "timeout_seconds"], default=60.0)
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run

    def command(self, *args: str) -> List[str]:
        command = [self.binary]
        if self.context:
            command += ["--context", self.context]
        if self.namespace:
            command += ["--namespace", self.namespace]
        command += list(args)
        return command

    def run(self, *args: str) -> CommandResult:
        return run_command(self.command(*args), self.timeout_seconds)

    def apply(self, path: Path) -> CommandResult:
        args = ["apply", "-f", str(path)]
        if self.dry_run:
            args.append("--dry-run=client")
        return self.run(*args)

    def delete(self, path: Path) -> CommandResult:
        args = ["delete", "-f", str(path), "--ignore-not-found"]
        if self.dry_run:
            args.append("--dry-run=client")
        return self.run(*args)

    def get(self, *resources: str) -> CommandResult:
        return self.run("get", ",".join(resources), "-o", "wide")


def ordered_manifest_paths(manifest_dir: str) -> List[Path]:
    """The tutorial manifests under a directory, in apply order.

    Raises:
        ManifestError: If any of the four files is missing
    """
    directory = Path(manifest_dir)
    paths = [directory / name for name in APPLY_ORDER]
    missing = [p.name for p in paths if not p.is_file()]
    if missing:
        raise ManifestError(f"missing manifest files: {', '.join(missing)}", path=str(directory))
    return paths


def apply_manifests(kubectl: Kubectl, manifest_dir: str) -> List[CommandResult]:
    """Apply ConfigMap, Secret, database and application manifests in order.

    Nothing is applied when a file is missing. A kubectl failure stops the
    sequence; files applied before it stay applied.

    Raises:
        ManifestError: If a manifest file is missing
        KubectlError: If kubectl fails
    """
    results = []
    for path in ordered_manifest_paths(manifest_dir):
        logger.info(f"Applying {path.name}")
        results.append(kubectl.apply(path))
    return results


def delete_manifests(kubectl: Kubectl, manifest_dir: str) -> List[CommandResult]:
    """Delete the tutorial objects, application first."""
    results = []
    for path in reversed(ordered_manifest_paths(manifest_dir)):
        logger.info(f"Deleting {path.name}")
        results.append(kubectl.delete(path))
    return results


def status(kubectl: Kubectl) -> List[CommandResult]:
    """``kubectl get all`` followed by the ConfigMap and Secret listing."""
    return [kubectl.get("all"), kubectl.get("configmap", "secret")]


def service_url(
    service: str = DEFAULT_WEB_SERVICE,
    minikube_binary: Optional[str] = None,
    timeout_seconds: float = 60.0,
) -> str:
    """External URL of a NodePort service, from ``minikube service --url``.

    Raises:
        KubectlError: If minikube fails or prints no URL
    """
    binary = minikube_binary or get_config_value(["minikube", "binary"], default="minikube")
    result = run_command([binary, "service", service, "--url"], timeout_seconds)
    urls = [line.strip() for line in result.stdout.splitlines() if line.strip().startswith("http")]
    if not urls:
        raise KubectlError(f"minikube printed no URL for service {service}", command=result.command)
    return urls[0]
