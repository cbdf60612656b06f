"""Reference resolution and Service-to-Workload binding.

These are the two pieces of wiring the orchestrator performs when it
starts pods from the tutorial manifests:

- a container's environment is materialized from literals and from
  ConfigMap/Secret keys;
- a Service's endpoints are the ready pods whose labels match its selector.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from kubewire.core.errors import ReferenceResolutionError
from kubewire.k8s.constants import SECRET
from kubewire.k8s.model import (
    ConfigMapSpec,
    ContainerSpec,
    EnvFromSource,
    KeyRef,
    ManifestObjects,
    SecretSpec,
    ServiceSpec,
    WorkloadSpec,
)

logger = logging.getLogger(__name__)

Reference = Union[KeyRef, EnvFromSource]


def _lookup(
    objects: ManifestObjects, kind: str, name: str, namespace: str
) -> Optional[Union[ConfigMapSpec, SecretSpec]]:
    return objects.get(kind, name, namespace)


def _not_found(kind: str, name: str) -> str:
    return f'{kind.lower()} "{name}" not found'


def _entry_text(obj: Union[ConfigMapSpec, SecretSpec], key: str) -> str:
    entry = obj.entries[key]
    if isinstance(obj, SecretSpec):
        return entry.text()
    return entry.value


def resolve_key_ref(ref: KeyRef, objects: ManifestObjects, namespace: str) -> Optional[str]:
    """Value of one ConfigMap/Secret key reference.

    Returns:
        The value, or None when an optional reference does not resolve

    Raises:
        ReferenceResolutionError: If a required object or key is missing
    """
    obj = _lookup(objects, ref.kind, ref.name, namespace)
    if obj is None:
        if ref.optional:
            return None
        raise ReferenceResolutionError(_not_found(ref.kind, ref.name), reference=ref)
    if ref.key not in obj.entries:
        if ref.optional:
            return None
        raise ReferenceResolutionError(
            f"couldn't find key {ref.key} in {ref.kind} {namespace}/{ref.name}", reference=ref
        )
    return _entry_text(obj, ref.key)


def _resolve_env_from(
    source: EnvFromSource, objects: ManifestObjects, namespace: str
) -> Dict[str, str]:
    obj = _lookup(objects, source.kind, source.name, namespace)
    if obj is None:
        if source.optional:
            return {}
        raise ReferenceResolutionError(_not_found(source.kind, source.name), reference=source)
    return {f"{source.prefix}{key}": _entry_text(obj, key) for key in obj.entries}


def _materialize(
    container: ContainerSpec, objects: ManifestObjects, namespace: str
) -> Tuple[Dict[str, str], Set[str]]:
    environment: Dict[str, str] = {}
    from_secrets: Set[str] = set()
    for source in container.env_from:
        values = _resolve_env_from(source, objects, namespace)
        environment.update(values)
        if source.kind == SECRET:
            from_secrets.update(values)
        else:
            from_secrets.difference_update(values)
    for var in container.env:
        if var.ref is None:
            environment[var.name] = var.value or ""
            from_secrets.discard(var.name)
            continue
        value = resolve_key_ref(var.ref, objects, namespace)
        if value is None:
            continue
        environment[var.name] = value
        if var.ref.kind == SECRET:
            from_secrets.add(var.name)
        else:
            from_secrets.discard(var.name)
    return environment, from_secrets


def resolve_container_environment(
    container: ContainerSpec, objects: ManifestObjects, namespace: str
) -> Dict[str, str]:
    """Materialize the environment of one container.

    ``envFrom`` sources are applied first, in order; ``env`` entries are
    applied afterwards and override them.

    Raises:
        ReferenceResolutionError: On the first required reference that fails
    """
    return _materialize(container, objects, namespace)[0]


def secret_variable_names(
    container: ContainerSpec, objects: ManifestObjects, namespace: str
) -> Set[str]:
    """Names whose final value comes from a Secret, via ``env`` or ``envFrom``.

    A name a later literal or ConfigMap entry overrides is not included.

    Raises:
        ReferenceResolutionError: On the first required reference that fails
    """
    return _materialize(container, objects, namespace)[1]


def resolve_environment(
    workload: WorkloadSpec, objects: ManifestObjects, container: Optional[str] = None
) -> Dict[str, str]:
    """Materialize the environment of a workload's container.

    Args:
        workload: Deployment to resolve
        objects: Declared ConfigMaps and Secrets
        container: Container name (first container when None)

    Returns:
        Environment variable name -> value

    Raises:
        ReferenceResolutionError: If a required reference does not resolve
    """
    return resolve_container_environment(workload.container(container), objects, workload.namespace)


def find_unresolved_references(
    workload: WorkloadSpec, objects: ManifestObjects
) -> List[Tuple[ContainerSpec, Reference, ReferenceResolutionError]]:
    """Every required reference of a workload that does not resolve.

    Unlike resolve_environment this does not stop at the first failure.
    """
    failures = []
    for container in workload.containers:
        refs: List[Reference] = list(container.env_from)
        refs.extend(var.ref for var in container.env if var.ref is not None)
        for ref in refs:
            try:
                if isinstance(ref, KeyRef):
                    resolve_key_ref(ref, objects, workload.namespace)
                else:
                    _resolve_env_from(ref, objects, workload.namespace)
            except ReferenceResolutionError as e:
                failures.append((container, ref, e))
    return failures


def selector_matches(selector: Mapping[str, str], labels: Mapping[str, str]) -> bool:
    """Whether every selector label is present with the same value.

    An empty selector matches nothing.
    """
    if not selector:
        return False
    return all(labels.get(key) == value for key, value in selector.items())


def matching_workloads(service: ServiceSpec, objects: ManifestObjects) -> List[WorkloadSpec]:
    """Deployments in the Service's namespace whose pod template labels match."""
    return [
        workload
        for (namespace, _), workload in objects.workloads.items()
        if namespace == service.namespace and selector_matches(service.selector, workload.pod_labels)
    ]


@dataclass(frozen=True)
class Endpoint:
    pod: str
    ip: str
    port: int

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


def bind_service(service: ServiceSpec, pods: Iterable[Any]) -> List[Endpoint]:
    """Endpoints of a Service over the current set of pods.

    Each pod must expose ``name``, ``namespace``, ``labels``, ``ip``,
    ``ready`` and ``containers``. Only ready pods in the Service's
    namespace are bound; a named target port that no container declares
    yields no endpoint for that pod. Result order follows ``pods``.
    """
    endpoints = []
    for pod in pods:
        if pod.namespace != service.namespace or not pod.ready:
            continue
        if not selector_matches(service.selector, pod.labels):
            continue
        for service_port in service.ports:
            port = _resolve_target_port(service_port.target_port, pod.containers)
            if port is None:
                logger.debug(
                    f"Service {service.name}: pod {pod.name} does not declare port {service_port.target_port}"
                )
                continue
            endpoints.append(Endpoint(pod=pod.name, ip=pod.ip, port=port))
    return endpoints


def _resolve_target_port(target: Union[int, str], containers: Iterable[ContainerSpec]) -> Optional[int]:
    if isinstance(target, int):
        return target
    for container in containers:
        port = container.resolve_port(target)
        if port is not None:
            return port
    return None


__all__ = [
    "Endpoint",
    "bind_service",
    "find_unresolved_references",
    "matching_workloads",
    "resolve_container_environment",
    "resolve_environment",
    "resolve_key_ref",
    "selector_matches",
]
