"""Typed view of the declared Kubernetes objects.

This module turns parsed manifest documents into frozen dataclasses for
the four kinds the tutorial uses (ConfigMap, Secret, Deployment, Service)
and gathers them into a ManifestObjects index keyed by namespace and name.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from kubewire.core.errors import INVALID_BASE64, ManifestError
from kubewire.k8s.artifact import ManifestDocument, ManifestSet
from kubewire.k8s.constants import (
    CLUSTER_IP,
    CONFIG_MAP,
    DEPLOYMENT,
    SECRET,
    SERVICE,
)
from kubewire.k8s.utils import as_mapping, get_containers, get_pod_template_labels, list_at, mapping_at

logger = logging.getLogger(__name__)

ObjectKey = Tuple[str, str]


@dataclass(frozen=True)
class ConfigMapEntry:
    config_map: str
    key: str
    value: str


@dataclass(frozen=True)
class SecretEntry:
    """One Secret key. ``value`` holds the decoded bytes."""
    secret: str
    key: str
    value: bytes

    def text(self) -> str:
        return self.value.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ConfigMapSpec:
    name: str
    namespace: str
    entries: Dict[str, ConfigMapEntry]

    def keys(self) -> List[str]:
        return list(self.entries)


@dataclass(frozen=True)
class SecretSpec:
    name: str
    namespace: str
    entries: Dict[str, SecretEntry]
    type: str = "Opaque"

    def keys(self) -> List[str]:
        return list(self.entries)


@dataclass(frozen=True)
class KeyRef:
    """Reference from an env var to one key of a ConfigMap or Secret."""
    kind: str
    name: str
    key: str
    optional: bool = False

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.name}:{self.key}"


@dataclass(frozen=True)
class EnvVar:
    """Container environment variable: a literal or a KeyRef."""
    name: str
    value: Optional[str] = None
    ref: Optional[KeyRef] = None

    @property
    def is_literal(self) -> bool:
        return self.ref is None


@dataclass(frozen=True)
class EnvFromSource:
    """Whole-object import of a ConfigMap or Secret (``envFrom``)."""
    kind: str
    name: str
    prefix: str = ""
    optional: bool = False

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.name}"


@dataclass(frozen=True)
class ContainerPort:
    container_port: int
    name: Optional[str] = None
    protocol: str = "TCP"


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    image: str
    ports: Tuple[ContainerPort, ...] = ()
    env: Tuple[EnvVar, ...] = ()
    env_from: Tuple[EnvFromSource, ...] = ()

    def resolve_port(self, target: Union[int, str]) -> Optional[int]:
        """Container port number for a numeric or named target port."""
        if isinstance(target, int):
            return target
        for port in self.ports:
            if port.name == target:
                return port.container_port
        return None

    def exposes(self, target: Union[int, str]) -> bool:
        if isinstance(target, int):
            return any(p.container_port == target for p in self.ports)
        return any(p.name == target for p in self.ports)


@dataclass(frozen=True)
class WorkloadSpec:
    """Deployment: replica count, selector and pod template."""
    name: str
    namespace: str
    replicas: int
    selector: Dict[str, str]
    pod_labels: Dict[str, str]
    containers: Tuple[ContainerSpec, ...]
    labels: Dict[str, str] = field(default_factory=dict)

    def container(self, name: Optional[str] = None) -> ContainerSpec:
        """Named container, or the first one when ``name`` is None.

        Raises:
            KeyError: If no such container exists
        """
        if name is None:
            if not self.containers:
                raise KeyError(f"Deployment {self.name} declares no containers")
            return self.containers[0]
        for container in self.containers:
            if container.name == name:
                return container
        raise KeyError(f"Deployment {self.name} has no container {name}")

    def references(self) -> List[Union[KeyRef, EnvFromSource]]:
        """Every ConfigMap/Secret reference made by any container."""
        refs: List[Union[KeyRef, EnvFromSource]] = []
        for container in self.containers:
            refs.extend(container.env_from)
            refs.extend(var.ref for var in container.env if var.ref is not None)
        return refs


@dataclass(frozen=True)
class ServicePort:
    port: int
    target_port: Union[int, str]
    node_port: Optional[int] = None
    protocol: str = "TCP"
    name: Optional[str] = None


@dataclass(frozen=True)
class ServiceSpec:
    """Service: selector, port mapping and exposure mode."""
    name: str
    namespace: str
    type: str
    selector: Dict[str, str]
    ports: Tuple[ServicePort, ...]

    @property
    def is_external(self) -> bool:
        return self.type != CLUSTER_IP

    @property
    def dns_name(self) -> str:
        return f"{self.name}.{self.namespace}.svc.cluster.local"


def _as_int(value: Any, what: str, path: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ManifestError(f"{what} must be an integer, got {value!r}", path=path) from e


def _target_port(value: Any) -> Union[int, str]:
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text) if text.isdigit() else text


def decode_secret_value(key: str, encoded: Any, path: str = "") -> bytes:
    """Decode one base64 ``data`` value of a Secret.

    Raises:
        ManifestError: If the value is not valid base64
    """
    try:
        return base64.b64decode(str(encoded), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ManifestError(f"secret key {key} is not valid base64", path=path, code=INVALID_BASE64) from e


def parse_config_map(doc: ManifestDocument) -> ConfigMapSpec:
    data = mapping_at(doc.body, ["data"], doc.filepath)
    entries = {
        str(key): ConfigMapEntry(config_map=doc.name, key=str(key), value=str(value))
        for key, value in data.items()
    }
    return ConfigMapSpec(name=doc.name, namespace=doc.namespace, entries=entries)


def parse_secret(doc: ManifestDocument) -> SecretSpec:
    """Parse a Secret; ``stringData`` wins over ``data`` for equal keys."""
    data = mapping_at(doc.body, ["data"], doc.filepath)
    string_data = mapping_at(doc.body, ["stringData"], doc.filepath)
    entries = {}
    for key, encoded in data.items():
        entries[str(key)] = SecretEntry(
            secret=doc.name, key=str(key), value=decode_secret_value(str(key), encoded, doc.filepath)
        )
    for key, plain in string_data.items():
        entries[str(key)] = SecretEntry(secret=doc.name, key=str(key), value=str(plain).encode("utf-8"))
    return SecretSpec(
        name=doc.name,
        namespace=doc.namespace,
        entries=entries,
        type=str(doc.body.get("type", "Opaque")),
    )


def _parse_env_var(raw: Any, path: str) -> EnvVar:
    raw = as_mapping(raw, "env entry", path)
    name = raw.get("name")
    if not name:
        raise ManifestError("env entry without name", path=path)
    name = str(name)
    value_from = as_mapping(raw.get("valueFrom"), f"env {name} valueFrom", path)
    if not value_from:
        value = raw.get("value")
        return EnvVar(name=name, value="" if value is None else str(value))

    for field_name, kind in (("configMapKeyRef", CONFIG_MAP), ("secretKeyRef", SECRET)):
        if value_from.get(field_name) is not None:
            ref = as_mapping(value_from[field_name], f"env {name} {field_name}", path)
            return EnvVar(name=name, ref=KeyRef(
                kind=kind,
                name=str(ref.get("name", "")),
                key=str(ref.get("key", "")),
                optional=bool(ref.get("optional", False)),
            ))
    # fieldRef / resourceFieldRef are filled in by the orchestrator itself
    logger.debug(f"{path}: env {name} uses an unmodelled valueFrom source, treating as literal")
    return EnvVar(name=name, value="")


def _parse_env_from(raw: Any, path: str) -> List[EnvFromSource]:
    raw = as_mapping(raw, "envFrom entry", path)
    sources = []
    for field_name, kind in (("configMapRef", CONFIG_MAP), ("secretRef", SECRET)):
        if raw.get(field_name) is not None:
            ref = as_mapping(raw[field_name], f"envFrom {field_name}", path)
            sources.append(EnvFromSource(
                kind=kind,
                name=str(ref.get("name", "")),
                prefix=str(raw.get("prefix") or ""),
                optional=bool(ref.get("optional", False)),
            ))
    return sources


def _parse_container(raw: Any, path: str) -> ContainerSpec:
    raw = as_mapping(raw, "container", path)
    ports = []
    for p in list_at(raw, ["ports"], path):
        p = as_mapping(p, "container port", path)
        ports.append(ContainerPort(
            container_port=_as_int(p.get("containerPort"), "containerPort", path),
            name=p.get("name"),
            protocol=p.get("protocol", "TCP"),
        ))
    env = tuple(_parse_env_var(e, path) for e in list_at(raw, ["env"], path))
    env_from = tuple(src for e in list_at(raw, ["envFrom"], path) for src in _parse_env_from(e, path))
    return ContainerSpec(
        name=str(raw.get("name", "")),
        image=str(raw.get("image", "")),
        ports=tuple(ports),
        env=env,
        env_from=env_from,
    )


def parse_deployment(doc: ManifestDocument) -> WorkloadSpec:
    path = doc.filepath
    replicas = mapping_at(doc.body, ["spec"], path).get("replicas")
    selector = mapping_at(doc.body, ["spec", "selector", "matchLabels"], path)
    labels = mapping_at(doc.body, ["metadata", "labels"], path)
    return WorkloadSpec(
        name=doc.name,
        namespace=doc.namespace,
        replicas=1 if replicas is None else _as_int(replicas, "replicas", path),
        selector={str(k): str(v) for k, v in selector.items()},
        pod_labels=get_pod_template_labels(doc.body, path),
        containers=tuple(_parse_container(c, path) for c in get_containers(doc.body, path)),
        labels={str(k): str(v) for k, v in labels.items()},
    )


def parse_service(doc: ManifestDocument) -> ServiceSpec:
    path = doc.filepath
    ports = []
    for raw in list_at(doc.body, ["spec", "ports"], path):
        raw = as_mapping(raw, "spec.ports entry", path)
        port = _as_int(raw.get("port"), "port", path)
        target = raw.get("targetPort")
        node_port = raw.get("nodePort")
        ports.append(ServicePort(
            port=port,
            target_port=port if target is None else _target_port(target),
            node_port=None if node_port is None else _as_int(node_port, "nodePort", path),
            protocol=raw.get("protocol", "TCP"),
            name=raw.get("name"),
        ))
    selector = mapping_at(doc.body, ["spec", "selector"], path)
    return ServiceSpec(
        name=doc.name,
        namespace=doc.namespace,
        type=str(mapping_at(doc.body, ["spec"], path).get("type") or CLUSTER_IP),
        selector={str(k): str(v) for k, v in selector.items()},
        ports=tuple(ports),
    )


_PARSERS = {
    CONFIG_MAP: parse_config_map,
    SECRET: parse_secret,
    DEPLOYMENT: parse_deployment,
    SERVICE: parse_service,
}


@dataclass
class ManifestObjects:
    """Index of declared objects, keyed by ``(namespace, name)`` per kind.

    Documents of kinds the model does not cover are kept in ``other``.
    A later document with the same kind, namespace and name replaces an
    earlier one, as a second ``kubectl apply`` would.
    """
    config_maps: Dict[ObjectKey, ConfigMapSpec] = field(default_factory=dict)
    secrets: Dict[ObjectKey, SecretSpec] = field(default_factory=dict)
    workloads: Dict[ObjectKey, WorkloadSpec] = field(default_factory=dict)
    services: Dict[ObjectKey, ServiceSpec] = field(default_factory=dict)
    other: List[ManifestDocument] = field(default_factory=list)
    sources: Dict[Tuple[str, str, str], ManifestDocument] = field(default_factory=dict)

    def _table(self, kind: str) -> Optional[Dict[ObjectKey, Any]]:
        return {
            CONFIG_MAP: self.config_maps,
            SECRET: self.secrets,
            DEPLOYMENT: self.workloads,
            SERVICE: self.services,
        }.get(kind)

    def add(self, doc: ManifestDocument) -> None:
        """Parse and index one document.

        Raises:
            ManifestError: If the document cannot be modelled
        """
        parser = _PARSERS.get(doc.kind)
        if parser is None:
            logger.debug(f"{doc.filepath}: keeping unmodelled {doc.kind} {doc.name} as raw document")
            self.other.append(doc)
            return
        obj = parser(doc)
        table = self._table(doc.kind)
        key = (obj.namespace, obj.name)
        if key in table:
            logger.info(f"{doc.filepath}: {doc.kind} {obj.namespace}/{obj.name} redeclared, later definition wins")
        table[key] = obj
        self.sources[(doc.kind, obj.namespace, obj.name)] = doc

    def remove(self, kind: str, name: str, namespace: str) -> bool:
        table = self._table(kind)
        if table is None:
            return False
        self.sources.pop((kind, namespace, name), None)
        return table.pop((namespace, name), None) is not None

    def get(self, kind: str, name: str, namespace: str) -> Optional[Any]:
        table = self._table(kind)
        return None if table is None else table.get((namespace, name))

    def source(self, kind: str, name: str, namespace: str) -> Optional[ManifestDocument]:
        return self.sources.get((kind, namespace, name))

    def workload(self, name: str, namespace: Optional[str] = None) -> WorkloadSpec:
        """Look up a Deployment by name.

        Raises:
            KeyError: If no Deployment has that name
        """
        for (ns, workload_name), workload in self.workloads.items():
            if workload_name == name and (namespace is None or ns == namespace):
                return workload
        raise KeyError(f"no Deployment named {name}")

    def service(self, name: str, namespace: Optional[str] = None) -> ServiceSpec:
        for (ns, service_name), service in self.services.items():
            if service_name == name and (namespace is None or ns == namespace):
                return service
        raise KeyError(f"no Service named {name}")

    @classmethod
    def from_documents(cls, documents: Iterable[ManifestDocument]) -> "ManifestObjects":
        objects = cls()
        for doc in documents:
            objects.add(doc)
        return objects

    @classmethod
    def from_manifest_set(cls, manifests: ManifestSet) -> "ManifestObjects":
        """Parse and index every document of a ManifestSet.

        Raises:
            ManifestError: On malformed YAML or unmodellable documents
        """
        return cls.from_documents(manifests.documents())
