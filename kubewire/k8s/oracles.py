"""K8s oracles for manifest validation.

This module implements oracles that check how the declared objects refer to
each other: Service selectors against Deployment pod labels, environment
references against ConfigMap/Secret keys, and Service ports against
container ports. A schema oracle checks each document against the
Kubernetes OpenAPI schema.

Every oracle takes a ManifestSet and returns Violations. Problems in the
input are reported as violations, never raised.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

import kubernetes_validate
from kubernetes_validate.utils import (
    InvalidSchemaError,
    SchemaNotFoundError,
    ValidationError,
    VersionNotSupportedError,
)

from kubewire.core.config import get_bool, get_config_value
from kubewire.core.errors import INVALID_BASE64, ManifestError
from kubewire.core.schema.oracle import Oracle
from kubewire.core.schema.violation import Violation
from kubewire.k8s.artifact import ManifestSet, parse_documents
from kubewire.k8s.constants import DEPLOYMENT, LOAD_BALANCER, NODE_PORT, NODE_PORT_RANGE, SECRET, SERVICE
from kubewire.k8s.model import KeyRef, ManifestObjects, WorkloadSpec, decode_secret_value
from kubewire.k8s.resolver import find_unresolved_references, matching_workloads

logger = logging.getLogger(__name__)


def load_objects(artifact: ManifestSet) -> Optional[ManifestObjects]:
    """Model a manifest set, or None when it cannot be parsed.

    ParseOracle reports the parse problems; the wiring oracles return no
    violations of their own for a set they cannot read.
    """
    try:
        return ManifestObjects.from_manifest_set(artifact)
    except ManifestError as e:
        logger.debug(f"Skipping wiring checks, manifests do not load: {e}")
        return None


def _source_path(objects: ManifestObjects, kind: str, name: str, namespace: str) -> List[str]:
    doc = objects.source(kind, name, namespace)
    return doc.path if doc is not None else [kind, name]


class ParseOracle:
    """Checks that every file parses and every document has kind and name."""

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        violations = []
        for filepath, content in artifact.files.items():
            try:
                documents = parse_documents(filepath, content)
            except ManifestError as e:
                violations.append(Violation(
                    id=f"parse.{e.code}",
                    message=str(e),
                    path=[filepath],
                    severity="error",
                ))
                continue
            if not documents:
                violations.append(Violation(
                    id="parse.EMPTY_FILE",
                    message=f"{filepath} contains no documents",
                    path=[filepath],
                    severity="warning",
                ))
            for doc in documents:
                try:
                    ManifestObjects.from_documents([doc])
                except ManifestError as e:
                    if e.code == INVALID_BASE64:
                        # SecretOracle reports undecodable values per key
                        continue
                    violations.append(Violation(
                        id="parse.INVALID_MANIFEST",
                        message=str(e),
                        path=doc.path,
                        severity="error",
                        evidence={"kind": doc.kind, "name": doc.name, "namespace": doc.namespace},
                    ))
        return violations


class SelectorOracle:
    """Service selector oracle.

    Each Service selector must match the pod template labels of exactly one
    Deployment. No match leaves the Service without endpoints; more than
    one mixes unrelated pods behind one address.
    """

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        objects = load_objects(artifact)
        if objects is None:
            return []

        violations = []
        for (namespace, name), service in objects.services.items():
            path = _source_path(objects, SERVICE, name, namespace)
            if not service.selector:
                violations.append(Violation(
                    id="selector.EMPTY_SELECTOR",
                    message=f"Service {name} has no selector; its endpoints are not managed from pod labels",
                    path=path + ["spec", "selector"],
                    severity="warning",
                    evidence={"kind": SERVICE, "name": name, "namespace": namespace},
                ))
                continue

            matches = matching_workloads(service, objects)
            if not matches:
                violations.append(Violation(
                    id="selector.NO_MATCHING_WORKLOAD",
                    message=f"Service {name} selector {service.selector} matches no Deployment pod template",
                    path=path + ["spec", "selector"],
                    severity="error",
                    evidence={
                        "kind": SERVICE,
                        "name": name,
                        "namespace": namespace,
                        "expected": service.selector,
                        "actual": {w.name: w.pod_labels for w in objects.workloads.values()},
                    },
                ))
            elif len(matches) > 1:
                violations.append(Violation(
                    id="selector.AMBIGUOUS_WORKLOAD",
                    message=(f"Service {name} selector {service.selector} matches "
                             f"{len(matches)} Deployments: {', '.join(w.name for w in matches)}"),
                    path=path + ["spec", "selector"],
                    severity="error",
                    evidence={
                        "kind": SERVICE,
                        "name": name,
                        "namespace": namespace,
                        "actual": [w.name for w in matches],
                    },
                ))
        return violations


class WorkloadSelectorOracle:
    """Checks that each Deployment's selector selects its own pod template."""

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        objects = load_objects(artifact)
        if objects is None:
            return []

        violations = []
        for (namespace, name), workload in objects.workloads.items():
            path = _source_path(objects, DEPLOYMENT, name, namespace)
            if not workload.selector:
                violations.append(Violation(
                    id="workload.MISSING_SELECTOR",
                    message=f"Deployment {name} must set spec.selector.matchLabels",
                    path=path + ["spec", "selector"],
                    severity="error",
                    evidence={"kind": DEPLOYMENT, "name": name, "namespace": namespace},
                ))
                continue
            mismatched = {
                key: value for key, value in workload.selector.items()
                if workload.pod_labels.get(key) != value
            }
            if mismatched:
                violations.append(Violation(
                    id="workload.SELECTOR_MISMATCH",
                    message=(f"Deployment {name} selector {workload.selector} does not match "
                             f"its pod template labels {workload.pod_labels}"),
                    path=path + ["spec", "template", "metadata", "labels"],
                    severity="error",
                    evidence={
                        "kind": DEPLOYMENT,
                        "name": name,
                        "namespace": namespace,
                        "expected": workload.selector,
                        "actual": workload.pod_labels,
                    },
                ))
        return violations


class ReferenceOracle:
    """Environment reference oracle.

    Every ``configMapKeyRef``/``secretKeyRef``/``envFrom`` reference must
    name a declared object and, for key references, an existing key.
    Optional references are allowed to dangle.
    """

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        objects = load_objects(artifact)
        if objects is None:
            return []

        violations = []
        for (namespace, name), workload in objects.workloads.items():
            path = _source_path(objects, DEPLOYMENT, name, namespace)
            for container, ref, error in find_unresolved_references(workload, objects):
                target = objects.get(ref.kind, ref.name, namespace)
                missing_key = target is not None and isinstance(ref, KeyRef)
                violations.append(Violation(
                    id="reference.MISSING_KEY" if missing_key else "reference.MISSING_OBJECT",
                    message=f"Deployment {name} container {container.name}: {error}",
                    path=path + ["spec", "template", "spec", "containers", container.name],
                    severity="error",
                    evidence={
                        "kind": DEPLOYMENT,
                        "name": name,
                        "namespace": namespace,
                        "reference": str(ref),
                        "expected": ref.key if missing_key else ref.name,
                        "actual": target.keys() if target is not None else None,
                    },
                ))
        return violations


class PortOracle:
    """Service port wiring oracle.

    - every target port must be declared by a container of each selected
      Deployment;
    - node ports must fall in the node port range, be unique across
      Services, and only appear on NodePort Services.
    """

    def __init__(self, node_port_range: Tuple[int, int] = NODE_PORT_RANGE):
        self.node_port_range = node_port_range

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        objects = load_objects(artifact)
        if objects is None:
            return []

        violations = []
        claimed: Dict[int, List[str]] = defaultdict(list)
        low, high = self.node_port_range

        for (namespace, name), service in objects.services.items():
            path = _source_path(objects, SERVICE, name, namespace)
            workloads = matching_workloads(service, objects)

            for service_port in service.ports:
                for workload in workloads:
                    if not self._exposed(workload, service_port.target_port):
                        violations.append(Violation(
                            id="port.TARGET_NOT_EXPOSED",
                            message=(f"Service {name} targets port {service_port.target_port} "
                                     f"but Deployment {workload.name} declares no such container port"),
                            path=path + ["spec", "ports"],
                            severity="error",
                            evidence={
                                "kind": SERVICE,
                                "name": name,
                                "namespace": namespace,
                                "expected": service_port.target_port,
                                "actual": [p.container_port for c in workload.containers for p in c.ports],
                            },
                        ))

                if service_port.node_port is None:
                    continue
                if service.type in (NODE_PORT, LOAD_BALANCER):
                    claimed[service_port.node_port].append(name)
                else:
                    violations.append(Violation(
                        id="port.NODE_PORT_ON_CLUSTER_IP",
                        message=f"Service {name} sets nodePort {service_port.node_port} but has type {service.type}",
                        path=path + ["spec", "ports"],
                        severity="error",
                        evidence={"kind": SERVICE, "name": name, "namespace": namespace,
                                  "actual": service.type},
                    ))
                if not low <= service_port.node_port <= high:
                    violations.append(Violation(
                        id="port.NODE_PORT_OUT_OF_RANGE",
                        message=f"Service {name} nodePort {service_port.node_port} is outside {low}-{high}",
                        path=path + ["spec", "ports"],
                        severity="error",
                        evidence={"kind": SERVICE, "name": name, "namespace": namespace,
                                  "expected": [low, high], "actual": service_port.node_port},
                    ))

        for node_port, owners in sorted(claimed.items()):
            if len(owners) > 1:
                violations.append(Violation(
                    id="port.DUPLICATE_NODE_PORT",
                    message=f"nodePort {node_port} is claimed by several Services: {', '.join(owners)}",
                    path=[SERVICE] + owners,
                    severity="error",
                    evidence={"actual": owners, "expected": node_port},
                ))
        return violations

    @staticmethod
    def _exposed(workload: WorkloadSpec, target) -> bool:
        return any(container.exposes(target) for container in workload.containers)


class SecretOracle:
    """Checks that Secret ``data`` values are valid base64.

    Works on the raw documents so a bad value is reported per key instead
    of failing the whole Secret.
    """

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        violations = []
        for filepath, content in artifact.files.items():
            try:
                documents = parse_documents(filepath, content)
            except ManifestError:
                continue
            for doc in documents:
                if doc.kind != SECRET:
                    continue
                data = doc.body.get("data")
                if not isinstance(data, dict):
                    continue
                for key, value in data.items():
                    try:
                        decode_secret_value(str(key), value, filepath)
                    except ManifestError:
                        violations.append(Violation(
                            id="secret.INVALID_BASE64",
                            message=f"Secret {doc.name} key {key} is not valid base64",
                            path=doc.path + ["data", str(key)],
                            severity="error",
                            evidence={"kind": SECRET, "name": doc.name, "namespace": doc.namespace,
                                      "reference": f"secret/{doc.name}:{key}"},
                        ))
        return violations


class SchemaOracle:
    """K8s schema validation oracle.

    Validates each document against the Kubernetes OpenAPI schema using the
    kubernetes-validate library.
    """

    def __init__(self, kubernetes_version: Optional[str] = None, strict: Optional[bool] = None):
        """Initialize SchemaOracle.

        Args:
            kubernetes_version: Schema version to validate against
                                (default: schema.kubernetes_version from config, or 1.28)
            strict: Reject fields unknown to the schema
                    (default: schema.strict from config, or False)
        """
        if kubernetes_version is None:
            kubernetes_version = str(get_config_value(["schema", "kubernetes_version"], default="1.28"))
        if strict is None:
            strict = get_bool(["schema", "strict"], default=False)
        self.kubernetes_version = kubernetes_version
        self.strict = strict
        self.logger = logging.getLogger(__name__)

    def __call__(self, artifact: ManifestSet) -> List[Violation]:
        violations = []
        for filepath, content in artifact.files.items():
            try:
                documents = parse_documents(filepath, content)
            except ManifestError:
                continue

            for doc in documents:
                try:
                    kubernetes_validate.validate(doc.body, self.kubernetes_version, self.strict)
                except ValidationError as e:
                    caught = getattr(e, "caught", e)
                    message = getattr(caught, "message", None) or str(e)
                    violations.append(Violation(
                        id="schema.VALIDATION_ERROR",
                        message=f"{doc.kind} {doc.name}: {message}",
                        path=doc.path,
                        severity="error",
                        evidence={"kind": doc.kind, "name": doc.name, "namespace": doc.namespace},
                    ))
                except (SchemaNotFoundError, InvalidSchemaError, VersionNotSupportedError) as e:
                    self.logger.debug(f"No schema for {doc.kind} {doc.name}: {e}")
                    violations.append(Violation(
                        id="schema.UNSUPPORTED",
                        message=f"{doc.kind} {doc.name}: no schema for Kubernetes {self.kubernetes_version}",
                        path=doc.path,
                        severity="warning",
                        evidence={"kind": doc.kind, "name": doc.name, "namespace": doc.namespace},
                    ))
        return violations


def run_oracles(artifact: ManifestSet, oracles: Iterable[Oracle]) -> List[Violation]:
    """Run oracles in order and concatenate their violations."""
    violations = []
    for oracle in oracles:
        found = oracle(artifact)
        logger.info(f"{type(oracle).__name__}: {len(found)} violation(s)")
        violations.extend(found)
    return violations
