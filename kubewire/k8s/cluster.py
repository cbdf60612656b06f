"""In-memory model of the orchestrator's reconciliation of the manifests.

Cluster is not a Kubernetes implementation. It keeps just enough behavior
to check the operational claims made about the tutorial manifests:

- pods are created per Deployment replica and get their environment from
  the declared ConfigMaps and Secrets;
- a pod whose references do not resolve waits with
  ``CreateContainerConfigError`` and starts once the object appears,
  because every reconcile retries it;
- a Service's endpoints are the running pods its selector matches.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network
from typing import Dict, Iterable, List, Optional, Union

from kubewire.core.errors import ReferenceResolutionError
from kubewire.k8s.artifact import ManifestDocument, ManifestSet
from kubewire.k8s.constants import DEFAULT_NAMESPACE
from kubewire.k8s.model import ContainerSpec, ManifestObjects, WorkloadSpec
from kubewire.k8s.resolver import Endpoint, bind_service, resolve_container_environment, selector_matches

logger = logging.getLogger(__name__)

POD_NETWORK = IPv4Network("10.244.0.0/16")

RUNNING = "Running"
PENDING = "Pending"


@dataclass
class Pod:
    """A pod created for one Deployment replica.

    ``environment`` maps container name to its materialized environment and
    is only filled in once every container's references resolve.
    """
    name: str
    namespace: str
    deployment: str
    template_hash: str
    labels: Dict[str, str]
    containers: List[ContainerSpec]
    ip: str
    phase: str = PENDING
    reason: Optional[str] = None
    message: Optional[str] = None
    environment: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.phase == RUNNING

    def env(self, container: Optional[str] = None) -> Dict[str, str]:
        """Environment of a container (the first one when None)."""
        if container is None:
            container = self.containers[0].name
        return self.environment.get(container, {})


@dataclass(frozen=True)
class Event:
    """One entry of the event stream, as ``kubectl describe`` lists them."""
    object: str
    reason: str
    message: str

    def __str__(self) -> str:
        return f"{self.object}: {self.reason}: {self.message}"


def pod_template_hash(workload: WorkloadSpec) -> str:
    """Stable short hash of a Deployment's pod template."""
    template = repr((sorted(workload.pod_labels.items()), workload.containers))
    return hashlib.sha256(template.encode("utf-8")).hexdigest()[:10]


class Cluster:
    """Declared objects plus the pods and events reconciled from them.

    Example:
        >>> cluster = Cluster()
        >>> _ = cluster.apply(tutorial_manifests())
        >>> cluster.pod_for("webapp-deployment").env()["DB_URL"]
        'mongo-service'
    """

    def __init__(self):
        self.objects = ManifestObjects()
        self._pods: Dict[str, Pod] = {}
        self._events: List[Event] = []
        self._next_host = 1

    def apply(
        self,
        target: Union[ManifestSet, ManifestDocument, Iterable[ManifestDocument]],
        reconcile: bool = True,
    ) -> List[str]:
        """Create or replace objects, like ``kubectl apply``.

        Args:
            target: A ManifestSet, a single document, or several documents
            reconcile: Run a reconcile pass afterwards

        Returns:
            One ``kind/name created|configured`` line per document

        Raises:
            ManifestError: If a document cannot be modelled
        """
        if isinstance(target, ManifestSet):
            documents = target.documents()
        elif isinstance(target, ManifestDocument):
            documents = [target]
        else:
            documents = list(target)

        results = []
        for doc in documents:
            existed = self.objects.source(doc.kind, doc.name, doc.namespace) is not None
            self.objects.add(doc)
            verb = "configured" if existed else "created"
            results.append(f"{doc.kind.lower()}/{doc.name} {verb}")
            logger.info(f"{doc.kind.lower()}/{doc.name} {verb}")

        if reconcile:
            self.reconcile()
        return results

    def delete(self, kind: str, name: str, namespace: str = DEFAULT_NAMESPACE, reconcile: bool = True) -> bool:
        """Remove an object; returns whether it existed."""
        removed = self.objects.remove(kind, name, namespace)
        if removed:
            logger.info(f"{kind.lower()}/{name} deleted")
        if reconcile:
            self.reconcile()
        return removed

    def reconcile(self) -> None:
        """One pass of the Deployment controller and the kubelet.

        Pods of deleted Deployments and of outdated templates are removed,
        missing replicas are created, and every pod that has not started
        yet retries its environment resolution.
        """
        wanted = {(w.namespace, w.name): w for w in self.objects.workloads.values()}

        for pod in list(self._pods.values()):
            workload = wanted.get((pod.namespace, pod.deployment))
            if workload is None or pod.template_hash != pod_template_hash(workload):
                self._remove_pod(pod)

        for workload in wanted.values():
            self._scale(workload)

        for pod in self._pods.values():
            if not pod.ready:
                self._start(pod)

    def _scale(self, workload: WorkloadSpec) -> None:
        template_hash = pod_template_hash(workload)
        current = [p for p in self._pods.values()
                   if p.namespace == workload.namespace and p.deployment == workload.name]
        for pod in current[workload.replicas:]:
            self._remove_pod(pod)
        index = 0
        for _ in range(len(current), workload.replicas):
            while f"{workload.name}-{template_hash}-{index}" in self._pods:
                index += 1
            name = f"{workload.name}-{template_hash}-{index}"
            pod = Pod(
                name=name,
                namespace=workload.namespace,
                deployment=workload.name,
                template_hash=template_hash,
                labels=dict(workload.pod_labels),
                containers=list(workload.containers),
                ip=self._allocate_ip(),
            )
            self._pods[name] = pod
            self._record(f"pod/{name}", "Scheduled", f"Successfully assigned {pod.namespace}/{name}")

    def _start(self, pod: Pod) -> None:
        environment = {}
        try:
            for container in pod.containers:
                environment[container.name] = resolve_container_environment(container, self.objects, pod.namespace)
        except ReferenceResolutionError as e:
            if pod.reason != e.reason or pod.message != str(e):
                self._record(f"pod/{pod.name}", "Failed", f"Error: {e}")
            pod.phase = PENDING
            pod.reason = e.reason
            pod.message = str(e)
            return

        pod.environment = environment
        pod.phase = RUNNING
        pod.reason = None
        pod.message = None
        for container in pod.containers:
            self._record(f"pod/{pod.name}", "Created", f"Created container {container.name}")
            self._record(f"pod/{pod.name}", "Started", f"Started container {container.name}")

    def _remove_pod(self, pod: Pod) -> None:
        del self._pods[pod.name]
        for container in pod.containers:
            self._record(f"pod/{pod.name}", "Killing", f"Stopping container {container.name}")

    def _allocate_ip(self) -> str:
        address = IPv4Address(int(POD_NETWORK.network_address) + self._next_host)
        self._next_host += 1
        return str(address)

    def _record(self, obj: str, reason: str, message: str) -> None:
        event = Event(object=obj, reason=reason, message=message)
        self._events.append(event)
        logger.debug(str(event))

    def pods(self, selector: Optional[Dict[str, str]] = None) -> List[Pod]:
        """Pods in creation order, optionally filtered by a label selector."""
        pods = list(self._pods.values())
        if selector is not None:
            pods = [p for p in pods if selector_matches(selector, p.labels)]
        return pods

    def pods_for(self, deployment: str) -> List[Pod]:
        return [p for p in self._pods.values() if p.deployment == deployment]

    def pod_for(self, deployment: str) -> Pod:
        """The first pod of a Deployment.

        Raises:
            KeyError: If the Deployment has no pods
        """
        pods = self.pods_for(deployment)
        if not pods:
            raise KeyError(f"no pods for Deployment {deployment}")
        return pods[0]

    def endpoints(self, service: str, namespace: str = DEFAULT_NAMESPACE) -> List[Endpoint]:
        """Current endpoints of a Service.

        Raises:
            KeyError: If the Service is not declared
        """
        return bind_service(self.objects.service(service, namespace), self._pods.values())

    def events(self) -> List[Event]:
        return list(self._events)

    @property
    def healthy(self) -> bool:
        """Whether every pod is running."""
        return all(p.ready for p in self._pods.values())


def simulate(manifests: ManifestSet, skip: Iterable[str] = ()) -> Cluster:
    """Apply a manifest set file by file, as the tutorial's apply sequence does.

    Args:
        manifests: Files in apply order
        skip: ``Kind/name`` entries (e.g. ``Secret/mongo-secret``) left out

    Returns:
        The reconciled Cluster
    """
    skipped = {s.lower() for s in skip}
    cluster = Cluster()
    for filepath, content in manifests.files.items():
        documents = [
            doc for doc in ManifestSet(files={filepath: content}).documents()
            if f"{doc.kind}/{doc.name}".lower() not in skipped
        ]
        if documents:
            cluster.apply(documents)
    return cluster
