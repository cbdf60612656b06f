"""Tests for the typed manifest model."""

import pytest

from kubewire.core.errors import INVALID_BASE64, INVALID_MANIFEST, ManifestError
from kubewire.k8s.artifact import ManifestSet, parse_documents
from kubewire.k8s.model import (
    EnvFromSource,
    KeyRef,
    ManifestObjects,
    parse_config_map,
    parse_deployment,
    parse_secret,
    parse_service,
)
from tests.manifests import CONFIG_MAP, MONGO, SECRET, TUTORIAL_FILES, WEBAPP

ENV_FROM_DEPLOYMENT = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: worker
  namespace: jobs
spec:
  selector:
    matchLabels:
      app: worker
  template:
    metadata:
      labels:
        app: worker
    spec:
      containers:
      - name: worker
        image: busybox
        ports:
        - name: http
          containerPort: 8080
        envFrom:
        - configMapRef:
            name: mongo-config
        - prefix: DB_
          secretRef:
            name: mongo-secret
            optional: true
        env:
        - name: MODE
          value: batch
        - name: NODE
          valueFrom:
            fieldRef:
              fieldPath: spec.nodeName
"""


def _doc(content, index=0):
    return parse_documents("test.yaml", content)[index]


class TestConfigMapAndSecret:

    def test_config_map_entry(self):
        config_map = parse_config_map(_doc(CONFIG_MAP))

        assert config_map.name == "mongo-config"
        assert config_map.keys() == ["mongo-url"]
        assert config_map.entries["mongo-url"].value == "mongo-service"

    def test_secret_values_decoded(self):
        secret = parse_secret(_doc(SECRET))

        assert secret.type == "Opaque"
        assert secret.entries["mongo-user"].value == b"mongouser"
        assert secret.entries["mongo-password"].text() == "mongopassword"

    def test_string_data_taken_verbatim(self):
        doc = _doc("""apiVersion: v1
kind: Secret
metadata:
  name: s
data:
  user: YQ==
stringData:
  user: plain
  token: abc
""")
        secret = parse_secret(doc)

        assert secret.entries["user"].value == b"plain"
        assert secret.entries["token"].value == b"abc"

    def test_invalid_base64_rejected(self):
        doc = _doc("""apiVersion: v1
kind: Secret
metadata:
  name: s
data:
  user: not*base64
""")
        with pytest.raises(ManifestError, match="not valid base64") as excinfo:
            parse_secret(doc)

        assert excinfo.value.code == INVALID_BASE64

    def test_config_map_data_must_be_mapping(self):
        doc = _doc(CONFIG_MAP.replace("  mongo-url: mongo-service\n", "- mongo-service\n"))

        with pytest.raises(ManifestError, match="data must be a mapping, got list") as excinfo:
            parse_config_map(doc)

        assert excinfo.value.code == INVALID_MANIFEST
        assert excinfo.value.path == "test.yaml"

    def test_string_data_must_be_mapping(self):
        with pytest.raises(ManifestError, match="stringData must be a mapping"):
            parse_secret(_doc(SECRET + "stringData: plain\n"))


class TestWorkloadSpec:

    def test_webapp_deployment(self):
        workload = parse_deployment(_doc(WEBAPP, 0))

        assert workload.name == "webapp-deployment"
        assert workload.replicas == 1
        assert workload.selector == {"app": "webapp"}
        assert workload.pod_labels == {"app": "webapp"}
        container = workload.container()
        assert container.image == "nanajanashia/k8s-demo-app:v1.0"
        assert [p.container_port for p in container.ports] == [3000]

    def test_env_references(self):
        workload = parse_deployment(_doc(WEBAPP, 0))

        env = {var.name: var for var in workload.container().env}

        assert env["DB_URL"].ref == KeyRef(kind="ConfigMap", name="mongo-config", key="mongo-url")
        assert env["USER_NAME"].ref == KeyRef(kind="Secret", name="mongo-secret", key="mongo-user")
        assert not env["DB_URL"].is_literal

    def test_env_from_and_literals(self):
        workload = parse_deployment(_doc(ENV_FROM_DEPLOYMENT))
        container = workload.container("worker")

        assert workload.namespace == "jobs"
        assert workload.replicas == 1
        assert container.env_from == (
            EnvFromSource(kind="ConfigMap", name="mongo-config"),
            EnvFromSource(kind="Secret", name="mongo-secret", prefix="DB_", optional=True),
        )
        assert container.env[0].value == "batch"
        assert container.env[1].is_literal

    def test_named_port_resolution(self):
        container = parse_deployment(_doc(ENV_FROM_DEPLOYMENT)).container()

        assert container.resolve_port("http") == 8080
        assert container.resolve_port(9090) == 9090
        assert container.resolve_port("grpc") is None
        assert container.exposes("http")
        assert container.exposes(8080)
        assert not container.exposes(9090)

    def test_references_listed(self):
        workload = parse_deployment(_doc(WEBAPP, 0))

        assert [str(r) for r in workload.references()] == [
            "secret/mongo-secret:mongo-user",
            "secret/mongo-secret:mongo-password",
            "configmap/mongo-config:mongo-url",
        ]

    def test_unknown_container(self):
        workload = parse_deployment(_doc(WEBAPP, 0))

        with pytest.raises(KeyError):
            workload.container("sidecar")

    def test_non_integer_replicas(self):
        doc = _doc(WEBAPP.replace("replicas: 1", "replicas: many"))

        with pytest.raises(ManifestError, match="replicas"):
            parse_deployment(doc)

    @pytest.mark.parametrize("old,new,message", [
        ("        env:\n", "        env:\n        - DB_HOST\n", "env entry must be a mapping, got str"),
        ("        env:\n", "        envFrom:\n        - mongo-secret\n        env:\n", "envFrom entry must be a mapping"),
        ("        env:\n", "        env: DB_URL\n        unused:\n", "env must be a list, got str"),
        ("      containers:\n      - name: webapp\n", "      containers:\n      - webapp\n      - name: webapp\n",
         "container must be a mapping"),
        ("    matchLabels:\n      app: webapp\n", "    matchLabels:\n    - app\n",
         "spec.selector.matchLabels must be a mapping"),
        ("            secretKeyRef:\n              name: mongo-secret\n              key: mongo-user\n",
         "            secretKeyRef: mongo-secret\n", "env USER_NAME secretKeyRef must be a mapping"),
    ])
    def test_wrong_shape_rejected(self, old, new, message):
        doc = _doc(WEBAPP.replace(old, new, 1))

        with pytest.raises(ManifestError, match=message):
            parse_deployment(doc)


class TestServiceSpec:

    def test_cluster_ip_default(self):
        service = parse_service(_doc(MONGO, 1))

        assert service.type == "ClusterIP"
        assert not service.is_external
        assert service.selector == {"app": "mongo"}
        assert service.ports[0].port == 27017
        assert service.ports[0].target_port == 27017
        assert service.ports[0].node_port is None
        assert service.dns_name == "mongo-service.default.svc.cluster.local"

    def test_node_port(self):
        service = parse_service(_doc(WEBAPP, 1))

        assert service.type == "NodePort"
        assert service.is_external
        assert service.ports[0].node_port == 30068

    def test_target_port_defaults_to_port(self):
        service = parse_service(_doc("""apiVersion: v1
kind: Service
metadata:
  name: s
spec:
  selector:
    app: x
  ports:
  - port: 80
  - port: 81
    targetPort: http
  - port: 82
    targetPort: "8082"
"""))

        assert [p.target_port for p in service.ports] == [80, "http", 8082]


class TestManifestObjects:

    def test_tutorial_index(self):
        objects = ManifestObjects.from_manifest_set(ManifestSet(files=dict(TUTORIAL_FILES)))

        assert set(objects.config_maps) == {("default", "mongo-config")}
        assert set(objects.secrets) == {("default", "mongo-secret")}
        assert set(objects.workloads) == {("default", "mongo-deployment"), ("default", "webapp-deployment")}
        assert set(objects.services) == {("default", "mongo-service"), ("default", "webapp-service")}

    def test_lookup_helpers(self):
        objects = ManifestObjects.from_manifest_set(ManifestSet(files=dict(TUTORIAL_FILES)))

        assert objects.workload("mongo-deployment").container().image == "mongo:5.0"
        assert objects.service("webapp-service").type == "NodePort"
        assert objects.get("Secret", "mongo-secret", "default") is not None
        assert objects.get("Ingress", "x", "default") is None
        assert objects.source("Service", "mongo-service", "default").filepath == "mongo.yaml"

        with pytest.raises(KeyError):
            objects.workload("absent")

    def test_unknown_kind_kept_raw(self):
        objects = ManifestObjects.from_documents(parse_documents("ns.yaml", """apiVersion: v1
kind: Namespace
metadata:
  name: demo
"""))

        assert [d.name for d in objects.other] == ["demo"]

    def test_later_declaration_wins(self):
        updated = CONFIG_MAP.replace("mongo-url: mongo-service", "mongo-url: mongo-db")
        objects = ManifestObjects.from_documents(
            parse_documents("a.yaml", CONFIG_MAP) + parse_documents("b.yaml", updated)
        )

        config_map = objects.get("ConfigMap", "mongo-config", "default")
        assert config_map.entries["mongo-url"].value == "mongo-db"

    def test_remove(self):
        objects = ManifestObjects.from_manifest_set(ManifestSet(files=dict(TUTORIAL_FILES)))

        assert objects.remove("Secret", "mongo-secret", "default")
        assert not objects.remove("Secret", "mongo-secret", "default")
        assert not objects.remove("Ingress", "x", "default")
        assert objects.source("Secret", "mongo-secret", "default") is None
