"""Tests for the kubectl workflow wrapper."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from kubewire.core.errors import ConfigError, KubectlError, ManifestError
from kubewire.k8s.artifact import ManifestSet
from kubewire.k8s.kubectl import (
    Kubectl,
    apply_manifests,
    delete_manifests,
    ordered_manifest_paths,
    run_command,
    service_url,
    status,
)
from tests.manifests import TUTORIAL_FILES


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def manifest_dir(tmp_path):
    ManifestSet(files=dict(TUTORIAL_FILES)).write_to_dir(str(tmp_path))
    return tmp_path


@pytest.fixture
def kubectl():
    return Kubectl(binary="kubectl", context=None, namespace=None, timeout_seconds=5)


class TestRunCommand:

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_success(self, run):
        run.return_value = _completed(stdout="ok\n")

        result = run_command(["kubectl", "version"], timeout=5)

        assert result.stdout == "ok\n"
        run.assert_called_once_with(["kubectl", "version"], capture_output=True, text=True, timeout=5)

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_nonzero_exit(self, run):
        run.return_value = _completed(returncode=1, stderr="error: the server doesn't have a resource type\n")

        with pytest.raises(KubectlError) as excinfo:
            run_command(["kubectl", "get", "nope"], timeout=5)

        assert excinfo.value.returncode == 1
        assert "doesn't have a resource type" in excinfo.value.stderr
        assert excinfo.value.command == ["kubectl", "get", "nope"]

    @patch("kubewire.k8s.kubectl.subprocess.run", side_effect=FileNotFoundError())
    def test_missing_binary(self, run):
        with pytest.raises(KubectlError, match="not found on PATH"):
            run_command(["kubectl", "version"], timeout=5)

    @patch("kubewire.k8s.kubectl.subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="kubectl", timeout=5))
    def test_timeout(self, run):
        with pytest.raises(KubectlError, match="timed out"):
            run_command(["kubectl", "version"], timeout=5)


class TestKubectl:

    def test_command_includes_context_and_namespace(self):
        kubectl = Kubectl(binary="kc", context="minikube", namespace="demo", timeout_seconds=1)

        assert kubectl.command("get", "pods") == ["kc", "--context", "minikube", "--namespace", "demo", "get", "pods"]

    def test_defaults_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KUBEWIRE_CONFIG", str(tmp_path / "absent.json"))
        monkeypatch.setenv("KUBECTL_BINARY", "/opt/kubectl")
        monkeypatch.setenv("KUBECTL_CONTEXT", "minikube")
        monkeypatch.delenv("KUBECTL_NAMESPACE", raising=False)
        monkeypatch.setenv("KUBECTL_TIMEOUT_SECONDS", "12")

        kubectl = Kubectl()

        assert kubectl.binary == "/opt/kubectl"
        assert kubectl.context == "minikube"
        assert kubectl.namespace is None
        assert kubectl.timeout_seconds == 12.0

    def test_non_numeric_timeout(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KUBEWIRE_CONFIG", str(tmp_path / "absent.json"))
        monkeypatch.setenv("KUBECTL_TIMEOUT_SECONDS", "soon")

        with pytest.raises(ConfigError, match="kubectl.timeout_seconds must be a number"):
            Kubectl()

    def test_dry_run_flag(self, manifest_dir):
        kubectl = Kubectl(binary="kubectl", timeout_seconds=5, dry_run=True)

        with patch.object(kubectl, "run") as run:
            kubectl.apply(manifest_dir / "mongo.yaml")

        run.assert_called_once_with("apply", "-f", str(manifest_dir / "mongo.yaml"), "--dry-run=client")


class TestWorkflow:

    def test_ordered_paths(self, manifest_dir):
        names = [p.name for p in ordered_manifest_paths(str(manifest_dir))]

        assert names == ["mongo-config.yaml", "mongo-secret.yaml", "mongo.yaml", "webapp.yaml"]

    def test_missing_file_applies_nothing(self, manifest_dir, kubectl):
        (manifest_dir / "mongo-secret.yaml").unlink()
        kubectl.run = MagicMock()

        with pytest.raises(ManifestError, match="mongo-secret.yaml"):
            apply_manifests(kubectl, str(manifest_dir))

        kubectl.run.assert_not_called()

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_apply_in_documented_order(self, run, manifest_dir, kubectl):
        run.return_value = _completed(stdout="configured\n")

        results = apply_manifests(kubectl, str(manifest_dir))

        applied = [call.args[0][-1] for call in run.call_args_list]
        assert [p.rsplit("/", 1)[-1] for p in applied] == [
            "mongo-config.yaml", "mongo-secret.yaml", "mongo.yaml", "webapp.yaml",
        ]
        assert len(results) == 4

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_apply_stops_on_failure(self, run, manifest_dir, kubectl):
        run.side_effect = [_completed(stdout="ok"), _completed(returncode=1, stderr="forbidden")]

        with pytest.raises(KubectlError, match="forbidden"):
            apply_manifests(kubectl, str(manifest_dir))

        assert run.call_count == 2

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_delete_in_reverse_order(self, run, manifest_dir, kubectl):
        run.return_value = _completed()

        delete_manifests(kubectl, str(manifest_dir))

        deleted = [call.args[0][3] for call in run.call_args_list]
        assert [p.rsplit("/", 1)[-1] for p in deleted] == [
            "webapp.yaml", "mongo.yaml", "mongo-secret.yaml", "mongo-config.yaml",
        ]

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_status(self, run, kubectl):
        run.return_value = _completed(stdout="NAME READY\n")

        results = status(kubectl)

        commands = [call.args[0] for call in run.call_args_list]
        assert commands == [
            ["kubectl", "get", "all", "-o", "wide"],
            ["kubectl", "get", "configmap,secret", "-o", "wide"],
        ]
        assert len(results) == 2


class TestServiceUrl:

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_url_parsed(self, run):
        run.return_value = _completed(stdout="* Starting tunnel\nhttp://192.168.49.2:30068\n")

        assert service_url("webapp-service", minikube_binary="minikube") == "http://192.168.49.2:30068"
        assert run.call_args.args[0] == ["minikube", "service", "webapp-service", "--url"]

    @patch("kubewire.k8s.kubectl.subprocess.run")
    def test_no_url(self, run):
        run.return_value = _completed(stdout="nothing here\n")

        with pytest.raises(KubectlError, match="no URL"):
            service_url("webapp-service", minikube_binary="minikube")
