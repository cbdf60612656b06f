"""Shared utility functions for K8s manifests.

This module provides common helper functions used across the model and
the oracles to avoid code duplication.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from kubewire.core.errors import ManifestError
from kubewire.k8s.constants import DEFAULT_NAMESPACE


def as_mapping(value: Any, what: str, path: Optional[str] = None) -> Dict[str, Any]:
    """Return ``value`` as a mapping, ``{}`` when it is unset.

    Raises:
        ManifestError: If ``value`` is set but is not a mapping
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"{what} must be a mapping, got {type(value).__name__}", path=path)
    return value


def as_list(value: Any, what: str, path: Optional[str] = None) -> List[Any]:
    """Return ``value`` as a list, ``[]`` when it is unset.

    Raises:
        ManifestError: If ``value`` is set but is not a list
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestError(f"{what} must be a list, got {type(value).__name__}", path=path)
    return value


def mapping_at(manifest: Dict[str, Any], keys: Sequence[str], path: Optional[str] = None) -> Dict[str, Any]:
    """Walk nested mapping keys, e.g. ``["spec", "selector"]``.

    Missing keys give ``{}``.

    Raises:
        ManifestError: If a value on the way is not a mapping
    """
    value = manifest
    for depth, key in enumerate(keys, start=1):
        value = as_mapping(value.get(key), ".".join(keys[:depth]), path)
    return value


def list_at(manifest: Dict[str, Any], keys: Sequence[str], path: Optional[str] = None) -> List[Any]:
    """Like mapping_at, for a list at the end of the key path."""
    parent = mapping_at(manifest, keys[:-1], path)
    return as_list(parent.get(keys[-1]), ".".join(keys), path)


def get_pod_template_labels(manifest: dict, path: Optional[str] = None) -> Dict[str, str]:
    """Extract the label map from a Deployment pod template.

    Args:
        manifest: Kubernetes manifest dict
        path: File name used in errors

    Returns:
        Label dict, empty if the template carries none
    """
    labels = mapping_at(manifest, ["spec", "template", "metadata", "labels"], path)
    return {str(k): str(v) for k, v in labels.items()}


def get_containers(manifest: dict, path: Optional[str] = None) -> list:
    """Extract containers list from Deployment manifest.

    Args:
        manifest: Kubernetes manifest dict
        path: File name used in errors

    Returns:
        List of container dicts, empty list if not found
    """
    return list_at(manifest, ["spec", "template", "spec", "containers"], path)


def _metadata(manifest: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = manifest.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def get_name(manifest: Mapping[str, Any]) -> Optional[str]:
    return _metadata(manifest).get("name")


def get_namespace(manifest: Mapping[str, Any]) -> str:
    return _metadata(manifest).get("namespace") or DEFAULT_NAMESPACE


def to_plain(value: Any) -> Any:
    """Convert ruamel.yaml CommentedMap/CommentedSeq trees to dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
