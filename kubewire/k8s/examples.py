"""Packaged tutorial manifests.

The four manifests of the MongoDB + web application tutorial ship inside
``kubewire.manifests`` so that the CLI can validate, simulate and export
them without a checkout of the repository.
"""

from importlib import resources
from typing import Dict

from kubewire.k8s.artifact import ManifestSet
from kubewire.k8s.constants import APPLY_ORDER

MANIFEST_PACKAGE = "kubewire.manifests"


def tutorial_files() -> Dict[str, str]:
    """File name -> YAML text, in the documented apply order."""
    root = resources.files(MANIFEST_PACKAGE)
    return {name: root.joinpath(name).read_text(encoding="utf-8") for name in APPLY_ORDER}


def tutorial_manifests() -> ManifestSet:
    """The tutorial manifests as a ManifestSet.

    Example:
        >>> manifests = tutorial_manifests()
        >>> list(manifests.files)
        ['mongo-config.yaml', 'mongo-secret.yaml', 'mongo.yaml', 'webapp.yaml']
    """
    return ManifestSet(files=tutorial_files())
