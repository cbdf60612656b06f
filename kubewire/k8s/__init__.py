"""Kubernetes manifest support for kubewire.

This module provides the pieces that work on the tutorial manifests:
- ManifestSet: Represents the YAML manifest files
- Model: Typed ConfigMap, Secret, Deployment and Service views
- Resolver: Environment reference resolution and Service binding
- Oracles: Selector, reference, port, secret and schema validators
"""
