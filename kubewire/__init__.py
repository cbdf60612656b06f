"""
kubewire: MongoDB + web application on Minikube

Tutorial manifests for a MongoDB instance and a web application, together
with the tooling that checks how those manifests reference each other
(ConfigMap/Secret keys, Service selectors, port wiring) and drives the
kubectl apply workflow.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
