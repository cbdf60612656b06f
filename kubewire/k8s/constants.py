"""K8s constants shared across kubewire modules.

Kept in one place to avoid circular imports between the model, resolver
and oracle modules.
"""

DEFAULT_NAMESPACE = "default"

# Kinds that the model understands
CONFIG_MAP = "ConfigMap"
SECRET = "Secret"
DEPLOYMENT = "Deployment"
SERVICE = "Service"

# Service exposure modes
CLUSTER_IP = "ClusterIP"
NODE_PORT = "NodePort"
LOAD_BALANCER = "LoadBalancer"

# Default kube-apiserver --service-node-port-range
NODE_PORT_RANGE = (30000, 32767)

# Documented apply order for the tutorial; references point backwards only
APPLY_ORDER = [
    "mongo-config.yaml",
    "mongo-secret.yaml",
    "mongo.yaml",
    "webapp.yaml",
]

DEFAULT_WEB_SERVICE = "webapp-service"
