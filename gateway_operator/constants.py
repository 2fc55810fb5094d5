"""
Shared module to hold constant values for the operator
"""

# API group and version for all custom kinds
GROUP = "gateway-operator.io"
VERSION = "v1"
API_VERSION = f"{GROUP}/{VERSION}"

# Custom kinds
GATEWAY_KIND = "Gateway"
GATEWAY_CLASS_KIND = "GatewayClass"
GATEWAY_CONFIGURATION_KIND = "GatewayConfiguration"
DATA_PLANE_KIND = "DataPlane"
CONTROL_PLANE_KIND = "ControlPlane"

# Core kinds generated as children
DEPLOYMENT_API_VERSION = "apps/v1"
RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"

# Labels used to identify generated children
MANAGED_BY_LABEL = f"{GROUP}/managed-by"
SERVICE_TYPE_LABEL = f"{GROUP}/service-type"
GENERATION_STATE_LABEL = f"{GROUP}/generation-state"
DEPLOYMENT_STATE_LABEL = f"{GROUP}/deployment-state"
SELECTOR_LABEL = f"{GROUP}/selector"
OWNER_NAME_LABEL = f"{GROUP}/owner-name"
OWNER_NAMESPACE_LABEL = f"{GROUP}/owner-namespace"

# Values for MANAGED_BY_LABEL
MANAGED_BY_GATEWAY = "gateway"
MANAGED_BY_DATA_PLANE = "dataplane"
MANAGED_BY_CONTROL_PLANE = "controlplane"

# Values for SERVICE_TYPE_LABEL
SERVICE_TYPE_ADMIN = "admin"
SERVICE_TYPE_INGRESS = "ingress"

# Values for GENERATION_STATE_LABEL and DEPLOYMENT_STATE_LABEL
STATE_PREVIEW = "preview"
STATE_LIVE = "live"

# Selector value that no pod ever carries. Preview services use it to hold zero
# endpoints until promotion.
HOLD_SELECTOR_VALUE = "hold"

# Annotation that triggers promotion of a ready preview generation
PROMOTE_WHEN_READY_ANNOTATION = f"{GROUP}/promote-when-ready"
PROMOTE_WHEN_READY_VALUE = "true"

# Finalizer held by generated children until their owner is gone
WAIT_FOR_OWNER_FINALIZER = f"{GROUP}/wait-for-owner"

# Names of the primary containers in generated pod templates
DATA_PLANE_CONTAINER_NAME = "proxy"
CONTROL_PLANE_CONTAINER_NAME = "controller"

# Ports
DATA_PLANE_PROXY_PORT = 8000
DATA_PLANE_PROXY_SSL_PORT = 8443
DATA_PLANE_ADMIN_PORT = 8444
DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443
CONTROL_PLANE_ADMISSION_WEBHOOK_PORT = 8080
DATA_PLANE_STATUS_PORT = 8100

# Blue/green promotion strategies
BREAK_BEFORE_MAKE = "BreakBeforeMake"

# Tag used when a control plane image does not name one
DEFAULT_CONTROL_PLANE_TAG = "3.0"

# Default namespace if none given
DEFAULT_NAMESPACE = "default"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
