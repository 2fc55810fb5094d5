"""
Generators for the identity and cluster-scoped permissions of a control plane
"""

# Local
from .. import constants
from ..api import ControlPlane


def rbac_match_labels() -> dict:
    return {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_CONTROL_PLANE}


def generate_service_account(control_plane: ControlPlane) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {
            "generateName": f"controlplane-{control_plane.name}-",
            "namespace": control_plane.namespace,
            "labels": rbac_match_labels(),
        },
    }


def generate_cluster_role_binding(
    control_plane: ControlPlane, cluster_role_name: str, service_account_name: str
) -> dict:
    """Bind the control plane's ClusterRole to its ServiceAccount"""
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": "ClusterRoleBinding",
        "metadata": {
            "generateName": f"controlplane-{control_plane.name}-",
            "labels": rbac_match_labels(),
        },
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": cluster_role_name,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": service_account_name,
                "namespace": control_plane.namespace,
            }
        ],
    }
