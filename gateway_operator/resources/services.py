"""
Service generators for the data plane's admin and ingress services
"""

# Local
from .. import constants
from ..api import DataPlane
from ..utils import nested_get

DEFAULT_INGRESS_SERVICE_TYPE = "LoadBalancer"


def service_match_labels(service_type: str, state: str) -> dict:
    """Labels identifying one service of one generation of a data plane"""
    return {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE,
        constants.SERVICE_TYPE_LABEL: service_type,
        constants.GENERATION_STATE_LABEL: state,
    }


def generate_admin_service(data_plane: DataPlane, state: str, selector_value: str) -> dict:
    """Generate the headless service exposing the data plane admin API to the
    control plane
    """
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "generateName": f"dataplane-admin-{data_plane.name}-",
            "namespace": data_plane.namespace,
            "labels": service_match_labels(constants.SERVICE_TYPE_ADMIN, state),
        },
        "spec": {
            "type": "ClusterIP",
            "clusterIP": "None",
            "selector": {constants.SELECTOR_LABEL: selector_value},
            "ports": [
                {
                    "name": "admin",
                    "protocol": "TCP",
                    "port": constants.DATA_PLANE_ADMIN_PORT,
                    "targetPort": constants.DATA_PLANE_ADMIN_PORT,
                }
            ],
        },
    }


def generate_ingress_service(
    data_plane: DataPlane, state: str, selector_value: str
) -> dict:
    """Generate the service exposing the data plane proxy to clients"""
    ingress = nested_get(data_plane.spec, "network.services.ingress", {})
    ports = ingress.get("ports") or [
        {
            "name": "http",
            "protocol": "TCP",
            "port": constants.DEFAULT_HTTP_PORT,
            "targetPort": constants.DATA_PLANE_PROXY_PORT,
        },
        {
            "name": "https",
            "protocol": "TCP",
            "port": constants.DEFAULT_HTTPS_PORT,
            "targetPort": constants.DATA_PLANE_PROXY_SSL_PORT,
        },
    ]
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "generateName": f"dataplane-ingress-{data_plane.name}-",
            "namespace": data_plane.namespace,
            "labels": service_match_labels(constants.SERVICE_TYPE_INGRESS, state),
        },
        "spec": {
            "type": ingress.get("type", DEFAULT_INGRESS_SERVICE_TYPE),
            "selector": {constants.SELECTOR_LABEL: selector_value},
            "ports": ports,
        },
    }
