"""
Deployment generators for the data plane and control plane
"""

# Standard
from typing import Optional
import copy
import uuid

# Local
from .. import constants
from ..api import ControlPlane, DataPlane
from ..composer import get_container
from ..utils import merge_configs

# Mount path of the admin API certificate in the proxy container
CLUSTER_CERTIFICATE_VOLUME = "cluster-certificate"
CLUSTER_CERTIFICATE_PATH = "/var/cluster-certificate"


def new_selector_value() -> str:
    """A fresh value for the pod selector label of a new deployment"""
    return uuid.uuid4().hex[:12]


def get_selector_value(deployment: Optional[dict]) -> Optional[str]:
    """The pod selector value of an existing deployment"""
    if deployment is None:
        return None
    return (
        deployment.get("spec", {})
        .get("selector", {})
        .get("matchLabels", {})
        .get(constants.SELECTOR_LABEL)
    )


def get_secret_volume_name(deployment: Optional[dict]) -> Optional[str]:
    """The name of the secret mounted as the cluster certificate"""
    if deployment is None:
        return None
    pod_spec = deployment.get("spec", {}).get("template", {}).get("spec", {})
    for volume in pod_spec.get("volumes") or []:
        if volume.get("name") == CLUSTER_CERTIFICATE_VOLUME:
            return volume.get("secret", {}).get("secretName")
    return None


def set_secret_volume_name(template: dict, secret_name: str):
    """Point the cluster certificate volume of a pod template at a secret"""
    volumes = template.setdefault("spec", {}).setdefault("volumes", [])
    for volume in volumes:
        if volume.get("name") == CLUSTER_CERTIFICATE_VOLUME:
            volume["secret"] = {"secretName": secret_name}
            return
    volumes.append(
        {"name": CLUSTER_CERTIFICATE_VOLUME, "secret": {"secretName": secret_name}}
    )


def generate_data_plane_deployment(
    data_plane: DataPlane, state: str, selector_value: str, secret_name: str
) -> dict:
    """Generate the deployment of one generation of a data plane

    Args:
        data_plane:  DataPlane
            The data plane with defaults applied
        state:  str
            The generation state, live or preview
        selector_value:  str
            The unique pod selector value of this deployment
        secret_name:  str
            Name of the TLS secret securing the admin API

    Returns:
        deployment:  dict
            The Deployment manifest
    """
    labels = {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE,
        constants.DEPLOYMENT_STATE_LABEL: state,
    }
    template = _pod_template(data_plane.pod_template, data_plane.name, selector_value)
    pod_spec = template["spec"]
    pod_spec.setdefault("volumes", []).append(
        {"name": CLUSTER_CERTIFICATE_VOLUME, "secret": {"secretName": secret_name}}
    )
    proxy = get_container(template, constants.DATA_PLANE_CONTAINER_NAME)
    if proxy is not None:
        proxy.setdefault("volumeMounts", []).append(
            {
                "name": CLUSTER_CERTIFICATE_VOLUME,
                "mountPath": CLUSTER_CERTIFICATE_PATH,
                "readOnly": True,
            }
        )
        proxy.setdefault(
            "ports",
            [
                _port("proxy", constants.DATA_PLANE_PROXY_PORT),
                _port("proxy-ssl", constants.DATA_PLANE_PROXY_SSL_PORT),
                _port("admin-ssl", constants.DATA_PLANE_ADMIN_PORT),
                _port("status", constants.DATA_PLANE_STATUS_PORT),
            ],
        )
        proxy.setdefault(
            "readinessProbe",
            {
                "httpGet": {"path": "/status", "port": constants.DATA_PLANE_STATUS_PORT},
                "initialDelaySeconds": 5,
                "periodSeconds": 10,
            },
        )
    return {
        "apiVersion": constants.DEPLOYMENT_API_VERSION,
        "kind": "Deployment",
        "metadata": {
            "generateName": f"dataplane-{data_plane.name}-",
            "namespace": data_plane.namespace,
            "labels": labels,
        },
        "spec": {
            "replicas": data_plane.replicas,
            "selector": {"matchLabels": {constants.SELECTOR_LABEL: selector_value}},
            "template": template,
        },
    }


def generate_control_plane_deployment(
    control_plane: ControlPlane,
    selector_value: str,
    service_account_name: str,
    replicas: Optional[int] = None,
) -> dict:
    """Generate the deployment of a control plane

    Args:
        control_plane:  ControlPlane
            The control plane with defaults applied
        selector_value:  str
            The unique pod selector value of this deployment
        service_account_name:  str
            The service account bound to the control plane's ClusterRole
        replicas:  Optional[int]
            Override for the replica count

    Returns:
        deployment:  dict
            The Deployment manifest
    """
    template = _pod_template(
        control_plane.pod_template, control_plane.name, selector_value
    )
    template["spec"]["serviceAccountName"] = service_account_name
    return {
        "apiVersion": constants.DEPLOYMENT_API_VERSION,
        "kind": "Deployment",
        "metadata": {
            "generateName": f"controlplane-{control_plane.name}-",
            "namespace": control_plane.namespace,
            "labels": {
                constants.MANAGED_BY_LABEL: constants.MANAGED_BY_CONTROL_PLANE,
            },
        },
        "spec": {
            "replicas": control_plane.replicas if replicas is None else replicas,
            "selector": {"matchLabels": {constants.SELECTOR_LABEL: selector_value}},
            "template": template,
        },
    }


## Implementation Details ######################################################


def _pod_template(base_template: dict, app: str, selector_value: str) -> dict:
    template = copy.deepcopy(base_template or {})
    merge_configs(
        template,
        {"metadata": {"labels": {"app": app, constants.SELECTOR_LABEL: selector_value}}},
    )
    template.setdefault("spec", {}).setdefault("containers", [])
    return template


def _port(name: str, port: int) -> dict:
    return {"name": name, "containerPort": port, "protocol": "TCP"}
