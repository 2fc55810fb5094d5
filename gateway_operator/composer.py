"""
The composer produces the effective desired options for a Gateway's data plane
and control plane by layering:

    Gateway.spec.options  >  GatewayConfiguration.spec  >  built-in defaults

The result is always a fresh deep copy and is never written back to any of the
source objects. Environment variable defaults are only added for names the
user did not already set on the primary container.
"""

# Standard
from typing import Dict, List, Optional
import copy

# First Party
import alog

# Local
from . import config, constants
from .api import Gateway, GatewayConfiguration
from .utils import merge_configs

log = alog.use_channel("CMPSR")

## Public ######################################################################


def compose_options(
    gateway: Gateway,
    gateway_configuration: Optional[GatewayConfiguration] = None,
) -> dict:
    """Compose the effective options for the data plane and control plane of a
    Gateway

    Args:
        gateway:  Gateway
            The gateway whose spec.options take precedence
        gateway_configuration:  Optional[GatewayConfiguration]
            The configuration referenced by the gateway's class, if any

    Returns:
        options:  dict
            Dict with dataPlaneOptions and controlPlaneOptions keys. Data plane
            defaults are applied. Control plane defaults that depend on the
            generated data plane are applied by set_control_plane_defaults.
    """
    options = {
        "dataPlaneOptions": {"deployment": {"replicas": 1}},
        "controlPlaneOptions": {"deployment": {"replicas": 1}},
    }
    if gateway_configuration is not None:
        merge_configs(
            options,
            copy.deepcopy(
                {
                    "dataPlaneOptions": gateway_configuration.data_plane_options,
                    "controlPlaneOptions": gateway_configuration.control_plane_options,
                }
            ),
        )
    gateway_options = gateway.options
    merge_configs(
        options,
        copy.deepcopy(
            {
                "dataPlaneOptions": gateway_options.get("dataPlane") or {},
                "controlPlaneOptions": gateway_options.get("controlPlane") or {},
            }
        ),
    )
    set_data_plane_defaults(options["dataPlaneOptions"])
    log.debug4("Composed options for %s: %s", gateway, options)
    return options


def set_data_plane_defaults(options: dict) -> dict:
    """Fill data plane options with defaults in place

    Args:
        options:  dict
            The DataPlane spec to default

    Returns:
        options:  dict
            The same dict, for convenience
    """
    deployment = options.setdefault("deployment", {})
    if deployment.get("replicas") is None:
        deployment["replicas"] = 1
    container = _ensure_container(
        deployment,
        constants.DATA_PLANE_CONTAINER_NAME,
        config.default_images.data_plane,
    )
    _set_env_defaults(
        container,
        [
            _env("KONG_PROXY_LISTEN", _proxy_listen()),
            _env(
                "KONG_ADMIN_LISTEN",
                f"0.0.0.0:{constants.DATA_PLANE_ADMIN_PORT} http2 ssl reuseport",
            ),
            _env("KONG_ADMIN_SSL_CERT", "/var/cluster-certificate/tls.crt"),
            _env("KONG_ADMIN_SSL_CERT_KEY", "/var/cluster-certificate/tls.key"),
            _env("KONG_DATABASE", "off"),
            _env("KONG_STATUS_LISTEN", f"0.0.0.0:{constants.DATA_PLANE_STATUS_PORT}"),
        ],
    )
    return options


def set_control_plane_defaults(  # pylint: disable=too-many-arguments
    options: dict,
    namespace: str,
    data_plane_name: Optional[str] = None,
    ingress_service_name: Optional[str] = None,
    admin_service_name: Optional[str] = None,
    control_plane_name: Optional[str] = None,
    gateway_name: Optional[str] = None,
) -> dict:
    """Fill control plane options with defaults in place. Values that are not
    known yet are skipped and filled by a later call.

    Args:
        options:  dict
            The ControlPlane spec to default
        namespace:  str
            Namespace of the control plane and its data plane
        data_plane_name:  Optional[str]
            Name of the data plane the control plane configures
        ingress_service_name:  Optional[str]
            Name of the data plane's ingress service
        admin_service_name:  Optional[str]
            Name of the data plane's admin service
        control_plane_name:  Optional[str]
            Name of the control plane, used for its leader election id
        gateway_name:  Optional[str]
            Name of the Gateway managing the control plane, if any

    Returns:
        options:  dict
            The same dict, for convenience
    """
    if data_plane_name and not options.get("dataPlane"):
        options["dataPlane"] = data_plane_name
    deployment = options.setdefault("deployment", {})
    if deployment.get("replicas") is None:
        deployment["replicas"] = 1
    container = _ensure_container(
        deployment,
        constants.CONTROL_PLANE_CONTAINER_NAME,
        config.default_images.control_plane,
    )

    defaults = [
        _field_env("POD_NAME", "metadata.name"),
        _field_env("POD_NAMESPACE", "metadata.namespace"),
        _env(
            "CONTROLLER_ADMISSION_WEBHOOK_LISTEN",
            f"0.0.0.0:{constants.CONTROL_PLANE_ADMISSION_WEBHOOK_PORT}",
        ),
    ]
    if ingress_service_name:
        defaults.append(
            _env("CONTROLLER_PUBLISH_SERVICE", f"{namespace}/{ingress_service_name}")
        )
    if admin_service_name:
        defaults.append(
            _env("CONTROLLER_KONG_ADMIN_SVC", f"{namespace}/{admin_service_name}")
        )
    if control_plane_name:
        defaults.append(
            _env("CONTROLLER_ELECTION_ID", f"{control_plane_name}.{constants.GROUP}")
        )
    if gateway_name:
        defaults.extend(
            [
                _env("CONTROLLER_GATEWAY_TO_RECONCILE", f"{namespace}/{gateway_name}"),
                _env(
                    "CONTROLLER_GATEWAY_API_CONTROLLER_NAME", config.controller_name
                ),
            ]
        )
    _set_env_defaults(container, defaults)
    return options


def get_container(pod_template: dict, name: str) -> Optional[dict]:
    """Find a container by name in a pod template"""
    for container in (pod_template.get("spec") or {}).get("containers") or []:
        if container.get("name") == name:
            return container
    return None


## Implementation Details ######################################################


def _ensure_container(deployment: dict, name: str, default_image: str) -> dict:
    """Get the named container from the deployment's pod template, synthesizing
    it from the default image if it is missing
    """
    template = deployment.get("podTemplateSpec")
    if template is None:
        template = deployment["podTemplateSpec"] = {}
    pod_spec = template.setdefault("spec", {})
    containers = pod_spec.setdefault("containers", [])
    container = get_container(template, name)
    if container is None:
        log.debug2("Synthesizing container %s from %s", name, default_image)
        container = {"name": name, "image": default_image}
        containers.append(container)
    elif not container.get("image"):
        container["image"] = default_image
    return container


def _set_env_defaults(container: dict, defaults: List[dict]):
    """Append each default env var whose name is not already set. The set of
    names to leave alone is computed before any default is added.
    """
    env = container.setdefault("env", [])
    dont_override = {entry.get("name") for entry in env}
    for default in defaults:
        if default["name"] in dont_override:
            log.debug3("Not overriding env var %s", default["name"])
            continue
        env.append(default)


def _env(name: str, value: str) -> Dict[str, str]:
    return {"name": name, "value": value}


def _field_env(name: str, field_path: str) -> dict:
    return {
        "name": name,
        "valueFrom": {"fieldRef": {"apiVersion": "v1", "fieldPath": field_path}},
    }


def _proxy_listen() -> str:
    return (
        f"0.0.0.0:{constants.DATA_PLANE_PROXY_PORT} reuseport backlog=16384, "
        f"0.0.0.0:{constants.DATA_PLANE_PROXY_SSL_PORT} http2 ssl reuseport backlog=16384"
    )
