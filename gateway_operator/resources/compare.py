"""
Drift detection between a generated child and its stored counterpart. Each
kind has a comparator that only looks at the fields the operator owns, so
server-populated defaults never read as drift, and an updater that copies the
owned fields of the desired object onto the stored one.
"""

# Standard
from typing import Any, Callable, Dict, Optional, Tuple
import copy

# Third Party
from kubernetes.utils import parse_quantity

# First Party
import alog

# Local
from ..utils import labels_match

log = alog.use_channel("CMPRE")

Comparator = Callable[[dict, dict], bool]
Updater = Callable[[dict, dict], dict]

## Public ######################################################################


def resource_requirements_equal(existing: Optional[dict], desired: Optional[dict]) -> bool:
    """Compare two container resource requirements, treating quantities with
    equal values as equal (e.g. "1" and "1000m", "1Gi" and "1024Mi")
    """
    existing = existing or {}
    desired = desired or {}
    for section in ("limits", "requests"):
        existing_section = existing.get(section) or {}
        desired_section = desired.get(section) or {}
        if set(existing_section) != set(desired_section):
            return False
        for key, value in desired_section.items():
            if not _quantities_equal(existing_section[key], value):
                return False
    return True


def is_subset(desired: Any, existing: Any) -> bool:
    """True if every value set in desired is present in existing. Lists must
    have the same length and match element-wise. Extra keys in existing dicts
    are ignored so that server-populated defaults do not count as drift.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(
            key in existing and is_subset(value, existing[key])
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing))
    return desired == existing


def deployment_equal(existing: dict, desired: dict) -> bool:
    existing_spec = existing.get("spec", {})
    desired_spec = desired.get("spec", {})
    if existing_spec.get("replicas") != desired_spec.get("replicas"):
        log.debug3("Deployment replicas drifted")
        return False
    existing_template = existing_spec.get("template", {})
    desired_template = desired_spec.get("template", {})
    if not labels_match(
        existing_template.get("metadata", {}).get("labels"),
        desired_template.get("metadata", {}).get("labels") or {},
    ):
        log.debug3("Deployment pod labels drifted")
        return False

    existing_pod = existing_template.get("spec", {})
    desired_pod = desired_template.get("spec", {})
    for key, desired_value in desired_pod.items():
        if key == "containers":
            continue
        if not is_subset(desired_value, existing_pod.get(key)):
            log.debug3("Deployment pod spec field %s drifted", key)
            return False

    existing_containers = {
        container.get("name"): container
        for container in existing_pod.get("containers") or []
    }
    desired_containers = desired_pod.get("containers") or []
    if len(existing_containers) != len(desired_containers):
        return False
    for desired_container in desired_containers:
        existing_container = existing_containers.get(desired_container.get("name"))
        if existing_container is None:
            return False
        if not resource_requirements_equal(
            existing_container.get("resources"), desired_container.get("resources")
        ):
            log.debug3("Container %s resources drifted", desired_container["name"])
            return False
        for key, desired_value in desired_container.items():
            if key == "resources":
                continue
            if not is_subset(desired_value, existing_container.get(key)):
                log.debug3(
                    "Container %s field %s drifted", desired_container["name"], key
                )
                return False
    return True


def update_deployment(existing: dict, desired: dict) -> dict:
    # The selector is immutable, so only replicas and the template are updated
    existing["spec"]["replicas"] = desired["spec"]["replicas"]
    existing["spec"]["template"] = copy.deepcopy(desired["spec"]["template"])
    return existing


def service_equal(existing: dict, desired: dict) -> bool:
    existing_spec = existing.get("spec", {})
    desired_spec = desired.get("spec", {})
    return (
        existing_spec.get("type", "ClusterIP") == desired_spec.get("type", "ClusterIP")
        and (existing_spec.get("selector") or {}) == (desired_spec.get("selector") or {})
        and is_subset(desired_spec.get("ports") or [], existing_spec.get("ports") or [])
    )


def update_service(existing: dict, desired: dict) -> dict:
    for key in ("type", "selector", "ports"):
        if key in desired["spec"]:
            existing["spec"][key] = copy.deepcopy(desired["spec"][key])
    return existing


def secret_equal(existing: dict, desired: dict) -> bool:
    """Secrets hold generated material, so only the set of keys is compared"""
    return set(existing.get("data") or {}) == set(desired.get("data") or {})


def update_secret(existing: dict, desired: dict) -> dict:
    existing["data"] = copy.deepcopy(desired.get("data") or {})
    return existing


def cluster_role_equal(existing: dict, desired: dict) -> bool:
    return (existing.get("rules") or []) == (desired.get("rules") or [])


def update_cluster_role(existing: dict, desired: dict) -> dict:
    existing["rules"] = copy.deepcopy(desired.get("rules") or [])
    return existing


def cluster_role_binding_equal(existing: dict, desired: dict) -> bool:
    return existing.get("roleRef") == desired.get("roleRef") and (
        existing.get("subjects") or []
    ) == (desired.get("subjects") or [])


def update_cluster_role_binding(existing: dict, desired: dict) -> dict:
    existing["roleRef"] = copy.deepcopy(desired.get("roleRef"))
    existing["subjects"] = copy.deepcopy(desired.get("subjects") or [])
    return existing


def spec_equal(existing: dict, desired: dict) -> bool:
    return existing.get("spec") == desired.get("spec")


def update_spec(existing: dict, desired: dict) -> dict:
    existing["spec"] = copy.deepcopy(desired.get("spec"))
    return existing


def metadata_equal(existing: dict, desired: dict) -> bool:
    """True if the desired labels and annotations are all present"""
    existing_meta = existing.get("metadata", {})
    desired_meta = desired.get("metadata", {})
    return labels_match(
        existing_meta.get("labels"), desired_meta.get("labels") or {}
    ) and labels_match(
        existing_meta.get("annotations"), desired_meta.get("annotations") or {}
    )


def update_metadata(existing: dict, desired: dict) -> dict:
    existing_meta = existing.setdefault("metadata", {})
    desired_meta = desired.get("metadata", {})
    for key in ("labels", "annotations"):
        if desired_meta.get(key):
            existing_meta[key] = {**(existing_meta.get(key) or {}), **desired_meta[key]}
    return existing


def get_comparator(kind: str) -> Tuple[Comparator, Updater]:
    """Get the comparator and updater for a kind. Kinds without a dedicated
    pair compare their whole spec.
    """
    return _COMPARATORS.get(kind, (spec_equal, update_spec))


## Implementation Details ######################################################

_COMPARATORS: Dict[str, Tuple[Comparator, Updater]] = {
    "Deployment": (deployment_equal, update_deployment),
    "Service": (service_equal, update_service),
    "Secret": (secret_equal, update_secret),
    "ServiceAccount": (lambda *_: True, lambda existing, _: existing),
    "ClusterRole": (cluster_role_equal, update_cluster_role),
    "ClusterRoleBinding": (cluster_role_binding_equal, update_cluster_role_binding),
}


def _quantities_equal(existing: Any, desired: Any) -> bool:
    try:
        return parse_quantity(existing) == parse_quantity(desired)
    except ValueError:
        return str(existing) == str(desired)
