"""
This module holds the condition store used to represent the status of every
resource kind managed by the operator.

A condition has the schema:
{
    "type": one of ConditionType,
    "status": "True" | "False" | "Unknown",
    "reason": reason enum value,
    "message": free text,
    "observedGeneration": generation of the owner when the condition was set,
    "lastTransitionTime": time of the last status flip,
}

Conditions are keyed by type and never removed. A condition whose
observedGeneration does not match the owner's current generation is stale and
reads as Unknown.
"""

# Standard
from enum import Enum
from typing import List, Optional, Union
import abc
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .exceptions import ClusterError
from .utils import now_timestamp

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class ConditionType(Enum):
    """The condition types used across all kinds"""

    SCHEDULED = "Scheduled"
    PROVISIONED = "Provisioned"
    READY = "Ready"
    ROLLED_OUT = "RolledOut"


class ConditionStatus(Enum):
    """Tri-state status of a condition"""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ScheduledReason(Enum):
    """Reasons for the Scheduled condition"""

    SCHEDULED = "Scheduled"
    GATEWAY_CLASS_NOT_FOUND = "GatewayClassNotFound"
    GATEWAY_CONFIGURATION_NOT_FOUND = "GatewayConfigurationNotFound"
    NO_DATA_PLANE = "NoDataPlane"
    DATA_PLANE_NOT_FOUND = "DataPlaneNotFound"


class ProvisionedReason(Enum):
    """Reasons for the Provisioned condition"""

    PODS_READY = "PodsReady"
    PODS_NOT_READY = "PodsNotReady"
    DEPENDENCIES_NOT_READY = "DependenciesNotReady"


class ReadyReason(Enum):
    """Reasons for the Ready condition"""

    READY = "Ready"
    NOT_READY = "NotReady"
    TEMPORARY_ERROR = "TemporaryError"
    CONFIG_ERROR = "ConfigError"
    REFERENCE_NOT_FOUND = "ReferenceNotFound"


class RolloutReason(Enum):
    """Reasons for the RolledOut condition of a blue/green rollout"""

    PROGRESSING = "Progressing"
    AWAITING_PROMOTION = "AwaitingPromotion"
    PROMOTING = "Promoting"
    PROMOTION_DONE = "PromotionDone"


PODS_READY_MESSAGE = "pods for all Deployments are ready"

ReasonType = Union[
    ScheduledReason, ProvisionedReason, ReadyReason, RolloutReason, str
]


class HasConditions(abc.ABC):
    """Capability shared by every object that stores conditions. Implementors
    expose the mutable list of conditions and the current generation.
    """

    @property
    @abc.abstractmethod
    def conditions(self) -> List[dict]:
        """The mutable list of conditions stored on the object"""

    @property
    @abc.abstractmethod
    def generation(self) -> int:
        """The current generation of the object"""

    def set_condition(
        self,
        type_: ConditionType,
        status: ConditionStatus,
        reason: ReasonType,
        message: str = "",
    ) -> bool:
        """Set a condition stamped with the current generation

        Returns:
            changed:  bool
                True if the condition was materialized
        """
        return set_condition(
            self.conditions,
            new_condition(type_, status, reason, message, self.generation),
        )

    def get_condition(self, type_: ConditionType) -> Optional[dict]:
        return get_condition(type_, self.conditions)

    def condition_status(self, type_: ConditionType) -> ConditionStatus:
        """Get the status of a condition, treating stale conditions as Unknown"""
        condition = self.get_condition(type_)
        if condition is None:
            return ConditionStatus.UNKNOWN
        if condition.get("observedGeneration") != self.generation:
            log.debug3(
                "Condition %s is stale (%s != %s)",
                type_.value,
                condition.get("observedGeneration"),
                self.generation,
            )
            return ConditionStatus.UNKNOWN
        return ConditionStatus(condition.get("status", ConditionStatus.UNKNOWN.value))

    def is_condition_true(self, type_: ConditionType) -> bool:
        return self.condition_status(type_) == ConditionStatus.TRUE


def new_condition(
    type_: ConditionType,
    status: ConditionStatus,
    reason: ReasonType,
    message: str = "",
    generation: int = 0,
) -> dict:
    """Construct a condition dict

    Args:
        type_:  ConditionType
            The condition type
        status:  ConditionStatus
            The tri-state status
        reason:  ReasonType
            Reason enum (or raw string) explaining the status
        message:  str
            Human readable detail
        generation:  int
            The generation of the owning object this condition describes

    Returns:
        condition:  dict
            The condition with the current timestamp
    """
    return {
        "type": _value(type_),
        "status": _value(status),
        "reason": _value(reason),
        "message": message,
        "observedGeneration": generation,
        TIMESTAMP_KEY: now_timestamp(),
    }


def set_condition(conditions: List[dict], condition: dict) -> bool:
    """Set the condition in the list in place, keyed by type

    The condition is materialized only if the status, reason, or message
    differ from the current entry, or if the observedGeneration advanced. The
    current lastTransitionTime is kept unless the status flips.

    Args:
        conditions:  List[dict]
            The mutable list of conditions of an object
        condition:  dict
            The new condition

    Returns:
        changed:  bool
            True if the list was modified
    """
    for idx, current in enumerate(conditions):
        if current.get("type") != condition["type"]:
            continue
        if (
            current.get("status") == condition["status"]
            and current.get("reason") == condition["reason"]
            and current.get("message") == condition["message"]
            and condition["observedGeneration"]
            <= (current.get("observedGeneration") or 0)
        ):
            return False
        updated = copy.deepcopy(condition)
        if current.get("status") == condition["status"] and current.get(
            TIMESTAMP_KEY
        ):
            updated[TIMESTAMP_KEY] = current[TIMESTAMP_KEY]
        log.debug2(
            "Updating condition %s: %s -> %s",
            condition["type"],
            current.get("status"),
            condition["status"],
        )
        conditions[idx] = updated
        return True

    log.debug2("Adding condition %s=%s", condition["type"], condition["status"])
    conditions.append(copy.deepcopy(condition))
    return True


def get_condition(
    type_: Union[ConditionType, str], conditions: Optional[List[dict]]
) -> Optional[dict]:
    """Extract the given condition type from a list of conditions

    Args:
        type_:  Union[ConditionType, str]
            The condition type to fetch
        conditions:  Optional[List[dict]]
            The conditions to search

    Returns:
        condition:  Optional[dict]
            The condition if present, None otherwise
    """
    type_name = _value(type_)
    for condition in conditions or []:
        if condition.get("type") == type_name:
            return condition
    return None


def mark_provisioned(
    obj: HasConditions,
    reason: ReasonType = ProvisionedReason.PODS_READY,
    message: str = PODS_READY_MESSAGE,
) -> bool:
    """Mark any object carrying conditions as provisioned"""
    return obj.set_condition(
        ConditionType.PROVISIONED, ConditionStatus.TRUE, reason, message
    )


def mark_not_provisioned(
    obj: HasConditions,
    reason: ReasonType = ProvisionedReason.PODS_NOT_READY,
    message: str = "",
) -> bool:
    """Mark any object carrying conditions as not (yet) provisioned"""
    return obj.set_condition(
        ConditionType.PROVISIONED, ConditionStatus.FALSE, reason, message
    )


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current object
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    # Status objects must be dicts
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    # Perform a deep diff, excluding timestamps
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def update_resource_status(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    resource: dict,
) -> bool:
    """Write the status of the given resource back to the cluster if it
    changed meaningfully from what is stored. The write is conditional on the
    resource's resourceVersion, so a concurrent change surfaces as a
    ConflictError and the caller's pass is retried.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to get and set status
        resource:  dict
            The full resource whose status should be persisted

    Returns:
        changed:  bool
            True if a write was performed
    """
    kind = resource["kind"]
    api_version = resource.get("apiVersion")
    metadata = resource.get("metadata", {})
    name = metadata.get("name")
    namespace = metadata.get("namespace")
    new_status = resource.get("status") or {}

    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return False
    if current_state is None:
        log.debug("%s/%s/%s is gone. Not updating status", namespace, kind, name)
        return False
    current_status = current_state.get("status") or {}

    # Only write when something besides a timestamp changed
    if not status_changed(current_status, new_status):
        log.debug3("No meaningful status change for %s/%s/%s", namespace, kind, name)
        return False

    log.debug("Found meaningful change. Updating status of %s/%s", kind, name)
    log.debug2("(current) %s != (updated) %s", current_status, new_status)
    success, changed = deploy_manager.set_status(
        kind=kind,
        name=name,
        namespace=namespace,
        api_version=api_version,
        status=new_status,
        resource_version=metadata.get("resourceVersion"),
    )
    if not success:
        raise ClusterError(f"Failed to update status of {kind}/{name}")
    return changed


## Implementation Details ######################################################


def _value(val):
    return val.value if isinstance(val, Enum) else val
