"""
Typed views over the custom resources managed by the operator. Each view wraps
the raw manifest dict and reads/writes through to it, so status changes made on
a view are persisted by writing the wrapped definition.
"""

# Standard
from typing import List, Optional

# Local
from . import constants
from .managed_object import ManagedObject
from .status import HasConditions
from .utils import nested_get


class KubeObject(ManagedObject):
    """A ManagedObject with spec and status accessors"""

    @property
    def spec(self) -> dict:
        return self.definition.setdefault("spec", {})

    @property
    def status(self) -> dict:
        status = self.definition.get("status")
        if status is None:
            status = self.definition["status"] = {}
        return status


class ConditionedObject(KubeObject, HasConditions):
    """A KubeObject storing its conditions under status.conditions"""

    @property
    def conditions(self) -> List[dict]:
        conditions = self.status.get("conditions")
        if conditions is None:
            conditions = self.status["conditions"] = []
        return conditions


class GatewayClass(KubeObject):
    """Cluster-scoped class that names the controller owning its Gateways"""

    @property
    def controller_name(self) -> Optional[str]:
        return self.spec.get("controllerName")

    @property
    def parameters_ref(self) -> Optional[dict]:
        return self.spec.get("parametersRef")

    def references_configuration(self, configuration: ManagedObject) -> bool:
        """True if parametersRef names the given GatewayConfiguration"""
        ref = self.parameters_ref
        if not ref:
            return False
        if ref.get("group") != constants.GROUP:
            return False
        if ref.get("kind") != constants.GATEWAY_CONFIGURATION_KIND:
            return False
        if ref.get("name") != configuration.name:
            return False
        namespace = ref.get("namespace")
        return not namespace or namespace == configuration.namespace


class GatewayConfiguration(KubeObject):
    """Named, reusable data plane and control plane options"""

    @property
    def data_plane_options(self) -> dict:
        return self.spec.get("dataPlaneOptions") or {}

    @property
    def control_plane_options(self) -> dict:
        return self.spec.get("controlPlaneOptions") or {}


class Gateway(ConditionedObject):
    """The top-level object users create"""

    @property
    def class_name(self) -> Optional[str]:
        return self.spec.get("className")

    @property
    def options(self) -> dict:
        return self.spec.get("options") or {}


class RolloutStatus(HasConditions):
    """View of a DataPlane's status.rolloutStatus.conditions"""

    def __init__(self, data_plane: "DataPlane"):
        self._data_plane = data_plane

    @property
    def conditions(self) -> List[dict]:
        rollout_status = self._data_plane.status.setdefault("rolloutStatus", {})
        return rollout_status.setdefault("conditions", [])

    @property
    def generation(self) -> int:
        return self._data_plane.generation


class DataPlane(ConditionedObject):
    """The proxy tier"""

    @property
    def replicas(self) -> int:
        replicas = nested_get(self.spec, "deployment.replicas")
        return 1 if replicas is None else replicas

    @property
    def pod_template(self) -> dict:
        return nested_get(self.spec, "deployment.podTemplateSpec", {})

    @property
    def promotion_strategy(self) -> Optional[str]:
        """The blue/green promotion strategy, or None for in-place updates"""
        blue_green = nested_get(self.spec, "deployment.rollout.strategy.blueGreen")
        if blue_green is None:
            return None
        return nested_get(
            blue_green, "promotion.strategy", constants.BREAK_BEFORE_MAKE
        )

    @property
    def promote_when_ready(self) -> bool:
        return (
            self.annotations.get(constants.PROMOTE_WHEN_READY_ANNOTATION)
            == constants.PROMOTE_WHEN_READY_VALUE
        )

    @property
    def rollout_status(self) -> RolloutStatus:
        return RolloutStatus(self)


class ControlPlane(ConditionedObject):
    """The configuration-sync tier"""

    @property
    def data_plane_name(self) -> Optional[str]:
        return self.spec.get("dataPlane")

    @property
    def replicas(self) -> int:
        replicas = nested_get(self.spec, "deployment.replicas")
        return 1 if replicas is None else replicas

    @property
    def pod_template(self) -> dict:
        return nested_get(self.spec, "deployment.podTemplateSpec", {})


KIND_TYPES = {
    constants.GATEWAY_KIND: Gateway,
    constants.GATEWAY_CLASS_KIND: GatewayClass,
    constants.GATEWAY_CONFIGURATION_KIND: GatewayConfiguration,
    constants.DATA_PLANE_KIND: DataPlane,
    constants.CONTROL_PLANE_KIND: ControlPlane,
}


def wrap(definition: dict) -> KubeObject:
    """Wrap a raw manifest in the typed view for its kind"""
    return KIND_TYPES.get(definition.get("kind"), KubeObject)(definition)
