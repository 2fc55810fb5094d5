"""
Filters decide whether an event on a watched object should enqueue anything.
They are modeled on the kubernetes controller runtime's "predicates":
https://pkg.go.dev/sigs.k8s.io/controller-runtime@v0.15.0/pkg/predicate#Funcs

A filter is a pure function of the event object and whatever it reads from the
cluster. Every filter declares what it answers when such a read fails:
fail-open filters enqueue so no event is lost, fail-closed filters drop.
"""

# Standard
from abc import ABC, abstractmethod
from typing import Optional

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, KubeEventType
from ..deploy_manager.owner_references import get_owners_of_kind
from ..exceptions import ClusterError, UnexpectedObjectError, assert_cluster
from ..managed_object import ManagedObject
from ..utils import abstractclassproperty

log = alog.use_channel("FLTRS")


class Filter(ABC):
    """Generic Filter Interface for subclassing. Every subclass implements
    `test`, which returns true when the event should be routed.
    """

    def __init__(self, deploy_manager: Optional[DeployManagerBase] = None):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Used by filters that read other objects
        """
        self.deploy_manager = deploy_manager

    @abstractclassproperty  # noqa: B027
    def on_read_failure(cls) -> bool:
        """The answer of the filter when a read it depends on fails"""

    @abstractmethod
    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        """Test whether the resource and event pass the filter

        Args:
            resource:  ManagedObject
                The object of the event
            event:  KubeEventType
                The type of the event

        Returns:
            result:  bool
                True if the event should be routed
        """

    def __call__(self, resource: ManagedObject, event: KubeEventType) -> bool:
        """Run the test, mapping failures onto the declared answers. This never
        raises into the caller.
        """
        try:
            result = self.test(resource, event)
        except UnexpectedObjectError as err:
            log.error("%s: %s", self, err)
            return False
        except ClusterError as err:
            log.warning(
                "%s failed to read the cluster: %s. Answering %s",
                self,
                err,
                self.on_read_failure,
            )
            return self.on_read_failure
        if not result:
            log.debug3("Failed filter: %s for %s", self, resource)
        return result

    def __str__(self):
        return self.__class__.__name__

    ## Helpers #################################################################

    @staticmethod
    def expect_kind(resource, kind: str):
        if not isinstance(resource, ManagedObject) or resource.kind != kind:
            raise UnexpectedObjectError(kind, resource)


class GatewayClassMatchesController(Filter):
    """GatewayClasses pass when their controllerName is this operator's"""

    on_read_failure = False

    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        self.expect_kind(resource, constants.GATEWAY_CLASS_KIND)
        return (
            resource.get("spec", {}).get("controllerName") == config.controller_name
        )


class GatewayHasMatchingGatewayClass(Filter):
    """Gateways pass unless their class is known to belong to another
    controller
    """

    on_read_failure = True

    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        self.expect_kind(resource, constants.GATEWAY_KIND)
        class_name = resource.get("spec", {}).get("className")
        if not class_name:
            return True
        success, gateway_class = self.deploy_manager.get_object_current_state(
            kind=constants.GATEWAY_CLASS_KIND,
            name=class_name,
            namespace=None,
            api_version=constants.API_VERSION,
        )
        assert_cluster(success, f"Failed to read GatewayClass {class_name}")
        if gateway_class is None:
            return True
        return (
            gateway_class.get("spec", {}).get("controllerName")
            == config.controller_name
        )


class GatewayConfigurationMatchesController(Filter):
    """GatewayConfigurations pass when any GatewayClass is owned by this
    operator
    """

    on_read_failure = True

    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        self.expect_kind(resource, constants.GATEWAY_CONFIGURATION_KIND)
        success, gateway_classes = self.deploy_manager.filter_objects_current_state(
            kind=constants.GATEWAY_CLASS_KIND,
            namespace=None,
            api_version=constants.API_VERSION,
        )
        assert_cluster(success, "Failed to list GatewayClasses")
        return any(
            gateway_class.get("spec", {}).get("controllerName")
            == config.controller_name
            for gateway_class in gateway_classes
        )


class OwnedByKind(Filter):
    """Dependent objects pass when they carry an owner of the given kind"""

    on_read_failure = False

    def __init__(self, kind: str, deploy_manager: Optional[DeployManagerBase] = None):
        super().__init__(deploy_manager)
        self.kind = kind

    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        if not isinstance(resource, ManagedObject):
            raise UnexpectedObjectError("ManagedObject", resource)
        return bool(get_owners_of_kind(resource.definition, self.kind))

    def __str__(self):
        return f"OwnedByKind({self.kind})"


class ManagedByLabel(Filter):
    """Cluster-scoped dependents pass when they carry the managed-by label of
    the given value and owner labels
    """

    on_read_failure = False

    def __init__(self, value: str, deploy_manager: Optional[DeployManagerBase] = None):
        super().__init__(deploy_manager)
        self.value = value

    def test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        if not isinstance(resource, ManagedObject):
            raise UnexpectedObjectError("ManagedObject", resource)
        labels = resource.labels
        return (
            labels.get(constants.MANAGED_BY_LABEL) == self.value
            and bool(labels.get(constants.OWNER_NAME_LABEL))
        )

    def __str__(self):
        return f"ManagedByLabel({self.value})"
