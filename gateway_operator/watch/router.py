"""
The event router turns an event on any watched kind into the keys of the
managed objects that must be reconciled because of it. Each route pairs the
filters an event must pass with a map function from the event object to the
keys of its dependents.
"""

# Standard
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

# First Party
import alog

# Local
from .. import config, constants
from ..api import GatewayClass
from ..deploy_manager import DeployManagerBase, KubeEventType
from ..deploy_manager.owner_references import get_owners_of_kind
from ..exceptions import ClusterError, UnexpectedObjectError, assert_cluster
from ..managed_object import ManagedObject, ResourceKey
from .filters import (
    Filter,
    GatewayClassMatchesController,
    GatewayConfigurationMatchesController,
    GatewayHasMatchingGatewayClass,
    ManagedByLabel,
    OwnedByKind,
)

log = alog.use_channel("ROUTR")

MapFunction = Callable[[ManagedObject], List[ResourceKey]]

# Kinds that are not namespaced
CLUSTER_SCOPED_KINDS = {constants.GATEWAY_CLASS_KIND, "ClusterRole", "ClusterRoleBinding"}


@dataclass
class Route:
    """A route from events on one kind to keys of a managed kind"""

    kind: str
    api_version: str
    target_kind: str
    map_to_owners: MapFunction
    filters: List[Filter] = field(default_factory=list)

    def should_enqueue(self, resource: ManagedObject, event: KubeEventType) -> bool:
        return all(event_filter(resource, event) for event_filter in self.filters)


class EventRouter:
    """Holds the routes of the operator and the map functions that read the
    cluster through the deploy manager
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager
        self.routes = self._build_routes()

    ## Public ##################################################################

    def route(
        self, resource: ManagedObject, event: KubeEventType
    ) -> List[Tuple[str, ResourceKey]]:
        """Find the managed objects an event applies to

        Args:
            resource:  ManagedObject
                The object of the event
            event:  KubeEventType
                The event type

        Returns:
            targets:  List[Tuple[str, ResourceKey]]
                Pairs of the managed kind and the key to enqueue for it
        """
        targets = []
        for route in self.routes:
            if route.kind != resource.kind or route.api_version != resource.api_version:
                continue
            if not route.should_enqueue(resource, event):
                continue
            keys = route.map_to_owners(resource)
            log.debug2(
                "Routing %s %s to %s", event.value, resource, [str(key) for key in keys]
            )
            targets.extend((route.target_kind, key) for key in keys)
        return targets

    def watched_kinds(self) -> List[Tuple[str, str]]:
        """The unique (kind, api_version) pairs that need a watch"""
        seen: Dict[Tuple[str, str], None] = {}
        for route in self.routes:
            seen.setdefault((route.kind, route.api_version), None)
        return list(seen)

    ## Map Functions ###########################################################

    @staticmethod
    def self_key(resource: ManagedObject) -> List[ResourceKey]:
        return [resource.key]

    def gateways_for_gateway_class(self, resource: ManagedObject) -> List[ResourceKey]:
        """All Gateways whose spec.className names the class"""
        if not _is_kind(resource, constants.GATEWAY_CLASS_KIND):
            return []
        return self._gateways_with_class_names({resource.name})

    def gateways_for_gateway_configuration(
        self, resource: ManagedObject
    ) -> List[ResourceKey]:
        """All Gateways whose class references the configuration"""
        if not _is_kind(resource, constants.GATEWAY_CONFIGURATION_KIND):
            return []
        try:
            success, gateway_classes = self.deploy_manager.filter_objects_current_state(
                kind=constants.GATEWAY_CLASS_KIND,
                namespace=None,
                api_version=constants.API_VERSION,
            )
            assert_cluster(success, "Failed to list GatewayClasses")
        except ClusterError as err:
            log.warning("Failed to map %s to Gateways: %s", resource, err)
            return []
        class_names = {
            gateway_class["metadata"]["name"]
            for gateway_class in gateway_classes
            if GatewayClass(gateway_class).references_configuration(resource)
        }
        if not class_names:
            return []
        return self._gateways_with_class_names(class_names)

    @staticmethod
    def owners_of_kind(kind: str) -> MapFunction:
        """Map a dependent to the keys of its owners of the given kind"""

        def map_to_owners(resource: ManagedObject) -> List[ResourceKey]:
            if not isinstance(resource, ManagedObject):
                log.error("%s", UnexpectedObjectError("ManagedObject", resource))
                return []
            return [
                ResourceKey(
                    kind=kind,
                    name=ref.get("name"),
                    namespace=resource.namespace,
                    api_version=ref.get("apiVersion"),
                )
                for ref in get_owners_of_kind(resource.definition, kind)
            ]

        return map_to_owners

    @staticmethod
    def owner_from_labels(kind: str) -> MapFunction:
        """Map a cluster-scoped dependent to the owner named by its labels"""

        def map_to_owner(resource: ManagedObject) -> List[ResourceKey]:
            labels = resource.labels
            name = labels.get(constants.OWNER_NAME_LABEL)
            if not name:
                return []
            return [
                ResourceKey(
                    kind=kind,
                    name=name,
                    namespace=labels.get(constants.OWNER_NAMESPACE_LABEL),
                    api_version=constants.API_VERSION,
                )
            ]

        return map_to_owner

    def control_planes_for_data_plane(
        self, resource: ManagedObject
    ) -> List[ResourceKey]:
        """ControlPlanes whose spec.dataPlane names the data plane"""
        if not _is_kind(resource, constants.DATA_PLANE_KIND):
            return []
        try:
            success, control_planes = self.deploy_manager.filter_objects_current_state(
                kind=constants.CONTROL_PLANE_KIND,
                namespace=resource.namespace,
                api_version=constants.API_VERSION,
            )
            assert_cluster(success, "Failed to list ControlPlanes")
        except ClusterError as err:
            log.warning("Failed to map %s to ControlPlanes: %s", resource, err)
            return []
        return [
            ManagedObject(control_plane).key
            for control_plane in control_planes
            if control_plane.get("spec", {}).get("dataPlane") == resource.name
        ]

    ## Implementation Details ##################################################

    def _gateways_with_class_names(self, class_names: Set[str]) -> List[ResourceKey]:
        try:
            success, gateways = self.deploy_manager.filter_objects_current_state(
                kind=constants.GATEWAY_KIND,
                namespace=config.watch_namespace or None,
                api_version=constants.API_VERSION,
            )
            assert_cluster(success, "Failed to list Gateways")
        except ClusterError as err:
            log.warning("Failed to list Gateways: %s", err)
            return []
        return [
            ManagedObject(gateway).key
            for gateway in gateways
            if gateway.get("spec", {}).get("className") in class_names
        ]

    def _build_routes(self) -> List[Route]:
        deploy_manager = self.deploy_manager
        gateway_owned = [
            OwnedByKind(constants.GATEWAY_KIND),
        ]
        routes = [
            # Gateways
            Route(
                constants.GATEWAY_KIND,
                constants.API_VERSION,
                constants.GATEWAY_KIND,
                self.self_key,
                [GatewayHasMatchingGatewayClass(deploy_manager)],
            ),
            Route(
                constants.GATEWAY_CLASS_KIND,
                constants.API_VERSION,
                constants.GATEWAY_KIND,
                self.gateways_for_gateway_class,
                [GatewayClassMatchesController()],
            ),
            Route(
                constants.GATEWAY_CONFIGURATION_KIND,
                constants.API_VERSION,
                constants.GATEWAY_KIND,
                self.gateways_for_gateway_configuration,
                [GatewayConfigurationMatchesController(deploy_manager)],
            ),
            Route(
                constants.DATA_PLANE_KIND,
                constants.API_VERSION,
                constants.GATEWAY_KIND,
                self.owners_of_kind(constants.GATEWAY_KIND),
                gateway_owned,
            ),
            Route(
                constants.CONTROL_PLANE_KIND,
                constants.API_VERSION,
                constants.GATEWAY_KIND,
                self.owners_of_kind(constants.GATEWAY_KIND),
                gateway_owned,
            ),
            # DataPlanes
            Route(
                constants.DATA_PLANE_KIND,
                constants.API_VERSION,
                constants.DATA_PLANE_KIND,
                self.self_key,
            ),
            # ControlPlanes
            Route(
                constants.CONTROL_PLANE_KIND,
                constants.API_VERSION,
                constants.CONTROL_PLANE_KIND,
                self.self_key,
            ),
            Route(
                constants.DATA_PLANE_KIND,
                constants.API_VERSION,
                constants.CONTROL_PLANE_KIND,
                self.control_planes_for_data_plane,
            ),
        ]
        for kind, api_version in [
            ("Deployment", constants.DEPLOYMENT_API_VERSION),
            ("Service", "v1"),
            ("Secret", "v1"),
        ]:
            routes.append(
                Route(
                    kind,
                    api_version,
                    constants.DATA_PLANE_KIND,
                    self.owners_of_kind(constants.DATA_PLANE_KIND),
                    [OwnedByKind(constants.DATA_PLANE_KIND)],
                )
            )
        for kind, api_version in [
            ("Deployment", constants.DEPLOYMENT_API_VERSION),
            ("ServiceAccount", "v1"),
        ]:
            routes.append(
                Route(
                    kind,
                    api_version,
                    constants.CONTROL_PLANE_KIND,
                    self.owners_of_kind(constants.CONTROL_PLANE_KIND),
                    [OwnedByKind(constants.CONTROL_PLANE_KIND)],
                )
            )
        for kind in ["ClusterRole", "ClusterRoleBinding"]:
            routes.append(
                Route(
                    kind,
                    constants.RBAC_API_VERSION,
                    constants.CONTROL_PLANE_KIND,
                    self.owner_from_labels(constants.CONTROL_PLANE_KIND),
                    [ManagedByLabel(constants.MANAGED_BY_CONTROL_PLANE)],
                )
            )
        return routes


def _is_kind(resource, kind: str) -> bool:
    if not isinstance(resource, ManagedObject) or resource.kind != kind:
        log.error("%s", UnexpectedObjectError(kind, resource))
        return False
    return True


def is_cluster_scoped(kind: str) -> bool:
    return kind in CLUSTER_SCOPED_KINDS


def get_watch_namespace(kind: str) -> Optional[str]:
    """The namespace a watch on the kind is restricted to, None for all"""
    if is_cluster_scoped(kind):
        return None
    return config.watch_namespace or None
