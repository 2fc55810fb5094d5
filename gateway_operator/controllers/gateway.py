"""
The Gateway controller schedules Gateways of the operator's GatewayClasses onto
a DataPlane and a ControlPlane it owns
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .. import config, constants
from ..api import ControlPlane, DataPlane, Gateway, GatewayClass, GatewayConfiguration
from ..children import ensure_child, list_children, release_children
from ..composer import compose_options, set_control_plane_defaults
from ..exceptions import (
    ReferenceNotFoundError,
    UnsupportedGatewayError,
    assert_config,
    assert_precondition,
)
from ..session import Session
from ..status import (
    ConditionStatus,
    ConditionType,
    ProvisionedReason,
    ReadyReason,
    ScheduledReason,
    mark_not_provisioned,
    mark_provisioned,
)
from .base import Controller

log = alog.use_channel("GWCTL")


class GatewayController(Controller):
    """Reconciles Gateway objects"""

    kind = constants.GATEWAY_KIND

    def reconcile(self, session: Session):
        gateway: Gateway = session.resource

        gateway_class = self.get_gateway_class(session, gateway)
        configuration = self.get_gateway_configuration(session, gateway, gateway_class)
        gateway.set_condition(
            ConditionType.SCHEDULED,
            ConditionStatus.TRUE,
            ScheduledReason.SCHEDULED,
            "gateway is scheduled",
        )

        options = compose_options(gateway, configuration)
        data_plane = self.ensure_data_plane(session, options["dataPlaneOptions"])

        # The control plane needs the generated service names of the data plane
        service_name = data_plane.status.get("service")
        admin_service_name = data_plane.status.get("adminService")
        if not (service_name and admin_service_name):
            mark_not_provisioned(
                gateway,
                ProvisionedReason.DEPENDENCIES_NOT_READY,
                f"waiting for services of DataPlane {data_plane.name}",
            )
        assert_precondition(
            service_name and admin_service_name,
            f"DataPlane {data_plane.name} has not reported its services yet",
        )

        control_plane_options = options["controlPlaneOptions"]
        set_control_plane_defaults(
            control_plane_options,
            namespace=gateway.namespace,
            data_plane_name=data_plane.name,
            ingress_service_name=service_name,
            admin_service_name=admin_service_name,
            gateway_name=gateway.name,
        )
        control_plane = self.ensure_control_plane(session, control_plane_options)

        self.update_gateway_status(session, gateway, data_plane, control_plane)

    def finalize(self, session: Session):
        """Release the DataPlane and ControlPlane so the cluster can collect
        them
        """
        children = self._list_owned(session, constants.DATA_PLANE_KIND)
        children.extend(self._list_owned(session, constants.CONTROL_PLANE_KIND))
        released = release_children(session.deploy_manager, children)
        log.debug("Released %d children of %s", released, session.resource)

    ## Reconcile Steps #########################################################

    def get_gateway_class(self, session: Session, gateway: Gateway) -> GatewayClass:
        """Fetch the class of the gateway, raising if it is missing and
        UnsupportedGatewayError if it belongs to another controller
        """
        assert_config(gateway.class_name, "spec.className must be set")
        content = session.get_object(
            constants.GATEWAY_CLASS_KIND,
            gateway.class_name,
            namespace=None,
            api_version=constants.API_VERSION,
        )
        if content is None:
            message = f"GatewayClass {gateway.class_name} not found"
            gateway.set_condition(
                ConditionType.SCHEDULED,
                ConditionStatus.FALSE,
                ScheduledReason.GATEWAY_CLASS_NOT_FOUND,
                message,
            )
            raise ReferenceNotFoundError(
                message, reason=ScheduledReason.GATEWAY_CLASS_NOT_FOUND.value
            )
        gateway_class = GatewayClass(content)
        if gateway_class.controller_name != config.controller_name:
            raise UnsupportedGatewayError(
                f"GatewayClass {gateway_class.name} is managed by "
                f"{gateway_class.controller_name}"
            )
        return gateway_class

    def get_gateway_configuration(
        self, session: Session, gateway: Gateway, gateway_class: GatewayClass
    ) -> Optional[GatewayConfiguration]:
        """Fetch the configuration referenced by the class, if any"""
        ref = gateway_class.parameters_ref
        if not ref:
            return None
        assert_config(
            ref.get("group") == constants.GROUP
            and ref.get("kind") == constants.GATEWAY_CONFIGURATION_KIND,
            f"GatewayClass {gateway_class.name} parametersRef must name a "
            f"{constants.GROUP}/{constants.GATEWAY_CONFIGURATION_KIND}",
        )
        namespace = ref.get("namespace") or gateway.namespace
        content = session.get_object(
            constants.GATEWAY_CONFIGURATION_KIND,
            ref.get("name"),
            namespace=namespace,
            api_version=constants.API_VERSION,
        )
        if content is None:
            message = f"GatewayConfiguration {namespace}/{ref.get('name')} not found"
            gateway.set_condition(
                ConditionType.SCHEDULED,
                ConditionStatus.FALSE,
                ScheduledReason.GATEWAY_CONFIGURATION_NOT_FOUND,
                message,
            )
            raise ReferenceNotFoundError(
                message, reason=ScheduledReason.GATEWAY_CONFIGURATION_NOT_FOUND.value
            )
        return GatewayConfiguration(content)

    def ensure_data_plane(self, session: Session, options: dict) -> DataPlane:
        child, changed = ensure_child(
            session.deploy_manager,
            session.definition,
            self._child(session, constants.DATA_PLANE_KIND, options),
            wait_for_owner=True,
        )
        if changed:
            log.debug("Applied DataPlane %s", child["metadata"]["name"])
        return DataPlane(child)

    def ensure_control_plane(self, session: Session, options: dict) -> ControlPlane:
        child, changed = ensure_child(
            session.deploy_manager,
            session.definition,
            self._child(session, constants.CONTROL_PLANE_KIND, options),
            wait_for_owner=True,
        )
        if changed:
            log.debug("Applied ControlPlane %s", child["metadata"]["name"])
        return ControlPlane(child)

    def update_gateway_status(
        self,
        session: Session,
        gateway: Gateway,
        data_plane: DataPlane,
        control_plane: ControlPlane,
    ):
        """Derive the gateway's conditions and addresses from its children"""
        not_ready = [
            child.kind
            for child in (data_plane, control_plane)
            if not child.is_condition_true(ConditionType.READY)
        ]
        if not_ready:
            message = f"waiting for {' and '.join(not_ready)} to become ready"
            mark_not_provisioned(
                gateway, ProvisionedReason.DEPENDENCIES_NOT_READY, message
            )
            gateway.set_condition(
                ConditionType.READY,
                ConditionStatus.FALSE,
                ReadyReason.NOT_READY,
                message,
            )
        else:
            mark_provisioned(gateway)
            gateway.set_condition(
                ConditionType.READY,
                ConditionStatus.TRUE,
                ReadyReason.READY,
                "dataplane and controlplane are ready",
            )
        gateway.status["addresses"] = self._get_addresses(session, data_plane)

    ## Implementation Details ##################################################

    def _child(self, session: Session, kind: str, spec: dict) -> dict:
        return {
            "apiVersion": constants.API_VERSION,
            "kind": kind,
            "metadata": {
                "generateName": f"{session.name}-",
                "namespace": session.namespace,
                "labels": {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_GATEWAY},
            },
            "spec": spec,
        }

    def _list_owned(self, session: Session, kind: str) -> List[dict]:
        return list_children(
            session.deploy_manager,
            session.definition,
            kind,
            {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_GATEWAY},
            api_version=constants.API_VERSION,
            namespace=session.namespace,
            include_deleting=True,
        )

    @staticmethod
    def _get_addresses(session: Session, data_plane: DataPlane) -> List[dict]:
        """The addresses of the data plane's ingress load balancer"""
        service = session.get_object(
            "Service", data_plane.status.get("service"), api_version="v1"
        )
        if service is None:
            return []
        addresses = []
        for ingress in (
            service.get("status", {}).get("loadBalancer", {}).get("ingress") or []
        ):
            if ingress.get("ip"):
                addresses.append({"type": "IPAddress", "value": ingress["ip"]})
            elif ingress.get("hostname"):
                addresses.append({"type": "Hostname", "value": ingress["hostname"]})
        return addresses
