"""
The ControlPlane controller runs the configuration-sync tier with the
cluster-wide permissions its image version needs
"""

# Standard
from typing import List, Optional
import copy

# First Party
import alog

# Local
from .. import constants
from ..api import ControlPlane, DataPlane
from ..children import delete_child, ensure_child, list_children, release_children
from ..composer import get_container, set_control_plane_defaults
from ..exceptions import ReferenceNotFoundError
from ..permissions import resolve_permissions
from ..resources.deployment import (
    generate_control_plane_deployment,
    get_selector_value,
    new_selector_value,
)
from ..resources.rbac import (
    generate_cluster_role_binding,
    generate_service_account,
    rbac_match_labels,
)
from ..rollout import available_replicas
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

log = alog.use_channel("CPCTL")

CLUSTER_SCOPED_KINDS = [
    ("ClusterRoleBinding", constants.RBAC_API_VERSION),
    ("ClusterRole", constants.RBAC_API_VERSION),
]
NAMESPACED_KINDS = [
    ("Deployment", constants.DEPLOYMENT_API_VERSION),
    ("ServiceAccount", "v1"),
]


class ControlPlaneController(Controller):
    """Reconciles ControlPlane objects"""

    kind = constants.CONTROL_PLANE_KIND

    def reconcile(self, session: Session):
        control_plane: ControlPlane = session.resource
        data_plane = self.get_data_plane(session, control_plane)

        # Defaults are applied to a copy so they are never written back
        desired = ControlPlane(copy.deepcopy(session.definition))
        set_control_plane_defaults(
            desired.spec,
            namespace=control_plane.namespace,
            data_plane_name=control_plane.data_plane_name,
            ingress_service_name=data_plane and data_plane.status.get("service"),
            admin_service_name=data_plane and data_plane.status.get("adminService"),
            control_plane_name=control_plane.name,
        )

        container = get_container(
            desired.pod_template, constants.CONTROL_PLANE_CONTAINER_NAME
        )
        cluster_role = resolve_permissions(
            f"controlplane-{control_plane.name}-", container.get("image")
        )

        service_account = self.ensure_service_account(session, desired)
        cluster_role = self.ensure_cluster_role(session, cluster_role)
        self.ensure_cluster_role_binding(
            session, desired, cluster_role, service_account
        )
        replicas = None if data_plane is not None else 0
        deployment = self.ensure_deployment(
            session, desired, service_account, replicas
        )
        self.update_control_plane_status(control_plane, desired, deployment, replicas)

    def finalize(self, session: Session):
        """Delete the cluster-scoped RBAC objects, which the cluster cannot
        collect through ownerReferences, and release the namespaced children
        """
        for kind, api_version in CLUSTER_SCOPED_KINDS:
            for child in self._list_children(session, kind, api_version, None):
                log.debug("Deleting %s %s", kind, child["metadata"]["name"])
                delete_child(session.deploy_manager, child)
        children = []
        for kind, api_version in NAMESPACED_KINDS:
            children.extend(
                self._list_children(session, kind, api_version, session.namespace)
            )
        release_children(session.deploy_manager, children)

    ## Reconcile Steps #########################################################

    def get_data_plane(
        self, session: Session, control_plane: ControlPlane
    ) -> Optional[DataPlane]:
        """Fetch the referenced data plane. A control plane without one is
        scheduled with its deployment scaled down.
        """
        if not control_plane.data_plane_name:
            control_plane.set_condition(
                ConditionType.SCHEDULED,
                ConditionStatus.FALSE,
                ScheduledReason.NO_DATA_PLANE,
                "spec.dataPlane is not set",
            )
            return None

        content = session.get_object(
            constants.DATA_PLANE_KIND,
            control_plane.data_plane_name,
            api_version=constants.API_VERSION,
        )
        if content is None:
            message = f"DataPlane {control_plane.data_plane_name} not found"
            control_plane.set_condition(
                ConditionType.SCHEDULED,
                ConditionStatus.FALSE,
                ScheduledReason.DATA_PLANE_NOT_FOUND,
                message,
            )
            raise ReferenceNotFoundError(
                message, reason=ScheduledReason.DATA_PLANE_NOT_FOUND.value
            )
        control_plane.set_condition(
            ConditionType.SCHEDULED,
            ConditionStatus.TRUE,
            ScheduledReason.SCHEDULED,
            f"using DataPlane {control_plane.data_plane_name}",
        )
        return DataPlane(content)

    def ensure_service_account(self, session: Session, desired: ControlPlane) -> dict:
        service_account, _ = ensure_child(
            session.deploy_manager,
            session.definition,
            generate_service_account(desired),
            match_labels=rbac_match_labels(),
            wait_for_owner=True,
        )
        return service_account

    def ensure_cluster_role(self, session: Session, cluster_role: dict) -> dict:
        cluster_role, changed = ensure_child(
            session.deploy_manager,
            session.definition,
            cluster_role,
            match_labels=rbac_match_labels(),
        )
        if changed:
            log.debug("Applied ClusterRole %s", cluster_role["metadata"]["name"])
        return cluster_role

    def ensure_cluster_role_binding(
        self,
        session: Session,
        desired: ControlPlane,
        cluster_role: dict,
        service_account: dict,
    ) -> dict:
        binding = generate_cluster_role_binding(
            desired,
            cluster_role["metadata"]["name"],
            service_account["metadata"]["name"],
        )

        # roleRef is immutable, so a binding to another role is replaced
        for existing in self._list_children(
            session, "ClusterRoleBinding", constants.RBAC_API_VERSION, None
        ):
            if existing.get("roleRef") != binding["roleRef"]:
                log.debug(
                    "Replacing ClusterRoleBinding %s", existing["metadata"]["name"]
                )
                delete_child(session.deploy_manager, existing)

        binding, _ = ensure_child(
            session.deploy_manager,
            session.definition,
            binding,
            match_labels=rbac_match_labels(),
        )
        return binding

    def ensure_deployment(
        self,
        session: Session,
        desired: ControlPlane,
        service_account: dict,
        replicas: Optional[int],
    ) -> dict:
        match_labels = {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_CONTROL_PLANE}
        existing = list_children(
            session.deploy_manager,
            session.definition,
            "Deployment",
            match_labels,
            api_version=constants.DEPLOYMENT_API_VERSION,
            namespace=session.namespace,
        )
        selector_value = (
            get_selector_value(existing[0]) if existing else new_selector_value()
        )
        deployment, _ = ensure_child(
            session.deploy_manager,
            session.definition,
            generate_control_plane_deployment(
                desired,
                selector_value,
                service_account["metadata"]["name"],
                replicas=replicas,
            ),
            match_labels=match_labels,
            wait_for_owner=True,
        )
        return deployment

    @staticmethod
    def update_control_plane_status(
        control_plane: ControlPlane,
        desired: ControlPlane,
        deployment: dict,
        replicas: Optional[int],
    ):
        if replicas == 0:
            message = "no DataPlane is set"
            mark_not_provisioned(
                control_plane, ProvisionedReason.DEPENDENCIES_NOT_READY, message
            )
            control_plane.set_condition(
                ConditionType.READY, ConditionStatus.FALSE, ReadyReason.NOT_READY, message
            )
            return

        available = available_replicas(deployment)
        if available >= desired.replicas:
            mark_provisioned(control_plane)
            control_plane.set_condition(
                ConditionType.READY, ConditionStatus.TRUE, ReadyReason.READY
            )
            return

        message = f"{available}/{desired.replicas} pods available"
        mark_not_provisioned(control_plane, ProvisionedReason.PODS_NOT_READY, message)
        control_plane.set_condition(
            ConditionType.READY, ConditionStatus.FALSE, ReadyReason.NOT_READY, message
        )

    ## Implementation Details ##################################################

    def _list_children(
        self, session: Session, kind: str, api_version: str, namespace: Optional[str]
    ) -> List[dict]:
        return list_children(
            session.deploy_manager,
            session.definition,
            kind,
            rbac_match_labels(),
            api_version=api_version,
            namespace=namespace,
            include_deleting=True,
        )
