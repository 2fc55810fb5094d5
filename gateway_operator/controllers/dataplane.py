"""
The DataPlane controller runs the proxy tier through the rollout engine and
reports the live services and replica counts
"""

# Standard
import copy

# First Party
import alog

# Local
from .. import constants
from ..api import DataPlane
from ..children import list_children, release_children
from ..composer import set_data_plane_defaults
from ..rollout import DataPlaneRollout, RolloutResult, available_replicas
from ..session import Session
from ..status import (
    ConditionStatus,
    ConditionType,
    ProvisionedReason,
    ReadyReason,
    mark_not_provisioned,
    mark_provisioned,
)
from .base import Controller

log = alog.use_channel("DPCTL")

# Kinds of children a DataPlane owns
CHILD_KINDS = [
    ("Deployment", constants.DEPLOYMENT_API_VERSION),
    ("Service", "v1"),
    ("Secret", "v1"),
]


class DataPlaneController(Controller):
    """Reconciles DataPlane objects"""

    kind = constants.DATA_PLANE_KIND

    def reconcile(self, session: Session):
        data_plane: DataPlane = session.resource

        # Defaults are applied to a copy so they are never written back
        desired = DataPlane(copy.deepcopy(session.definition))
        set_data_plane_defaults(desired.spec)

        result = DataPlaneRollout(session, desired).reconcile()
        log.debug2("Rollout of %s is %s", data_plane, result.state.value)
        self.update_data_plane_status(data_plane, desired, result)

    def finalize(self, session: Session):
        children = []
        for kind, api_version in CHILD_KINDS:
            children.extend(
                list_children(
                    session.deploy_manager,
                    session.definition,
                    kind,
                    {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE},
                    api_version=api_version,
                    namespace=session.namespace,
                    include_deleting=True,
                )
            )
        released = release_children(session.deploy_manager, children)
        log.debug("Released %d children of %s", released, session.resource)

    @staticmethod
    def update_data_plane_status(
        data_plane: DataPlane, desired: DataPlane, result: RolloutResult
    ):
        status = data_plane.status
        status["service"] = (result.ingress_service or {}).get("metadata", {}).get(
            "name"
        )
        status["adminService"] = (result.admin_service or {}).get("metadata", {}).get(
            "name"
        )
        deployment_status = (result.deployment or {}).get("status") or {}
        status["replicas"] = desired.replicas
        status["readyReplicas"] = deployment_status.get("readyReplicas") or 0

        available = available_replicas(result.deployment)
        if result.deployment is not None and available >= desired.replicas:
            mark_provisioned(data_plane)
            data_plane.set_condition(
                ConditionType.READY, ConditionStatus.TRUE, ReadyReason.READY
            )
            return

        message = f"{available}/{desired.replicas} pods available"
        mark_not_provisioned(data_plane, ProvisionedReason.PODS_NOT_READY, message)
        data_plane.set_condition(
            ConditionType.READY, ConditionStatus.FALSE, ReadyReason.NOT_READY, message
        )
