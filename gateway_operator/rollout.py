"""
The rollout engine drives the children of a DataPlane. Without a rollout
strategy the single live generation is updated in place. With a blue/green
strategy, a changed spec is first deployed as a preview generation next to the
live one and only replaces it once it is ready and promotion is requested:

    Stable -> RolloutRequested -> Progressing -> AwaitingPromotion
           -> Promoting -> Stable

No state is kept between passes. Each pass derives the state from the children
it observes, so a pass that fails part way is resumed by the next one.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import copy

# First Party
import alog

# Local
from . import constants
from .api import DataPlane
from .children import delete_child, ensure_child, list_children
from .exceptions import assert_cluster, assert_config
from .resources.compare import deployment_equal
from .resources.deployment import (
    generate_data_plane_deployment,
    get_secret_volume_name,
    get_selector_value,
    new_selector_value,
    set_secret_volume_name,
)
from .resources.secrets import generate_tls_secret, secret_match_labels
from .resources.services import (
    generate_admin_service,
    generate_ingress_service,
    service_match_labels,
)
from .session import Session
from .status import ConditionStatus, ConditionType, RolloutReason
from .utils import is_deleting, labels_match

log = alog.use_channel("RLOUT")

SUPPORTED_PROMOTION_STRATEGIES = [constants.BREAK_BEFORE_MAKE]

## Public ######################################################################


class RolloutState(Enum):
    """The states of a blue/green rollout"""

    STABLE = "Stable"
    ROLLOUT_REQUESTED = "RolloutRequested"
    PROGRESSING = "Progressing"
    AWAITING_PROMOTION = "AwaitingPromotion"
    PROMOTING = "Promoting"


@dataclass
class RolloutResult:
    """The outcome of a rollout pass"""

    state: RolloutState
    deployment: Optional[dict] = None
    admin_service: Optional[dict] = None
    ingress_service: Optional[dict] = None
    preview_deployment: Optional[dict] = None


def available_replicas(deployment: Optional[dict]) -> int:
    """The number of available pods of a deployment whose status describes its
    current generation
    """
    if deployment is None:
        return 0
    status = deployment.get("status") or {}
    observed = status.get("observedGeneration")
    generation = deployment.get("metadata", {}).get("generation")
    if observed is not None and generation is not None and observed < generation:
        return 0
    return status.get("availableReplicas") or 0


class DataPlaneRollout:
    """Runs one rollout pass for a DataPlane"""

    def __init__(self, session: Session, desired: DataPlane):
        """
        Args:
            session:  Session
                The session of the DataPlane reconciliation. Conditions and the
                promotion annotation are read from and written to its resource.
            desired:  DataPlane
                A copy of the DataPlane with defaults applied, used to generate
                the children
        """
        self.session = session
        self.data_plane: DataPlane = session.resource
        self.desired = desired
        self.deploy_manager = session.deploy_manager
        self.owner = session.definition

    def reconcile(self) -> RolloutResult:
        """Run a single pass

        Returns:
            result:  RolloutResult
                The derived state and the current live children
        """
        strategy = self.data_plane.promotion_strategy
        assert_config(
            strategy is None or strategy in SUPPORTED_PROMOTION_STRATEGIES,
            f"unsupported promotion strategy {strategy}",
        )
        observed = self._observe()
        if strategy is None:
            return self._reconcile_in_place(observed)
        return self._reconcile_blue_green(observed)

    ## Implementation Details ##################################################

    def _observe(self) -> "_Observed":
        namespace = self.data_plane.namespace
        labels = {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE}
        # Deployments marked for deletion are kept aside. A deleted live
        # deployment is restored from its last observed form.
        deployments = list_children(
            self.deploy_manager,
            self.owner,
            "Deployment",
            labels,
            api_version=constants.DEPLOYMENT_API_VERSION,
            namespace=namespace,
            include_deleting=True,
        )
        observed = _Observed(
            deployments=[dep for dep in deployments if not is_deleting(dep)],
            deleted_deployments=[dep for dep in deployments if is_deleting(dep)],
            services=list_children(
                self.deploy_manager,
                self.owner,
                "Service",
                labels,
                api_version="v1",
                namespace=namespace,
            ),
            secrets=list_children(
                self.deploy_manager,
                self.owner,
                "Secret",
                labels,
                api_version="v1",
                namespace=namespace,
            ),
        )
        observed.classify()
        log.debug2(
            "Observed %s: live=%s preview=%s",
            self.data_plane,
            _name(observed.live_deployment),
            _name(observed.preview_deployment),
        )
        return observed

    def _reconcile_in_place(self, observed: "_Observed") -> RolloutResult:
        deployment, admin, ingress = self._ensure_live(observed, update=True)
        self._cleanup(observed, deployment)
        return RolloutResult(
            state=RolloutState.STABLE,
            deployment=deployment,
            admin_service=admin,
            ingress_service=ingress,
        )

    def _reconcile_blue_green(self, observed: "_Observed") -> RolloutResult:
        # Only a DataPlane without any generation is provisioned from scratch.
        # A live deployment deleted while its generation remains is restored.
        if observed.live_deployment is None and observed.has_generation:
            if observed.deleted_live_deployment is None and observed.preview_in_flight:
                log.warning(
                    "Live deployment of %s is gone. Continuing with its preview",
                    self.data_plane,
                )
                return self._progress_preview(observed)
            self._restore_live(observed)

        # A live deployment still labelled preview means the live services were
        # already re-pointed by an interrupted promotion
        if observed.live_deployment is not None and _has_state(
            observed.live_deployment, constants.STATE_PREVIEW
        ):
            log.info("Resuming interrupted promotion of %s", self.data_plane)
            return self._finish_promotion(observed, observed.live_deployment)

        if observed.live_deployment is not None and not deployment_equal(
            observed.live_deployment, self._desired_live(observed)
        ):
            return self._progress_preview(observed)

        # First provisioning, or the live generation matches the spec
        deployment, admin, ingress = self._ensure_live(observed, update=False)
        self._cleanup(observed, deployment)
        self._mark_stable()
        return RolloutResult(
            state=RolloutState.STABLE,
            deployment=deployment,
            admin_service=admin,
            ingress_service=ingress,
        )

    def _desired_live(self, observed: "_Observed", secret_name=None) -> dict:
        return generate_data_plane_deployment(
            self.desired,
            constants.STATE_LIVE,
            get_selector_value(observed.live_deployment)
            or observed.live_selector
            or new_selector_value(),
            secret_name
            or get_secret_volume_name(observed.live_deployment)
            or _name(observed.live_secret),
        )

    def _ensure_live(self, observed: "_Observed", update: bool):
        """Make sure the live generation exists. Its deployment is only updated
        in place when update is set.
        """
        secret = self._ensure_live_secret(observed)
        deployment = observed.live_deployment
        if deployment is None or update:
            desired = self._desired_live(observed, secret_name=_name(secret))
            deployment, _ = ensure_child(
                self.deploy_manager,
                self.owner,
                desired,
                match_labels=_deployment_match_labels(constants.STATE_LIVE),
                wait_for_owner=True,
            )

        admin, ingress = self._ensure_services(
            constants.STATE_LIVE, get_selector_value(deployment)
        )
        return deployment, admin, ingress

    def _ensure_live_secret(self, observed: "_Observed") -> dict:
        if observed.live_secret is None:
            observed.live_secret, _ = ensure_child(
                self.deploy_manager,
                self.owner,
                generate_tls_secret(self.desired, constants.STATE_LIVE),
                wait_for_owner=True,
            )
        return observed.live_secret

    def _restore_live(self, observed: "_Observed"):
        """Recreate the live deployment of an existing generation. The pod
        template comes from the deleted deployment, so the restored pods keep
        running what was last promoted and keep the selector the live services
        route to.
        """
        deleted = observed.deleted_live_deployment
        secret = observed.referenced_secret(deleted) or self._ensure_live_secret(
            observed
        )
        selector_value = (
            observed.live_selector
            or get_selector_value(deleted)
            or new_selector_value()
        )
        desired = generate_data_plane_deployment(
            self.desired, constants.STATE_LIVE, selector_value, _name(secret)
        )
        if deleted is None:
            log.warning(
                "No trace left of the live deployment of %s. Recreating it",
                self.data_plane,
            )
        else:
            log.info(
                "Restoring deleted live deployment %s of %s",
                _name(deleted),
                self.data_plane,
            )
            template = copy.deepcopy(deleted.get("spec", {}).get("template") or {})
            template.setdefault("metadata", {}).setdefault("labels", {})[
                constants.SELECTOR_LABEL
            ] = selector_value
            set_secret_volume_name(template, _name(secret))
            desired["spec"]["template"] = template
            desired["spec"]["replicas"] = deleted["spec"].get(
                "replicas", desired["spec"]["replicas"]
            )
        observed.live_deployment, _ = ensure_child(
            self.deploy_manager,
            self.owner,
            desired,
            match_labels=_deployment_match_labels(constants.STATE_LIVE),
            wait_for_owner=True,
        )
        observed.live_secret = secret

    def _ensure_services(self, state: str, selector_value: str):
        admin, _ = ensure_child(
            self.deploy_manager,
            self.owner,
            generate_admin_service(self.desired, state, selector_value),
            match_labels=service_match_labels(constants.SERVICE_TYPE_ADMIN, state),
            wait_for_owner=True,
        )
        ingress, _ = ensure_child(
            self.deploy_manager,
            self.owner,
            generate_ingress_service(self.desired, state, selector_value),
            match_labels=service_match_labels(constants.SERVICE_TYPE_INGRESS, state),
            wait_for_owner=True,
        )
        return admin, ingress

    def _progress_preview(self, observed: "_Observed") -> RolloutResult:
        log.debug("Live deployment of %s drifted. Rolling out preview", self.data_plane)
        if observed.live_deployment is not None:
            self._ensure_live_secret(observed)
        preview_secret = observed.preview_secret
        if preview_secret is None:
            preview_secret, _ = ensure_child(
                self.deploy_manager,
                self.owner,
                generate_tls_secret(self.desired, constants.STATE_PREVIEW),
                wait_for_owner=True,
            )
        preview, _ = ensure_child(
            self.deploy_manager,
            self.owner,
            generate_data_plane_deployment(
                self.desired,
                constants.STATE_PREVIEW,
                get_selector_value(observed.preview_deployment)
                or new_selector_value(),
                _name(preview_secret),
            ),
            match_labels=_deployment_match_labels(constants.STATE_PREVIEW),
            wait_for_owner=True,
        )

        # Preview services hold no endpoints until promotion
        self._ensure_services(constants.STATE_PREVIEW, constants.HOLD_SELECTOR_VALUE)
        live_admin, live_ingress = self._ensure_services(
            constants.STATE_LIVE,
            get_selector_value(observed.live_deployment)
            or observed.live_selector
            or constants.HOLD_SELECTOR_VALUE,
        )

        result = RolloutResult(
            state=RolloutState.PROGRESSING,
            deployment=observed.live_deployment,
            admin_service=live_admin,
            ingress_service=live_ingress,
            preview_deployment=preview,
        )
        preview_selector = get_selector_value(preview)
        ready = available_replicas(preview) >= 1 and all(
            get_selector_value_of_service(svc) != preview_selector
            for svc in (live_admin, live_ingress)
        )
        if not ready:
            self._set_rolled_out(
                ConditionStatus.FALSE,
                RolloutReason.PROGRESSING,
                "preview deployment is not ready yet",
            )
            return result

        if not self.data_plane.promote_when_ready:
            self._set_rolled_out(
                ConditionStatus.FALSE,
                RolloutReason.AWAITING_PROMOTION,
                "preview deployment is ready and awaiting promotion",
            )
            result.state = RolloutState.AWAITING_PROMOTION
            return result

        log.info("Promoting preview deployment %s of %s", _name(preview), self.data_plane)
        self._set_rolled_out(
            ConditionStatus.FALSE,
            RolloutReason.PROMOTING,
            "promoting preview deployment",
        )
        for service in (live_admin, live_ingress):
            self._point_service(service, preview_selector)
        observed.live_deployment, observed.previous_live = preview, observed.live_deployment
        observed.live_secret, observed.previous_secret = (
            preview_secret,
            observed.live_secret,
        )
        return self._finish_promotion(observed, preview)

    def _point_service(self, service: dict, selector_value: str):
        """Route a service to the pods of another deployment and verify the
        change is observable before continuing
        """
        service["spec"]["selector"] = {constants.SELECTOR_LABEL: selector_value}
        success, _ = self.deploy_manager.deploy([service])
        assert_cluster(success, f"Failed to re-point service {_name(service)}")
        success, current = self.deploy_manager.get_object_current_state(
            kind="Service",
            name=_name(service),
            namespace=self.data_plane.namespace,
            api_version="v1",
        )
        assert_cluster(
            success
            and current is not None
            and get_selector_value_of_service(current) == selector_value,
            f"Service {_name(service)} does not select {selector_value} yet",
        )

    def _finish_promotion(self, observed: "_Observed", new_live: dict) -> RolloutResult:
        """Relabel the promoted generation as live, then remove the previous
        live generation and the preview services
        """
        self._set_rolled_out(
            ConditionStatus.FALSE,
            RolloutReason.PROMOTING,
            "promoting preview deployment",
        )
        new_live = self._relabel(new_live, constants.DEPLOYMENT_STATE_LABEL)
        new_secret_name = get_secret_volume_name(new_live)
        for secret in observed.secrets:
            if _name(secret) == new_secret_name:
                self._relabel(secret, constants.GENERATION_STATE_LABEL)

        for deployment in observed.deployments:
            if _name(deployment) != _name(new_live):
                delete_child(self.deploy_manager, deployment)
        for secret in observed.secrets:
            if _name(secret) != new_secret_name:
                delete_child(self.deploy_manager, secret)
        for service in observed.services:
            if _has_state(service, constants.STATE_PREVIEW, constants.GENERATION_STATE_LABEL):
                delete_child(self.deploy_manager, service)

        self._clear_promotion_trigger()
        return RolloutResult(
            state=RolloutState.PROMOTING,
            deployment=new_live,
            admin_service=observed.live_admin_service,
            ingress_service=observed.live_ingress_service,
        )

    def _relabel(self, obj: dict, label: str) -> dict:
        if obj["metadata"].get("labels", {}).get(label) == constants.STATE_LIVE:
            return obj
        obj["metadata"].setdefault("labels", {})[label] = constants.STATE_LIVE
        success, _ = self.deploy_manager.deploy([obj])
        assert_cluster(success, f"Failed to relabel {obj['kind']}/{_name(obj)}")
        return obj

    def _cleanup(self, observed: "_Observed", live_deployment: dict):
        """Delete every child that is not part of the live generation"""
        live_secret_name = get_secret_volume_name(live_deployment)
        for deployment in observed.deployments:
            if _name(deployment) != _name(live_deployment):
                log.debug2("Deleting stale deployment %s", _name(deployment))
                delete_child(self.deploy_manager, deployment)
        for secret in observed.secrets:
            if _name(secret) != live_secret_name and secret is not observed.live_secret:
                log.debug2("Deleting stale secret %s", _name(secret))
                delete_child(self.deploy_manager, secret)
        for service in observed.services:
            if not _has_state(
                service, constants.STATE_LIVE, constants.GENERATION_STATE_LABEL
            ):
                log.debug2("Deleting preview service %s", _name(service))
                delete_child(self.deploy_manager, service)

    def _mark_stable(self):
        rollout_status = self.data_plane.rollout_status
        condition = rollout_status.get_condition(ConditionType.ROLLED_OUT)
        if condition is None:
            return
        if condition.get("reason") == RolloutReason.PROMOTING.value:
            self._clear_promotion_trigger()
        self._set_rolled_out(
            ConditionStatus.TRUE,
            RolloutReason.PROMOTION_DONE,
            "live deployment matches the desired spec",
        )

    def _clear_promotion_trigger(self):
        annotations = self.data_plane.metadata.get("annotations") or {}
        if constants.PROMOTE_WHEN_READY_ANNOTATION not in annotations:
            return
        log.debug("Removing promotion trigger from %s", self.data_plane)
        del annotations[constants.PROMOTE_WHEN_READY_ANNOTATION]
        self.session.update_resource()

    def _set_rolled_out(self, status: ConditionStatus, reason: RolloutReason, message):
        self.data_plane.rollout_status.set_condition(
            ConditionType.ROLLED_OUT, status, reason, message
        )


def get_selector_value_of_service(service: Optional[dict]) -> Optional[str]:
    """The pod selector value a data plane service routes to"""
    if service is None:
        return None
    return (service.get("spec", {}).get("selector") or {}).get(
        constants.SELECTOR_LABEL
    )


## Implementation Details ######################################################


@dataclass
class _Observed:  # pylint: disable=too-many-instance-attributes
    """The children of a DataPlane observed at the start of a pass, classified
    by the role they currently play
    """

    deployments: List[dict]
    services: List[dict]
    secrets: List[dict]
    deleted_deployments: List[dict] = field(default_factory=list)
    live_selector: Optional[str] = None
    live_deployment: Optional[dict] = None
    preview_deployment: Optional[dict] = None
    live_secret: Optional[dict] = None
    preview_secret: Optional[dict] = None
    live_admin_service: Optional[dict] = None
    live_ingress_service: Optional[dict] = None
    previous_live: Optional[dict] = None
    previous_secret: Optional[dict] = None
    deleted_live_deployment: Optional[dict] = None

    @property
    def preview_in_flight(self) -> bool:
        return (
            self.preview_deployment is not None
            or self.preview_secret is not None
            or any(
                _has_state(svc, constants.STATE_PREVIEW, constants.GENERATION_STATE_LABEL)
                for svc in self.services
            )
        )

    @property
    def has_generation(self) -> bool:
        """Whether anything of a live or preview generation is left"""
        return (
            self.preview_in_flight
            or self.live_admin_service is not None
            or self.live_ingress_service is not None
            or self.deleted_live_deployment is not None
        )

    def classify(self):
        self.live_admin_service = _first(
            self.services,
            service_match_labels(constants.SERVICE_TYPE_ADMIN, constants.STATE_LIVE),
        )
        self.live_ingress_service = _first(
            self.services,
            service_match_labels(constants.SERVICE_TYPE_INGRESS, constants.STATE_LIVE),
        )

        # The live deployment is the one the live services route to
        live_selector = get_selector_value_of_service(
            self.live_ingress_service
        ) or get_selector_value_of_service(self.live_admin_service)
        self.live_selector = live_selector
        self.live_deployment = next(
            (
                deployment
                for deployment in self.deployments
                if live_selector and get_selector_value(deployment) == live_selector
            ),
            None,
        ) or _first(self.deployments, _deployment_match_labels(constants.STATE_LIVE))
        if self.live_deployment is None:
            # Newest first, a deployment may have been restored and deleted again
            deleted = list(reversed(self.deleted_deployments))
            self.deleted_live_deployment = next(
                (
                    deployment
                    for deployment in deleted
                    if live_selector and get_selector_value(deployment) == live_selector
                ),
                None,
            ) or _first(deleted, _deployment_match_labels(constants.STATE_LIVE))
        self.preview_deployment = next(
            (
                deployment
                for deployment in self.deployments
                if deployment is not self.live_deployment
                and _has_state(deployment, constants.STATE_PREVIEW)
            ),
            None,
        )

        self.live_secret = self.referenced_secret(self.live_deployment) or _first(
            self.secrets, secret_match_labels(constants.STATE_LIVE)
        )
        self.preview_secret = self.referenced_secret(self.preview_deployment) or next(
            (
                secret
                for secret in self.secrets
                if secret is not self.live_secret
                and labels_match(
                    secret["metadata"].get("labels"),
                    secret_match_labels(constants.STATE_PREVIEW),
                )
            ),
            None,
        )

    def referenced_secret(self, deployment: Optional[dict]) -> Optional[dict]:
        secret_name = get_secret_volume_name(deployment)
        return next(
            (secret for secret in self.secrets if _name(secret) == secret_name), None
        )


def _deployment_match_labels(state: str) -> dict:
    return {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE,
        constants.DEPLOYMENT_STATE_LABEL: state,
    }


def _has_state(obj: dict, state: str, label: str = constants.DEPLOYMENT_STATE_LABEL):
    return (obj.get("metadata", {}).get("labels") or {}).get(label) == state


def _first(objs: List[dict], match_labels: dict) -> Optional[dict]:
    return next(
        (
            obj
            for obj in objs
            if labels_match(obj.get("metadata", {}).get("labels"), match_labels)
        ),
        None,
    )


def _name(obj: Optional[dict]) -> Optional[str]:
    if obj is None:
        return None
    return obj.get("metadata", {}).get("name")
