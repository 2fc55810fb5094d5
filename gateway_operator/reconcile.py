"""
The ReconcileManager class manages an individual reconcile of a controller.
It fetches the object, sets up the session, runs the controller's reconcile or
finalize, persists the status and maps errors onto requeue decisions.
"""

# Standard
from dataclasses import dataclass
from typing import Optional
import datetime
import uuid

# First Party
import alog

# Local
from . import config
from .api import wrap
from .controllers.base import Controller
from .deploy_manager import DeployManagerBase
from .exceptions import (
    ClusterError,
    ConflictError,
    FatalError,
    GatewayOperatorError,
    PreconditionError,
    ReferenceNotFoundError,
    UnsupportedGatewayError,
    assert_cluster,
)
from .managed_object import ResourceKey
from .session import Session
from .status import ConditionStatus, ConditionType, HasConditions, ReadyReason
from .utils import add_finalizer, is_deleting, remove_finalizer

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request. Without an explicit
    delay the key is requeued with per-key exponential backoff.
    """

    requeue_after: Optional[datetime.timedelta] = None

    @property
    def rate_limited(self) -> bool:
        return self.requeue_after is None


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation session"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: Optional[RequeueParams] = None
    # Flag to identify if the reconciliation raised an exception
    exception: Optional[Exception] = None


## ReconcileManager ############################################################


class ReconcileManager:
    """This class runs reconciles of objects given a Controller and the current
    cluster state via a DeployManager
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Deploy manager used for every reconcile
        """
        self.deploy_manager = deploy_manager

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, controller: Controller, key: ResourceKey) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Read the object. A missing object needs no work.
            2. Run the finalizer if the object is being deleted
            3. Make sure the object carries the controller's finalizer
            4. Run the Controller reconcile
            5. Persist the status

        Errors raised by the Controller are mapped onto conditions and requeue
        decisions. Errors raised while reading or writing the object itself
        propagate.

        Args:
            controller:  Controller
                The controller for the object's kind
            key:  ResourceKey
                The key of the object to reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        reconcile_id = self.generate_id()
        success, definition = self.deploy_manager.get_object_current_state(
            kind=controller.kind,
            name=key.name,
            namespace=key.namespace,
            api_version=controller.api_version,
        )
        assert_cluster(success, f"Failed to fetch {key}")
        if definition is None:
            log.debug("%s no longer exists", key)
            return ReconciliationResult(requeue=False)

        session = Session(reconcile_id, wrap(definition), self.deploy_manager)
        log.debug("[%s] Reconciling %s", reconcile_id, key)

        if is_deleting(definition):
            self.run_finalizer(controller, session)
            return ReconciliationResult(requeue=False)

        if controller.has_finalizer and add_finalizer(definition, controller.finalizer):
            log.debug2("Adding finalizer %s to %s", controller.finalizer, key)
            session.update_resource()

        try:
            controller.reconcile(session)
        except ConflictError:
            # Nothing is persisted from a pass that read stale state
            raise
        except UnsupportedGatewayError as err:
            log.debug2("Ignoring %s: %s", key, err)
            return ReconciliationResult(requeue=False)
        except Exception as err:  # pylint: disable=broad-except
            result = self._handle_error(session, err)
            self._safe_update_status(session)
            return result

        session.update_status()
        return ReconciliationResult(requeue=False)

    def safe_reconcile(
        self, controller: Controller, key: ResourceKey
    ) -> ReconciliationResult:
        """This function calls out to reconcile but catches any errors thrown.
        This function guarantees a safe result which is needed by the workers.

        Args:
            controller:  Controller
                The controller for the object's kind
            key:  ResourceKey
                The key of the object to reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(controller, key)
        except ConflictError as exc:
            log.debug("Conflict while reconciling %s: %s", key, exc)
            error = exc
        except ClusterError as exc:
            log.warning("Cluster error while reconciling %s: %s", key, exc)
            error = exc
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        log.info("Requeuing %s due to error during reconcile", key)
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    def run_finalizer(self, controller: Controller, session: Session):
        """Run the controller's finalize and release the object once it
        returns. Objects that no longer carry the finalizer are left alone.
        """
        finalizer = controller.finalizer
        if not finalizer or finalizer not in (
            session.definition["metadata"].get("finalizers") or []
        ):
            log.debug2("%s has no finalizer to run", session.resource)
            return
        log.info("Finalizing %s", session.resource)
        controller.finalize(session)
        remove_finalizer(session.definition, finalizer)
        session.update_resource()

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation"""
        return str(uuid.uuid4())

    ## Implementation Details ##################################################

    @staticmethod
    def _handle_error(session: Session, err: Exception) -> ReconciliationResult:
        """Map an error raised by a controller onto the object's Ready condition
        and a requeue decision
        """
        resource = session.resource
        if isinstance(err, ReferenceNotFoundError):
            log.info("Reference of %s not found: %s", resource, err)
            _set_ready(session, ReadyReason.REFERENCE_NOT_FOUND, str(err))
            return ReconciliationResult(
                requeue=True,
                requeue_params=RequeueParams(
                    requeue_after=datetime.timedelta(
                        seconds=float(config.reference_requeue_seconds)
                    )
                ),
                exception=err,
            )
        if isinstance(err, PreconditionError):
            log.debug("Precondition of %s not met: %s", resource, err)
            _set_ready(session, ReadyReason.NOT_READY, str(err))
            return ReconciliationResult(
                requeue=True, requeue_params=RequeueParams(), exception=err
            )
        if isinstance(err, ClusterError):
            log.warning("Cluster error reconciling %s: %s", resource, err)
            _set_ready(session, ReadyReason.TEMPORARY_ERROR, str(err))
            return ReconciliationResult(
                requeue=True, requeue_params=RequeueParams(), exception=err
            )
        if isinstance(err, FatalError):
            log.warning("Fatal error reconciling %s: %s", resource, err)
            _set_ready(session, ReadyReason.CONFIG_ERROR, str(err))
            return ReconciliationResult(requeue=False, exception=err)

        log.warning("Unexpected error reconciling %s: %s", resource, err, exc_info=True)
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=err
        )

    @staticmethod
    def _safe_update_status(session: Session):
        try:
            session.update_status()
        except GatewayOperatorError as err:
            log.warning("Failed to update status of %s: %s", session.resource, err)


def _set_ready(session: Session, reason: ReadyReason, message: str):
    if isinstance(session.resource, HasConditions):
        session.resource.set_condition(
            ConditionType.READY, ConditionStatus.FALSE, reason, message
        )
