"""Tests for the ReconcileManager"""

# Standard
import datetime

# Third Party
import pytest

# First Party
import alog

# Local
from gateway_operator import config, constants
from gateway_operator.controllers import (
    Controller,
    DataPlaneController,
    GatewayController,
)
from gateway_operator.exceptions import (
    ClusterError,
    ConfigError,
    ConflictError,
    PreconditionError,
    ReferenceNotFoundError,
    UnsupportedGatewayError,
)
from gateway_operator.managed_object import ResourceKey
from gateway_operator.reconcile import ReconcileManager, RequeueParams
from gateway_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    library_config,
    make_data_plane,
    make_gateway,
    make_gateway_class,
)

log = alog.use_channel("TEST")

################################################################################
## Helpers #####################################################################
################################################################################


class RaisingController(Controller):
    """Controller whose reconcile raises a given error"""

    kind = constants.GATEWAY_KIND

    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def reconcile(self, session):
        self.calls += 1
        if self.error is not None:
            raise self.error


GATEWAY_KEY = ResourceKey(constants.GATEWAY_KIND, "test-gateway", TEST_NAMESPACE)


def setup_gateway(**kwargs):
    dm = MockDeployManager(**kwargs)
    dm.deploy([make_gateway_class(), make_gateway()])
    return dm


def ready_condition(dm, kind=constants.GATEWAY_KIND, name="test-gateway"):
    obj = dm.get_obj(kind, name)
    conditions = (obj.get("status") or {}).get("conditions") or []
    return next((cond for cond in conditions if cond["type"] == "Ready"), None)


################################################################################
## Tests #######################################################################
################################################################################


def test_missing_object_is_not_requeued():
    manager = ReconcileManager(MockDeployManager())
    controller = RaisingController()
    result = manager.reconcile(controller, GATEWAY_KEY)
    assert not result.requeue
    assert controller.calls == 0


def test_successful_reconcile():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(RaisingController(), GATEWAY_KEY)
    assert not result.requeue
    assert result.exception is None


def test_finalizer_is_added():
    dm = setup_gateway()
    ReconcileManager(dm).reconcile(GatewayController(), GATEWAY_KEY)
    gateway = dm.get_obj(constants.GATEWAY_KIND, "test-gateway")
    assert GatewayController.finalizer in gateway["metadata"]["finalizers"]


def test_controller_without_finalize_has_no_finalizer():
    assert RaisingController.finalizer is None
    assert GatewayController.finalizer == "finalizers.gateway.gateway-operator.io"


def test_reference_not_found_requeues_after_delay():
    dm = setup_gateway()
    with library_config(reference_requeue_seconds=42):
        result = ReconcileManager(dm).reconcile(
            RaisingController(ReferenceNotFoundError("class missing")), GATEWAY_KEY
        )
    assert result.requeue
    assert result.requeue_params.requeue_after == datetime.timedelta(seconds=42)
    assert not result.requeue_params.rate_limited
    assert isinstance(result.exception, ReferenceNotFoundError)
    condition = ready_condition(dm)
    assert condition["reason"] == "ReferenceNotFound"
    assert condition["message"] == "class missing"


def test_precondition_requeues_with_backoff():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(
        RaisingController(PreconditionError("waiting")), GATEWAY_KEY
    )
    assert result.requeue
    assert result.requeue_params.rate_limited
    assert ready_condition(dm)["reason"] == "NotReady"


def test_cluster_error_is_temporary():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(
        RaisingController(ClusterError("api down")), GATEWAY_KEY
    )
    assert result.requeue
    assert ready_condition(dm)["reason"] == "TemporaryError"


def test_fatal_error_is_not_requeued():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(
        RaisingController(ConfigError("bad options")), GATEWAY_KEY
    )
    assert not result.requeue
    assert isinstance(result.exception, ConfigError)
    condition = ready_condition(dm)
    assert condition["status"] == "False"
    assert condition["reason"] == "ConfigError"


def test_unsupported_gateway_is_ignored():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(
        RaisingController(UnsupportedGatewayError("not ours")), GATEWAY_KEY
    )
    assert not result.requeue
    assert result.exception is None
    assert ready_condition(dm) is None


def test_unexpected_error_is_requeued():
    dm = setup_gateway()
    result = ReconcileManager(dm).reconcile(
        RaisingController(ValueError("boom")), GATEWAY_KEY
    )
    assert result.requeue
    assert isinstance(result.exception, ValueError)


def test_conflict_propagates_without_status():
    dm = setup_gateway()
    with pytest.raises(ConflictError):
        ReconcileManager(dm).reconcile(
            RaisingController(ConflictError("stale")), GATEWAY_KEY
        )
    dm.set_status.assert_not_called()


def test_safe_reconcile_requeues_conflict():
    dm = setup_gateway()
    result = ReconcileManager(dm).safe_reconcile(
        RaisingController(ConflictError("stale")), GATEWAY_KEY
    )
    assert result.requeue
    assert result.requeue_params == RequeueParams()
    assert isinstance(result.exception, ConflictError)


def test_safe_reconcile_read_failure():
    dm = setup_gateway(get_state_fail=True)
    result = ReconcileManager(dm).safe_reconcile(RaisingController(), GATEWAY_KEY)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)


def test_status_write_failure_after_error_is_logged():
    dm = setup_gateway(set_status_fail=True)
    result = ReconcileManager(dm).reconcile(
        RaisingController(PreconditionError("waiting")), GATEWAY_KEY
    )
    assert result.requeue
    assert isinstance(result.exception, PreconditionError)


################################################################################
## Deletion ####################################################################
################################################################################


def test_deleted_data_plane_cascades_to_children():
    """Deleting a DataPlane removes every child once its finalizer ran and the
    garbage collector swept the orphans
    """
    dm = MockDeployManager()
    dm.deploy([make_data_plane()])
    key = ResourceKey(constants.DATA_PLANE_KIND, "test-dataplane", TEST_NAMESPACE)
    manager = ReconcileManager(dm)
    manager.reconcile(DataPlaneController(), key)
    assert dm.list_objs("Deployment")
    assert dm.list_objs("Service")
    assert dm.list_objs("Secret")

    dm.disable([dm.get_obj(constants.DATA_PLANE_KIND, "test-dataplane")])
    assert dm.get_obj(constants.DATA_PLANE_KIND, "test-dataplane")["metadata"][
        "deletionTimestamp"
    ]

    result = manager.reconcile(DataPlaneController(), key)
    assert not result.requeue
    assert not dm.has_obj(constants.DATA_PLANE_KIND, "test-dataplane")

    dm.collect_garbage()
    for kind in ("Deployment", "Service", "Secret"):
        assert not dm.list_objs(kind)


def test_deleted_gateway_cascades_through_data_plane():
    dm = setup_gateway()
    manager = ReconcileManager(dm)
    manager.reconcile(GatewayController(), GATEWAY_KEY)
    data_plane_name = dm.list_objs(constants.DATA_PLANE_KIND)[0]["metadata"]["name"]
    data_plane_key = ResourceKey(
        constants.DATA_PLANE_KIND, data_plane_name, TEST_NAMESPACE
    )
    manager.reconcile(DataPlaneController(), data_plane_key)

    dm.disable([dm.get_obj(constants.GATEWAY_KIND, "test-gateway")])
    manager.reconcile(GatewayController(), GATEWAY_KEY)
    assert not dm.has_obj(constants.GATEWAY_KIND, "test-gateway")

    # The DataPlane still holds its own finalizer, so it is only marked
    dm.collect_garbage()
    data_plane = dm.get_obj(constants.DATA_PLANE_KIND, data_plane_name)
    assert data_plane["metadata"]["deletionTimestamp"]

    manager.reconcile(DataPlaneController(), data_plane_key)
    dm.collect_garbage()
    assert not dm.list_objs(constants.DATA_PLANE_KIND)
    for kind in ("Deployment", "Service", "Secret"):
        assert not dm.list_objs(kind)


def test_deleting_object_without_finalizer_is_left_alone():
    dm = MockDeployManager()
    data_plane = make_data_plane()
    data_plane["metadata"]["finalizers"] = ["example.com/other"]
    dm.deploy([data_plane])
    dm.disable([dm.get_obj(constants.DATA_PLANE_KIND, "test-dataplane")])
    key = ResourceKey(constants.DATA_PLANE_KIND, "test-dataplane", TEST_NAMESPACE)
    result = ReconcileManager(dm).reconcile(DataPlaneController(), key)
    assert not result.requeue
    stored = dm.get_obj(constants.DATA_PLANE_KIND, "test-dataplane")
    assert stored["metadata"]["finalizers"] == ["example.com/other"]
