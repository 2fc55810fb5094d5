"""
Tests for the event filters
"""

# Third Party
import pytest

# Local
from gateway_operator import constants
from gateway_operator.deploy_manager import KubeEventType
from gateway_operator.managed_object import ManagedObject
from gateway_operator.test_helpers.helpers import (
    MockDeployManager,
    configuration_ref,
    make_data_plane,
    make_gateway,
    make_gateway_class,
    make_gateway_configuration,
)
from gateway_operator.watch.filters import (
    GatewayClassMatchesController,
    GatewayConfigurationMatchesController,
    GatewayHasMatchingGatewayClass,
    ManagedByLabel,
    OwnedByKind,
)

MODIFIED = KubeEventType.MODIFIED


@pytest.mark.parametrize(
    ["controller_name", "expected"],
    [(None, True), ("example.com/other", False)],
)
def test_gateway_class_matches_controller(controller_name, expected):
    gateway_class = ManagedObject(make_gateway_class(controller_name=controller_name))
    assert GatewayClassMatchesController()(gateway_class, MODIFIED) is expected


def test_filter_rejects_unexpected_object():
    """An object of the wrong kind is logged and dropped"""
    assert not GatewayClassMatchesController()(
        ManagedObject(make_gateway()), MODIFIED
    )
    assert not GatewayClassMatchesController()("not-an-object", MODIFIED)


def test_gateway_has_matching_class():
    dm = MockDeployManager()
    dm.deploy([make_gateway_class(), make_gateway_class("other", "example.com/x")])
    event_filter = GatewayHasMatchingGatewayClass(dm)
    assert event_filter(ManagedObject(make_gateway()), MODIFIED)
    assert not event_filter(ManagedObject(make_gateway(class_name="other")), MODIFIED)
    # Unknown classes pass so the reconcile can report them
    assert event_filter(ManagedObject(make_gateway(class_name="unknown")), MODIFIED)


def test_gateway_filter_fails_open():
    event_filter = GatewayHasMatchingGatewayClass(
        MockDeployManager(get_state_fail=True)
    )
    assert event_filter(ManagedObject(make_gateway()), MODIFIED)


def test_gateway_configuration_matches_controller():
    dm = MockDeployManager()
    configuration = ManagedObject(make_gateway_configuration())
    event_filter = GatewayConfigurationMatchesController(dm)
    assert not event_filter(configuration, MODIFIED)
    dm.deploy([make_gateway_class(parameters_ref=configuration_ref())])
    assert event_filter(configuration, MODIFIED)


def test_gateway_configuration_filter_fails_open():
    """A failed read of GatewayClasses never drops the event"""
    dm = MockDeployManager(filter_fail=True)
    event_filter = GatewayConfigurationMatchesController(dm)
    assert event_filter(ManagedObject(make_gateway_configuration()), MODIFIED)
    dm.filter_objects_current_state.assert_called_once()


def test_owned_by_kind():
    data_plane = make_data_plane()
    assert not OwnedByKind(constants.GATEWAY_KIND)(
        ManagedObject(data_plane), MODIFIED
    )
    data_plane["metadata"]["ownerReferences"] = [
        {
            "apiVersion": constants.API_VERSION,
            "kind": constants.GATEWAY_KIND,
            "name": "gw",
            "uid": "1234",
        }
    ]
    assert OwnedByKind(constants.GATEWAY_KIND)(ManagedObject(data_plane), MODIFIED)
    assert not OwnedByKind(constants.DATA_PLANE_KIND)(
        ManagedObject(data_plane), MODIFIED
    )


def test_managed_by_label():
    role = {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": "ClusterRole",
        "metadata": {
            "name": "role",
            "labels": {
                constants.MANAGED_BY_LABEL: constants.MANAGED_BY_CONTROL_PLANE,
                constants.OWNER_NAME_LABEL: "cp",
            },
        },
    }
    event_filter = ManagedByLabel(constants.MANAGED_BY_CONTROL_PLANE)
    assert event_filter(ManagedObject(role), MODIFIED)
    del role["metadata"]["labels"][constants.OWNER_NAME_LABEL]
    assert not event_filter(ManagedObject(role), MODIFIED)
