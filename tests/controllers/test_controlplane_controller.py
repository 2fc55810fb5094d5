"""
Tests for the ControlPlane controller
"""

# Third Party
import pytest

# Local
from gateway_operator import constants
from gateway_operator.controllers import ControlPlaneController
from gateway_operator.exceptions import ReferenceNotFoundError, UnsupportedVersionError
from gateway_operator.resources import clusterroles
from gateway_operator.status import ConditionType
from gateway_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    make_control_plane,
    make_data_plane,
    refresh_session,
    setup_session,
)

## Helpers #####################################################################


def setup_with_data_plane(control_plane=None):
    dm = MockDeployManager()
    dm.deploy([make_data_plane()])
    dm.set_status(
        constants.DATA_PLANE_KIND,
        "test-dataplane",
        TEST_NAMESPACE,
        {"service": "ingress-svc", "adminService": "admin-svc"},
    )
    return setup_session(control_plane or make_control_plane(), dm)


def reconcile(session):
    ControlPlaneController().reconcile(session)
    session.update_status()
    return refresh_session(session)


def cluster_objs(dm, kind):
    return dm.list_objs(kind, namespace=None)


def controller_env(deployment):
    container = deployment["spec"]["template"]["spec"]["containers"][0]
    return {entry["name"]: entry.get("value") for entry in container.get("env", [])}


## Scheduling ##################################################################


def test_control_plane_without_data_plane_scales_down():
    session = reconcile(setup_session(make_control_plane(data_plane_name=None)))
    scheduled = session.resource.get_condition(ConditionType.SCHEDULED)
    assert scheduled["status"] == "False"
    assert scheduled["reason"] == "NoDataPlane"
    deployments = session.deploy_manager.list_objs("Deployment")
    assert len(deployments) == 1
    assert deployments[0]["spec"]["replicas"] == 0
    assert not session.resource.is_condition_true(ConditionType.READY)


def test_control_plane_data_plane_not_found():
    session = setup_session(make_control_plane(data_plane_name="missing"))
    with pytest.raises(ReferenceNotFoundError) as exc_info:
        ControlPlaneController().reconcile(session)
    assert exc_info.value.reason == "DataPlaneNotFound"
    assert not session.deploy_manager.list_objs("Deployment")


def test_control_plane_wires_data_plane_services():
    session = reconcile(setup_with_data_plane())
    assert session.resource.is_condition_true(ConditionType.SCHEDULED)
    deployment = session.deploy_manager.list_objs("Deployment")[0]
    assert deployment["spec"]["replicas"] == 1
    env = controller_env(deployment)
    assert env["CONTROLLER_PUBLISH_SERVICE"] == f"{TEST_NAMESPACE}/ingress-svc"
    assert env["CONTROLLER_KONG_ADMIN_SVC"] == f"{TEST_NAMESPACE}/admin-svc"


def test_control_plane_ready_when_pods_available():
    session = reconcile(setup_with_data_plane())
    assert not session.resource.is_condition_true(ConditionType.READY)
    session.deploy_manager.mark_deployments_available()
    session = reconcile(session)
    assert session.resource.is_condition_true(ConditionType.READY)
    assert session.resource.is_condition_true(ConditionType.PROVISIONED)


## Permissions #################################################################


def test_control_plane_rbac():
    session = reconcile(setup_with_data_plane())
    dm = session.deploy_manager

    service_accounts = dm.list_objs("ServiceAccount")
    assert len(service_accounts) == 1
    roles = cluster_objs(dm, "ClusterRole")
    assert len(roles) == 1
    assert roles[0]["rules"] == clusterroles.rules_ge2_6()
    labels = roles[0]["metadata"]["labels"]
    assert labels[constants.OWNER_NAME_LABEL] == session.name
    assert labels[constants.OWNER_NAMESPACE_LABEL] == TEST_NAMESPACE

    bindings = cluster_objs(dm, "ClusterRoleBinding")
    assert len(bindings) == 1
    assert bindings[0]["roleRef"]["name"] == roles[0]["metadata"]["name"]
    assert bindings[0]["subjects"][0]["name"] == (
        service_accounts[0]["metadata"]["name"]
    )

    deployment = dm.list_objs("Deployment")[0]
    assert deployment["spec"]["template"]["spec"]["serviceAccountName"] == (
        service_accounts[0]["metadata"]["name"]
    )


def test_control_plane_version_change_updates_rules():
    session = reconcile(
        setup_with_data_plane(
            make_control_plane(image="kong/kubernetes-ingress-controller:2.2.0")
        )
    )
    dm = session.deploy_manager
    role_name = cluster_objs(dm, "ClusterRole")[0]["metadata"]["name"]

    control_plane = dm.get_obj(constants.CONTROL_PLANE_KIND, session.name)
    control_plane["spec"]["deployment"]["podTemplateSpec"]["spec"]["containers"][0][
        "image"
    ] = "kong/kubernetes-ingress-controller:2.6.0"
    dm.deploy([control_plane])
    reconcile(refresh_session(session))

    roles = cluster_objs(dm, "ClusterRole")
    assert len(roles) == 1
    assert roles[0]["metadata"]["name"] == role_name
    assert roles[0]["rules"] == clusterroles.rules_ge2_6()


def test_control_plane_replaces_binding_to_other_role():
    """roleRef cannot be changed, so a binding to a replaced role is recreated"""
    session = reconcile(setup_with_data_plane())
    dm = session.deploy_manager
    old_role = cluster_objs(dm, "ClusterRole")[0]
    old_binding = cluster_objs(dm, "ClusterRoleBinding")[0]
    dm.disable([old_role])

    reconcile(session)
    new_role = cluster_objs(dm, "ClusterRole")[0]
    bindings = cluster_objs(dm, "ClusterRoleBinding")
    assert new_role["metadata"]["name"] != old_role["metadata"]["name"]
    assert len(bindings) == 1
    assert bindings[0]["metadata"]["name"] != old_binding["metadata"]["name"]
    assert bindings[0]["roleRef"]["name"] == new_role["metadata"]["name"]


def test_control_plane_unsupported_version():
    session = setup_with_data_plane(
        make_control_plane(image="kong/kubernetes-ingress-controller:1.0.0")
    )
    with pytest.raises(UnsupportedVersionError):
        ControlPlaneController().reconcile(session)
    assert not cluster_objs(session.deploy_manager, "ClusterRole")


## Finalize ####################################################################


def test_control_plane_finalize_deletes_cluster_scoped_children():
    session = reconcile(setup_with_data_plane())
    dm = session.deploy_manager
    ControlPlaneController().finalize(session)
    assert not cluster_objs(dm, "ClusterRole")
    assert not cluster_objs(dm, "ClusterRoleBinding")
    for kind in ("Deployment", "ServiceAccount"):
        for child in dm.list_objs(kind):
            assert not child["metadata"].get("finalizers")
