"""
Tests for the DataPlane controller
"""

# Local
from gateway_operator import constants
from gateway_operator.controllers import DataPlaneController
from gateway_operator.status import ConditionType
from gateway_operator.test_helpers.helpers import (
    make_data_plane,
    refresh_session,
    setup_session,
)


def reconcile(session):
    DataPlaneController().reconcile(session)
    session.update_status()
    return refresh_session(session)


def test_data_plane_reports_services_and_replicas():
    session = reconcile(setup_session(make_data_plane(replicas=2)))
    dm = session.deploy_manager
    status = session.definition["status"]
    assert status["replicas"] == 2
    assert status["readyReplicas"] == 0
    assert dm.has_obj("Service", status["service"])
    assert dm.has_obj("Service", status["adminService"])
    ingress = dm.get_obj("Service", status["service"])
    assert (
        ingress["metadata"]["labels"][constants.SERVICE_TYPE_LABEL]
        == constants.SERVICE_TYPE_INGRESS
    )

    ready = session.resource.get_condition(ConditionType.READY)
    assert ready["status"] == "False"
    assert ready["message"] == "0/2 pods available"
    provisioned = session.resource.get_condition(ConditionType.PROVISIONED)
    assert provisioned["reason"] == "PodsNotReady"


def test_data_plane_ready_when_pods_available():
    session = reconcile(setup_session(make_data_plane()))
    session.deploy_manager.mark_deployments_available()
    session = reconcile(session)
    assert session.definition["status"]["readyReplicas"] == 1
    assert session.resource.is_condition_true(ConditionType.READY)
    assert (
        session.resource.get_condition(ConditionType.PROVISIONED)["reason"]
        == "PodsReady"
    )


def test_data_plane_defaults_not_written_back():
    session = reconcile(setup_session(make_data_plane()))
    container = session.definition["spec"]["deployment"]["podTemplateSpec"]["spec"][
        "containers"
    ][0]
    assert "env" not in container


def test_data_plane_user_env_kept():
    session = reconcile(
        setup_session(make_data_plane(env=[{"name": "KONG_LOG_LEVEL", "value": "debug"}]))
    )
    deployment = session.deploy_manager.list_objs("Deployment")[0]
    env = {
        entry["name"]: entry.get("value")
        for entry in deployment["spec"]["template"]["spec"]["containers"][0]["env"]
    }
    assert env["KONG_LOG_LEVEL"] == "debug"
    assert env["KONG_DATABASE"] == "off"


def test_data_plane_finalize_releases_children():
    session = reconcile(setup_session(make_data_plane()))
    dm = session.deploy_manager
    DataPlaneController().finalize(session)
    for kind in ("Deployment", "Service", "Secret"):
        for child in dm.list_objs(kind):
            assert constants.WAIT_FOR_OWNER_FINALIZER not in (
                child["metadata"].get("finalizers") or []
            )
