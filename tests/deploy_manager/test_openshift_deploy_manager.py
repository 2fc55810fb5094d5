"""
Tests for the OpenshiftDeployManager
"""
# Standard
from unittest import mock
import copy

# Third Party
from kubernetes.client.exceptions import ApiException
from openshift.dynamic.exceptions import ConflictError as ClientConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
)
import pytest

# Local
from gateway_operator.deploy_manager import KubeEventType, OpenshiftDeployManager
from gateway_operator.exceptions import ConflictError
from gateway_operator.test_helpers.helpers import TEST_NAMESPACE, library_config

## Helpers #####################################################################


def api_error(error_class, status, reason):
    return error_class(ApiException(status=status, reason=reason))


def as_field(obj):
    """Mimic the ResourceField objects returned by the dynamic client"""
    return mock.Mock(to_dict=mock.Mock(return_value=copy.deepcopy(obj)))


def make_config_map(name="cm", resource_version=None, data=None):
    metadata = {"name": name, "namespace": TEST_NAMESPACE}
    if resource_version:
        metadata["resourceVersion"] = resource_version
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata,
        "data": data or {"key": "value"},
    }


def stored(obj, resource_version="10"):
    obj = copy.deepcopy(obj)
    obj["metadata"].update(
        {"uid": "uid-1", "resourceVersion": resource_version, "generation": 1}
    )
    return obj


def setup_testable_manager(current=None):
    """Set up a deploy manager whose client serves a single resource handle"""
    dm = OpenshiftDeployManager()
    handle = mock.MagicMock()
    if current is None:
        handle.get.side_effect = api_error(NotFoundError, 404, "Not Found")
    else:
        handle.get.return_value = as_field(current)
    dm._client = mock.MagicMock()
    dm._client.resources.get.return_value = handle
    return dm, handle


## Deploy ######################################################################


def test_deploy_new_resource():
    dm, handle = setup_testable_manager()
    obj = make_config_map()
    handle.create.return_value = as_field(stored(obj))
    assert dm.deploy([obj]) == (True, True)
    handle.create.assert_called_once()
    assert obj["metadata"]["uid"] == "uid-1"
    assert obj["metadata"]["resourceVersion"] == "10"


def test_deploy_generate_name():
    dm, handle = setup_testable_manager()
    obj = make_config_map()
    del obj["metadata"]["name"]
    obj["metadata"]["generateName"] = "cm-"
    created = stored(make_config_map(name="cm-abcde"))
    handle.create.return_value = as_field(created)
    assert dm.deploy([obj]) == (True, True)
    handle.get.assert_not_called()
    assert obj["metadata"]["name"] == "cm-abcde"


def test_deploy_no_change():
    obj = make_config_map()
    dm, handle = setup_testable_manager(current=stored(obj))
    assert dm.deploy([obj]) == (True, False)
    handle.replace.assert_not_called()
    handle.create.assert_not_called()


def test_deploy_change_replaces():
    current = stored(make_config_map())
    dm, handle = setup_testable_manager(current=current)
    obj = make_config_map(resource_version="10", data={"key": "other"})
    handle.replace.return_value = as_field(stored(obj, resource_version="11"))
    assert dm.deploy([obj]) == (True, True)
    assert obj["metadata"]["resourceVersion"] == "11"


def test_deploy_conditional_conflict_raises():
    """A write conditional on a stale version is never retried"""
    dm, handle = setup_testable_manager(current=stored(make_config_map()))
    handle.replace.side_effect = api_error(ClientConflictError, 409, "Conflict")
    obj = make_config_map(resource_version="9", data={"key": "other"})
    with pytest.raises(ConflictError):
        dm.deploy([obj])
    handle.replace.assert_called_once()


def test_deploy_unconditional_conflict_retries():
    dm, handle = setup_testable_manager(current=stored(make_config_map()))
    obj = make_config_map(data={"key": "other"})
    handle.replace.side_effect = [
        api_error(ClientConflictError, 409, "Conflict"),
        as_field(stored(obj, resource_version="12")),
    ]
    with library_config(retry_backoff_base_seconds=0):
        assert dm.deploy([obj]) == (True, True)
    assert handle.replace.call_count == 2
    assert obj["metadata"]["resourceVersion"] == "12"


def test_deploy_unknown_kind():
    dm, _ = setup_testable_manager()
    dm._client.resources.get.side_effect = ResourceNotFoundError("unknown")
    assert dm.deploy([make_config_map()]) == (False, False)


def test_deploy_stops_on_first_failure():
    dm, handle = setup_testable_manager()
    handle.create.side_effect = [
        as_field(stored(make_config_map("a"))),
        api_error(ForbiddenError, 403, "Forbidden"),
        as_field(stored(make_config_map("c"))),
    ]
    objs = [make_config_map("a"), make_config_map("b"), make_config_map("c")]
    assert dm.deploy(objs) == (False, True)
    assert handle.create.call_count == 2


## Disable #####################################################################


def test_disable_present_resource():
    dm, handle = setup_testable_manager(current=stored(make_config_map()))
    assert dm.disable([make_config_map()]) == (True, True)
    handle.delete.assert_called_once_with(name="cm", namespace=TEST_NAMESPACE)


def test_disable_missing_resource():
    dm, handle = setup_testable_manager()
    handle.delete.side_effect = api_error(NotFoundError, 404, "Not Found")
    assert dm.disable([make_config_map()]) == (True, False)


def test_disable_missing_kind():
    dm, _ = setup_testable_manager()
    dm._client.resources.get.side_effect = ResourceNotFoundError("unknown")
    assert dm.disable([make_config_map()]) == (True, False)


## Reads #######################################################################


def test_get_object_current_state():
    current = stored(make_config_map())
    dm, _ = setup_testable_manager(current=current)
    assert dm.get_object_current_state("ConfigMap", "cm", TEST_NAMESPACE) == (
        True,
        current,
    )


def test_get_object_current_state_missing():
    dm, _ = setup_testable_manager()
    assert dm.get_object_current_state("ConfigMap", "cm", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_get_object_current_state_forbidden():
    dm, handle = setup_testable_manager()
    handle.get.side_effect = api_error(ForbiddenError, 403, "Forbidden")
    assert dm.get_object_current_state("ConfigMap", "cm", TEST_NAMESPACE) == (
        False,
        None,
    )


def test_filter_objects_current_state():
    items = [stored(make_config_map("a")), stored(make_config_map("b"))]
    dm, handle = setup_testable_manager()
    handle.get.side_effect = None
    handle.get.return_value = as_field({"items": items})
    success, objs = dm.filter_objects_current_state(
        "ConfigMap", TEST_NAMESPACE, label_selector="app=x"
    )
    assert success
    assert objs == items
    assert handle.get.call_args[1]["label_selector"] == "app=x"


## Status ######################################################################


def test_set_status_writes_status_subresource():
    dm, handle = setup_testable_manager(current=stored(make_config_map()))
    assert dm.set_status(
        "ConfigMap", "cm", TEST_NAMESPACE, {"ready": True}, resource_version="10"
    ) == (True, True)
    body = handle.status.replace.call_args[1]["body"]
    assert body["status"] == {"ready": True}
    assert body["metadata"]["resourceVersion"] == "10"


def test_set_status_unchanged():
    current = stored(make_config_map())
    current["status"] = {"ready": True}
    dm, handle = setup_testable_manager(current=current)
    assert dm.set_status("ConfigMap", "cm", TEST_NAMESPACE, {"ready": True}) == (
        True,
        False,
    )
    handle.status.replace.assert_not_called()


def test_set_status_conflict():
    dm, handle = setup_testable_manager(current=stored(make_config_map()))
    handle.status.replace.side_effect = api_error(
        ClientConflictError, 409, "Conflict"
    )
    with pytest.raises(ConflictError):
        dm.set_status(
            "ConfigMap", "cm", TEST_NAMESPACE, {"ready": True}, resource_version="9"
        )


## Watch #######################################################################


def test_watch_objects_yields_events():
    dm, _ = setup_testable_manager()
    watch = mock.Mock()
    watch.stream.return_value = [
        {"type": "ADDED", "object": stored(make_config_map("a"))},
        {"type": "DELETED", "object": stored(make_config_map("b"))},
    ]
    events = list(dm.watch_objects("ConfigMap", "v1", watch_manager=watch, timeout=1))
    assert [event.type for event in events] == [
        KubeEventType.ADDED,
        KubeEventType.DELETED,
    ]
    assert events[0].resource.name == "a"


def test_watch_objects_expired_version_ends_stream():
    dm, _ = setup_testable_manager()
    watch = mock.Mock()
    watch.stream.side_effect = ApiException(status=410, reason="Gone")
    assert not list(dm.watch_objects("ConfigMap", "v1", watch_manager=watch))


def test_watch_objects_other_errors_raise():
    dm, _ = setup_testable_manager()
    watch = mock.Mock()
    watch.stream.side_effect = ApiException(status=500, reason="Internal")
    with pytest.raises(ApiException):
        list(dm.watch_objects("ConfigMap", "v1", watch_manager=watch))
