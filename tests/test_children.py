"""
Tests for the child reconciler
"""

# Standard
import copy

# Third Party
import pytest

# Local
from gateway_operator import constants
from gateway_operator.children import (
    delete_child,
    ensure_child,
    list_children,
    release_children,
)
from gateway_operator.exceptions import ClusterError
from gateway_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    make_data_plane,
    setup_session,
)

## Helpers #####################################################################

LABELS = {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE}


def make_deployment(image="kong:3.4", cpu="1", replicas=1):
    return {
        "apiVersion": constants.DEPLOYMENT_API_VERSION,
        "kind": "Deployment",
        "metadata": {
            "generateName": "dataplane-test-",
            "namespace": TEST_NAMESPACE,
            "labels": dict(LABELS),
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {constants.SELECTOR_LABEL: "abc"}},
            "template": {
                "metadata": {"labels": {constants.SELECTOR_LABEL: "abc"}},
                "spec": {
                    "containers": [
                        {
                            "name": "proxy",
                            "image": image,
                            "resources": {"requests": {"cpu": cpu, "memory": "1Gi"}},
                        }
                    ]
                },
            },
        },
    }


def setup_owner(dm=None):
    session = setup_session(make_data_plane(), dm or MockDeployManager())
    return session.deploy_manager, session.definition


## ensure_child ################################################################


def test_ensure_child_creates_with_owner_reference():
    dm, owner = setup_owner()
    child, changed = ensure_child(dm, owner, make_deployment(), wait_for_owner=True)
    assert changed
    name = child["metadata"]["name"]
    assert name.startswith("dataplane-test-")
    stored = dm.get_obj("Deployment", name)
    refs = stored["metadata"]["ownerReferences"]
    assert len(refs) == 1
    assert refs[0]["uid"] == owner["metadata"]["uid"]
    assert refs[0]["kind"] == constants.DATA_PLANE_KIND
    assert stored["metadata"]["finalizers"] == [constants.WAIT_FOR_OWNER_FINALIZER]


def test_ensure_child_idempotent():
    """A second ensure with the same desired content changes nothing and leaves
    the resourceVersion alone
    """
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment())
    version = dm.get_obj("Deployment", child["metadata"]["name"])["metadata"][
        "resourceVersion"
    ]
    again, changed = ensure_child(dm, owner, make_deployment())
    assert not changed
    assert again["metadata"]["name"] == child["metadata"]["name"]
    stored = dm.get_obj("Deployment", child["metadata"]["name"])
    assert stored["metadata"]["resourceVersion"] == version


def test_ensure_child_equivalent_quantities_are_not_drift():
    dm, owner = setup_owner()
    ensure_child(dm, owner, make_deployment(cpu="1"))
    _, changed = ensure_child(dm, owner, make_deployment(cpu="1000m"))
    assert not changed


def test_ensure_child_server_defaults_are_not_drift():
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment())
    stored = dm.get_obj("Deployment", child["metadata"]["name"])
    container = stored["spec"]["template"]["spec"]["containers"][0]
    container["imagePullPolicy"] = "IfNotPresent"
    stored["spec"]["template"]["spec"]["dnsPolicy"] = "ClusterFirst"
    dm.deploy([stored])
    _, changed = ensure_child(dm, owner, make_deployment())
    assert not changed


def test_ensure_child_updates_drift():
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment())
    name = child["metadata"]["name"]
    updated, changed = ensure_child(dm, owner, make_deployment(image="kong:3.5"))
    assert changed
    assert updated["metadata"]["name"] == name
    stored = dm.get_obj("Deployment", name)
    assert stored["spec"]["template"]["spec"]["containers"][0]["image"] == "kong:3.5"
    assert stored["metadata"]["generation"] == 2
    assert len(dm.list_objs("Deployment")) == 1


def test_ensure_child_duplicate_uses_oldest():
    dm, owner = setup_owner()
    first, _ = ensure_child(dm, owner, make_deployment())
    duplicate = make_deployment()
    duplicate["metadata"]["ownerReferences"] = copy.deepcopy(
        dm.get_obj("Deployment", first["metadata"]["name"])["metadata"][
            "ownerReferences"
        ]
    )
    duplicate["metadata"]["creationTimestamp"] = "2999-01-01T00:00:00Z"
    dm.deploy([duplicate])
    child, changed = ensure_child(dm, owner, make_deployment())
    assert not changed
    assert child["metadata"]["name"] == first["metadata"]["name"]


def test_ensure_child_ignores_other_owners():
    dm, owner = setup_owner()
    _, other = setup_owner(dm=MockDeployManager())
    other["metadata"]["uid"] = "some-other-uid"
    ensure_child(dm, other, make_deployment())
    _, changed = ensure_child(dm, owner, make_deployment())
    assert changed
    assert len(dm.list_objs("Deployment")) == 2


def test_ensure_child_cluster_scoped_uses_owner_labels():
    dm, owner = setup_owner()
    role = {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": "ClusterRole",
        "metadata": {"generateName": "controlplane-", "labels": dict(LABELS)},
        "rules": [],
    }
    child, changed = ensure_child(dm, owner, role)
    assert changed
    stored = dm.get_obj("ClusterRole", child["metadata"]["name"], namespace=None)
    assert "ownerReferences" not in stored["metadata"]
    labels = stored["metadata"]["labels"]
    assert labels[constants.OWNER_NAME_LABEL] == owner["metadata"]["name"]
    assert labels[constants.OWNER_NAMESPACE_LABEL] == TEST_NAMESPACE
    _, changed = ensure_child(dm, owner, role)
    assert not changed


def test_ensure_child_list_failure():
    dm, owner = setup_owner(MockDeployManager(filter_fail=True))
    with pytest.raises(ClusterError):
        ensure_child(dm, owner, make_deployment())


## list_children ###############################################################


def test_list_children_skips_deleting():
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment(), wait_for_owner=True)
    dm.disable([child])
    assert not list_children(
        dm, owner, "Deployment", LABELS, namespace=TEST_NAMESPACE
    )
    assert list_children(
        dm, owner, "Deployment", LABELS, namespace=TEST_NAMESPACE, include_deleting=True
    )


## delete_child ################################################################


def test_delete_child_releases_finalizer():
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment(), wait_for_owner=True)
    assert delete_child(dm, child)
    assert not dm.has_obj("Deployment", child["metadata"]["name"])


def test_delete_child_already_gone():
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment())
    assert delete_child(dm, child)
    assert not delete_child(dm, child)


## release_children ############################################################


def test_release_children_then_collect():
    """Children holding the owner finalizer are only marked when deleted, and
    go away once released
    """
    dm, owner = setup_owner()
    child, _ = ensure_child(dm, owner, make_deployment(), wait_for_owner=True)
    name = child["metadata"]["name"]
    dm.disable([child])
    assert dm.get_obj("Deployment", name)["metadata"].get("deletionTimestamp")

    children = list_children(
        dm, owner, "Deployment", LABELS, namespace=TEST_NAMESPACE, include_deleting=True
    )
    assert release_children(dm, children) == 1
    assert not dm.has_obj("Deployment", name)
    assert not list_children(
        dm, owner, "Deployment", LABELS, namespace=TEST_NAMESPACE, include_deleting=True
    )
