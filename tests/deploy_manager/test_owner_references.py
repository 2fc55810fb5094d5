"""
Tests for the ownership edge helpers
"""
# Third Party
import pytest

# Local
from gateway_operator import constants
from gateway_operator.deploy_manager.owner_references import (
    get_owner_uids,
    get_owners_of_kind,
    is_owned_by,
    make_owner_labels,
    update_owner_references,
)
from gateway_operator.test_helpers.helpers import TEST_NAMESPACE, make_data_plane


def make_owner(uid="owner-uid"):
    owner = make_data_plane()
    owner["metadata"]["uid"] = uid
    return owner


def make_child(namespace=TEST_NAMESPACE):
    metadata = {"name": "child"}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": "v1", "kind": "Service", "metadata": metadata}


def test_namespaced_child_gets_owner_reference():
    owner = make_owner()
    child = make_child()
    update_owner_references(owner, child)
    refs = child["metadata"]["ownerReferences"]
    assert refs == [
        {
            "apiVersion": owner["apiVersion"],
            "kind": constants.DATA_PLANE_KIND,
            "name": owner["metadata"]["name"],
            "uid": "owner-uid",
            "controller": True,
            "blockOwnerDeletion": True,
        }
    ]
    assert is_owned_by(owner, child)
    assert get_owner_uids(child) == ["owner-uid"]


def test_owner_reference_added_once():
    owner = make_owner()
    child = make_child()
    update_owner_references(owner, child)
    update_owner_references(owner, child)
    assert len(child["metadata"]["ownerReferences"]) == 1


def test_cluster_scoped_child_gets_owner_labels():
    owner = make_owner()
    child = make_child(namespace=None)
    update_owner_references(owner, child)
    assert "ownerReferences" not in child["metadata"]
    assert child["metadata"]["labels"] == make_owner_labels(owner)
    assert child["metadata"]["labels"][constants.OWNER_NAMESPACE_LABEL] == (
        TEST_NAMESPACE
    )
    assert is_owned_by(owner, child)
    other = make_owner()
    other["metadata"]["name"] = "other-dataplane"
    assert not is_owned_by(other, child)


def test_not_owned_by_other_uid():
    child = make_child()
    update_owner_references(make_owner(), child)
    assert not is_owned_by(make_owner("other"), child)


def test_owner_without_uid_rejected():
    owner = make_data_plane()
    owner["metadata"].pop("uid", None)
    with pytest.raises(AssertionError):
        update_owner_references(owner, make_child())


def test_get_owners_of_kind():
    child = make_child()
    update_owner_references(make_owner(), child)
    assert len(get_owners_of_kind(child, constants.DATA_PLANE_KIND)) == 1
    assert not get_owners_of_kind(child, "Gateway")
    assert not get_owners_of_kind({}, "Gateway")
