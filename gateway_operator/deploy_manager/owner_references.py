"""
This module holds common functionality to manage ownership edges between
generated children and the objects that own them. Namespaced children carry a
metadata.ownerReferences entry. Cluster-scoped children cannot reference a
namespaced owner, so they carry owner labels instead.
"""

# Standard
from typing import Dict, List

# First Party
import alog

# Local
from .. import constants

log = alog.use_channel("OWNRF")


def update_owner_references(owner: dict, child_obj: dict):
    """Merge a reference to the owner into the child object in place. The
    child's namespace decides the kind of edge: a namespaced child gets an
    ownerReference, a cluster-scoped child gets owner labels.

    Args:
        owner:  dict
            The full manifest of the owning object
        child_obj:  dict
            The child manifest that will be applied to the cluster
    """
    _validate_object_struct(owner)
    metadata = child_obj.setdefault("metadata", {})
    owner_uid = owner["metadata"].get("uid")
    assert owner_uid, "Cannot reference an owner without a uid"

    if metadata.get("namespace") is None:
        log.debug2("Adding owner labels for cluster-scoped %s", child_obj.get("kind"))
        metadata.setdefault("labels", {}).update(make_owner_labels(owner))
        return

    owner_refs = metadata.setdefault("ownerReferences", [])
    if owner_uid not in [ref.get("uid") for ref in owner_refs]:
        log.debug2(
            "Adding owner reference to %s for %s/%s",
            child_obj.get("kind"),
            owner.get("kind"),
            owner["metadata"].get("name"),
        )
        owner_refs.append(_make_owner_reference(owner))
    log.debug4("Final owner refs: %s", owner_refs)


def make_owner_labels(owner: dict) -> Dict[str, str]:
    """Labels identifying the owner of a cluster-scoped child"""
    metadata = owner.get("metadata", {})
    return {
        constants.OWNER_NAME_LABEL: metadata.get("name"),
        constants.OWNER_NAMESPACE_LABEL: metadata.get("namespace"),
    }


def is_owned_by(owner: dict, child_obj: dict) -> bool:
    """True if the child carries an ownership edge to the owner"""
    child_meta = child_obj.get("metadata", {})
    if child_meta.get("namespace") is None:
        labels = child_meta.get("labels") or {}
        return all(
            labels.get(key) == value for key, value in make_owner_labels(owner).items()
        )
    owner_uid = owner.get("metadata", {}).get("uid")
    return owner_uid in get_owner_uids(child_obj)


def get_owner_uids(obj: dict) -> List[str]:
    """All owner uids referenced by the object"""
    return [
        ref.get("uid")
        for ref in obj.get("metadata", {}).get("ownerReferences") or []
        if ref.get("uid")
    ]


def get_owners_of_kind(obj: dict, kind: str) -> List[dict]:
    """All ownerReferences on the object pointing at the given kind"""
    return [
        ref
        for ref in obj.get("metadata", {}).get("ownerReferences") or []
        if ref.get("kind") == kind
    ]


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.name)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"


def _make_owner_reference(owner: dict) -> dict:
    """Make an owner reference for the given owner

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner, so the resulting ownerReference may contain None
    entries.

    Args:
        owner:  dict
            The full manifest for the owning resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        # The owner will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }
