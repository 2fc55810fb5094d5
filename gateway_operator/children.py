"""
The child reconciler keeps a single generated child of an owner in line with
its desired form. Children are found by labels plus an ownership edge rather
than by name, since their names are generated by the cluster.
"""

# Standard
from typing import Dict, List, Optional, Tuple
import copy

# First Party
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import (
    is_owned_by,
    make_owner_labels,
    update_owner_references,
)
from .exceptions import assert_cluster
from .resources.compare import get_comparator, metadata_equal, update_metadata
from .utils import is_deleting, make_label_selector, oldest_first, remove_finalizer

log = alog.use_channel("CHILD")

## Public ######################################################################


def list_children(  # pylint: disable=too-many-arguments
    deploy_manager: DeployManagerBase,
    owner: dict,
    kind: str,
    match_labels: Dict[str, str],
    api_version: Optional[str] = None,
    namespace: Optional[str] = None,
    include_deleting: bool = False,
) -> List[dict]:
    """List the children of an owner matching the given labels, oldest first

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to read the cluster
        owner:  dict
            The owning object's manifest
        kind:  str
            The kind of child to list
        match_labels:  Dict[str, str]
            Labels every child must carry
        api_version:  Optional[str]
            The api version of the child kind
        namespace:  Optional[str]
            The namespace of the children, None for cluster-scoped kinds
        include_deleting:  bool
            Whether to include children already marked for deletion

    Returns:
        children:  List[dict]
            The matching children
    """
    selector = dict(match_labels)
    if namespace is None:
        selector.update(make_owner_labels(owner))
    success, objs = deploy_manager.filter_objects_current_state(
        kind=kind,
        namespace=namespace,
        api_version=api_version,
        label_selector=make_label_selector(selector),
    )
    assert_cluster(success, f"Failed to list {kind} children of {_describe(owner)}")
    children = [
        obj
        for obj in objs
        if is_owned_by(owner, obj) and (include_deleting or not is_deleting(obj))
    ]
    return oldest_first(children)


def ensure_child(
    deploy_manager: DeployManagerBase,
    owner: dict,
    desired: dict,
    match_labels: Optional[Dict[str, str]] = None,
    wait_for_owner: bool = False,
) -> Tuple[dict, bool]:
    """Make sure exactly one child matching the labels exists with the desired
    content. Missing children are created with an ownership edge. A child that
    drifted from the desired content is updated with a write conditional on the
    version that was read. A child that matches is left untouched.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to read and write the cluster
        owner:  dict
            The owning object's manifest
        desired:  dict
            The desired child. It is not modified.
        match_labels:  Optional[Dict[str, str]]
            Labels identifying the child. Defaults to the desired labels.
        wait_for_owner:  bool
            If true, new children hold a finalizer that is only removed once
            the owner is deleted

    Returns:
        child:  dict
            The child as stored in the cluster after this call
        changed:  bool
            True if a create or update was performed
    """
    kind = desired["kind"]
    api_version = desired.get("apiVersion")
    namespace = desired.get("metadata", {}).get("namespace")
    if match_labels is None:
        match_labels = desired.get("metadata", {}).get("labels") or {}

    existing = list_children(
        deploy_manager,
        owner,
        kind,
        match_labels,
        api_version=api_version,
        namespace=namespace,
    )

    if not existing:
        child = copy.deepcopy(desired)
        update_owner_references(owner, child)
        if wait_for_owner:
            child["metadata"].setdefault("finalizers", []).append(
                constants.WAIT_FOR_OWNER_FINALIZER
            )
        log.debug("Creating %s child of %s", kind, _describe(owner))
        success, _ = deploy_manager.deploy([child])
        assert_cluster(success, f"Failed to create {kind} child of {_describe(owner)}")
        return child, True

    if len(existing) > 1:
        log.warning(
            "Found %d %s children of %s matching %s. Using the oldest.",
            len(existing),
            kind,
            _describe(owner),
            match_labels,
        )
    current = existing[0]

    is_equal, update = get_comparator(kind)
    if is_equal(current, desired) and metadata_equal(current, desired):
        log.debug3(
            "%s/%s is up to date", kind, current.get("metadata", {}).get("name")
        )
        return current, False

    log.debug(
        "Updating drifted %s/%s", kind, current.get("metadata", {}).get("name")
    )
    updated = update_metadata(update(copy.deepcopy(current), desired), desired)
    success, _ = deploy_manager.deploy([updated])
    assert_cluster(success, f"Failed to update {kind} child of {_describe(owner)}")
    return updated, True


def delete_child(deploy_manager: DeployManagerBase, child: dict) -> bool:
    """Delete a child, releasing the wait-for-owner finalizer first so it does
    not linger. Deleting a child that is already gone succeeds.

    Returns:
        changed:  bool
            True if anything was removed or marked for deletion
    """
    child = copy.deepcopy(child)
    if remove_finalizer(child, constants.WAIT_FOR_OWNER_FINALIZER):
        log.debug2("Releasing finalizer of %s", _describe(child))
        success, _ = deploy_manager.deploy([child])
        assert_cluster(success, f"Failed to release finalizer of {_describe(child)}")
    success, changed = deploy_manager.disable([child])
    assert_cluster(success, f"Failed to delete {_describe(child)}")
    return changed


def release_children(deploy_manager: DeployManagerBase, children: List[dict]) -> int:
    """Strip the wait-for-owner finalizer from each child so that the garbage
    collector can remove them once their owner is gone

    Returns:
        released:  int
            The number of children that were updated
    """
    released = 0
    for child in children:
        child = copy.deepcopy(child)
        if remove_finalizer(child, constants.WAIT_FOR_OWNER_FINALIZER):
            success, _ = deploy_manager.deploy([child])
            assert_cluster(success, f"Failed to release finalizer of {_describe(child)}")
            released += 1
    return released


## Implementation Details ######################################################


def _describe(obj: dict) -> str:
    metadata = obj.get("metadata", {})
    return f"{obj.get('kind')}/{metadata.get('namespace')}/{metadata.get('name')}"
