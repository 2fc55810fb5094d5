"""
Tests for the in-memory DryRunDeployManager
"""
# Third Party
import pytest

# Local
from gateway_operator.deploy_manager import DryRunDeployManager, KubeEventType
from gateway_operator.deploy_manager.dry_run_deploy_manager import match_selector
from gateway_operator.exceptions import ConflictError
from gateway_operator.test_helpers.helpers import TEST_NAMESPACE

## Helpers #####################################################################


def make_obj(name="foo", kind="Foo", spec=None, labels=None, **metadata):
    metadata.setdefault("namespace", TEST_NAMESPACE)
    metadata["name"] = name
    if labels:
        metadata["labels"] = labels
    return {
        "apiVersion": "foo.bar/v1",
        "kind": kind,
        "metadata": metadata,
        "spec": spec or {"size": 1},
    }


def get(dm, name="foo", kind="Foo", namespace=TEST_NAMESPACE):
    return dm.get_object_current_state(kind, name, namespace)[1]


## Deploy ######################################################################


def test_deploy_writes_server_metadata_back():
    dm = DryRunDeployManager()
    obj = make_obj()
    assert dm.deploy([obj]) == (True, True)
    stored = get(dm)
    for key in ("uid", "resourceVersion", "creationTimestamp", "generation"):
        assert obj["metadata"][key] == stored["metadata"][key]
    assert stored["metadata"]["generation"] == 1


def test_deploy_generate_name():
    dm = DryRunDeployManager()
    obj = make_obj(generateName="foo-")
    del obj["metadata"]["name"]
    dm.deploy([obj])
    name = obj["metadata"]["name"]
    assert name.startswith("foo-")
    assert len(name) == len("foo-") + 5
    assert "generateName" not in get(dm, name)["metadata"]


def test_deploy_unchanged_keeps_version():
    dm = DryRunDeployManager([make_obj()])
    version = get(dm)["metadata"]["resourceVersion"]
    assert dm.deploy([make_obj()]) == (True, False)
    assert get(dm)["metadata"]["resourceVersion"] == version


def test_deploy_spec_change_bumps_generation():
    dm = DryRunDeployManager([make_obj()])
    dm.deploy([make_obj(labels={"a": "b"})])
    assert get(dm)["metadata"]["generation"] == 1
    dm.deploy([make_obj(spec={"size": 2})])
    assert get(dm)["metadata"]["generation"] == 2


def test_deploy_stale_resource_version_conflicts():
    dm = DryRunDeployManager([make_obj()])
    current = get(dm)
    dm.deploy([make_obj(spec={"size": 2})])
    current["spec"]["size"] = 3
    with pytest.raises(ConflictError):
        dm.deploy([current])
    assert get(dm)["spec"]["size"] == 2


def test_deploy_never_writes_status():
    dm = DryRunDeployManager([make_obj()])
    dm.set_status("Foo", "foo", TEST_NAMESPACE, {"ready": True})
    obj = make_obj(spec={"size": 2})
    obj["status"] = {"ready": False}
    dm.deploy([obj])
    assert get(dm)["status"] == {"ready": True}


## Disable #####################################################################


def test_disable_removes_object():
    dm = DryRunDeployManager([make_obj()])
    assert dm.disable([make_obj()]) == (True, True)
    assert get(dm) is None
    assert dm.disable([make_obj()]) == (True, False)


def test_disable_with_finalizer_marks_then_removes():
    dm = DryRunDeployManager([make_obj(finalizers=["test.finalizer"])])
    assert dm.disable([make_obj()]) == (True, True)
    current = get(dm)
    assert current["metadata"]["deletionTimestamp"]

    # Marking again is not a change
    assert dm.disable([make_obj()]) == (True, False)

    current["metadata"]["finalizers"] = []
    dm.deploy([current])
    assert get(dm) is None


## Reads #######################################################################


def test_filter_all_namespaces():
    dm = DryRunDeployManager(
        [make_obj("a"), make_obj("b", namespace="other"), make_obj("c", kind="Bar")]
    )
    _, objs = dm.filter_objects_current_state("Foo")
    assert sorted(obj["metadata"]["name"] for obj in objs) == ["a", "b"]
    _, objs = dm.filter_objects_current_state("Foo", namespace="other")
    assert [obj["metadata"]["name"] for obj in objs] == ["b"]


def test_filter_by_label_selector():
    dm = DryRunDeployManager(
        [
            make_obj("a", labels={"app": "x", "tier": "web"}),
            make_obj("b", labels={"app": "y"}),
        ]
    )
    _, objs = dm.filter_objects_current_state(
        "Foo", TEST_NAMESPACE, label_selector="app=x,tier"
    )
    assert [obj["metadata"]["name"] for obj in objs] == ["a"]


def test_get_returns_copy():
    dm = DryRunDeployManager([make_obj()])
    get(dm)["spec"]["size"] = 10
    assert get(dm)["spec"]["size"] == 1


## Status ######################################################################


def test_set_status_conditional():
    dm = DryRunDeployManager([make_obj()])
    version = get(dm)["metadata"]["resourceVersion"]
    assert dm.set_status(
        "Foo", "foo", TEST_NAMESPACE, {"ready": True}, resource_version=version
    ) == (True, True)
    with pytest.raises(ConflictError):
        dm.set_status(
            "Foo", "foo", TEST_NAMESPACE, {"ready": False}, resource_version=version
        )
    assert dm.set_status("Foo", "foo", TEST_NAMESPACE, {"ready": True}) == (
        True,
        False,
    )


def test_set_status_missing_object():
    dm = DryRunDeployManager()
    assert dm.set_status("Foo", "foo", TEST_NAMESPACE, {}) == (False, False)


## Garbage Collection ##########################################################


def owned_by(obj, owner):
    obj["metadata"]["ownerReferences"] = [
        {
            "apiVersion": owner["apiVersion"],
            "kind": owner["kind"],
            "name": owner["metadata"]["name"],
            "uid": owner["metadata"]["uid"],
        }
    ]
    return obj


def test_collect_garbage_cascades():
    dm = DryRunDeployManager()
    root = make_obj("root")
    dm.deploy([root])
    middle = owned_by(make_obj("middle", kind="Bar"), root)
    dm.deploy([middle])
    leaf = owned_by(make_obj("leaf", kind="Baz"), middle)
    dm.deploy([leaf])

    assert dm.collect_garbage() == 0
    dm.disable([root])
    assert dm.collect_garbage() == 2
    assert get(dm, "middle", "Bar") is None
    assert get(dm, "leaf", "Baz") is None


def test_collect_garbage_marks_finalized_orphans():
    dm = DryRunDeployManager()
    root = make_obj("root")
    dm.deploy([root])
    child = owned_by(make_obj("child", kind="Bar", finalizers=["f"]), root)
    dm.deploy([child])
    dm.disable([root])
    assert dm.collect_garbage() == 1
    assert get(dm, "child", "Bar")["metadata"]["deletionTimestamp"]
    assert dm.collect_garbage() == 0


## Watch #######################################################################


def test_watch_objects_lists_then_streams():
    dm = DryRunDeployManager([make_obj("a")])
    stream = dm.watch_objects("Foo", namespace=TEST_NAMESPACE, timeout=2)
    first = next(stream)
    assert first.type == KubeEventType.ADDED
    assert first.resource.name == "a"

    dm.deploy([make_obj("b")])
    second = next(stream)
    assert second.type == KubeEventType.ADDED
    assert second.resource.name == "b"

    dm.disable([make_obj("a")])
    third = next(stream)
    assert third.type == KubeEventType.DELETED
    stream.close()
    assert not dm._watches[dm._watch_key(None, "Foo", TEST_NAMESPACE)]


def test_watch_objects_ends_at_timeout():
    dm = DryRunDeployManager()
    assert not list(dm.watch_objects("Foo", timeout=0.3))


## Selectors ###################################################################


@pytest.mark.parametrize(
    ["selector", "expected"],
    [
        ("app=x", True),
        ("app==x", True),
        ("app!=x", False),
        ("app!=y", True),
        ("app in (x, y)", True),
        ("app notin (x, y)", False),
        ("tier", True),
        ("!tier", False),
        ("!missing", True),
        ("missing", False),
        ("app=x,tier=web", True),
        ("app=x,tier=db", False),
    ],
)
def test_match_selector(selector, expected):
    assert match_selector({"app": "x", "tier": "web"}, selector) == expected
