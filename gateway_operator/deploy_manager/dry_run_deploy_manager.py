"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map. It models the parts of the API server the operator relies on:
monotonic resourceVersions, conditional writes, generateName, generation bumps
on spec changes, deletion markers for objects holding finalizers, and owner
based garbage collection.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import random
import re
import string
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError
from ..managed_object import ManagedObject
from ..utils import now_timestamp
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import get_owner_uids

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields that are owned by the store and ignored when detecting change
_SERVER_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
)

WatchCallback = Callable[[KubeEventType, dict], None]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(self, resources=None):
        """Construct with an optional list of resources to seed the store with"""
        self._cluster_content = {}
        self._watches: Dict[str, List[WatchCallback]] = {}
        self._resource_version_counter = itertools.count(1)

        # Deploy provided resources
        self._deploy(resources or [], call_watches=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions):
        log.debug("DRY RUN deploy")
        return self._deploy(resource_definitions)

    def disable(self, resource_definitions):
        log.debug("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            metadata = resource.get("metadata", {})
            changed = (
                self._delete(
                    kind=resource.get("kind"),
                    api_version=resource.get("apiVersion"),
                    namespace=metadata.get("namespace"),
                    name=metadata.get("name"),
                )
                or changed
            )
        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with DRY_RUN_CLUSTER_LOCK:
            matches = [
                entries[name]
                for api_ver, entries in self._cluster_content.get(namespace, {})
                .get(kind, {})
                .items()
                if name in entries and api_version in (None, api_ver)
            ]
            log.debug3(
                "Found %d matches for [%s/%s] in %s",
                len(matches),
                kind,
                name,
                namespace,
            )
            if len(matches) == 1:
                return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            for resource in self._iter_objects(kind, namespace, api_version):
                labels = resource.get("metadata", {}).get("labels") or {}
                if label_selector and not match_selector(labels, label_selector):
                    continue
                if field_selector and not match_selector(
                    _convert_dict_to_dot(resource), field_selector
                ):
                    continue
                matches.append(copy.deepcopy(resource))
        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
        resource_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s",
            api_version,
            kind,
            name,
            namespace,
        )
        log.debug4("New status: %s", status)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._find(kind, name, namespace, api_version)
            if current is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            self._check_resource_version(current, resource_version)
            if current.get("status") == status:
                return True, False
            current["status"] = copy.deepcopy(status)
            current["metadata"]["resourceVersion"] = self._next_resource_version()
            updated = copy.deepcopy(current)
        self._call_watches(KubeEventType.MODIFIED, updated)
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks"""

        event_queue = Queue()

        def enqueue_event(event_type: KubeEventType, manifest: dict):
            """Callback triggered when resources change"""
            if name and manifest.get("metadata", {}).get("name") != name:
                return
            labels = manifest.get("metadata", {}).get("labels") or {}
            if label_selector and not match_selector(labels, label_selector):
                return
            event_queue.put(
                KubeWatchEvent(type=event_type, resource=ManagedObject(manifest))
            )

        # Register before listing so no change is missed in between
        callback = enqueue_event
        self.register_watch(
            api_version=api_version, kind=kind, namespace=namespace, callback=callback
        )
        try:
            _, manifests = self.filter_objects_current_state(
                kind=kind,
                api_version=api_version,
                namespace=namespace,
                label_selector=label_selector,
                field_selector=field_selector,
            )
            for manifest in manifests:
                if name and manifest["metadata"].get("name") != name:
                    continue
                event = KubeWatchEvent(
                    type=KubeEventType.ADDED, resource=ManagedObject(manifest)
                )
                log.debug2("Yielding initial event %s", event)
                yield event

            end_time = datetime.max
            if timeout:
                end_time = datetime.now() + timedelta(seconds=timeout)

            # Yield any events from the callback queue
            log.debug2("Waiting till %s", end_time)
            while datetime.now() < end_time:
                try:
                    event = event_queue.get(timeout=0.1)
                    log.debug2("Yielding event %s", event)
                    yield event
                except Empty:
                    pass
        finally:
            self.unregister_watch(
                api_version=api_version,
                kind=kind,
                namespace=namespace,
                callback=callback,
            )

    ## Dry Run Methods #########################################################

    def register_watch(
        self,
        api_version: Optional[str],
        kind: str,
        callback: WatchCallback,
        namespace: Optional[str] = None,
    ):
        """Register a callback to watch for deploy and delete events on a given
        api_version/kind. The callback is called with the event type and the
        manifest.
        """
        watch_key = self._watch_key(api_version=api_version, kind=kind, namespace=namespace)
        log.debug("Registering watch for %s", watch_key)
        with DRY_RUN_CLUSTER_LOCK:
            self._watches.setdefault(watch_key, []).append(callback)

    def unregister_watch(
        self,
        api_version: Optional[str],
        kind: str,
        callback: WatchCallback,
        namespace: Optional[str] = None,
    ):
        """Remove a previously registered callback"""
        watch_key = self._watch_key(api_version=api_version, kind=kind, namespace=namespace)
        with DRY_RUN_CLUSTER_LOCK:
            callbacks = self._watches.get(watch_key, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def collect_garbage(self) -> int:
        """Sweep objects whose ownerReferences all point at objects that no
        longer exist, the way the cluster's garbage collector does. Objects
        holding finalizers are only marked for deletion. The sweep repeats until
        it finds nothing more, so deletions cascade through owner chains.

        Returns:
            swept:  int
                The number of objects deleted or marked for deletion
        """
        swept = 0
        while True:
            with DRY_RUN_CLUSTER_LOCK:
                live_uids = {
                    obj["metadata"].get("uid") for obj in self._iter_objects()
                }
                orphans = [
                    copy.deepcopy(obj)
                    for obj in self._iter_objects()
                    if get_owner_uids(obj)
                    and not any(uid in live_uids for uid in get_owner_uids(obj))
                    and not obj["metadata"].get("deletionTimestamp")
                ]
            if not orphans:
                return swept
            log.debug("Garbage collecting %d orphans", len(orphans))
            for orphan in orphans:
                self._delete(
                    kind=orphan["kind"],
                    api_version=orphan["apiVersion"],
                    namespace=orphan["metadata"].get("namespace"),
                    name=orphan["metadata"]["name"],
                )
                swept += 1

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version=None, kind=None, namespace=None):
        return ":".join([api_version or "", kind or "", namespace or ""])

    def _call_watches(self, event_type: KubeEventType, manifest: dict):
        api_version = manifest.get("apiVersion")
        kind = manifest.get("kind")
        namespace = manifest.get("metadata", {}).get("namespace")
        keys = {
            self._watch_key(api_version, kind, namespace),
            self._watch_key(api_version, kind),
            self._watch_key(None, kind, namespace),
            self._watch_key(None, kind),
        }
        with DRY_RUN_CLUSTER_LOCK:
            callbacks = [
                callback
                for key in keys
                for callback in list(self._watches.get(key, []))
            ]
        for callback in callbacks:
            log.debug3("Calling registered watch [%s] for %s", callback, event_type)
            callback(event_type, copy.deepcopy(manifest))

    def _next_resource_version(self) -> str:
        return str(next(self._resource_version_counter))

    def _iter_objects(self, kind=None, namespace=None, api_version=None):
        namespaces = (
            [self._cluster_content.get(namespace, {})]
            if namespace is not None
            else list(self._cluster_content.values())
        )
        for kinds in namespaces:
            for obj_kind, versions in kinds.items():
                if kind is not None and obj_kind != kind:
                    continue
                for api_ver, entries in versions.items():
                    if api_version is not None and api_ver != api_version:
                        continue
                    yield from list(entries.values())

    def _find(self, kind, name, namespace, api_version) -> Optional[dict]:
        for api_ver, entries in self._cluster_content.get(namespace, {}).get(
            kind, {}
        ).items():
            if name in entries and api_version in (None, api_ver):
                return entries[name]
        return None

    @staticmethod
    def _check_resource_version(current: dict, resource_version: Optional[str]):
        current_version = current.get("metadata", {}).get("resourceVersion")
        if resource_version and resource_version != current_version:
            log.debug(
                "Stale write to %s/%s: %s != %s",
                current.get("kind"),
                current["metadata"].get("name"),
                resource_version,
                current_version,
            )
            raise ConflictError(
                f"the object {current.get('kind')}/{current['metadata'].get('name')} "
                "has been modified; please apply your changes to the latest version"
            )

    def _generate_name(self, prefix: str, kind: str, namespace, api_version) -> str:
        while True:
            suffix = "".join(
                random.choices(string.ascii_lowercase + string.digits, k=5)
            )
            name = f"{prefix}{suffix}"
            if self._find(kind, name, namespace, api_version) is None:
                return name

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _delete(self, kind, api_version, namespace, name) -> bool:
        """Delete (or mark for deletion) a single object"""
        with DRY_RUN_CLUSTER_LOCK:
            current = self._find(kind, name, namespace, api_version)
            if current is None:
                log.debug2("[%s/%s] in %s already gone", kind, name, namespace)
                return False
            metadata = current["metadata"]
            if metadata.get("finalizers"):
                if metadata.get("deletionTimestamp"):
                    return False
                log.debug2("Marking [%s/%s] for deletion", kind, name)
                metadata["deletionTimestamp"] = now_timestamp()
                metadata["deletionGracePeriodSeconds"] = 0
                metadata["resourceVersion"] = self._next_resource_version()
                event_type = KubeEventType.MODIFIED
            else:
                log.debug2("Removing [%s/%s]", kind, name)
                self._delete_key(namespace, kind, current["apiVersion"], name)
                event_type = KubeEventType.DELETED
            manifest = copy.deepcopy(current)
        self._call_watches(event_type, manifest)
        return True

    def _deploy(self, resource_definitions, call_watches=True):
        changes = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            metadata = resource.setdefault("metadata", {})
            namespace = metadata.get("namespace")
            log.debug4(resource)

            with DRY_RUN_CLUSTER_LOCK:
                if not metadata.get("name"):
                    assert metadata.get(
                        "generateName"
                    ), "Got object without 'metadata.name' or 'metadata.generateName'"
                    metadata["name"] = self._generate_name(
                        metadata["generateName"], kind, namespace, api_version
                    )
                name = metadata["name"]
                log.debug(
                    "DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name
                )

                current = self._find(kind, name, namespace, api_version)
                if current is not None:
                    self._check_resource_version(current, metadata.get("resourceVersion"))
                    stored, changed = self._update(current, resource)
                else:
                    stored, changed = self._create(resource), True
                changes = changes or changed

                # Report the stored metadata back to the caller
                metadata["name"] = name
                for key in _SERVER_METADATA:
                    if key in stored["metadata"]:
                        metadata[key] = stored["metadata"][key]
                    else:
                        metadata.pop(key, None)

                # Objects marked for deletion go away once their finalizers do
                removed = bool(
                    stored["metadata"].get("deletionTimestamp")
                    and not stored["metadata"].get("finalizers")
                )
                if removed:
                    self._delete_key(namespace, kind, stored["apiVersion"], name)
                manifest = copy.deepcopy(stored)

            if call_watches and (changed or removed):
                self._call_watches(
                    KubeEventType.DELETED
                    if removed
                    else KubeEventType.MODIFIED
                    if current is not None
                    else KubeEventType.ADDED,
                    manifest,
                )

        return True, changes

    def _create(self, resource: dict) -> dict:
        stored = copy.deepcopy(resource)
        stored_meta = stored["metadata"]
        stored_meta.pop("generateName", None)
        stored_meta.pop("deletionTimestamp", None)
        stored_meta["uid"] = stored_meta.get("uid") or str(uuid.uuid4())
        stored_meta["creationTimestamp"] = stored_meta.get(
            "creationTimestamp", now_timestamp()
        )
        stored_meta["generation"] = 1
        stored_meta["resourceVersion"] = self._next_resource_version()
        self._cluster_content.setdefault(stored_meta.get("namespace"), {}).setdefault(
            stored["kind"], {}
        ).setdefault(stored["apiVersion"], {})[stored_meta["name"]] = stored
        return stored

    def _update(self, current: dict, resource: dict) -> Tuple[dict, bool]:
        """Replace the stored object's content with the resource. The status is
        owned by set_status and is never written here.
        """
        if _comparable(current) == _comparable(resource):
            return current, False
        stored = copy.deepcopy(resource)
        stored_meta = stored["metadata"]
        stored_meta.pop("generateName", None)
        current_meta = current["metadata"]
        for key in ("uid", "creationTimestamp", "deletionTimestamp"):
            if key in current_meta:
                stored_meta[key] = current_meta[key]
            else:
                stored_meta.pop(key, None)
        generation = current_meta.get("generation", 1)
        if current.get("spec") != resource.get("spec"):
            generation += 1
        stored_meta["generation"] = generation
        stored_meta["resourceVersion"] = self._next_resource_version()
        if "status" in current:
            stored["status"] = current["status"]
        else:
            stored.pop("status", None)
        self._cluster_content[current_meta.get("namespace")][current["kind"]][
            current["apiVersion"]
        ][current_meta["name"]] = stored
        return stored, True


## Selectors ###################################################################

# Individual selector requirements in the order they must be tried
_SELECTOR_PATTERNS = [
    (re.compile(r"^\s*([^\s!=]+)\s+in\s+\((.*)\)\s*$"), "in"),
    (re.compile(r"^\s*([^\s!=]+)\s+notin\s+\((.*)\)\s*$"), "notin"),
    (re.compile(r"^\s*([^\s!=]+)\s*!=\s*(.*?)\s*$"), "!="),
    (re.compile(r"^\s*([^\s!=]+)\s*==?\s*(.*?)\s*$"), "="),
    (re.compile(r"^\s*!\s*([^\s!=]+)\s*$"), "!"),
    (re.compile(r"^\s*([^\s!=]+)\s*$"), "exists"),
]


def match_selector(values: dict, selector: str) -> bool:
    """Determine whether a flat dict of values matches a kubernetes label or
    field selector. Supports equality (=, ==, !=), set (in, notin) and
    existence (key, !key) requirements. For the complete syntax see:
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/
    """
    for requirement in _split_selectors(selector):
        if not requirement.strip():
            continue
        for pattern, operation in _SELECTOR_PATTERNS:
            match = pattern.match(requirement)
            if match:
                break
        else:
            raise ValueError(f"Invalid selector requirement: {requirement!r}")

        key = match.group(1)
        value = values.get(key)
        value = str(value).strip() if value is not None else None
        if operation in ("in", "notin"):
            options = [opt.strip() for opt in match.group(2).split(",")]
            matched = value in options
            if operation == "notin":
                matched = not matched
        elif operation == "=":
            matched = value == match.group(2)
        elif operation == "!=":
            matched = value != match.group(2)
        elif operation == "!":
            matched = value is None
        else:
            matched = value is not None

        if not matched:
            log.debug3("Value %s=%s does not match %s", key, value, requirement)
            return False
    return True


def _split_selectors(selector: str) -> List[str]:
    """Split up selectors by , but ignoring those surrounded by () e.g.
    'app,app in (frontend, backend)' becomes ['app','app in (frontend, backend)']
    """
    output, current, depth = [], "", 0
    for char in selector:
        if char == "," and not depth:
            output.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")" and depth:
            depth -= 1
        current += char
    if current:
        output.append(current)
    return output


def _convert_dict_to_dot(dictionary, prefix=""):
    """Helper function to convert a dictionary to a map
    of strings dotted together. For example {a:{b:1},c:2}
    becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}

    output_dict = {}
    for key, value in dictionary.items():
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict.update(_convert_dict_to_dot(value, new_key))
    return output_dict


def _comparable(resource: dict) -> dict:
    """Strip store-owned metadata and status so two versions of the same object
    can be compared for user-visible change
    """
    comparable = {
        key: value for key, value in resource.items() if key not in ("status",)
    }
    comparable["metadata"] = {
        key: value
        for key, value in resource.get("metadata", {}).items()
        if key not in _SERVER_METADATA + ("generateName",)
    }
    return comparable
