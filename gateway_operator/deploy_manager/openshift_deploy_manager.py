"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from typing import Callable, Iterator, List, Optional, Tuple
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as ClientConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import ConflictError, assert_cluster
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
CLIENT_WATCH_TIMEOUT = 30

# Metadata written back onto deployed definitions
_SERVER_METADATA = ("name", "uid", "resourceVersion", "generation", "creationTimestamp")

# Metadata fields that are owned by the server and ignored when detecting change
_IGNORED_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "generateName",
)


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self):
        log.debug("Initializing openshift client")
        self._client = None

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug2)
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Create or conditionally replace each resource

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes
        """
        return self._run_operations(resource_definitions, self._apply)

    @alog.logged_function(log.debug2)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each resource, treating missing kinds and objects as success
        without change

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete

        Returns:
            success:  bool
                True if delete succeeded, False otherwise
            changed:  bool
                Whether or not the delete resulted in changes
        """
        return self._run_operations(resource_definitions, self._disable)

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        # If the resource was found, return it's dict representation
        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False
        try:
            current = resource_handle.get(name=name, namespace=namespace).to_dict()
        except NotFoundError:
            log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
            return False, False
        if current.get("status") == status:
            return True, False

        current["status"] = status
        if resource_version:
            current["metadata"]["resourceVersion"] = resource_version
        try:
            resource_handle.status.replace(body=current)
        except ClientConflictError as err:
            raise ConflictError(str(err)) from err
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            (
                "Failed to fetch resource handle for "
                + f"{namespace}/{api_version}/{kind}"
            ),
        )
        timeout = timeout or config.watch_timeout_seconds

        try:
            for event_obj in watch_manager.stream(
                resource_handle.get,
                resource_version=resource_version or 0,
                namespace=namespace,
                name=name,
                label_selector=label_selector,
                field_selector=field_selector,
                serialize=False,
                timeout_seconds=timeout,
                _request_timeout=CLIENT_WATCH_TIMEOUT,
            ):
                yield KubeWatchEvent(
                    KubeEventType(event_obj["type"]),
                    ManagedObject(event_obj["object"]),
                )
        except client.exceptions.ApiException as exception:
            # An expired resourceVersion ends the stream and the caller
            # restarts with a fresh listing
            if exception.status != 410:
                log.info("Unknown ApiException received, re-raising")
                raise
            log.debug2("Resource age expired for watch %s/%s", kind, api_version)
        except urllib3.exceptions.ReadTimeoutError:
            log.debug4("Watch socket closed for %s/%s", kind, api_version)
        except urllib3.exceptions.ProtocolError:
            log.debug2("Invalid chunk from server for watch %s/%s", kind, api_version)

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return None

    @staticmethod
    def _run_operations(
        resource_definitions: List[dict], operation: Callable[[dict], bool]
    ) -> Tuple[bool, bool]:
        """Run the operation on each resource in order, stopping on the first
        failure. Conflicts propagate to the caller.
        """
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = operation(resource_definition) or changed
            except ConflictError:
                raise
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation.__name__,
                    err,
                    exc_info=True,
                )
                return False, changed
        return True, changed

    def _apply(self, resource_definition: dict) -> bool:
        """Create or replace a single resource

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        kind = resource_definition["kind"]
        api_version = resource_definition["apiVersion"]
        metadata = resource_definition.setdefault("metadata", {})
        namespace = metadata.get("namespace")
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(resource_handle, f"Unknown kind {api_version}/{kind}")

        current = None
        if metadata.get("name"):
            _, current = self.get_object_current_state(
                kind=kind,
                name=metadata["name"],
                namespace=namespace,
                api_version=api_version,
            )

        if current is None:
            log.debug2("Creating %s in %s", kind, namespace)
            stored = resource_handle.create(
                body=resource_definition, namespace=namespace
            ).to_dict()
            changed = True
        elif _comparable(current) == _comparable(resource_definition):
            log.debug3("No change for %s/%s", kind, metadata["name"])
            stored, changed = current, False
        else:
            stored, changed = self._replace(resource_handle, resource_definition), True

        for key in _SERVER_METADATA:
            if key in stored.get("metadata", {}):
                metadata[key] = stored["metadata"][key]
        return changed

    def _replace(
        self, resource_handle: Resource, resource_definition: dict, retries=None
    ) -> dict:
        """Replace the resource. Writes conditional on a caller-provided
        resourceVersion surface conflicts. Unconditional writes retry against
        the latest resourceVersion.
        """
        metadata = resource_definition["metadata"]
        conditional = bool(metadata.get("resourceVersion"))
        retries = config.deploy_retries if retries is None else retries
        try:
            if not conditional:
                _, current = self.get_object_current_state(
                    kind=resource_definition["kind"],
                    name=metadata["name"],
                    namespace=metadata.get("namespace"),
                    api_version=resource_definition["apiVersion"],
                )
                assert_cluster(current is not None, "Object vanished during replace")
                metadata["resourceVersion"] = current["metadata"]["resourceVersion"]
            return resource_handle.replace(
                body=resource_definition, namespace=metadata.get("namespace")
            ).to_dict()
        except ClientConflictError as err:
            if conditional or not retries:
                raise ConflictError(str(err)) from err
            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - retries + 1
            )
            log.debug3("Retrying replace in %fs", backoff_duration)
            time.sleep(backoff_duration)
            metadata.pop("resourceVersion", None)
            return self._replace(resource_handle, resource_definition, retries - 1)

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource from the cluster if it exists

        Returns:
            changed:  bool
                Whether or not the delete resulted in a meaningful change
        """
        kind = resource_definition.get("kind")
        api_version = resource_definition.get("apiVersion")
        metadata = resource_definition.get("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        try:
            resource_handle = self.client.resources.get(
                api_version=api_version, kind=kind
            )
            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                api_version,
                kind,
                name,
                namespace,
            )
            resource_handle.delete(name=name, namespace=namespace)
            return True

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2("Valid error caught when disabling [%s/%s]: %s", kind, name, err)
        return False


def _comparable(resource: dict) -> dict:
    comparable = {key: value for key, value in resource.items() if key != "status"}
    comparable["metadata"] = {
        key: value
        for key, value in resource.get("metadata", {}).items()
        if key not in _IGNORED_METADATA and value is not None
    }
    return comparable
