"""
This defines the base class for all DeployManager types. A DeployManager is the
only seam through which the operator reads and writes cluster state.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which will be responsible for carrying out
    the actual reads and writes against the backing store.
    """

    @abc.abstractmethod
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The deploy function ensures that the resources defined in the list of
        definitions exist in the cluster with the given content.

        Objects without a metadata.name are created using metadata.generateName.
        Objects that carry a metadata.resourceVersion are written conditionally
        and a stale version raises a ConflictError. On success, each definition
        is updated in place with the stored name, uid, generation, and
        resourceVersion.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                Whether or not the deploy succeeded
            changed:  bool
                Whether or not the deployment resulted in changes
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The disable function ensures that the resources defined in the list of
        definitions are deleted from the cluster. Objects holding finalizers are
        only marked for deletion. Deleting an object that does not exist
        succeeds without change.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """The get_object_current_state function fetches the current state of
        the given object by kind/name/namespace. A namespace of None names a
        cluster-scoped object.

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  Optional[dict]
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """The filter_objects_current_state function fetches a list of objects
        that match either/both the label or field selector. A namespace of None
        lists across all namespaces.

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch
            label_selector:  Optional[str]
                The label_selector to filter the resources
            field_selector:  Optional[str]
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status for the given object. If resource_version is given,
        the write is conditional on it and a stale version raises a
        ConflictError.

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status dict to apply
            api_version:  Optional[str]
                The api_version of the object
            resource_version:  Optional[str]
                The resourceVersion the write is conditional on

        Returns:
            success:  bool
                Whether or not the status update succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
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
    ) -> Iterator[KubeWatchEvent]:
        """The watch_objects function yields a stream of events for the given
        kind. The stream starts with an ADDED event for every existing object.

        Args:
            kind:  str
                The kind of the object to watch
            api_version:  Optional[str]
                The api_version of the object
            namespace:  Optional[str]
                The namespace to watch, None for all namespaces
            name:  Optional[str]
                Restrict the watch to a single object
            label_selector:  Optional[str]
                The label_selector to filter the resources
            field_selector:  Optional[str]
                The field_selector to filter the resources
            resource_version:  Optional[str]
                The resource_version to start the watch from
            timeout:  Optional[int]
                Seconds until the stream ends

        Returns:
            watch_stream:  Iterator[KubeWatchEvent]
                The stream of events
        """
