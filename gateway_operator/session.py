"""
This module holds the core session state for an individual reconciliation
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .api import KubeObject
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .status import update_resource_status

log = alog.use_channel("SESSION")

# Helper Definition to define when a session should use its own namespace
# or the one passed in as an argument
_SESSION_NAMESPACE = "__SESSION_NAMESPACE__"


class Session:
    """A session holds the state of an in-progress reconciliation of a single
    object. The object's definition is the one snapshot read at the start of
    the pass. Status changes are made on it and persisted once at the end.
    """

    # We strictly define the set of attributes that a Session can have to
    # disallow arbitrary assignment
    __slots__ = [
        "__id",
        "__resource",
        "__deploy_manager",
    ]

    def __init__(
        self,
        reconciliation_id: str,
        resource: KubeObject,
        deploy_manager: DeployManagerBase,
    ):
        """Construct a session object to hold the state for a reconciliation

        Args:
            reconciliation_id:  str
                The unique ID for this reconciliation
            resource:  KubeObject
                The typed view of the object being reconciled
            deploy_manager:  DeployManagerBase
                The preconfigured DeployManager in charge of running the actual
                cluster operations
        """
        self.__id = reconciliation_id
        self.__resource = resource
        self.__deploy_manager = deploy_manager

    ## Properties ##############################################################

    @property
    def id(self) -> str:  # pylint: disable=invalid-name
        """The unique reconciliation ID"""
        return self.__id

    @property
    def resource(self) -> KubeObject:
        """The typed view of the object being reconciled"""
        return self.__resource

    @property
    def definition(self) -> dict:
        """The raw manifest of the object being reconciled"""
        return self.__resource.definition

    @property
    def kind(self) -> str:
        return self.__resource.kind

    @property
    def name(self) -> str:
        return self.__resource.name

    @property
    def namespace(self) -> Optional[str]:
        return self.__resource.namespace

    @property
    def deploy_manager(self) -> DeployManagerBase:
        """Allow read access to the deploy manager"""
        return self.__deploy_manager

    ## State Management ########################################################

    def get_object(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = _SESSION_NAMESPACE,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        """Get the current state of an object, raising a ClusterError if the
        read fails

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object. Defaults to the session's
                namespace. None names a cluster-scoped object.
            api_version:  Optional[str]
                The api_version of the object

        Returns:
            current_state:  Optional[dict]
                The object, or None if it does not exist
        """
        if namespace == _SESSION_NAMESPACE:
            namespace = self.namespace
        success, content = self.deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"Failed to fetch current state of {kind}/{name}")
        return content

    def list_objects(
        self,
        kind: str,
        namespace: Optional[str] = _SESSION_NAMESPACE,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        """List objects, raising a ClusterError if the read fails"""
        if namespace == _SESSION_NAMESPACE:
            namespace = self.namespace
        success, content = self.deploy_manager.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=label_selector,
        )
        assert_cluster(success, f"Failed to list {kind} in {namespace}")
        return content

    def update_resource(self) -> bool:
        """Write the object's non-status content back, conditional on the
        version read at the start of the pass. The definition's
        resourceVersion is refreshed so later writes stay conditional on it.
        """
        success, changed = self.deploy_manager.deploy([self.definition])
        assert_cluster(success, f"Failed to update {self.kind}/{self.name}")
        return changed

    def update_status(self) -> bool:
        """Persist the object's status if it changed meaningfully"""
        return update_resource_status(self.deploy_manager, self.definition)
