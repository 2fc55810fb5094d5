"""
Helper objects to represent kubernetes objects that the operator reads and
manages
"""
# Standard
from dataclasses import dataclass, field
from typing import List, Optional

KUBE_LIST_IDENTIFIER = "List"


@dataclass(frozen=True)
class ResourceKey:
    """Identity of an object within the work queues. The apiVersion is carried
    for lookups but does not take part in equality.
    """

    kind: str
    name: str
    namespace: Optional[str] = None
    api_version: Optional[str] = field(default=None, compare=False)

    def __str__(self):
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class ManagedObject:  # pylint: disable=too-many-instance-attributes
    """Basic struct to represent a kubernetes object"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid")
        self.resource_version = self.metadata.get("resourceVersion")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        # If resource is not list then check name
        assert self.kind is not None, "No kind found"
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"
        assert self.api_version is not None, "No apiVersion found"

    @property
    def generation(self) -> int:
        return self.metadata.get("generation", 0) or 0

    @property
    def labels(self) -> dict:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> dict:
        return self.metadata.get("annotations") or {}

    @property
    def is_deleting(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    @property
    def owner_uids(self) -> List[str]:
        return [
            ref.get("uid") for ref in self.metadata.get("ownerReferences") or []
        ]

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            api_version=self.api_version,
        )

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash explicitly excludes the definition so that the object's
        identifier in a map is based only on the unique identifier of the
        resource in the cluster. If the resource did not provide a unique
        identifier then use the apiVersion, kind, and name
        """
        return hash(self.metadata.get("uid", str(self)))

    def __eq__(self, other):
        return hash(self) == hash(other)
