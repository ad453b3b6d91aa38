import copy
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar

from kubernetes import client

from ..utils.kube import KubernetesConfigurationError, configure_kube_client

from .errors import KubeConfigError

# A generic type for BaseCustomResource subclasses
T = TypeVar("T", bound="BaseCustomResource")

# Python attribute name -> Kubernetes metadata key
_META_KEYS = {
    "name": "name",
    "namespace": "namespace",
    "generate_name": "generateName",
    "labels": "labels",
    "annotations": "annotations",
    "owner_references": "ownerReferences",
    "uid": "uid",
    "resource_version": "resourceVersion",
    "creation_timestamp": "creationTimestamp",
}


def _get_k8s_api() -> client.CustomObjectsApi:
    """
    Initializes and returns the Kubernetes CustomObjectsApi client.

    This function will raise a KubeConfigError with a helpful message if the
    Kubernetes configuration cannot be loaded.
    """
    try:
        configure_kube_client()
    except KubernetesConfigurationError as exc:
        raise KubeConfigError(
            "Kubernetes configuration not found. The upgrade job needs a "
            "service account or a valid kubeconfig."
        ) from exc

    return client.CustomObjectsApi()


@dataclass
class ObjectMeta:
    name: Optional[str] = None
    namespace: Optional[str] = None
    generate_name: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[Dict[str, Any]] = field(default_factory=list)
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    creation_timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        """
        Constructs an ObjectMeta from Kubernetes metadata, ignoring unknown
        fields such as managedFields.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for attr, key in _META_KEYS.items():
            if attr in known and data.get(key) is not None:
                kwargs[attr] = copy.deepcopy(data[key])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Kubernetes representation, dropping unset and empty values."""
        result: Dict[str, Any] = {}
        for attr, key in _META_KEYS.items():
            value = getattr(self, attr)
            if value:
                result[key] = copy.deepcopy(value)
        return result


class BaseCustomResource:
    """
    Common CRUD plumbing for the openebs.io custom resources the engine reads
    and writes. Subclasses describe where the resource lives (group, version,
    plural, scope) and how their body maps to and from a dictionary.
    """

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool

    metadata: ObjectMeta

    def __init__(
        self,
        metadata: ObjectMeta,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        self.metadata = metadata
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    # -- body mapping, overridden by subclasses ---------------------------

    def body_to_dict(self) -> Dict[str, Any]:
        """Everything except apiVersion/kind/metadata."""
        raise NotImplementedError

    def load_body(self, data: Dict[str, Any]) -> None:
        """Populates the subclass fields from a Kubernetes object."""
        raise NotImplementedError

    # -- construction -----------------------------------------------------

    @classmethod
    def from_object(
        cls: Type[T],
        data: Dict[str, Any],
        api: Optional[client.CustomObjectsApi] = None,
    ) -> T:
        resource = cls.__new__(cls)
        BaseCustomResource.__init__(
            resource, ObjectMeta.from_dict(data.get("metadata", {})), api
        )
        resource.load_body(data)
        return resource

    def _reload(self, data: Dict[str, Any]) -> None:
        self.metadata = ObjectMeta.from_dict(data.get("metadata", {}))
        self.load_body(data)

    @classmethod
    def _scope(cls, namespace: Optional[str]) -> Dict[str, Any]:
        scope: Dict[str, Any] = {
            "group": cls.group,
            "version": cls.version,
            "plural": cls.plural,
        }
        if cls.namespaced:
            if not namespace:
                raise ValueError("Namespace is required for namespaced resources")
            scope["namespace"] = namespace
        elif namespace:
            raise ValueError("Cluster-scoped resources must not receive a namespace")
        return scope

    # -- API calls --------------------------------------------------------

    @classmethod
    def get(
        cls: Type[T],
        name: str,
        *,
        namespace: Optional[str] = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> T:
        api_instance = api or _get_k8s_api()
        scope = cls._scope(namespace)
        if cls.namespaced:
            data = api_instance.get_namespaced_custom_object(name=name, **scope)
        else:
            data = api_instance.get_cluster_custom_object(name=name, **scope)
        return cls.from_object(data, api=api_instance)

    @classmethod
    def list(
        cls: Type[T],
        namespace: Optional[str] = None,
        *,
        label_selector: Optional[str] = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> List[T]:
        """Lists resources, optionally filtered by a label selector."""
        api_instance = api or _get_k8s_api()
        scope = cls._scope(namespace)
        if label_selector:
            scope["label_selector"] = label_selector
        if cls.namespaced:
            result = api_instance.list_namespaced_custom_object(**scope)
        else:
            result = api_instance.list_cluster_custom_object(**scope)
        return [cls.from_object(item, api=api_instance) for item in result.get("items", [])]

    def create(self: T) -> T:
        """
        Creates this resource in the cluster and reloads it from the
        response, which picks up generated names, uid and resourceVersion.
        """
        scope = self._scope(self.metadata.namespace)
        if self.namespaced:
            created = self.api.create_namespaced_custom_object(body=self.to_dict(), **scope)
        else:
            created = self.api.create_cluster_custom_object(body=self.to_dict(), **scope)
        self._reload(created)
        return self

    def update(self: T) -> T:
        """
        Replaces the resource with the current object's state.

        The stored resourceVersion is sent along, so a concurrent writer
        causes the API server to reject the call with a 409 conflict.
        """
        scope = self._scope(self.metadata.namespace)
        if self.namespaced:
            updated = self.api.replace_namespaced_custom_object(
                name=self.metadata.name, body=self.to_dict(), **scope
            )
        else:
            updated = self.api.replace_cluster_custom_object(
                name=self.metadata.name, body=self.to_dict(), **scope
            )
        self._reload(updated)
        return self

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{self.group}/{self.version}",
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
        }
        body.update(self.body_to_dict())
        return body
