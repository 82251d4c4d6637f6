"""Base classes for provider adapters.

A provider adapter is the only boundary between the engine and a real
resource API. The engine asks it what to do (diff), validates inputs
(check), and performs the operation (create, update, delete). Any call may
raise ProviderError; retryable errors are retried by the engine.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from ..exceptions import ProviderError
from ..state import to_plain

if TYPE_CHECKING:
    from ..resource import ResourceSpec
    from ..state import ResourceState


class OperationKind(str, Enum):
    """Operation the engine applies to converge one resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "noop"


def changed_keys(desired: Mapping[str, Any], last_known: Mapping[str, Any]) -> List[str]:
    """Return the input keys whose values differ, sorted."""
    desired, last_known = to_plain(desired), to_plain(last_known)
    keys = set(desired) | set(last_known)
    return sorted(k for k in keys if desired.get(k) != last_known.get(k))


class Provider(ABC):
    """Abstract base class for provider adapters.

    Subclasses must implement create(), update() and delete(). diff() has a
    default implementation driven by replace_on_changes(); check() and read()
    default to accepting everything and reporting nothing.
    """

    def replace_on_changes(self, resource_type: str) -> Iterable[str]:
        """Input keys whose change forces the resource to be replaced."""
        return ()

    def diff(
        self, desired: "ResourceSpec", last_known: Optional["ResourceState"]
    ) -> OperationKind:
        """Decide the operation that moves last_known to desired.

        Args:
            desired: Spec with fully resolved inputs
            last_known: Recorded state, or None if never created

        Returns:
            CREATE, UPDATE, REPLACE or NOOP
        """
        if last_known is None:
            return OperationKind.CREATE
        changes = changed_keys(desired.inputs, last_known.inputs)
        if not changes:
            return OperationKind.NOOP
        if set(changes) & set(self.replace_on_changes(desired.type)):
            return OperationKind.REPLACE
        return OperationKind.UPDATE

    def check(self, spec: "ResourceSpec") -> List[str]:
        """Validate inputs before any operation.

        Returns:
            List of failure messages (empty if the inputs are valid)
        """
        return []

    @abstractmethod
    def create(self, spec: "ResourceSpec") -> Dict[str, Any]:
        """Create the resource and return its outputs.

        The ``id`` output, if present, becomes the resource id.
        """
        pass

    @abstractmethod
    def update(
        self,
        resource_id: str,
        spec: "ResourceSpec",
        last_known: "ResourceState",
    ) -> Dict[str, Any]:
        """Update an existing resource in place and return its outputs."""
        pass

    @abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete an existing resource."""
        pass

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        """Read the live outputs of a resource, or None if it no longer exists."""
        return None


class ProviderRegistry(Provider):
    """Routes calls to the provider registered for each resource type.

    Registrations are either exact type tokens ("aws:s3/bucket:Bucket") or
    package prefixes ending with a colon ("aws:"). The longest match wins.

    Example:
        >>> registry = ProviderRegistry()
        >>> registry.register("storage:", storage_provider)
        >>> registry.register("pkg:index:Package", package_provider)
    """

    def __init__(self, providers: Optional[Mapping[str, Provider]] = None):
        self._providers: Dict[str, Provider] = dict(providers or {})

    def register(self, type_or_prefix: str, provider: Provider) -> None:
        self._providers[type_or_prefix] = provider

    def provider_for(self, resource_type: str) -> Provider:
        """Return the provider responsible for a resource type.

        Raises:
            ProviderError: If no provider handles the type (not retryable)
        """
        if resource_type in self._providers:
            return self._providers[resource_type]
        prefixes = [
            p for p in self._providers if p.endswith(":") and resource_type.startswith(p)
        ]
        if not prefixes:
            raise ProviderError(
                f"No provider registered for resource type '{resource_type}'",
                retryable=False,
            )
        return self._providers[max(prefixes, key=len)]

    def replace_on_changes(self, resource_type: str) -> Iterable[str]:
        return self.provider_for(resource_type).replace_on_changes(resource_type)

    def diff(
        self, desired: "ResourceSpec", last_known: Optional["ResourceState"]
    ) -> OperationKind:
        return self.provider_for(desired.type).diff(desired, last_known)

    def check(self, spec: "ResourceSpec") -> List[str]:
        return self.provider_for(spec.type).check(spec)

    def create(self, spec: "ResourceSpec") -> Dict[str, Any]:
        return self.provider_for(spec.type).create(spec)

    def update(
        self,
        resource_id: str,
        spec: "ResourceSpec",
        last_known: "ResourceState",
    ) -> Dict[str, Any]:
        return self.provider_for(spec.type).update(resource_id, spec, last_known)

    def delete(self, resource_type: str, resource_id: str) -> None:
        self.provider_for(resource_type).delete(resource_type, resource_id)

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        return self.provider_for(resource_type).read(resource_type, resource_id)
