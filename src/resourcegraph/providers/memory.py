"""In-memory provider for examples, previews and tests."""

import itertools
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..exceptions import ProviderError
from .base import Provider

ComputeFn = Callable[[str, Mapping[str, Any]], Dict[str, Any]]


class InMemoryProvider(Provider):
    """Provider that keeps resources in a dictionary.

    Outputs of a resource are its inputs, plus an ``id`` and whatever the
    per-type ``computed`` function adds (e.g. a generated bucket name).

    Attributes:
        resources: Live resources keyed by id, as (type, outputs)
        calls: Operations performed, as (operation, type, name or id)
    """

    def __init__(
        self,
        computed: Optional[Mapping[str, ComputeFn]] = None,
        replace_on: Optional[Mapping[str, Iterable[str]]] = None,
        required: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        """Initialize the provider.

        Args:
            computed: Per-type function (id, inputs) -> extra outputs
            replace_on: Per-type input keys that force replacement
            required: Per-type input keys that check() insists on
        """
        self.computed = dict(computed or {})
        self.replace_on = {t: tuple(keys) for t, keys in (replace_on or {}).items()}
        self.required = {t: tuple(keys) for t, keys in (required or {}).items()}
        self.resources: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def replace_on_changes(self, resource_type: str) -> Iterable[str]:
        return self.replace_on.get(resource_type, ())

    def check(self, spec) -> List[str]:
        return [
            f"missing required input '{key}'"
            for key in self.required.get(spec.type, ())
            if spec.inputs.get(key) is None
        ]

    def _outputs(self, resource_type: str, resource_id: str, inputs: Mapping[str, Any]) -> Dict[str, Any]:
        outputs = dict(inputs)
        compute = self.computed.get(resource_type)
        if compute is not None:
            outputs.update(compute(resource_id, inputs))
        outputs["id"] = resource_id
        return outputs

    def create(self, spec) -> Dict[str, Any]:
        with self._lock:
            resource_id = f"{spec.name}-{next(self._ids):04d}"
            outputs = self._outputs(spec.type, resource_id, spec.inputs)
            self.resources[resource_id] = (spec.type, outputs)
            self.calls.append(("create", spec.type, spec.name))
        return dict(outputs)

    def update(self, resource_id: str, spec, last_known) -> Dict[str, Any]:
        with self._lock:
            if resource_id not in self.resources:
                raise ProviderError(f"Resource '{resource_id}' does not exist")
            outputs = self._outputs(spec.type, resource_id, spec.inputs)
            self.resources[resource_id] = (spec.type, outputs)
            self.calls.append(("update", spec.type, spec.name))
        return dict(outputs)

    def delete(self, resource_type: str, resource_id: str) -> None:
        with self._lock:
            self.resources.pop(resource_id, None)
            self.calls.append(("delete", resource_type, resource_id))

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self.resources.get(resource_id)
            self.calls.append(("read", resource_type, resource_id))
        return dict(entry[1]) if entry is not None else None
