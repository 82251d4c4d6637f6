"""Deferred values for resource attributes.

This module provides the two halves of inter-resource data flow:

- Output: a write-once cell owned by a graph node, settled exactly once when
  the provider reports the resource's outputs (or fails).
- OutputRef: an immutable tagged reference ``(node_id, field_path)`` that
  declarations embed in their inputs. The graph builder scans inputs for
  these references to infer dependency edges, and the scheduler replaces
  them with concrete values before dispatch.

Example:
    >>> bucket = ResourceSpec("storage:Bucket", "site")
    >>> policy = ResourceSpec(
    ...     "storage:BucketPolicy",
    ...     "site-policy",
    ...     inputs={"bucket": bucket.output("bucket")},
    ... )
"""

import logging
import threading
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from .exceptions import AlreadyResolvedError, OutputTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


class _Unknown:
    """Placeholder for a value that will only be known after an update."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<unknown>"

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()


class Output(Generic[T]):
    """A deferred value cell that settles exactly once.

    Waiters registered with add_done_callback() run in FIFO order, outside the
    internal lock, on the thread that settles the cell. result() blocks the
    calling thread until the cell settles.

    Attributes:
        owner: Id of the node that produces this value (for messages)
    """

    def __init__(self, owner: str = ""):
        self.owner = owner
        self._condition = threading.Condition()
        self._resolved = False
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None
        self._waiters: List[Callable[["Output[T]"], None]] = []

    @classmethod
    def from_value(cls, value: T, owner: str = "") -> "Output[T]":
        """Create an already-resolved Output."""
        out: Output[T] = cls(owner)
        out.resolve(value)
        return out

    @classmethod
    def all(cls, outputs: Sequence["Output[Any]"], owner: str = "") -> "Output[List[Any]]":
        """Combine several Outputs into one that resolves with a list of values.

        The combined cell fails with the first error observed among the inputs.
        """
        combined: Output[List[Any]] = cls(owner)
        if not outputs:
            combined.resolve([])
            return combined

        lock = threading.Lock()
        remaining = [len(outputs)]

        def on_done(_: "Output[Any]") -> None:
            with lock:
                if combined.done:
                    return
                remaining[0] -= 1
                for out in outputs:
                    if out.done and out.error is not None:
                        combined.fail(out.error)
                        return
                if remaining[0] == 0:
                    combined.resolve([out.value for out in outputs])

        for out in outputs:
            out.add_done_callback(on_done)
        return combined

    @property
    def done(self) -> bool:
        """True once resolve() or fail() has been called."""
        with self._condition:
            return self._resolved or self._error is not None

    @property
    def resolved(self) -> bool:
        """True if the cell holds a value (as opposed to an error)."""
        with self._condition:
            return self._resolved

    @property
    def value(self) -> Optional[T]:
        with self._condition:
            return self._value

    @property
    def error(self) -> Optional[BaseException]:
        with self._condition:
            return self._error

    def resolve(self, value: T) -> None:
        """Settle the cell with a value and wake all waiters.

        Raises:
            AlreadyResolvedError: If the cell was already resolved or failed
        """
        with self._condition:
            self._check_unsettled("resolve")
            self._resolved = True
            self._value = value
            waiters = self._drain_waiters()
        self._notify(waiters)

    def fail(self, error: BaseException) -> None:
        """Settle the cell with an error and wake all waiters.

        Raises:
            AlreadyResolvedError: If the cell was already resolved or failed
        """
        with self._condition:
            self._check_unsettled("fail")
            self._error = error
            waiters = self._drain_waiters()
        self._notify(waiters)

    def add_done_callback(self, fn: Callable[["Output[T]"], None]) -> None:
        """Register a continuation, run immediately if already settled."""
        with self._condition:
            if not (self._resolved or self._error is not None):
                self._waiters.append(fn)
                return
        self._notify([fn])

    def result(self, timeout: Optional[float] = None) -> T:
        """Block until the cell settles and return its value.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            The resolved value

        Raises:
            OutputTimeoutError: If the cell did not settle in time
            BaseException: The error the cell failed with
        """
        with self._condition:
            settled = self._condition.wait_for(
                lambda: self._resolved or self._error is not None, timeout=timeout
            )
            if not settled:
                raise OutputTimeoutError(
                    f"Timed out after {timeout}s waiting for output of '{self.owner}'"
                )
            if self._error is not None:
                raise self._error
            return self._value  # type: ignore[return-value]

    def map(self, fn: Callable[[T], U]) -> "Output[U]":
        """Derive a new Output by applying fn once this one resolves.

        Failure of the source propagates without calling fn. If fn itself
        raises, the derived cell fails with that exception.
        """
        derived: Output[U] = Output(self.owner)

        def on_done(source: "Output[T]") -> None:
            if source.error is not None:
                derived.fail(source.error)
                return
            try:
                mapped = fn(source.value)  # type: ignore[arg-type]
            except Exception as e:
                derived.fail(e)
                return
            derived.resolve(mapped)

        self.add_done_callback(on_done)
        return derived

    def _check_unsettled(self, operation: str) -> None:
        if self._resolved or self._error is not None:
            state = "resolved" if self._resolved else "failed"
            raise AlreadyResolvedError(
                f"Cannot {operation} output of '{self.owner}': already {state}"
            )

    def _drain_waiters(self) -> List[Callable[["Output[T]"], None]]:
        self._condition.notify_all()
        waiters, self._waiters = self._waiters, []
        return waiters

    def _notify(self, waiters: List[Callable[["Output[T]"], None]]) -> None:
        for waiter in waiters:
            try:
                waiter(self)
            except Exception:
                logger.exception(f"Waiter on output of '{self.owner}' raised")

    def __repr__(self) -> str:
        with self._condition:
            if self._resolved:
                return f"Output({self.owner}, value={self._value!r})"
            if self._error is not None:
                return f"Output({self.owner}, error={self._error!r})"
            return f"Output({self.owner}, pending)"


@dataclass(frozen=True)
class OutputRef:
    """Reference to a field of another resource's future outputs.

    Attributes:
        node_id: URN of the resource that produces the value
        field_path: Keys (or list indices) walked into the output mapping
        transform: Optional function applied to the extracted value
    """

    node_id: str
    field_path: Tuple[Any, ...]
    transform: Optional[Callable[[Any], Any]] = None

    def apply(self, fn: Callable[[Any], Any]) -> "OutputRef":
        """Return a reference whose resolved value is fn(value)."""
        if self.transform is None:
            composed = fn
        else:
            inner = self.transform

            def composed(value: Any) -> Any:
                return fn(inner(value))

        return OutputRef(self.node_id, self.field_path, composed)

    def extract(self, outputs: Mapping[str, Any]) -> Any:
        """Pick this reference's value out of a resolved output mapping.

        Raises:
            KeyError: If the field path does not exist in the outputs
        """
        value: Any = outputs
        for key in self.field_path:
            try:
                value = value[key]
            except (KeyError, IndexError, TypeError):
                path = ".".join(str(k) for k in self.field_path)
                raise KeyError(f"Resource '{self.node_id}' has no output '{path}'") from None
        if self.transform is not None and value is not UNKNOWN:
            value = self.transform(value)
        return value

    @property
    def path(self) -> str:
        return ".".join(str(k) for k in self.field_path)

    def __repr__(self) -> str:
        suffix = ", transformed" if self.transform is not None else ""
        return f"OutputRef({self.node_id}.{self.path}{suffix})"


def iter_refs(value: Any) -> Iterator[OutputRef]:
    """Yield every OutputRef embedded in a nested input value."""
    if isinstance(value, OutputRef):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from iter_refs(item)


def substitute(value: Any, resolve: Callable[[OutputRef], Any]) -> Any:
    """Return a copy of a nested input value with every OutputRef replaced.

    Args:
        value: Literal or container possibly holding OutputRefs
        resolve: Called once per OutputRef, returns its concrete value
    """
    if isinstance(value, OutputRef):
        return resolve(value)
    if isinstance(value, Mapping):
        return {k: substitute(v, resolve) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, resolve) for v in value]
    if isinstance(value, tuple):
        return tuple(substitute(v, resolve) for v in value)
    if isinstance(value, (set, frozenset)):
        return type(value)(substitute(v, resolve) for v in value)
    return value


def contains_unknown(value: Any) -> bool:
    """True if a resolved input value still holds the UNKNOWN placeholder."""
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(contains_unknown(v) for v in value)
    return False
