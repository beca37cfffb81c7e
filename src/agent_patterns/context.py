"""
Context and StepResult - the data threaded through every workflow.

Context is an immutable, append-only mapping. Each component receives one
and hands back a new one; nothing mutates a Context in place, so handing the
same instance to two readers is safe. Concurrent branches still receive
fork()ed deep copies so that mutable values stored inside cannot leak
between siblings.
"""

import copy
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from .errors import ContextConflictError, FailureKind

_MISSING = object()


class Context(Mapping[str, Any]):
    """
    Append-only key/value structure.

    - set(): adds a new key, refuses to overwrite
    - append(): extends a tuple-valued key (the way step outputs accumulate)
    - merge(): unions two contexts, refusing conflicting values
    - fork(): deep copy for handing to a concurrent branch
    """

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping[str, Any]] = None, **values: Any):
        merged = dict(data or {})
        merged.update(values)
        self._data = MappingProxyType(merged)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Context({dict(self._data)!r})"

    def set(self, key: str, value: Any) -> "Context":
        """Return a new Context with `key` added."""
        if key in self._data:
            raise ContextConflictError(key)
        data = dict(self._data)
        data[key] = value
        return Context(data)

    def append(self, key: str, item: Any) -> "Context":
        """Return a new Context with `item` appended to the sequence at `key`."""
        current = self._data.get(key, ())
        if not isinstance(current, tuple):
            raise ContextConflictError(key)
        data = dict(self._data)
        data[key] = current + (item,)
        return Context(data)

    def extend(self, key: str, items) -> "Context":
        result = self
        for item in items:
            result = result.append(key, item)
        return result

    def merge(self, other: Mapping[str, Any]) -> "Context":
        """Union with `other`; shared keys must hold equal values."""
        data = dict(self._data)
        for key, value in other.items():
            if key in data and data[key] != value:
                raise ContextConflictError(key)
            data[key] = value
        return Context(data)

    def latest(self, key: str, default: Any = None) -> Any:
        """Last item of a sequence key, or `default` when absent or empty."""
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            return default
        if isinstance(value, tuple):
            return value[-1] if value else default
        return value

    def fork(self) -> "Context":
        """Independent deep copy for a concurrent branch."""
        return Context(copy.deepcopy(dict(self._data)))

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


@dataclass(frozen=True)
class StepResult:
    """
    Output of one workflow invocation.

    `failure` is None on success. Failed results may still carry a payload
    (the best-available partial artifact on bound exhaustion).
    """
    payload: Any = None
    failure: Optional[FailureKind] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    context: Context = field(default_factory=Context)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(
        cls,
        payload: Any = None,
        context: Optional[Context] = None,
        **metadata: Any
    ) -> "StepResult":
        return cls(payload=payload, context=context or Context(), metadata=metadata)

    @classmethod
    def failed(
        cls,
        failure: FailureKind,
        reason: Optional[str] = None,
        payload: Any = None,
        context: Optional[Context] = None,
        **metadata: Any
    ) -> "StepResult":
        return cls(
            payload=payload,
            failure=failure,
            reason=reason,
            context=context or Context(),
            metadata=metadata
        )

    def with_context(self, context: Context) -> "StepResult":
        return replace(self, context=context)

    def with_metadata(self, **metadata: Any) -> "StepResult":
        merged = dict(self.metadata)
        merged.update(metadata)
        return replace(self, metadata=merged)

    def to_dict(self) -> Dict[str, Any]:
        """Summary dict for logging and persistence by the caller."""
        return {
            "ok": self.ok,
            "failure": self.failure.value if self.failure else None,
            "reason": self.reason,
            "payload": self.payload,
            "metadata": dict(self.metadata),
        }
