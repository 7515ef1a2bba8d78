"""
The submission state store.

Slots are indexed by submission number. The store only grows: capacity is
doubled on demand, slots are written once and never moved or reused.
"""
import builtins
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from snip.snip_datatypes import StateError, NO_VALUE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionSlot:
    """What one submission left behind after it ran."""
    index: int
    declarations: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    value: Any = NO_VALUE
    faulted: bool = False

    @property
    def has_value(self) -> bool:
        return self.value is not NO_VALUE


class SubmissionState:
    """Arena of per-submission slots plus the namespace submissions execute in."""

    def __init__(self, initial_capacity: int = 2, namespace: Optional[Dict[str, Any]] = None):
        if initial_capacity < 1:
            raise StateError("initial_capacity must be >= 1")
        self._slots: List[Optional[SubmissionSlot]] = [None] * initial_capacity
        self._written = 0
        if namespace is None:
            namespace = {"__name__": "__snip__", "__builtins__": builtins}
        self.namespace = namespace

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def ensure_capacity(self, size: int):
        """Grows the store so that `size` slots exist."""
        if size <= len(self._slots):
            return
        new_size = max(size, len(self._slots) * 2)
        self._slots.extend([None] * (new_size - len(self._slots)))
        logger.debug(f"Submission state grown to {new_size} slots")

    def record(self, index: int, declarations: Mapping[str, Any], value: Any = NO_VALUE,
               faulted: bool = False) -> SubmissionSlot:
        if index < 0 or index >= len(self._slots):
            raise StateError(f"slot {index} is beyond capacity {len(self._slots)}")
        if self._slots[index] is not None:
            raise StateError(f"slot {index} has already been written")
        slot = SubmissionSlot(index, MappingProxyType(dict(declarations)), value, faulted)
        self._slots[index] = slot
        self._written += 1
        return slot

    def bindings_of(self, names) -> Dict[str, Any]:
        """The current namespace values of `names`, skipping unbound ones."""
        return {n: self.namespace[n] for n in names if n in self.namespace}

    def latest_value(self) -> Any:
        for slot in reversed(self._slots):
            if slot is not None and slot.has_value:
                return slot.value
        return NO_VALUE

    def __getitem__(self, index: int) -> Optional[SubmissionSlot]:
        if index < 0:
            raise IndexError("submission indexes are non-negative")
        return self._slots[index]

    def __len__(self) -> int:
        return self._written

    def __iter__(self):
        return (s for s in self._slots if s is not None)

    def __repr__(self) -> str:
        return f"<SubmissionState written={self._written} capacity={len(self._slots)}>"
