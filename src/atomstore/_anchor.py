"""Data anchor: plain Python structures holding per-store atom state.

Atom definitions are immutable and shared; everything that changes lives
in these records, owned by exactly one Store.
"""

from __future__ import annotations

import itertools
import weakref
from typing import Callable

# Marks an absent value. Distinct from None, which is a legal atom value.
UNSET = object()

# Handle generation: itertools.count is thread-safe (C-level GIL atomic)
_key_counter = itertools.count(1)


def new_key() -> int:
    return next(_key_counter)


class Mounted:
    """Mount bookkeeping for an observed atom."""

    __slots__ = ("listeners", "unmount")

    def __init__(self) -> None:
        self.listeners: set[Callable[[], None]] = set()
        self.unmount: Callable[[], None] | None = None


class AtomState:
    """Mutable record for one atom in one store."""

    __slots__ = ("value", "version", "dependencies", "dependents", "stale", "checked", "token", "mounted")

    def __init__(self) -> None:
        self.value: object = UNSET
        self.version: int = 0
        self.dependencies: dict = {}  # atom -> version seen at last evaluation
        self.dependents: weakref.WeakSet = weakref.WeakSet()
        self.stale: bool = False
        self.checked: int = -1  # store epoch at which the cached value was known fresh
        self.token: object | None = None  # current async evaluation
        self.mounted: Mounted | None = None

    @property
    def has_value(self) -> bool:
        return self.value is not UNSET

    def __repr__(self) -> str:
        val = "unset" if self.value is UNSET else repr(self.value)
        state = "mounted" if self.mounted is not None else "unmounted"
        return f"AtomState({val}, v{self.version}, {state})"
