"""Exceptions raised by the store."""

from __future__ import annotations


class AtomStoreError(Exception):
    """Base class for store errors."""


class CycleError(AtomStoreError):
    """An atom's evaluation read itself, directly or through other atoms."""

    def __init__(self, path) -> None:
        self.path = tuple(path)
        chain = " -> ".join(repr(a) for a in self.path)
        super().__init__(f"Circular dependency: {chain}")


class NotWritableError(AtomStoreError, TypeError):
    """Write attempted on an atom that has no write function."""

    def __init__(self, atom) -> None:
        self.atom = atom
        super().__init__(f"{atom!r} is not writable")
