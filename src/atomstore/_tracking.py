"""Batching: the heart of glitch-free propagation.

Every store operation runs inside a batch. Value changes, mounts and
unmounts accumulate here and are flushed once when the outermost scope
exits, so listeners never observe intermediate states.
"""

from __future__ import annotations

from typing import Callable


class Batch:
    """Pending work for one store. Nested scopes share a single instance."""

    __slots__ = ("depth", "changed", "mount_hooks", "unmount_hooks")

    def __init__(self) -> None:
        self.depth = 0
        # Insertion-ordered set of atoms whose version advanced.
        self.changed: dict = {}
        self.mount_hooks: list[Callable[[], None]] = []
        self.unmount_hooks: list[Callable[[], None]] = []

    def begin(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self.depth += 1

    def end(self) -> None:
        self.depth -= 1

    @property
    def is_outermost(self) -> bool:
        return self.depth == 1

    def take_changed(self) -> list:
        # Snapshot and clear; recomputation may record new changes.
        changed = list(self.changed)
        self.changed.clear()
        return changed

    def take_hooks(self) -> list[Callable[[], None]]:
        """Unmount hooks first, then mount hooks, in queue order."""
        hooks = self.unmount_hooks + self.mount_hooks
        self.unmount_hooks = []
        self.mount_hooks = []
        return hooks

    def __bool__(self) -> bool:
        return bool(self.changed or self.mount_hooks or self.unmount_hooks)
