"""Actions and transactions: several writes, one notification pass.

Every Store.set() is already batched on its own. Wrapping a group of
writes in an action or `with transaction(store)` extends that batch, so
dependents recompute and listeners fire once, after the last write.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, ParamSpec, TypeVar

if TYPE_CHECKING:
    from atomstore.store import Store

P = ParamSpec("P")
R = TypeVar("R")


def action(store: Store) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator: batch all writes fn makes to store.

    Usage:
        @action(store)
        def swap():
            a, b = store.get(left), store.get(right)
            store.set(left, b)
            store.set(right, a)
            # subscribers see both changes at once, not one at a time
    """

    def decorate(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with store._batching():
                return fn(*args, **kwargs)

        return wrapper

    return decorate


@contextmanager
def transaction(store: Store):
    """Context manager for batching writes.

    Usage:
        with transaction(store):
            store.set(a, 1)
            store.set(b, 2)
            # listeners fire here, after both are set
    """
    with store._batching():
        yield store
