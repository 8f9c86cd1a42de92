"""Reactions: side effects driven by an atom's value.

subscribe() only says "something changed". A Reaction reads the new value
and calls effect_fn with it, skipping values equal to the last one seen
under the store's equality policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, TypeVar

if TYPE_CHECKING:
    from atomstore.atom import Atom
    from atomstore.store import Store

T = TypeVar("T")


class Reaction:
    """A subscription that forwards changed values to effect_fn."""

    __slots__ = ("_store", "_atom", "_effect_fn", "_last_value", "_initialized", "_unsubscribe", "_disposed")

    def __init__(self, store: Store, atom: Atom[T], effect_fn: Callable[[T], None]) -> None:
        self._store = store
        self._atom = atom
        self._effect_fn = effect_fn
        self._last_value = None
        self._initialized = False
        self._unsubscribe: Callable[[], None] | None = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _run(self) -> None:
        if self._disposed:
            return
        new_value = self._store.get(self._atom)
        if not self._initialized or not self._store.equals(self._last_value, new_value):
            self._last_value = new_value
            self._initialized = True
            self._effect_fn(new_value)

    def dispose(self) -> None:
        """Stop this reaction. Unmounts the atom if nothing else observes it."""
        self._disposed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Reaction({self._atom!r}, {state})"


def reaction(
    store: Store,
    atom: Atom[T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> Reaction:
    """Call effect_fn(value) whenever atom's value changes in store.

    Returns the reaction (call .dispose() to stop).

    Usage:
        name = primitive("Alice")
        effects = []
        r = reaction(store, name, effects.append)
        # effects == [], current value is recorded, effect doesn't fire yet

        store.set(name, "Bob")
        # effects == ["Bob"]

        r.dispose()
    """
    r = Reaction(store, atom, effect_fn)
    if fire_immediately:
        r._run()
    else:
        r._last_value = store.get(atom)
        r._initialized = True
    r._unsubscribe = store.subscribe(atom, r._run)
    return r
