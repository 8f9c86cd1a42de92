"""Utility atoms built only from the public atom constructors."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Generic, Hashable, NamedTuple, TypeVar

from atomstore.atom import Atom, Getter, primitive, writable
from atomstore.store import default_equals

T = TypeVar("T")
P = TypeVar("P")


class _Sentinel:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Write RESET to an atom_with_reset / atom_with_default to restore its default.
RESET = _Sentinel("RESET")

# No value yet. Doubles as the init of self-reading atoms.
_EMPTY = _Sentinel("EMPTY")


def atom_with_reset(initial: T, *, label: str | None = None) -> Atom[T]:
    """A primitive atom that goes back to initial when written RESET."""

    def write(get, set_, update):
        if update is RESET:
            set_(this, initial)
        elif callable(update):
            set_(this, update(get(this)))
        else:
            set_(this, update)

    this = Atom(init=initial, write=write, label=label)
    return this


def atom_with_default(get_default: Callable[[Getter], T], *, label: str | None = None) -> Atom[T]:
    """A settable atom whose value follows get_default(get) until overwritten.

    Writing RESET drops the override and resumes following the default.
    """
    overwritten: Atom = primitive(_EMPTY)

    def read(get):
        value = get(overwritten)
        return get_default(get) if value is _EMPTY else value

    def write(get, set_, update):
        if update is RESET:
            set_(overwritten, _EMPTY)
        elif callable(update):
            set_(overwritten, update(get(this)))
        else:
            set_(overwritten, update)

    this = writable(read, write, label=label)
    return this


def select_atom(
    base: Atom,
    selector: Callable[[Any], T],
    equals: Callable[[T, T], bool] | None = None,
    *,
    label: str | None = None,
) -> Atom[T]:
    """Derived slice of base. Keeps the previous object while equals() says same.

    Usage:
        user = primitive({"name": "Ada", "age": 36})
        name = select_atom(user, lambda u: u["name"])
    """
    same = equals or default_equals

    def read(get):
        previous = get(this)
        selected = selector(get(base))
        if previous is not _EMPTY and same(previous, selected):
            return previous
        return selected

    this = Atom(read=read, init=_EMPTY, label=label)
    return this


class AtomFamily(Generic[P, T]):
    """Memoized atom per parameter. Params are dict keys unless are_equal is given."""

    def __init__(
        self,
        initializer: Callable[[P], Atom[T]],
        are_equal: Callable[[P, P], bool] | None = None,
    ) -> None:
        self._initializer = initializer
        self._are_equal = are_equal
        self._atoms: dict[Hashable, Atom[T]] = {}
        self._entries: list[tuple[P, Atom[T]]] = []

    def __call__(self, param: P) -> Atom[T]:
        if self._are_equal is None:
            found = self._atoms.get(param)
            if found is None:
                found = self._atoms[param] = self._initializer(param)
            return found
        for known, found in self._entries:
            if self._are_equal(known, param):
                return found
        found = self._initializer(param)
        self._entries.append((param, found))
        return found

    def remove(self, param: P) -> None:
        """Forget the atom for param. Stores drop its state once it is unreferenced."""
        if self._are_equal is None:
            self._atoms.pop(param, None)
        else:
            self._entries = [(k, a) for k, a in self._entries if not self._are_equal(k, param)]

    def params(self) -> list[P]:
        if self._are_equal is None:
            return list(self._atoms)
        return [k for k, _ in self._entries]


def atom_family(
    initializer: Callable[[P], Atom[T]],
    are_equal: Callable[[P, P], bool] | None = None,
) -> AtomFamily[P, T]:
    """Usage:
        todo = atom_family(lambda todo_id: primitive({"id": todo_id, "done": False}))
        todo(1) is todo(1)  # True
    """
    return AtomFamily(initializer, are_equal)


class Loadable(NamedTuple):
    """Snapshot of an async atom: state is "loading", "hasData" or "hasError"."""

    state: str
    data: Any = None
    error: BaseException | None = None


LOADING = Loadable("loading")


def loadable(base: Atom, *, label: str | None = None) -> Atom[Loadable]:
    """Wrap base so readers get a Loadable instead of a Future or an exception."""

    def read(get):
        try:
            value = get(base)
        except Exception as exc:
            return Loadable("hasError", error=exc)
        if isinstance(value, asyncio.Future):
            if not value.done():
                return LOADING
            if value.cancelled():
                return Loadable("hasError", error=asyncio.CancelledError())
            error = value.exception()
            if error is not None:
                return Loadable("hasError", error=error)
            return Loadable("hasData", data=value.result())
        return Loadable("hasData", data=value)

    return Atom(read=read, label=label)


def unwrap(
    base: Atom,
    fallback: Callable[[Any], T] = lambda previous: None,
    *,
    label: str | None = None,
) -> Atom:
    """Resolved value of base, or fallback(previous) while it is pending.

    A rejected computation raises its error to the reader.
    """

    def read(get):
        value = get(base)
        if isinstance(value, asyncio.Future):
            if not value.done():
                previous = get(this)
                return fallback(None if previous is _EMPTY else previous)
            return value.result()
        return value

    this = Atom(read=read, init=_EMPTY, label=label)
    return this


async def resolve(value: Any) -> Any:
    """Await value if it is pending, else return it.

    Usage inside an async read function:
        async def total(get):
            return await resolve(get(prices)) + await resolve(get(shipping))
    """
    if inspect.isawaitable(value):
        return await value
    return value
