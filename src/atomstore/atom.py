"""Atom definitions: immutable descriptors of settable or derived cells.

An Atom holds no value. It describes how a value is produced (an initial
value, or a read function over other atoms) and how it is updated. Values
live in a Store, so one definition can be shared by any number of stores.

Identity is an explicit integer handle: two atoms with the same logic are
still two different atoms.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, TypeVar

from atomstore import _anchor

T = TypeVar("T")

Getter = Callable[["Atom"], Any]
ReadFn = Callable[[Getter], T]
WriteFn = Callable[..., Any]
OnMount = Callable[[Callable[..., Any]], "Callable[[], None] | None"]


class Atom(Generic[T]):
    """A reactive cell definition. Use the factory functions to create one."""

    __slots__ = ("key", "init", "read", "write", "on_mount", "label", "_has_init", "__weakref__")

    def __init__(
        self,
        *,
        init: Any = _anchor.UNSET,
        read: ReadFn | None = None,
        write: WriteFn | None = None,
        on_mount: OnMount | None = None,
        label: str | None = None,
    ) -> None:
        if read is None and init is _anchor.UNSET:
            raise TypeError("an atom needs an initial value or a read function")
        setter = object.__setattr__
        setter(self, "key", _anchor.new_key())
        setter(self, "_has_init", init is not _anchor.UNSET)
        setter(self, "init", None if init is _anchor.UNSET else init)
        setter(self, "read", read)
        setter(self, "write", write)
        setter(self, "on_mount", on_mount)
        setter(self, "label", label)

    @property
    def is_primitive(self) -> bool:
        """Primitive atoms hold a settable value instead of computing one."""
        return self.read is None

    @property
    def has_init(self) -> bool:
        return self._has_init

    @property
    def is_writable(self) -> bool:
        return self.write is not None or self.is_primitive

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __hash__(self) -> int:
        return hash(self.key)

    def __eq__(self, other: object) -> bool:
        return self is other

    def __repr__(self) -> str:
        name = self.label or f"atom{self.key}"
        if self.is_primitive:
            return f"Atom({name}, init={self.init!r})"
        return f"Atom({name}, derived)"


def primitive(
    init: T,
    *,
    on_mount: OnMount | None = None,
    label: str | None = None,
) -> Atom[T]:
    """A settable atom starting at init.

    Usage:
        count = primitive(0)
        store.set(count, 5)
        store.set(count, lambda prev: prev + 1)
    """
    return Atom(init=init, on_mount=on_mount, label=label)


def read_only(
    read: ReadFn[T],
    *,
    on_mount: OnMount | None = None,
    label: str | None = None,
) -> Atom[T]:
    """A derived atom computed from other atoms. Works as a decorator.

    Usage:
        @read_only
        def doubled(get):
            return get(count) * 2
    """
    return Atom(read=read, on_mount=on_mount, label=label or _name_of(read))


def writable(
    read: ReadFn[T],
    write: WriteFn,
    *,
    on_mount: OnMount | None = None,
    label: str | None = None,
) -> Atom[T]:
    """A derived atom with a custom write(get, set, *args)."""
    return Atom(read=read, write=write, on_mount=on_mount, label=label or _name_of(read))


def write_only(
    write: WriteFn,
    *,
    on_mount: OnMount | None = None,
    label: str | None = None,
) -> Atom[None]:
    """An action atom. Reading it yields None; writing runs write(get, set, *args)."""
    return Atom(init=None, write=write, on_mount=on_mount, label=label or _name_of(write))


def atom(
    init_or_read: Any,
    write: WriteFn | None = None,
    *,
    on_mount: OnMount | None = None,
    label: str | None = None,
) -> Atom:
    """Generic constructor: a callable first argument makes a derived atom.

    atom(0)                   primitive
    atom(read)                read-only derived
    atom(read, write)         writable derived
    atom(value, write)        primitive with a custom write
    """
    if callable(init_or_read):
        return Atom(read=init_or_read, write=write, on_mount=on_mount,
                    label=label or _name_of(init_or_read))
    return Atom(init=init_or_read, write=write, on_mount=on_mount, label=label)


def _name_of(fn: Callable) -> str | None:
    name = getattr(fn, "__name__", None)
    return None if name == "<lambda>" else name
