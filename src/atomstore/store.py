"""Store: owns the values and the dependency graph of a set of atoms.

Reads are pull-based: a derived atom recomputes only when one of the
versions it recorded at its last evaluation has moved. Writes are
push-based for observed atoms: every mounted dependent of a changed atom is
marked stale right away, then recomputed in dependency order and its
listeners notified once the outermost write returns.

Atom state records are keyed weakly by the atom definition, so dropping
the last reference to an atom releases its record in every store.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
import weakref
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, TypeVar

from atomstore._anchor import UNSET, AtomState, Mounted
from atomstore._tracking import Batch
from atomstore.atom import Atom
from atomstore.errors import CycleError, NotWritableError

logger = logging.getLogger("atomstore.store")

T = TypeVar("T")

Listener = Callable[[], None]


def default_equals(old: object, new: object) -> bool:
    """Identity, then ==. Comparisons that raise count as a change."""
    if old is new:
        return True
    try:
        return bool(old == new)
    except (TypeError, ValueError):
        # e.g. arrays whose == has no single truth value
        return False


class Store:
    """Container for atom values, dependency edges and subscriptions.

    Usage:
        count = primitive(1)
        doubled = read_only(lambda get: get(count) * 2)

        store = Store()
        unsubscribe = store.subscribe(doubled, lambda: print(store.get(doubled)))
        store.set(count, 5)  # prints 10
        unsubscribe()

    Thread safety: a store is single-threaded. Pass scheduler= (for example
    loop.call_soon_threadsafe or app.call_from_thread) and set() calls from
    other threads are marshaled to the thread that created the store.

    Depth: cached chains of any length are revalidated and propagated
    without recursion. The first evaluation of an atom recurses through its
    read function, so a never-read chain is limited by the recursion limit.
    """

    def __init__(
        self,
        initial_values: Iterable[tuple[Atom, Any]] | None = None,
        *,
        equals: Callable[[Any, Any], bool] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        scheduler: Callable[[Callable[[], None]], Any] | None = None,
    ) -> None:
        self.equals = equals or default_equals
        self._loop = loop
        self._scheduler = scheduler
        self._owner_thread = threading.current_thread()
        self._states: weakref.WeakKeyDictionary[Atom, AtomState] = weakref.WeakKeyDictionary()
        self._batch = Batch()
        self._evaluating: list[Atom] = []
        # Bumped with every version change anywhere in the store.
        self._epoch = 0
        if initial_values:
            self._hydrate(initial_values)

    # ─── Public API ──────────────────────────────────────────────────────

    def get(self, atom: Atom[T]) -> T:
        """Current value of atom. A pending async computation returns its Future."""
        with self._batching():
            return self._read_state(atom).value

    def set(self, atom: Atom, *args: Any) -> Any:
        """Write to atom. Returns whatever the atom's write function returns."""
        if self._scheduler is not None and threading.current_thread() is not self._owner_thread:
            self._scheduler(functools.partial(self._set_direct, atom, *args))
            return None
        return self._set_direct(atom, *args)

    def subscribe(self, atom: Atom, listener: Listener) -> Callable[[], None]:
        """Call listener() after each change of atom. Returns an unsubscribe function.

        The listener is not called for the current value.
        """
        with self._batching():
            self._mount(atom).listeners.add(listener)

        def _unsubscribe() -> None:
            with self._batching():
                state = self._states.get(atom)
                if state is None or state.mounted is None:
                    return
                state.mounted.listeners.discard(listener)
                self._unmount_if_unused(atom)

        return _unsubscribe

    def is_mounted(self, atom: Atom) -> bool:
        state = self._states.get(atom)
        return state is not None and state.mounted is not None

    def mounted_atoms(self) -> Iterator[Atom]:
        for atom, state in list(self._states.items()):
            if state.mounted is not None:
                yield atom

    def dependencies_of(self, atom: Atom) -> frozenset[Atom]:
        state = self._states.get(atom)
        return frozenset(state.dependencies) if state is not None else frozenset()

    def dependents_of(self, atom: Atom) -> frozenset[Atom]:
        state = self._states.get(atom)
        return frozenset(state.dependents) if state is not None else frozenset()

    # ─── Batching ────────────────────────────────────────────────────────

    @contextmanager
    def _batching(self) -> Iterator[Batch]:
        batch = self._batch
        batch.begin()
        try:
            try:
                yield batch
            except BaseException:
                if batch.is_outermost:
                    # The original error wins; listener errors are only logged.
                    for error in self._flush():
                        logger.warning("Listener failed while an error was propagating", exc_info=error)
                raise
            if batch.is_outermost:
                errors = self._flush()
                if errors:
                    raise errors[0]
        finally:
            batch.end()

    def _flush(self) -> list[BaseException]:
        """Recompute stale mounted atoms, then notify listeners and run hooks.

        Listeners and hooks may write again; the loop continues until the
        batch is empty. Returns the errors raised by listeners and hooks.
        """
        batch = self._batch
        errors: list[BaseException] = []
        while batch:
            notify: dict[Listener, None] = {}
            while batch.changed:
                changed = batch.take_changed()
                for atom in changed:
                    state = self._states.get(atom)
                    if state is not None and state.mounted is not None:
                        notify.update(dict.fromkeys(state.mounted.listeners))
                for atom in self._sorted_dependents(changed):
                    self._refresh(atom)
            for listener in notify:
                try:
                    listener()
                except Exception as exc:
                    errors.append(exc)
            for hook in batch.take_hooks():
                try:
                    hook()
                except Exception as exc:
                    errors.append(exc)
        return errors

    def _sorted_dependents(self, roots: list[Atom]) -> list[Atom]:
        """Mounted dependents of roots, each listed after all of its dependencies."""
        order: list[Atom] = []
        visited: set[Atom] = set()
        for root in roots:
            if root in visited:
                continue
            visited.add(root)
            stack = [(root, iter(self._mounted_dependents(root)))]
            while stack:
                atom, dependents = stack[-1]
                for dependent in dependents:
                    if dependent not in visited:
                        visited.add(dependent)
                        stack.append((dependent, iter(self._mounted_dependents(dependent))))
                        break
                else:
                    stack.pop()
                    order.append(atom)
        order.reverse()
        return order

    def _refresh(self, atom: Atom) -> None:
        state = self._states.get(atom)
        if state is None or state.mounted is None or not state.stale:
            return
        try:
            self._read_state(atom)
        except Exception:
            # Surfaces again on the next get(); listeners were told it changed.
            logger.debug("Evaluation of %r failed during propagation", atom, exc_info=True)

    # ─── Read / evaluation engine ────────────────────────────────────────

    def _state(self, atom: Atom) -> AtomState:
        state = self._states.get(atom)
        if state is None:
            state = self._states[atom] = AtomState()
        return state

    def _read_state(self, atom: Atom) -> AtomState:
        if atom in self._evaluating:
            raise CycleError(self._evaluating[self._evaluating.index(atom):] + [atom])
        state = self._state(atom)
        if atom.is_primitive:
            if not state.has_value:
                state.value = atom.init
            return state
        if state.has_value:
            if self._is_fresh(state):
                return state
            epoch = self._epoch
            if self._dependencies_unchanged(state):
                state.stale = False
                if self._epoch == epoch:
                    state.checked = epoch
                return state
        self._evaluate(atom, state)
        return state

    def _is_fresh(self, state: AtomState) -> bool:
        if state.mounted is not None and not state.stale:
            return True
        return state.checked == self._epoch

    def _dependencies_unchanged(self, state: AtomState) -> bool:
        self._catch_up(state)
        for dep, version in state.dependencies.items():
            try:
                if self._read_state(dep).version != version:
                    return False
            except Exception:
                # Re-evaluating lets the read function see (or handle) the error.
                return False
        return True

    def _catch_up(self, state: AtomState) -> None:
        """Validate cached derived dependencies deepest first, without recursion.

        Afterwards every dependency check of state is a shallow one, however
        long the chain below it. Atoms without a cached value are left to
        their first evaluation.
        """
        seen: set[Atom] = set()
        stack: list[tuple[Atom | None, Iterator[Atom]]] = [(None, iter(list(state.dependencies)))]
        while stack:
            owner, dependencies = stack[-1]
            for dep in dependencies:
                dep_state = self._states.get(dep)
                if (
                    dep in seen
                    or dep.is_primitive
                    or dep_state is None
                    or not dep_state.has_value
                    or self._is_fresh(dep_state)
                ):
                    continue
                seen.add(dep)
                stack.append((dep, iter(list(dep_state.dependencies))))
                break
            else:
                stack.pop()
                if owner is not None and owner not in self._evaluating:
                    try:
                        self._read_state(owner)
                    except Exception:
                        return  # the caller reads it again and sees the error

    def _evaluate(self, atom: Atom, state: AtomState) -> None:
        """Run atom's read function, rebuilding its dependency set from scratch."""
        dependencies: dict[Atom, int] = {}
        touched: set[Atom] = set()  # every atom this evaluation reads, sync or late
        token = object()
        previous_token = state.token
        sync = True
        epoch = self._epoch

        def get(target: Atom) -> Any:
            if target is atom:
                if not atom.has_init:
                    raise CycleError([atom, atom])
                return state.value if state.has_value else atom.init
            if sync:
                try:
                    target_state = self._read_state(target)
                except Exception:
                    # Keep the edge so a later fix of target re-runs this atom.
                    dependencies[target] = self._state(target).version
                    raise
                dependencies[target] = target_state.version
                return target_state.value
            return self._late_get(atom, state, token, touched, target)

        self._evaluating.append(atom)
        state.token = token
        try:
            value = atom.read(get)
        except CycleError:
            state.token = previous_token
            raise
        except Exception:
            state.token = None
            self._replace_dependencies(atom, state, dependencies)
            self._clear_value(atom, state)
            raise
        finally:
            self._evaluating.pop()
            sync = False

        if inspect.isawaitable(value):
            touched.update(dependencies)
            value = self._attach(atom, token, touched, value)
            # Previous edges stay until the result settles; the coroutine has
            # not run yet and will usually read them again.
            for dep in state.dependencies.keys() - dependencies.keys():
                dependencies[dep] = self._state(dep).version
        else:
            state.token = None
        self._replace_dependencies(atom, state, dependencies)
        state.stale = False
        changed = self._store_value(atom, state, value)
        if self._epoch == epoch + changed:
            state.checked = self._epoch

    def _late_get(
        self, atom: Atom, state: AtomState, token: object, touched: set, target: Atom
    ) -> Any:
        """get() called by a coroutine after its evaluation returned."""
        with self._batching():
            target_state = self._read_state(target)
            if state.token is token:
                touched.add(target)
                state.dependencies[target] = target_state.version
                target_state.dependents.add(atom)
                if state.mounted is not None:
                    self._mount(target)
            return target_state.value

    def _replace_dependencies(self, atom: Atom, state: AtomState, dependencies: dict) -> None:
        previous = state.dependencies
        state.dependencies = dependencies
        for dep in previous.keys() - dependencies.keys():
            self._state(dep).dependents.discard(atom)
        for dep in dependencies:
            self._state(dep).dependents.add(atom)
        if state.mounted is not None:
            for dep in dependencies.keys() - previous.keys():
                self._mount(dep)
            for dep in previous.keys() - dependencies.keys():
                self._unmount_if_unused(dep)

    def _attach(self, atom: Atom, token: object, touched: set, awaitable: Any) -> asyncio.Future:
        """Schedule an async result; its settlement commits only if token is still current."""
        if isinstance(awaitable, asyncio.Future):
            future = awaitable
        else:
            # Coroutines need a loop: the configured one or the running one.
            future = asyncio.ensure_future(awaitable, loop=self._loop or asyncio.get_running_loop())
        future.add_done_callback(functools.partial(self._settle, atom, token, touched))
        return future

    def _settle(self, atom: Atom, token: object, touched: set, future: asyncio.Future) -> None:
        state = self._states.get(atom)
        if state is None or state.token is not token:
            logger.debug("Dropping superseded result for %r", atom)
            if not future.cancelled():
                future.exception()  # mark retrieved
            return
        state.token = None
        with self._batching():
            # Edges carried over from the previous evaluation but never read.
            kept = {dep: v for dep, v in state.dependencies.items() if dep in touched}
            if len(kept) != len(state.dependencies):
                self._replace_dependencies(atom, state, kept)
            if future.cancelled() or future.exception() is not None:
                # Keep the settled future: awaiting it re-raises for readers.
                self._bump(state)
                self._mark_changed(atom, state)
            else:
                self._store_value(atom, state, future.result())

    # ─── Write / commit engine ───────────────────────────────────────────

    def _set_direct(self, atom: Atom, *args: Any) -> Any:
        with self._batching():
            return self._write(atom, *args)

    def _write(self, atom: Atom, *args: Any) -> Any:
        if not atom.is_writable:
            raise NotWritableError(atom)
        if atom.write is None:
            if len(args) != 1:
                raise TypeError(f"{atom!r} takes exactly one update, got {len(args)}")
            update = args[0]
            if callable(update):
                update = update(self._read_state(atom).value)
            self._set_value(atom, update)
            return None

        # Both may run after an await, once the batch of set() has closed.
        def get(target: Atom) -> Any:
            with self._batching():
                return self._read_state(target).value

        def set_(target: Atom, *target_args: Any) -> Any:
            with self._batching():
                if target is atom:
                    if not atom.is_primitive:
                        raise NotWritableError(atom)
                    if len(target_args) != 1:
                        raise TypeError(f"{atom!r} takes exactly one value, got {len(target_args)}")
                    self._set_value(atom, target_args[0])
                    return None
                return self._write(target, *target_args)

        return atom.write(get, set_, *args)

    def _set_value(self, atom: Atom, value: Any) -> None:
        self._store_value(atom, self._read_state(atom), value)

    def _store_value(self, atom: Atom, state: AtomState, value: Any) -> bool:
        if state.has_value and self.equals(state.value, value):
            return False
        state.value = value
        self._bump(state)
        self._mark_changed(atom, state)
        return True

    def _clear_value(self, atom: Atom, state: AtomState) -> None:
        if state.has_value:
            state.value = UNSET
            self._bump(state)
            self._mark_changed(atom, state)

    def _bump(self, state: AtomState) -> None:
        state.version += 1
        self._epoch += 1

    def _mark_changed(self, atom: Atom, state: AtomState) -> None:
        """Queue atom for notification and mark its mounted dependents stale, breadth-first."""
        if state.mounted is None:
            return
        self._batch.changed[atom] = None
        queue = deque([atom])
        seen = {atom}
        while queue:
            for dependent in self._mounted_dependents(queue.popleft()):
                if dependent not in seen:
                    seen.add(dependent)
                    self._states[dependent].stale = True
                    queue.append(dependent)

    def _hydrate(self, initial_values: Iterable[tuple[Atom, Any]]) -> None:
        with self._batching():
            for atom, value in initial_values:
                if atom.is_primitive:
                    state = self._state(atom)
                    state.value = value
                else:
                    self._write(atom, value)

    # ─── Mount / unmount lifecycle ───────────────────────────────────────

    def _mounted_dependents(self, atom: Atom) -> list[Atom]:
        state = self._states.get(atom)
        if state is None:
            return []
        return [d for d in list(state.dependents) if self.is_mounted(d)]

    def _mount(self, atom: Atom) -> Mounted:
        """Mount atom and, depth first, every dependency not yet mounted."""
        state = self._state(atom)
        if state.mounted is not None:
            return state.mounted
        mounted = self._mount_one(atom, state)
        reached = [(atom, mounted)]
        stack = list(reversed(list(state.dependencies)))
        while stack:
            dep = stack.pop()
            dep_state = self._state(dep)
            if dep_state.mounted is None:
                reached.append((dep, self._mount_one(dep, dep_state)))
                stack.extend(reversed(list(dep_state.dependencies)))
        # on_mount hooks of dependencies run before those of their dependents.
        for reached_atom, reached_mounted in reversed(reached):
            if reached_atom.on_mount is not None:
                self._batch.mount_hooks.append(
                    functools.partial(self._run_on_mount, reached_atom, reached_mounted)
                )
        return mounted

    def _mount_one(self, atom: Atom, state: AtomState) -> Mounted:
        try:
            self._read_state(atom)
        except Exception:
            # Raised again to whoever reads the atom; mount what was reached.
            logger.debug("Evaluation of %r failed while mounting", atom, exc_info=True)
        mounted = state.mounted = Mounted()
        logger.debug("Mounted %r", atom)
        return mounted

    def _run_on_mount(self, atom: Atom, mounted: Mounted) -> None:
        state = self._states.get(atom)
        if state is None or state.mounted is not mounted:
            return  # unmounted before the hook ran

        def set_self(*args: Any) -> Any:
            return self.set(atom, *args)

        on_unmount = atom.on_mount(set_self)
        if callable(on_unmount):
            mounted.unmount = on_unmount

    def _unmount_if_unused(self, atom: Atom) -> None:
        """Unmount atom if nothing observes it, cascading to its dependencies."""
        stack = [atom]
        while stack:
            atom = stack.pop()
            state = self._states.get(atom)
            if state is None or state.mounted is None:
                continue
            mounted = state.mounted
            if mounted.listeners or self._mounted_dependents(atom):
                continue
            state.mounted = None
            logger.debug("Unmounted %r", atom)
            if mounted.unmount is not None:
                self._batch.unmount_hooks.append(mounted.unmount)
            dependencies = list(state.dependencies)
            if not atom.is_primitive:
                self._evict(atom, state)
            stack.extend(reversed(dependencies))

    def _evict(self, atom: Atom, state: AtomState) -> None:
        """Drop a derived atom's cache and edges. Its version keeps counting."""
        for dep in state.dependencies:
            self._state(dep).dependents.discard(atom)
        state.dependencies = {}
        state.value = UNSET
        state.token = None
        state.stale = False

    def __repr__(self) -> str:
        mounted = sum(1 for _ in self.mounted_atoms())
        return f"Store({len(self._states)} atoms, {mounted} mounted)"


def create_store(
    initial_values: Iterable[tuple[Atom, Any]] | None = None,
    *,
    equals: Callable[[Any, Any], bool] | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
    scheduler: Callable[[Callable[[], None]], Any] | None = None,
) -> Store:
    """Factory for a new, independent Store."""
    return Store(initial_values, equals=equals, loop=loop, scheduler=scheduler)
