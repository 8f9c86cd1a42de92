"""Textual integration for atomstore. Opt-in: pip install atomstore[textual].

An AppBridge owns the store of one Textual app and pushes atom values into
widgets. Effects are skipped while the app is not running or the bridge is
paused; on resume every binding whose atom changed in the meantime catches
up once with the latest value.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from textual.css.query import NoMatches

from atomstore._anchor import UNSET
from atomstore.atom import Atom
from atomstore.store import Store

logger = logging.getLogger("atomstore.textual")


class Binding:
    """Delivers an atom's value to effect_fn, at most once per distinct value."""

    __slots__ = ("_bridge", "atom", "_effect_fn", "_delivered", "_unsubscribe")

    def __init__(self, bridge: AppBridge, atom: Atom, effect_fn: Callable[[Any], None]) -> None:
        self._bridge = bridge
        self.atom = atom
        self._effect_fn = effect_fn
        self._delivered: Any = UNSET
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def disposed(self) -> bool:
        return self._unsubscribe is None

    def _changed(self) -> None:
        if threading.current_thread() is not self._bridge.owner_thread:
            self._bridge.app.call_from_thread(self.deliver)
        else:
            self.deliver()

    def deliver(self) -> None:
        """Push the current value unless the bridge is paused or it was already pushed."""
        if self.disposed or not self._bridge.ready:
            return
        store = self._bridge.store
        value = store.get(self.atom)
        if self._delivered is not UNSET and store.equals(self._delivered, value):
            return
        self._delivered = value
        try:
            self._effect_fn(value)
        except NoMatches:
            # Widget not mounted (yet); the next change tries again.
            logger.debug("No widget for %r", self.atom)
            self._delivered = UNSET

    def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            self._bridge._bindings.discard(self)

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"Binding({self.atom!r}, {state})"


class AppBridge:
    """One store per Textual app, with cross-thread writes routed through the app.

    Usage:
        class CounterApp(App):
            def on_mount(self):
                self.bridge = AppBridge(self)
                self.bridge.bind(count, "#counter")
    """

    def __init__(self, app, store: Store | None = None, **store_options: Any) -> None:
        self.app = app
        self.store = store if store is not None else Store(scheduler=app.call_from_thread, **store_options)
        self.owner_thread = threading.current_thread()
        self._bindings: set[Binding] = set()
        self._paused = 0

    @property
    def ready(self) -> bool:
        """Is the widget tree in a queryable state?"""
        return bool(self.app.is_running) and not self._paused

    @contextmanager
    def pause(self) -> Iterator[None]:
        """Suspend deliveries, e.g. during widget replacement. Nests."""
        self._paused += 1
        try:
            yield
        finally:
            self._paused -= 1
        if not self._paused:
            self.refresh()

    def refresh(self) -> None:
        """Deliver every binding whose value moved since it was last pushed."""
        for binding in list(self._bindings):
            binding.deliver()

    def watch(self, atom: Atom, effect_fn: Callable[[Any], None], *, fire_immediately: bool = False) -> Binding:
        """Call effect_fn(value) on the app thread whenever atom's value changes."""
        binding = Binding(self, atom, effect_fn)
        if not fire_immediately:
            binding._delivered = self.store.get(atom)
        binding._unsubscribe = self.store.subscribe(atom, binding._changed)
        self._bindings.add(binding)
        if fire_immediately:
            binding.deliver()
        return binding

    def bind(self, atom: Atom, selector: str, *, method: str = "update") -> Binding:
        """Keep the widget matching selector showing atom's value.

        The value is passed to the widget's method ("update" for Static and
        Label), starting with the current one.
        """

        def push(value: Any) -> None:
            getattr(self.app.query_one(selector), method)(value)

        return self.watch(atom, push, fire_immediately=True)

    def dispose(self) -> None:
        """Dispose every binding. The store stays usable."""
        for binding in list(self._bindings):
            binding.dispose()

    def __repr__(self) -> str:
        return f"AppBridge({len(self._bindings)} bindings)"
