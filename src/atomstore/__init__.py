"""atomstore: lazily computed, dependency-tracked atoms in explicit stores."""

from importlib.metadata import version as _version

__version__ = _version("atomstore")

from atomstore.atom import Atom, atom, primitive, read_only, writable, write_only
from atomstore.errors import AtomStoreError, CycleError, NotWritableError
from atomstore.store import Store, create_store, default_equals
from atomstore.action import action, transaction
from atomstore.reaction import Reaction, reaction
# textual NOT auto-imported: opt-in, needs the textual extra

__all__ = [
    "Atom",
    "atom",
    "primitive",
    "read_only",
    "writable",
    "write_only",
    "Store",
    "create_store",
    "default_equals",
    "AtomStoreError",
    "CycleError",
    "NotWritableError",
    "action",
    "transaction",
    "Reaction",
    "reaction",
]
