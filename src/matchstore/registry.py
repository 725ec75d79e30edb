"""Connection registry: at most one live store handle per physical database.

The registry holds weak references only. A handle stays shared while some
caller still references it; once the last caller drops it, the next
:meth:`ConnectionRegistry.prune` pass forgets it.
"""

from __future__ import annotations

import logging
import os
import threading
import weakref
from collections.abc import Callable

from matchstore.config import StoreConfig
from matchstore.descriptor import ConnectionDescriptor, parse_descriptor
from matchstore.errors import InvalidDescriptorError
from matchstore.store import MatchStore
from matchstore.store_duckdb import DuckDBMatchStore
from matchstore.store_null import NullMatchStore
from matchstore.store_sqlite import SqliteMatchStore

log = logging.getLogger(__name__)

_DRIVERS: dict[str, type[MatchStore]] = {
    "sqlite": SqliteMatchStore,
    "duckdb": DuckDBMatchStore,
}


def create_store(
    descriptor: ConnectionDescriptor,
    config: StoreConfig | None = None,
    *,
    fragment_resolver: Callable[[str], int] | None = None,
) -> MatchStore:
    """Instantiate the driver store for ``descriptor`` without opening it."""
    config = (config or StoreConfig()).with_options(descriptor.options)
    cls = _DRIVERS.get(descriptor.driver, NullMatchStore)
    return cls(config, fragment_resolver=fragment_resolver)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._active: dict[str, weakref.ref[MatchStore]] = {}
        self._lock = threading.Lock()

    def acquire(
        self,
        target: str | os.PathLike[str],
        config: StoreConfig | None = None,
        *,
        fragment_resolver: Callable[[str], int] | None = None,
    ) -> MatchStore:
        """Return the live handle for ``target``, opening a new one if needed.

        Never returns None: an unresolvable target yields a
        :class:`NullMatchStore`, and an open failure yields an unopened
        handle whose ``last_error`` tells why.
        """
        try:
            descriptor = parse_descriptor(target)
        except InvalidDescriptorError as e:
            log.warning("%s", e)
            store = NullMatchStore(config)
            store.last_error = e.with_traceback(None)
            return store

        self.prune()

        name = descriptor.connection_name
        with self._lock:
            ref = self._active.get(name)
        store = ref() if ref is not None else None
        if store is not None:
            log.debug("returned an already active database connection: %s", name)
            return store

        store = create_store(descriptor, config, fragment_resolver=fragment_resolver)
        if store.open(name, descriptor.database):
            with self._lock:
                self._active[name] = weakref.ref(store)
            log.debug("opened new database connection: %s", name)
        else:
            # Failed handles are never registered and carry no name.
            store.set_connection_name("")
        return store

    def prune(self) -> None:
        """Forget dead handles and handles that were closed and cannot reopen."""
        with self._lock:
            snapshot = list(self._active.items())
        for name, ref in snapshot:
            store = ref()
            if store is None:
                log.debug("database connection %s is no longer used by anybody, removing", name)
                self._forget(name, ref)
            elif not store.is_open() and not store.reopen():
                log.debug("database connection %s was closed and could not be reopened, removing", name)
                self._forget(name, ref)

    def _forget(self, name: str, ref: weakref.ref[MatchStore]) -> None:
        with self._lock:
            if self._active.get(name) is ref:
                del self._active[name]

    def clear(self) -> None:
        with self._lock:
            self._active.clear()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)


default_registry = ConnectionRegistry()


def get_store(
    target: str | os.PathLike[str],
    config: StoreConfig | None = None,
    *,
    fragment_resolver: Callable[[str], int] | None = None,
) -> MatchStore:
    """Acquire a store handle from the process-wide registry."""
    return default_registry.acquire(target, config, fragment_resolver=fragment_resolver)


__all__ = ["ConnectionRegistry", "create_store", "default_registry", "get_store"]
