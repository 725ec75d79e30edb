"""Lifecycle notifications published by a match store."""

from __future__ import annotations

import logging
from typing import Any, Callable

log = logging.getLogger(__name__)

Receiver = Callable[..., Any]


class Signal:
    """A named list of receivers called in connection order.

    Receivers must not re-enter the store that emitted the signal while a
    bulk operation is running.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._receivers: list[Receiver] = []

    def connect(self, receiver: Receiver) -> Receiver:
        if receiver not in self._receivers:
            self._receivers.append(receiver)
        return receiver

    def disconnect(self, receiver: Receiver) -> None:
        if receiver in self._receivers:
            self._receivers.remove(receiver)

    def emit(self, *args: Any) -> None:
        log.debug("emit %s%s", self.name, args)
        for receiver in list(self._receivers):
            receiver(*args)

    def __len__(self) -> int:
        return len(self._receivers)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, receivers={len(self._receivers)})"
