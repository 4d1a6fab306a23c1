"""
JobHandler protocol and HandlerRegistry.

Contract:
    ``JobHandler`` is what the worker invokes for a job:
    ``invoke(payload, deadline) -> result``.  A handler signals failure by
    raising.  Handlers must tolerate being run more than once for the same
    job (delivery is at-least-once).

    ``HandlerRegistry`` maps handler keys to handlers.  It is filled at
    process start and frozen before workers start; after ``freeze()`` it
    rejects further registrations.

Architecture:
    erp_jobs/tasks.  ZERO imports from services.  Only imports from
    erp_kernel.exceptions and stdlib.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from erp_kernel.exceptions import HandlerNotRegisteredError


@runtime_checkable
class JobHandler(Protocol):
    """Interface every job handler implements.

    ``payload`` is the job's stored payload (empty mapping when none).
    ``deadline`` is the UTC instant after which the worker stops waiting;
    long-running handlers should check it and stop early.  The return value
    is recorded on the execution row.
    """

    def invoke(self, payload: Mapping[str, Any], deadline: datetime) -> Any: ...


@dataclass(frozen=True)
class FunctionHandler:
    """Adapts a plain ``fn(payload, deadline)`` callable to JobHandler."""

    fn: Callable[[Mapping[str, Any], datetime], Any]

    def invoke(self, payload: Mapping[str, Any], deadline: datetime) -> Any:
        return self.fn(payload, deadline)


class HandlerRegistry:
    """Registry mapping handler keys to JobHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on a duplicate key
          or after ``freeze()``.
        - ``get()`` raises HandlerNotRegisteredError for an unknown key.
        - ``list_handlers()`` returns all keys, sorted.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, key: str, handler: JobHandler | Callable[..., Any]) -> None:
        """Register ``handler`` under ``key``.

        A bare callable is wrapped in FunctionHandler.

        Raises:
            ValueError: If ``key`` is taken or the registry is frozen.
        """
        if not isinstance(handler, JobHandler):
            if not callable(handler):
                raise TypeError(f"Handler for {key!r} is neither a JobHandler nor callable")
            handler = FunctionHandler(handler)
        with self._lock:
            if self._frozen:
                raise ValueError(f"Handler registry is frozen; cannot register {key!r}")
            if key in self._handlers:
                raise ValueError(f"Handler {key!r} is already registered")
            self._handlers[key] = handler

    def get(self, key: str) -> JobHandler:
        try:
            return self._handlers[key]
        except KeyError:
            raise HandlerNotRegisteredError(key) from None

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list_handlers(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, key: object) -> bool:
        return key in self._handlers
